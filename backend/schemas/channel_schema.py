from datetime import datetime
from pydantic import BaseModel
from typing import Optional

class ChannelProfile(BaseModel):
    id: str
    fullname: str
    username: str
    email: str
    avatar: str
    cover_image: str = ""
    subscribers_count: int
    channels_subscribed_to_count: int
    is_subscribed: bool

class OwnerSummary(BaseModel):
    fullname: str
    username: str
    avatar: str

class WatchedVideo(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    video_file: str = ""
    thumbnail: str = ""
    duration: float = 0
    views: int = 0
    is_published: bool = True
    created_at: Optional[datetime] = None
    owner: Optional[OwnerSummary] = None
