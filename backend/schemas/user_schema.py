from datetime import datetime
from pydantic import BaseModel, EmailStr
from typing import List, Optional
from core.security import verify_password

class UserPublic(BaseModel):
    """User projection safe to return to clients"""
    id: str
    username: str
    email: str
    fullname: str
    avatar: str
    cover_image: str = ""
    watch_history: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        extra = "ignore"

class UserInDB(UserPublic):
    hashed_password: str
    refresh_token: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: dict) -> "UserInDB":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        data["watch_history"] = [str(v) for v in data.get("watch_history") or []]
        return cls(**data)

    def verify_password(self, plain_password: str) -> bool:
        return verify_password(plain_password, self.hashed_password)

    def to_public(self) -> UserPublic:
        return UserPublic(**self.model_dump(exclude={"hashed_password", "refresh_token"}))

class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None

class SessionPair(BaseModel):
    access_token: str
    refresh_token: str

class LoginResponse(SessionPair):
    user: UserPublic

class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str

class UpdateAccountRequest(BaseModel):
    fullname: Optional[str] = None
    email: Optional[EmailStr] = None
