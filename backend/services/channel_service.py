"""Viewer-relative views over users, subscriptions and videos.

Both queries are expressed as ``Pipeline`` objects so the same stages run on
MongoDB or on the in-memory store. Missing relations are normal: an unknown
owner becomes ``None`` and an empty history is an empty list.
"""
import logging
from typing import List, Optional

from core.errors import NotFoundError, ValidationFailure
from db.pipeline import ArrangeBy, Contains, Count, First, Lookup, Match, Pipeline, Project
from db.store import Store, SUBSCRIPTIONS, USERS, VIDEOS
from schemas.channel_schema import ChannelProfile, OwnerSummary, WatchedVideo
from services.user_service import normalize_identifier, to_object_id

logger = logging.getLogger(__name__)

CHANNEL_FIELDS = (
    "fullname",
    "username",
    "subscribers_count",
    "channels_subscribed_to_count",
    "is_subscribed",
    "avatar",
    "cover_image",
    "email",
)
OWNER_FIELDS = ("fullname", "username", "avatar")


def channel_profile_pipeline(username: str, viewer_id=None) -> Pipeline:
    viewer_oid = to_object_id(viewer_id) if viewer_id is not None else None
    return Pipeline([
        Match({"username": normalize_identifier(username)}),
        Lookup(SUBSCRIPTIONS, "_id", "channel", "subscribers"),
        Lookup(SUBSCRIPTIONS, "_id", "subscriber", "subscribed_to"),
        Count("subscribers_count", "subscribers"),
        Count("channels_subscribed_to_count", "subscribed_to"),
        Contains("is_subscribed", "subscribers", "subscriber", viewer_oid),
        Project(CHANNEL_FIELDS),
    ])


def watch_history_pipeline(viewer_id) -> Pipeline:
    owner_lookup = [
        Lookup(USERS, "owner", "_id", "owner", pipeline=[Project(OWNER_FIELDS, include_id=False)]),
        First("owner"),
    ]
    return Pipeline([
        Match({"_id": to_object_id(viewer_id)}),
        Lookup(VIDEOS, "watch_history", "_id", "history", pipeline=owner_lookup),
        ArrangeBy("history", "watch_history"),
        Project(["history"]),
    ])


async def get_channel_profile(store: Store, username: str, viewer_id: Optional[str] = None) -> ChannelProfile:
    if not normalize_identifier(username):
        raise ValidationFailure("Username is missing")
    rows = await store.aggregate(USERS, channel_profile_pipeline(username, viewer_id))
    if not rows:
        raise NotFoundError("Channel does not exist")
    row = rows[0]
    return ChannelProfile(
        id=str(row["_id"]),
        fullname=row.get("fullname", ""),
        username=row.get("username", ""),
        email=row.get("email", ""),
        avatar=row.get("avatar", ""),
        cover_image=row.get("cover_image") or "",
        subscribers_count=int(row.get("subscribers_count", 0)),
        channels_subscribed_to_count=int(row.get("channels_subscribed_to_count", 0)),
        is_subscribed=bool(row.get("is_subscribed", False)),
    )


def _to_watched_video(doc: dict) -> WatchedVideo:
    owner = doc.get("owner")
    return WatchedVideo(
        id=str(doc["_id"]),
        title=doc.get("title", ""),
        description=doc.get("description", ""),
        video_file=doc.get("video_file", ""),
        thumbnail=doc.get("thumbnail", ""),
        duration=doc.get("duration", 0),
        views=int(doc.get("views", 0)),
        is_published=bool(doc.get("is_published", True)),
        created_at=doc.get("created_at"),
        owner=OwnerSummary(**owner) if isinstance(owner, dict) else None,
    )


async def get_watch_history(store: Store, viewer_id) -> List[WatchedVideo]:
    if to_object_id(viewer_id) is None:
        return []
    rows = await store.aggregate(USERS, watch_history_pipeline(viewer_id))
    if not rows:
        return []
    return [_to_watched_video(doc) for doc in rows[0].get("history", [])]
