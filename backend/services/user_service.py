from datetime import datetime, timezone
import logging
from typing import Optional

from bson import ObjectId

from core.errors import ConflictError, NotFoundError, UpstreamFailure, ValidationFailure
from core.security import get_password_hash
from db.store import Store, USERS
from schemas.user_schema import UserInDB, UserPublic
from services.media_service import ObjectStore

logger = logging.getLogger(__name__)

# Fields a profile edit may not blank out
REQUIRED_USER_FIELDS = ("username", "email", "fullname", "avatar", "hashed_password")

def normalize_identifier(value: Optional[str]) -> str:
    """Usernames and emails are stored trimmed and lower-cased"""
    return (value or "").strip().lower()

def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

async def find_by_identifier(store: Store, identifier: Optional[str], email: Optional[str] = None) -> Optional[UserInDB]:
    """Find a user whose username or email equals ``identifier``, or whose email equals ``email``"""
    clauses = []
    ident = normalize_identifier(identifier)
    if ident:
        clauses += [{"username": ident}, {"email": ident}]
    address = normalize_identifier(email)
    if address and address != ident:
        clauses.append({"email": address})
    if not clauses:
        return None
    doc = await store.find_one(USERS, {"$or": clauses})
    return UserInDB.from_doc(doc) if doc else None

async def find_by_id(store: Store, user_id) -> Optional[UserInDB]:
    oid = to_object_id(user_id)
    if oid is None:
        return None
    doc = await store.find_one(USERS, {"_id": oid})
    return UserInDB.from_doc(doc) if doc else None

async def create_user(store: Store, fields: dict) -> ObjectId:
    """Insert a user document; duplicate username/email raises ConflictError"""
    now = _utcnow()
    doc = {
        "watch_history": [],
        "cover_image": "",
        **fields,
        "created_at": now,
        "updated_at": now,
    }
    return await store.insert_one(USERS, doc)

async def update_fields(store: Store, user_id, fields: dict, validate: bool = True, expected: Optional[dict] = None) -> bool:
    """Set (or, for None values, unset) user fields.

    With ``validate`` the required profile fields may not be blanked. Token and
    password writes pass ``validate=False``. Returns whether the user matched.
    """
    oid = to_object_id(user_id)
    if oid is None:
        return False
    if validate:
        for name in REQUIRED_USER_FIELDS:
            if name in fields and not (isinstance(fields[name], str) and fields[name].strip()):
                raise ValidationFailure(f"{name} is required")
    set_fields = {k: v for k, v in fields.items() if v is not None}
    set_fields["updated_at"] = _utcnow()
    unset_fields = [k for k, v in fields.items() if v is None]
    return await store.update_by_id(USERS, oid, set_fields, unset_fields, expected=expected)

async def register_user(store: Store, object_store: ObjectStore, username: str, email: str, fullname: str,
                        password: str, avatar_path: Optional[str], cover_image_path: Optional[str] = None) -> UserPublic:
    """Create a new account.

    Uniqueness is checked before anything is uploaded; staged files that are
    never uploaded are discarded.
    """
    try:
        if any(not (field or "").strip() for field in (username, email, fullname, password)):
            raise ValidationFailure("All fields are required")
        if not avatar_path:
            raise ValidationFailure("Avatar file is required")

        username = normalize_identifier(username)
        email = normalize_identifier(email)
        existing = await store.find_one(USERS, {"$or": [{"username": username}, {"email": email}]})
        if existing:
            raise ConflictError("User with email or username already exists")

        avatar = await object_store.upload(avatar_path)
        cover_url = ""
        if cover_image_path:
            try:
                cover_url = (await object_store.upload(cover_image_path))["url"]
            except UpstreamFailure as e:
                logger.warning(f"Cover image upload failed for {username}: {e}")

        user_id = await create_user(store, {
            "username": username,
            "email": email,
            "fullname": fullname.strip(),
            "hashed_password": get_password_hash(password),
            "avatar": avatar["url"],
            "cover_image": cover_url,
        })
    finally:
        await object_store.discard(avatar_path)
        await object_store.discard(cover_image_path)

    created = await find_by_id(store, user_id)
    if created is None:
        raise UpstreamFailure("Something went wrong while registering the user")
    logger.info(f"Registered user {created.username}")
    return created.to_public()

async def get_user_profile(store: Store, user_id) -> UserPublic:
    user = await find_by_id(store, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user.to_public()

async def update_account_details(store: Store, user_id, fullname: Optional[str], email: Optional[str]) -> UserPublic:
    if not (fullname or "").strip() or not (email or "").strip():
        raise ValidationFailure("All fields are required")
    matched = await update_fields(store, user_id, {
        "fullname": fullname.strip(),
        "email": normalize_identifier(email),
    })
    if not matched:
        raise NotFoundError("User not found")
    return await get_user_profile(store, user_id)

async def _replace_image(store: Store, object_store: ObjectStore, user_id, field: str, local_path: Optional[str]) -> UserPublic:
    if not local_path:
        raise ValidationFailure(f"{field.replace('_', ' ').capitalize()} file is missing")
    uploaded = await object_store.upload(local_path)
    matched = await update_fields(store, user_id, {field: uploaded["url"]})
    if not matched:
        raise NotFoundError("User not found")
    return await get_user_profile(store, user_id)

async def update_avatar(store: Store, object_store: ObjectStore, user_id, local_path: Optional[str]) -> UserPublic:
    return await _replace_image(store, object_store, user_id, "avatar", local_path)

async def update_cover_image(store: Store, object_store: ObjectStore, user_id, local_path: Optional[str]) -> UserPublic:
    return await _replace_image(store, object_store, user_id, "cover_image", local_path)
