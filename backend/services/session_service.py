"""Credential verification and the access/refresh token lifecycle.

Each user has a single ``refresh_token`` slot. Issuing a pair overwrites the
slot, so every earlier refresh token goes stale the moment a new one is
issued. Rotation compares the presented token with the slot and swaps it in
one conditional write; replaying a rotated token fails with StaleTokenError.
"""
import logging
from typing import Optional

from core.config import settings
from core.errors import (
    InvalidCredentialError,
    MissingTokenError,
    NotFoundError,
    StaleTokenError,
    TokenIssuanceError,
    ValidationFailure,
)
from core.security import create_access_token, create_refresh_token, decode_refresh_token, get_password_hash
from db.store import Store
from schemas.user_schema import LoginResponse, SessionPair, UserInDB
from services.user_service import find_by_id, find_by_identifier, update_fields
from utils.timing import timeit

logger = logging.getLogger(__name__)

async def verify_credentials(store: Store, identifier: Optional[str], password: str, email: Optional[str] = None) -> UserInDB:
    """Match ``identifier`` against username or email, or ``email`` against email"""
    user = await find_by_identifier(store, identifier, email)
    if user is None:
        raise NotFoundError("User does not exist")
    if not user.verify_password(password):
        raise InvalidCredentialError("Invalid user credentials")
    return user

async def issue_session_pair(store: Store, user_id, replacing: Optional[str] = None) -> SessionPair:
    """Sign a fresh access/refresh pair and store the refresh token.

    The slot write is the last step: if it fails, no tokens are returned and
    the previous slot value stays in place. With ``replacing`` the write only
    applies while the slot still holds that token.
    """
    try:
        user = await find_by_id(store, user_id)
        if user is None:
            raise TokenIssuanceError()
        access_token = create_access_token(user.id, user.username, user.email, user.fullname)
        refresh_token = create_refresh_token(user.id)
        expected = {"refresh_token": replacing} if replacing is not None else None
        matched = await update_fields(store, user.id, {"refresh_token": refresh_token}, validate=False, expected=expected)
    except TokenIssuanceError:
        raise
    except Exception as e:
        logger.error(f"Error issuing session pair for {user_id}: {e}")
        raise TokenIssuanceError() from e
    if not matched:
        if replacing is not None:
            raise StaleTokenError()
        raise TokenIssuanceError()
    return SessionPair(access_token=access_token, refresh_token=refresh_token)

@timeit("login")
async def login(store: Store, identifier: Optional[str], password: str, email: Optional[str] = None) -> LoginResponse:
    if not (identifier or "").strip() and not (email or "").strip():
        raise ValidationFailure("Username or email is required")
    user = await verify_credentials(store, identifier, password, email)
    pair = await issue_session_pair(store, user.id)
    logger.info(f"User {user.username} logged in")
    return LoginResponse(user=user.to_public(), **pair.model_dump())

@timeit("rotate_session")
async def rotate_session(store: Store, presented_refresh_token: Optional[str]) -> SessionPair:
    if not presented_refresh_token or not presented_refresh_token.strip():
        raise MissingTokenError()
    payload = decode_refresh_token(presented_refresh_token)
    user = await find_by_id(store, payload.get("sub"))
    if user is None or user.refresh_token != presented_refresh_token:
        logger.warning(f"Stale refresh token presented for {payload.get('sub')}")
        raise StaleTokenError()
    return await issue_session_pair(store, user.id, replacing=presented_refresh_token)

async def end_session(store: Store, user_id) -> None:
    """Clear the refresh token slot; ending an ended session is a no-op"""
    await update_fields(store, user_id, {"refresh_token": None}, validate=False)

async def change_password(store: Store, user_id, old_password: str, new_password: str) -> None:
    user = await find_by_id(store, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.verify_password(old_password):
        raise InvalidCredentialError("Invalid old password")
    if not (new_password or "").strip():
        raise ValidationFailure("New password is required")
    fields = {"hashed_password": get_password_hash(new_password)}
    if settings.REVOKE_SESSION_ON_PASSWORD_CHANGE:
        fields["refresh_token"] = None
    await update_fields(store, user.id, fields, validate=False)
