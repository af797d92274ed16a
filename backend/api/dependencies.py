from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from core.errors import InvalidTokenError, MissingTokenError
from core.security import ACCESS_COOKIE, bearer_scheme, decode_access_token
from db.store import Store, get_store
from schemas.user_schema import UserInDB
from services.user_service import find_by_id
import logging

logger = logging.getLogger(__name__)

def _access_token(request: Request, bearer: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    # Authorization header first, then the accessToken cookie
    if bearer is not None and bearer.credentials:
        return bearer.credentials
    return request.cookies.get(ACCESS_COOKIE)

async def _resolve_viewer(token: str, store: Store) -> UserInDB:
    payload = decode_access_token(token)
    user = await find_by_id(store, payload.get("sub"))
    if user is None:
        raise InvalidTokenError("Invalid access token")
    return user

async def get_current_user(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> UserInDB:
    """Resolve the authenticated viewer; the record still carries credentials and must not be returned as-is"""
    token = _access_token(request, bearer)
    if not token:
        raise MissingTokenError()
    return await _resolve_viewer(token, store)

async def get_optional_viewer(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> Optional[UserInDB]:
    """Like get_current_user, but anonymous callers resolve to None"""
    token = _access_token(request, bearer)
    if not token:
        return None
    return await _resolve_viewer(token, store)
