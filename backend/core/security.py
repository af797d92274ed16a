from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import HTTPBearer
from core.config import settings
from core.errors import InvalidTokenError

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)

# Bearer scheme for the OpenAPI 'Authorize' button; cookies are checked when the header is absent.
bearer_scheme = HTTPBearer(auto_error=False)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not plain_password or not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generate password hash"""
    return pwd_context.hash(password)

def sign_token(payload: dict, secret: str, ttl: timedelta) -> str:
    """Sign a JWT carrying ``payload`` that expires after ``ttl``.

    Every token gets a fresh ``jti`` so two tokens issued for the same user in
    the same second never compare equal.
    """
    to_encode = payload.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + ttl,
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)

def decode_token(token: str, secret: str) -> dict:
    """Verify and decode a JWT; any decoding failure is an InvalidTokenError"""
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise InvalidTokenError("Invalid or expired token") from e
    if not payload.get("sub"):
        raise InvalidTokenError("Token has no subject")
    return payload

def create_access_token(user_id: str, username: str, email: str, fullname: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create the short-lived access token carrying the viewer identity"""
    data = {"sub": user_id, "username": username, "email": email, "fullname": fullname}
    ttl = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return sign_token(data, settings.ACCESS_TOKEN_SECRET, ttl)

def create_refresh_token(user_id: str) -> str:
    """Create the long-lived refresh token; it carries only the user id"""
    data = {"sub": user_id, "type": "refresh"}
    return sign_token(data, settings.REFRESH_TOKEN_SECRET, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))

def decode_access_token(token: str) -> dict:
    return decode_token(token, settings.ACCESS_TOKEN_SECRET)

def decode_refresh_token(token: str) -> dict:
    payload = decode_token(token, settings.REFRESH_TOKEN_SECRET)
    if payload.get("type") != "refresh":
        raise InvalidTokenError("Not a refresh token")
    return payload

def peek_subject(token: Optional[str]) -> Optional[str]:
    """Return the access token subject, or None when the token does not verify"""
    if not token:
        return None
    try:
        return decode_access_token(token).get("sub")
    except InvalidTokenError:
        return None
