from datetime import timedelta
from typing import Any, Dict, Optional, Tuple
from jose import JWTError, jwt
from app.core.clock import utc_now
from app.core.config import settings
import hashlib
import logging
import secrets

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
TOKEN_TYPE = "access"


def session_lifetime(remember_me: bool) -> timedelta:
    if remember_me:
        return timedelta(days=settings.REMEMBER_ME_EXPIRE_DAYS)
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(user_id: str, claims: Optional[Dict[str, Any]] = None,
                        expires_delta: Optional[timedelta] = None) -> str:
    """Signed session token for the admin cookie. ``sub`` is the user id."""
    issued_at = utc_now()
    payload = dict(claims or {})
    payload.update({
        "sub": str(user_id),
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or session_lifetime(False)),
    })
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[str]:
    """Return the user id of a valid, unexpired session token, else None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected session token: {str(e)}")
        return None
    if payload.get("type") != TOKEN_TYPE:
        return None
    return payload.get("sub")


def create_reset_token() -> Tuple[str, str]:
    """Return (raw url-safe token, hex SHA-256 of it). Only the hash is stored."""
    raw = secrets.token_urlsafe(32)
    return raw, hash_reset_token(raw)


def hash_reset_token(token: str) -> str:
    if not token or not token.strip():
        raise ValueError("Token is required")
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
