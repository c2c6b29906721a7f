from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session
from typing import Optional

from app.core.security import ACCESS_TOKEN_COOKIE, verify_token
from app.crud.auth_crud import AuthCRUD
from app.db.session import get_session
from app.external_services.xendit_service import XenditService
from app.models.user_model import AppUser
import logging
import uuid

logger = logging.getLogger(__name__)

TRACE_ID_HEADER = "X-Request-ID"


def get_trace_id(request: Request) -> str:
    """Correlation id for log lines: the caller's X-Request-ID or a fresh one."""
    trace_id = request.headers.get(TRACE_ID_HEADER)
    if trace_id and trace_id.strip():
        return trace_id.strip()[:128]
    return uuid.uuid4().hex


def get_xendit_service() -> XenditService:
    return XenditService.from_settings()


def get_optional_user(
    request: Request,
    session: Session = Depends(get_session),
) -> Optional[AppUser]:
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header[7:].strip()
    if not token:
        return None

    user_id = verify_token(token)
    if user_id is None:
        return None
    return AuthCRUD(session).get_user_by_id(user_id)


def get_current_user(user: Optional[AppUser] = Depends(get_optional_user)) -> AppUser:
    """Return the signed-in admin user or fail with 401."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user
