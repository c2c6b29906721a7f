"""CSRF protection using the double-submit cookie pattern."""

import secrets
from typing import Optional

from fastapi import HTTPException, Request, status
from starlette.responses import Response

from app.core.config import settings

CSRF_COOKIE_NAME = "csrf_token"
CSRF_FORM_FIELD = "_csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_TOKEN_LENGTH = 32


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(CSRF_TOKEN_LENGTH)


def get_csrf_token(request: Request) -> str:
    """Reuse the cookie token if present, otherwise mint a new one."""
    return request.cookies.get(CSRF_COOKIE_NAME) or generate_csrf_token()


def _is_https_request(request: Optional[Request]) -> bool:
    if not request:
        return False
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    if forwarded_proto:
        return forwarded_proto.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


def set_csrf_cookie(response: Response, token: str, request: Optional[Request] = None) -> None:
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.SECURE_COOKIES and _is_https_request(request),
        max_age=3600 * 24,
    )


def validate_csrf(request: Request, submitted_token: Optional[str]) -> None:
    """Raise 403 unless the submitted token matches the cookie."""
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    submitted = submitted_token or request.headers.get(CSRF_HEADER_NAME)
    if not cookie_token or not submitted or not secrets.compare_digest(cookie_token.encode("utf-8"), submitted.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="CSRF token missing or invalid",
        )
