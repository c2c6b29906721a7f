from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlmodel import Session
from datetime import timedelta
from typing import Optional
import logging

from app.core.clock import utc_now
from app.core.config import settings
from app.core.csrf import CSRF_FORM_FIELD, get_csrf_token, set_csrf_cookie, validate_csrf
from app.core.rate_limit import RateLimiter
from app.core.security import ACCESS_TOKEN_COOKIE, create_access_token, session_lifetime
from app.crud.auth_crud import AuthCRUD
from app.db.session import get_session
from app.dependencies import get_current_user, get_optional_user
from app.external_services.email_service import EmailClient
from app.models.user_model import AppUser
from app.schemas.user_schema import (
    ChangePasswordForm,
    ForgotPasswordForm,
    LoginForm,
    ResetPasswordForm,
    UserRead,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/account", tags=["account"])

REPORT_PATH = "/report"
LOGIN_PATH = "/account/login"
INVALID_RESET_LINK = "Reset link is invalid, expired, or already used."


def is_local_url(url: Optional[str]) -> bool:
    if not url or not url.startswith("/"):
        return False
    return not url.startswith("//") and not url.startswith("/\\")


def _form_state(request: Request, response: Response, **extra) -> dict:
    token = get_csrf_token(request)
    set_csrf_cookie(response, token, request)
    return {"csrf_token": token, **extra}


def _sign_in(response: Response, user: AppUser, remember_me: bool) -> None:
    expires = session_lifetime(remember_me)
    token = create_access_token(
        user.id,
        {"email": user.email, "name": user.full_name or user.email},
        expires_delta=expires,
    )
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.SECURE_COOKIES,
        max_age=int(expires.total_seconds()) if remember_me else None,
    )


@router.get("/login")
async def login_page(
    request: Request,
    response: Response,
    return_url: Optional[str] = Query(None),
    user: Optional[AppUser] = Depends(get_optional_user),
):
    if user is not None:
        return RedirectResponse(url=REPORT_PATH, status_code=status.HTTP_303_SEE_OTHER)
    return _form_state(request, response, return_url=return_url)


@router.post("/login", dependencies=[Depends(RateLimiter("login", times=5, minutes=15))])
async def login(
    request: Request,
    login_data: LoginForm = Depends(LoginForm.as_form),
    return_url: Optional[str] = Query(None),
    csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD),
    session: Session = Depends(get_session),
):
    """
    Sign in with email and password.

    While no account exists yet, the first login creates the account with the
    submitted credentials.
    """
    validate_csrf(request, csrf_token)
    crud = AuthCRUD(session)

    user = crud.get_user_by_email(login_data.email)
    first_user_created = False
    if user is None:
        user = crud.create_first_user_if_none(login_data.email, login_data.email, login_data.password)
        first_user_created = user is not None
    elif not crud.verify_password(user, login_data.password):
        user = None

    if user is None:
        logger.warning(f"Login failed for {login_data.email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")

    target = REPORT_PATH
    if not first_user_created and is_local_url(return_url):
        target = return_url
    redirect = RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
    _sign_in(redirect, user, login_data.remember_me)
    logger.info(f"User signed in: {user.id}")
    return redirect


@router.post("/logout")
async def logout(request: Request, csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD)):
    validate_csrf(request, csrf_token)
    redirect = RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_303_SEE_OTHER)
    redirect.delete_cookie(ACCESS_TOKEN_COOKIE)
    return redirect


@router.get("/forgot-password")
async def forgot_password_page(request: Request, response: Response):
    return _form_state(request, response)


def _send_reset_link(email: str, link: str) -> None:
    EmailClient().send_password_reset_link(email, link)


@router.post("/forgot-password", dependencies=[Depends(RateLimiter("forgot-password", times=3, minutes=15))])
async def forgot_password(
    request: Request,
    background_tasks: BackgroundTasks,
    form: ForgotPasswordForm = Depends(ForgotPasswordForm.as_form),
    csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD),
    session: Session = Depends(get_session),
):
    """Mail a one-time reset link. The response never reveals whether the account exists."""
    validate_csrf(request, csrf_token)
    crud = AuthCRUD(session)
    user = crud.get_user_by_email(form.email)
    if user is not None:
        expires_at = utc_now() + timedelta(minutes=settings.RESET_TOKEN_EXPIRY_MINUTES)
        token_id, raw_token = crud.create_reset_token(user.id, expires_at)
        link = str(
            request.url_for("reset_password_page").include_query_params(token_id=token_id, token=raw_token)
        )
        background_tasks.add_task(_send_reset_link, user.email, link)
        logger.info(f"Password reset link issued for user {user.id}")
    else:
        logger.info(f"Password reset requested for unknown email {form.email}")

    return RedirectResponse(url="/account/forgot-password-confirmation", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/forgot-password-confirmation")
async def forgot_password_confirmation():
    return {"message": "If the account exists, a reset link has been sent."}


@router.get("/reset-password", name="reset_password_page")
async def reset_password_page(
    request: Request,
    response: Response,
    token_id: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    if not AuthCRUD(session).is_reset_token_valid(token_id, token):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RESET_LINK)
    return _form_state(request, response, token_id=token_id, token=token)


@router.post("/reset-password")
async def reset_password(
    request: Request,
    form: ResetPasswordForm = Depends(ResetPasswordForm.as_form),
    csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD),
    session: Session = Depends(get_session),
):
    validate_csrf(request, csrf_token)
    if not AuthCRUD(session).consume_reset_token(form.token_id, form.token, form.new_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_RESET_LINK)
    return RedirectResponse(url="/account/reset-password-confirmation", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/reset-password-confirmation")
async def reset_password_confirmation():
    return {"message": "Your password has been reset. You can now sign in."}


@router.get("/me", response_model=UserRead)
async def current_account(user: AppUser = Depends(get_current_user)):
    return user


@router.get("/change-password")
async def change_password_page(
    request: Request,
    response: Response,
    user: AppUser = Depends(get_current_user),
):
    return _form_state(request, response)


@router.post("/change-password")
async def change_password(
    request: Request,
    form: ChangePasswordForm = Depends(ChangePasswordForm.as_form),
    csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD),
    user: AppUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    validate_csrf(request, csrf_token)
    crud = AuthCRUD(session)
    if not crud.verify_password(user, form.current_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect.")
    if form.current_password == form.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password must be different from current password.",
        )

    crud.update_password(user, form.new_password)
    return {"message": "Password updated successfully."}
