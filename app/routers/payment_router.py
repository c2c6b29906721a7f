from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from sqlmodel import Session
from typing import Optional
import json
import logging
import secrets

from app.core.checkout_service import (
    build_checkout_view,
    parse_callback_payload,
    return_urls,
    submit_checkout,
)
from app.core.config import settings
from app.core.csrf import CSRF_FORM_FIELD, get_csrf_token, set_csrf_cookie, validate_csrf
from app.core.decryption import decrypt_callback
from app.core.errors import (
    CheckoutClosedError,
    InvalidAmountError,
    InvalidSelectionError,
    InvalidWebhookPayloadError,
    MissingRedirectUrlError,
    NoChannelsAvailableError,
    PaymentGatewayError,
    ProviderConfigurationError,
    UpstreamRequestFailedError,
)
from app.core.webhook_service import parse_webhook_payload
from app.crud.checkout_crud import create_checkout_session, get_checkout_session, set_status
from app.db.session import get_session
from app.dependencies import get_trace_id, get_xendit_service
from app.external_services.xendit_service import XenditService, truncate
from app.models.checkout_session_model import CheckoutSession, CheckoutStatus
from app.schemas.payment_schema import CheckoutView, WebhookAck

logger = logging.getLogger(__name__)
router = APIRouter(tags=["payment"])

CALLBACK_TOKEN_HEADER = "x-callback-token"
SESSION_NOT_FOUND = "Payment session not found."


def _load_session(session: Session, session_id: str) -> CheckoutSession:
    checkout = get_checkout_session(session, session_id)
    if not checkout:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SESSION_NOT_FOUND)
    return checkout


def _parse_channel_id(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


@router.get("/callback", include_in_schema=False)
async def payment_callback(
    request: Request,
    data: Optional[str] = Query(None),
    trace_id: str = Depends(get_trace_id),
    session: Session = Depends(get_session),
):
    """Decrypt the provider callback, store it and send the user to checkout."""
    logger.info(
        f"Payment callback received. TraceId: {trace_id}, DataLength: {len(data or '')}, "
        f"QueryKeys: {','.join(request.query_params.keys())}"
    )
    if not data or not data.strip():
        logger.warning(f"Payment callback rejected because data is missing. TraceId: {trace_id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing data parameter.")

    try:
        plaintext = decrypt_callback(data, settings.XENDIT_APP_KEY)
        payload = parse_callback_payload(plaintext)
        logger.info(
            f"Callback payload parsed. TraceId: {trace_id}, "
            f"InvoiceReference: {payload.invoice.reference}, InvoiceUuid: {payload.invoice.uuid}, "
            f"Amount: {payload.invoice.price_with_discount_with_taxes}, "
            f"SpaceUuid: {payload.space.uuid if payload.space else None}"
        )
        session_id = create_checkout_session(session, payload, plaintext, trace_id)
    except PaymentGatewayError as e:
        logger.warning(f"Payment callback rejected. TraceId: {trace_id}, reason: {e.message}")
        raise

    return RedirectResponse(
        url=str(request.url_for("checkout_page", session_id=session_id)),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/payment/checkout/{session_id}", response_model=CheckoutView, name="checkout_page")
async def checkout_page(
    session_id: str,
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
):
    logger.info(f"Checkout page requested. SessionId: {session_id}")
    checkout = _load_session(session, session_id)

    view = build_checkout_view(session, checkout)
    view.csrf_token = get_csrf_token(request)
    set_csrf_cookie(response, view.csrf_token, request)
    return view


@router.post("/payment/checkout/{session_id}", response_model=CheckoutView)
async def submit_checkout_form(
    session_id: str,
    request: Request,
    channel_id: Optional[str] = Form(None),
    csrf_token: Optional[str] = Form(None, alias=CSRF_FORM_FIELD),
    session: Session = Depends(get_session),
    xendit: XenditService = Depends(get_xendit_service),
):
    """
    Create the provider invoice for the chosen channel and redirect to it.

    Selection, session-state and provider failures are returned as the
    checkout view with an error message.
    """
    validate_csrf(request, csrf_token)
    selected_id = _parse_channel_id(channel_id)
    logger.info(f"Checkout submit received. SessionId: {session_id}, ChannelId: {selected_id}")
    checkout = _load_session(session, session_id)

    try:
        success_url, failure_url = return_urls(request, checkout.id)
        payment_url = await run_in_threadpool(
            submit_checkout, session, checkout, selected_id, xendit, success_url, failure_url
        )
    except (
        CheckoutClosedError,
        InvalidSelectionError,
        NoChannelsAvailableError,
        InvalidAmountError,
        UpstreamRequestFailedError,
        MissingRedirectUrlError,
        ProviderConfigurationError,
    ) as e:
        logger.warning(f"Checkout submit rejected. SessionId: {checkout.id}, reason: {e.message}")
        session.refresh(checkout)
        view = build_checkout_view(
            session,
            checkout,
            error_message=e.public_message,
            selected_channel_id=selected_id if isinstance(e, InvalidSelectionError) else None,
        )
        view.csrf_token = get_csrf_token(request)
        return JSONResponse(status_code=e.status_code, content=view.model_dump(mode="json"))

    return RedirectResponse(url=payment_url, status_code=status.HTTP_303_SEE_OTHER)


def _apply_return_status(session: Session, session_id: str, new_status: CheckoutStatus) -> CheckoutSession:
    if settings.TRUST_RETURN_REDIRECTS:
        set_status(session, session_id, new_status)
    else:
        logger.info(f"Return redirect status not applied. SessionId: {session_id}, Status: {new_status.value}")
    return _load_session(session, session_id)


@router.get("/payment/success/{session_id}", response_model=CheckoutView, name="payment_success")
async def payment_success(session_id: str, session: Session = Depends(get_session)):
    logger.info(f"Success endpoint hit. SessionId: {session_id}")
    checkout = _apply_return_status(session, session_id, CheckoutStatus.success)
    return build_checkout_view(session, checkout)


@router.get("/payment/failed/{session_id}", response_model=CheckoutView, name="payment_failed")
async def payment_failed(session_id: str, session: Session = Depends(get_session)):
    logger.info(f"Failed endpoint hit. SessionId: {session_id}")
    checkout = _apply_return_status(session, session_id, CheckoutStatus.failed)
    return build_checkout_view(session, checkout, error_message="Payment was not completed.")


@router.post("/payment/xendit/webhook", response_model=WebhookAck)
async def xendit_webhook(request: Request, session: Session = Depends(get_session)):
    """Apply a provider status notification. Unknown sessions are acknowledged."""
    if settings.XENDIT_WEBHOOK_TOKEN:
        supplied = request.headers.get(CALLBACK_TOKEN_HEADER, "")
        if not secrets.compare_digest(supplied.encode("utf-8"), settings.XENDIT_WEBHOOK_TOKEN.encode("utf-8")):
            logger.warning("Webhook rejected because the callback token did not match")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token.")

    body = (await request.body()).decode("utf-8", errors="replace")
    logger.info(f"Webhook received. PayloadLength: {len(body)}")
    try:
        notification = parse_webhook_payload(json.loads(body))
    except (ValueError, InvalidWebhookPayloadError) as e:
        logger.warning(f"Webhook payload missing required fields: {str(e)}. Payload: {truncate(body, 2000)}")
        raise InvalidWebhookPayloadError(str(e))

    set_status(session, notification.session_id, notification.status)
    logger.info(
        f"Webhook updated payment status. SessionId: {notification.session_id}, "
        f"Status: {notification.status.value}, ProviderStatus: {notification.raw_status}"
    )
    return WebhookAck(success=True)
