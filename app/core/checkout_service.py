import json
import logging
from typing import Optional, Tuple

from fastapi import Request
from sqlmodel import Session
from starlette.routing import NoMatchFound

from app.core.config import settings
from app.core.errors import (
    CheckoutClosedError,
    MalformedPayloadError,
    ProviderConfigurationError,
    UpstreamRequestFailedError,
)
from app.crud.channel_crud import eligible_channels, find_eligible_channel
from app.crud.checkout_crud import record_channel_selection, set_status
from app.external_services.xendit_service import XenditService, truncate
from app.models.checkout_session_model import CheckoutSession, CheckoutStatus
from app.schemas.payment_schema import CallbackPayload, ChannelOption, CheckoutView

logger = logging.getLogger(__name__)


def parse_callback_payload(plaintext: str) -> CallbackPayload:
    """Deserialize decrypted callback JSON. An invoice block is mandatory."""
    try:
        data = json.loads(plaintext)
        payload = CallbackPayload.model_validate(data) if data is not None else None
    except ValueError as e:
        raise MalformedPayloadError(f"Callback JSON rejected: {str(e)}")
    if payload is None or payload.invoice is None:
        raise MalformedPayloadError("Callback payload has no invoice", public_message="Invalid payment info.")
    return payload


def build_checkout_view(
    session: Session,
    checkout: CheckoutSession,
    error_message: Optional[str] = None,
    selected_channel_id: Optional[int] = None,
) -> CheckoutView:
    channels = eligible_channels(session, checkout.amount)
    return CheckoutView(
        session_id=checkout.id,
        invoice_reference=checkout.invoice_reference,
        invoice_id=checkout.invoice_id,
        customer_name=checkout.billed_entity_name,
        amount=checkout.amount,
        space_name=checkout.space_name,
        status=checkout.status,
        error_message=error_message,
        selected_channel_id=selected_channel_id,
        selected_channel_code=checkout.selected_channel_code,
        channel_options=[
            ChannelOption(
                id=channel.id,
                type=channel.type or "Unknown",
                code=channel.code,
                name=channel.display_name,
                description=channel.description,
                country=channel.country,
                currency=channel.currency,
            )
            for channel in channels
        ],
    )


def _configured_url(template: Optional[str], session_id: str) -> Optional[str]:
    if not template:
        return None
    return template.replace("{session_id}", session_id)


def return_urls(request: Request, session_id: str) -> Tuple[str, str]:
    """Absolute success/failure URLs pointing back at this service."""
    urls = []
    for route_name, fallback in (
        ("payment_success", settings.XENDIT_SUCCESS_RETURN_URL),
        ("payment_failed", settings.XENDIT_FAILURE_RETURN_URL),
    ):
        try:
            urls.append(str(request.url_for(route_name, session_id=session_id)))
        except NoMatchFound:
            url = _configured_url(fallback, session_id)
            if not url:
                raise ProviderConfigurationError(f"Unable to build {route_name} return URL")
            urls.append(url)
    return urls[0], urls[1]


def submit_checkout(
    session: Session,
    checkout: CheckoutSession,
    channel_id: Optional[int],
    xendit: XenditService,
    success_url: str,
    failure_url: str,
) -> str:
    """
    Validate the chosen channel, create the provider invoice and record it.

    Returns the provider URL the user must be redirected to. The channel is
    re-checked against the currently eligible set before anything is sent,
    and nothing is sent once the session can no longer reach Success.
    """
    policy = settings.STATUS_TRANSITION_POLICY
    if not checkout.is_open_for_checkout(policy):
        raise CheckoutClosedError(f"Checkout submit refused for session in status {checkout.status}")

    channel = find_eligible_channel(session, checkout.amount, channel_id)
    logger.info(
        f"Selected channel accepted. SessionId: {checkout.id}, ChannelId: {channel.id}, "
        f"ChannelCode: {channel.code}, Country: {channel.country}, Currency: {channel.currency}"
    )

    payload = xendit.build_invoice_payload(checkout, channel, success_url, failure_url)
    try:
        payment_url = xendit.create_invoice(payload, checkout.id)
    except UpstreamRequestFailedError as e:
        logger.error(
            f"Xendit payment request failed. SessionId: {checkout.id}, "
            f"error: {e.message}, body: {truncate(e.response_text, 2000)}"
        )
        updated = set_status(session, checkout.id, CheckoutStatus.failed, policy)
        if updated is not None and not updated.is_open_for_checkout(policy):
            e.public_message = "Unable to create payment request."
        raise

    record_channel_selection(session, checkout.id, channel.code, payment_url)
    logger.info(f"Checkout submit completed. SessionId: {checkout.id}, PaymentUrl: {payment_url}")
    return payment_url
