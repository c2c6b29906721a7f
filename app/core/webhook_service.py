from dataclasses import dataclass
from typing import Any, Optional
import logging
import uuid

from app.core.errors import InvalidWebhookPayloadError
from app.models.checkout_session_model import CheckoutStatus

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"SUCCEEDED", "SUCCESS", "PAID", "COMPLETED", "SETTLED"})
FAILURE_STATUSES = frozenset({"FAILED", "EXPIRED", "CANCELED", "CANCELLED"})


@dataclass(frozen=True)
class WebhookNotification:
    session_id: uuid.UUID
    status: CheckoutStatus
    raw_status: str


def map_provider_status(value: Optional[str]) -> CheckoutStatus:
    normalized = (value or "").strip().upper()
    if normalized in SUCCESS_STATUSES:
        return CheckoutStatus.success
    if normalized in FAILURE_STATUSES:
        return CheckoutStatus.failed
    raise InvalidWebhookPayloadError(f"Unrecognized provider status: {value!r}")


def _text(container: Any, key: str) -> Optional[str]:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        return None


def parse_webhook_payload(payload: Any) -> WebhookNotification:
    """
    Normalize a provider webhook body.

    Fields may sit at the top level or under ``data``. The session id comes
    from ``metadata.index_guid`` and falls back to ``reference_id``; the status
    comes from ``status`` and falls back to ``payment_status``.
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook body is not a JSON object")

    root = payload
    if isinstance(payload.get("data"), dict):
        root = payload["data"]

    session_id = _parse_uuid(_text(root.get("metadata"), "index_guid"))
    if session_id is None:
        session_id = _parse_uuid(_text(root, "reference_id"))
    if session_id is None:
        raise InvalidWebhookPayloadError("Webhook payload has no usable session id")

    raw_status = _text(root, "status") or _text(root, "payment_status") or ""
    return WebhookNotification(
        session_id=session_id,
        status=map_provider_status(raw_status),
        raw_status=raw_status,
    )
