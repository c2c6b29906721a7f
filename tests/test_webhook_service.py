import uuid

import pytest

from app.core.errors import InvalidWebhookPayloadError
from app.core.webhook_service import map_provider_status, parse_webhook_payload
from app.models.checkout_session_model import CheckoutStatus

SESSION_ID = "5d4c3b2a-1f0e-4d9c-8b7a-6f5e4d3c2b1a"


@pytest.mark.parametrize("value", ["SUCCEEDED", "success", " Paid ", "COMPLETED", "settled"])
def test_success_statuses(value):
    assert map_provider_status(value) is CheckoutStatus.success


@pytest.mark.parametrize("value", ["FAILED", "expired", "Canceled", "CANCELLED"])
def test_failure_statuses(value):
    assert map_provider_status(value) is CheckoutStatus.failed


@pytest.mark.parametrize("value", ["PENDING", "processing", "", None, "REFUNDED"])
def test_unknown_statuses_are_rejected(value):
    with pytest.raises(InvalidWebhookPayloadError):
        map_provider_status(value)


def test_top_level_invoice_callback():
    notification = parse_webhook_payload({
        "id": "inv_1",
        "status": "PAID",
        "metadata": {"index_guid": SESSION_ID},
    })
    assert notification.session_id == uuid.UUID(SESSION_ID)
    assert notification.status is CheckoutStatus.success
    assert notification.raw_status == "PAID"


def test_fields_nested_under_data():
    notification = parse_webhook_payload({
        "event": "payment.failure",
        "data": {"payment_status": "EXPIRED", "reference_id": SESSION_ID},
    })
    assert notification.session_id == uuid.UUID(SESSION_ID)
    assert notification.status is CheckoutStatus.failed


def test_metadata_takes_precedence_over_reference_id():
    other = str(uuid.uuid4())
    notification = parse_webhook_payload({
        "status": "SETTLED",
        "reference_id": other,
        "metadata": {"index_guid": SESSION_ID},
    })
    assert str(notification.session_id) == SESSION_ID


def test_status_takes_precedence_over_payment_status():
    notification = parse_webhook_payload({
        "status": "FAILED",
        "payment_status": "PAID",
        "reference_id": SESSION_ID,
    })
    assert notification.status is CheckoutStatus.failed


@pytest.mark.parametrize(
    "payload",
    [
        [],
        "PAID",
        {"status": "PAID"},
        {"status": "PAID", "reference_id": "INV-2024-0001"},
        {"status": "PAID", "metadata": {"index_guid": 42}},
        {"reference_id": SESSION_ID},
        {"data": {"status": "UNKNOWN", "reference_id": SESSION_ID}},
    ],
)
def test_invalid_payloads(payload):
    with pytest.raises(InvalidWebhookPayloadError):
        parse_webhook_payload(payload)
