import json
import uuid
from decimal import Decimal

import pytest
import requests

from app.core.errors import (
    InvalidAmountError,
    MissingRedirectUrlError,
    ProviderConfigurationError,
    UpstreamRequestFailedError,
)
from app.external_services.xendit_service import (
    XenditService,
    extract_invoice_url,
    round_amount,
    truncate,
)
from app.models.checkout_session_model import CheckoutSession
from app.models.payment_channel_model import PaymentChannel

from conftest import FakePost, FakeResponse

SUCCESS_URL = "https://gateway.example.com/payment/success/abc"
FAILURE_URL = "https://gateway.example.com/payment/failed/abc"


def _checkout(**overrides) -> CheckoutSession:
    values = dict(
        invoice_id="inv-uuid-1",
        invoice_reference="INV-77",
        billed_entity_name="Siam Trading Co.",
        amount=Decimal("1500.50"),
        space_name="Bangkok Office",
        raw_decrypted_payload="{}",
    )
    values.update(overrides)
    return CheckoutSession(**values)


def _channel() -> PaymentChannel:
    return PaymentChannel(
        id=9, code="PROMPTPAY", display_name="PromptPay", country="TH", currency="THB",
        min_amount=Decimal("1.00"), settlement_time="T+0", type="QR",
    )


def _service(secret_key="xnd_secret") -> XenditService:
    return XenditService(secret_key, base_url="https://api.xendit.test", api_version="2024-11-11")


def test_round_amount_rounds_halves_away_from_zero():
    assert round_amount(Decimal("100.49")) == 100
    assert round_amount(Decimal("100.50")) == 101
    assert round_amount(Decimal("0.4")) == 0


def test_invoice_payload_fields():
    checkout = _checkout()
    payload = _service().build_invoice_payload(checkout, _channel(), SUCCESS_URL, FAILURE_URL)

    assert payload["external_id"] == "INV-77"
    assert payload["amount"] == 1501
    assert payload["currency"] == "THB"
    assert payload["payment_methods"] == ["PROMPTPAY"]
    assert payload["customer"] == {"given_names": "Siam Trading Co."}
    assert payload["success_redirect_url"] == SUCCESS_URL
    assert payload["failure_redirect_url"] == FAILURE_URL
    assert payload["items"] == [{"name": "Bangkok Office", "price": 1501, "quantity": 1}]
    assert payload["metadata"] == {"index_guid": checkout.id}


def test_invoice_payload_fallbacks():
    checkout = _checkout(invoice_reference=None, invoice_id=None, billed_entity_name=None, space_name=None)
    payload = _service().build_invoice_payload(checkout, _channel(), SUCCESS_URL, FAILURE_URL)

    assert payload["external_id"] == uuid.UUID(checkout.id).hex
    assert payload["description"] == "Payment request"
    assert payload["items"][0]["name"] == "Goods and Services"

    checkout = _checkout(invoice_reference=None)
    assert _service().build_invoice_payload(checkout, _channel(), SUCCESS_URL, FAILURE_URL)["external_id"] == "inv-uuid-1"


@pytest.mark.parametrize("amount", ["0", "0.49", "-10"])
def test_non_positive_amount_is_rejected(amount):
    with pytest.raises(InvalidAmountError):
        _service().build_invoice_payload(_checkout(amount=Decimal(amount)), _channel(), SUCCESS_URL, FAILURE_URL)


def test_create_invoice_posts_with_basic_auth(fake_post):
    url = _service().create_invoice({"amount": 10}, "session-1")

    assert url == "https://checkout.xendit.co/web/inv_123"
    call = fake_post.calls[0]
    assert call["url"] == "https://api.xendit.test/v2/invoices"
    assert call["auth"] == ("xnd_secret", "")
    assert call["headers"] == {"api-version": "2024-11-11"}
    assert call["json"] == {"amount": 10}
    assert call["timeout"] == 30


def test_create_invoice_without_secret_key_never_calls_provider(fake_post):
    with pytest.raises(ProviderConfigurationError):
        _service(secret_key=" ").create_invoice({}, "session-1")
    assert fake_post.calls == []


def test_non_success_status_is_an_upstream_failure(monkeypatch):
    monkeypatch.setattr(
        "app.external_services.xendit_service.requests.post",
        FakePost(FakeResponse(400, {"error_code": "API_VALIDATION_ERROR"})),
    )
    with pytest.raises(UpstreamRequestFailedError) as exc_info:
        _service().create_invoice({}, "session-1")
    assert exc_info.value.upstream_status == 400
    assert "API_VALIDATION_ERROR" in exc_info.value.response_text


@pytest.mark.parametrize(
    "exc",
    [requests.exceptions.Timeout(), requests.exceptions.ConnectionError(), requests.exceptions.RequestException()],
)
def test_transport_errors_are_upstream_failures(monkeypatch, exc):
    monkeypatch.setattr("app.external_services.xendit_service.requests.post", FakePost(exc=exc))
    with pytest.raises(UpstreamRequestFailedError):
        _service().create_invoice({}, "session-1")


def test_success_without_url_is_missing_redirect(monkeypatch):
    monkeypatch.setattr(
        "app.external_services.xendit_service.requests.post",
        FakePost(FakeResponse(200, {"id": "inv_1", "invoice_url": "  "})),
    )
    with pytest.raises(MissingRedirectUrlError):
        _service().create_invoice({}, "session-1")


def test_extract_invoice_url_fallback_chain():
    assert extract_invoice_url(json.dumps({"invoice_url": "a", "payment_url": "b"})) == "a"
    assert extract_invoice_url(json.dumps({"invoice_url": "", "payment_url": "b"})) == "b"
    assert extract_invoice_url(json.dumps({
        "actions": {"desktop_web_checkout_url": " ", "mobile_web_checkout_url": "m"}
    })) == "m"
    assert extract_invoice_url(json.dumps({"actions": {"desktop_web_checkout_url": "d"}})) == "d"
    assert extract_invoice_url(json.dumps({"id": "x"})) is None
    assert extract_invoice_url("<html>not json</html>") is None
    assert extract_invoice_url(json.dumps(["invoice_url"])) is None


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 12, 10) == "x" * 10 + "...(truncated)"
    assert truncate(None, 10) is None
