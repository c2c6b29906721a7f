import json
import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
from urllib.parse import urljoin
import uuid

import requests

from app.core.config import settings
from app.core.errors import (
    InvalidAmountError,
    MissingRedirectUrlError,
    ProviderConfigurationError,
    UpstreamRequestFailedError,
)
from app.models.checkout_session_model import CheckoutSession
from app.models.payment_channel_model import PaymentChannel

logger = logging.getLogger(__name__)

INVOICE_PATH = "v2/invoices"


def truncate(value: Optional[str], max_length: int) -> Optional[str]:
    if not value or len(value) <= max_length:
        return value
    return value[:max_length] + "...(truncated)"


def round_amount(amount: Decimal) -> int:
    """Whole currency units, halves rounded away from zero."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _non_blank(container: Any, key: str) -> Optional[str]:
    if not isinstance(container, dict):
        return None
    value = container.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def extract_invoice_url(body: str) -> Optional[str]:
    try:
        root = json.loads(body)
    except (TypeError, ValueError):
        return None

    url = _non_blank(root, "invoice_url") or _non_blank(root, "payment_url")
    if url:
        return url

    actions = root.get("actions") if isinstance(root, dict) else None
    return _non_blank(actions, "desktop_web_checkout_url") or _non_blank(actions, "mobile_web_checkout_url")


class XenditService:
    def __init__(
        self,
        secret_key: Optional[str],
        base_url: str = "https://api.xendit.co/",
        api_version: str = "2024-11-11",
        statement_descriptor: str = "Goods and Services",
        timeout: float = 30,
    ):
        self.secret_key = secret_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.api_version = api_version
        self.statement_descriptor = statement_descriptor
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "XenditService":
        return cls(
            secret_key=settings.XENDIT_SECRET_KEY,
            base_url=settings.XENDIT_BASE_URL,
            api_version=settings.XENDIT_API_VERSION,
            statement_descriptor=settings.XENDIT_STATEMENT_DESCRIPTOR,
            timeout=settings.XENDIT_TIMEOUT_SECONDS,
        )

    def build_invoice_payload(
        self,
        checkout: CheckoutSession,
        channel: PaymentChannel,
        success_url: str,
        failure_url: str,
    ) -> Dict[str, Any]:
        amount = round_amount(checkout.amount)
        if amount <= 0:
            raise InvalidAmountError(f"Invalid request amount from payload: {checkout.amount}")

        external_id = (
            checkout.invoice_reference
            or checkout.invoice_id
            or uuid.UUID(checkout.id).hex
        )
        return {
            "external_id": external_id,
            "amount": amount,
            "description": checkout.billed_entity_name or "Payment request",
            "customer": {"given_names": checkout.billed_entity_name},
            "success_redirect_url": success_url,
            "failure_redirect_url": failure_url,
            "currency": channel.currency,
            "payment_methods": [channel.code],
            "items": [
                {
                    "name": checkout.space_name or self.statement_descriptor,
                    "price": amount,
                    "quantity": 1,
                }
            ],
            "metadata": {"index_guid": checkout.id},
        }

    def create_invoice(self, payload: Dict[str, Any], session_id: str) -> str:
        """POST the invoice and return the hosted payment page URL."""
        if not self.secret_key or not self.secret_key.strip():
            raise ProviderConfigurationError("Missing Xendit secret key configuration")

        logger.info(
            f"Request payload for {INVOICE_PATH}. SessionId: {session_id}, "
            f"Payload: {json.dumps(payload, indent=2)}"
        )
        started = time.monotonic()
        try:
            response = requests.post(
                urljoin(self.base_url, INVOICE_PATH),
                json=payload,
                headers={"api-version": self.api_version},
                auth=(self.secret_key, ""),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise UpstreamRequestFailedError("Request timeout")
        except requests.exceptions.ConnectionError:
            raise UpstreamRequestFailedError("Connection error")
        except requests.exceptions.RequestException as e:
            raise UpstreamRequestFailedError(f"Request failed: {str(e)}")

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Xendit response received. SessionId: {session_id}, StatusCode: {response.status_code}, "
            f"DurationMs: {duration_ms}, Body: {truncate(response.text, 3000)}"
        )

        if not 200 <= response.status_code < 300:
            raise UpstreamRequestFailedError(
                f"Xendit API request failed with {response.status_code}",
                upstream_status=response.status_code,
                response_text=response.text,
            )

        invoice_url = extract_invoice_url(response.text)
        if not invoice_url:
            raise MissingRedirectUrlError("invoice_url not found in Xendit response")
        return invoice_url
