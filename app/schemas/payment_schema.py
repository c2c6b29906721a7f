from pydantic import BaseModel, ConfigDict, computed_field, model_validator
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal


def _lower_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {str(k).lower(): v for k, v in data.items()}
    return data


class CallbackInvoice(BaseModel):
    uuid: Optional[str] = None
    reference: Optional[str] = None
    billed_entity_name: Optional[str] = None
    price_with_discount_with_taxes: Decimal = Decimal("0")

    @model_validator(mode="before")
    @classmethod
    def case_insensitive_keys(cls, data: Any) -> Any:
        return _lower_keys(data)


class CallbackSpace(BaseModel):
    uuid: Optional[str] = None
    name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def case_insensitive_keys(cls, data: Any) -> Any:
        return _lower_keys(data)


class CallbackPayload(BaseModel):
    """Decrypted transaction descriptor carried by the provider callback link."""
    invoice: Optional[CallbackInvoice] = None
    space: Optional[CallbackSpace] = None

    @model_validator(mode="before")
    @classmethod
    def case_insensitive_keys(cls, data: Any) -> Any:
        return _lower_keys(data)


class ChannelOption(BaseModel):
    id: int
    type: str
    code: str
    name: str
    description: str
    country: str
    currency: str


class CheckoutView(BaseModel):
    session_id: str
    invoice_reference: Optional[str] = None
    invoice_id: Optional[str] = None
    customer_name: Optional[str] = None
    amount: Decimal
    space_name: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    selected_channel_id: Optional[int] = None
    selected_channel_code: Optional[str] = None
    channel_options: List[ChannelOption] = []
    csrf_token: Optional[str] = None


class CheckoutSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    trace_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_reference: Optional[str] = None
    billed_entity_name: Optional[str] = None
    amount: Decimal
    space_id: Optional[str] = None
    space_name: Optional[str] = None
    status: str
    selected_channel_code: Optional[str] = None
    payment_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReportPage(BaseModel):
    sessions: List[CheckoutSessionRead]
    from_datetime: Optional[datetime] = None
    to_datetime: Optional[datetime] = None
    status: Optional[str] = None
    reference_no: Optional[str] = None
    page_number: int = 1
    page_size: int = 10
    total_count: int = 0

    def _effective_page_size(self) -> int:
        if self.page_size <= 0:
            return max(1, self.total_count)
        return max(1, self.page_size)

    @computed_field
    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total_count // self._effective_page_size()))

    @computed_field
    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @computed_field
    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


class WebhookAck(BaseModel):
    success: bool
