from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from decimal import Decimal
from typing import Optional
from app.core.clock import utc_now


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


class PaymentChannel(SQLModel, table=True):
    __tablename__ = "payment_channels"
    __table_args__ = (
        UniqueConstraint("code", "country", "currency", name="ux_payment_channels_code_country_currency"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(max_length=100)
    display_name: str = Field(max_length=200)
    country: str = Field(max_length=2)
    currency: str = Field(max_length=3)
    min_amount: Decimal = Field(max_digits=18, decimal_places=2)
    max_amount: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=2)
    settlement_time: str = Field(max_length=100)
    is_refundable: bool = Field(default=False)
    supports_save: bool = Field(default=False)
    supports_reusable_payment_code: bool = Field(default=False)
    supports_merchant_initiated_txn: bool = Field(default=False)
    type: str = Field(max_length=100)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def accepts(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount

    @property
    def description(self) -> str:
        return (
            f"Settlement: {self.settlement_time or 'N/A'} | "
            f"Refundable: {_yes_no(self.is_refundable)} | "
            f"Save: {_yes_no(self.supports_save)} | "
            f"Reusable: {_yes_no(self.supports_reusable_payment_code)} | "
            f"MIT: {_yes_no(self.supports_merchant_initiated_txn)}"
        )
