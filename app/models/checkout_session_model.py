from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Text
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional
import uuid
from app.core.clock import utc_now


class CheckoutStatus(str, Enum):
    pending = "Pending"
    success = "Success"
    failed = "Failed"

    @classmethod
    def parse(cls, value: str) -> "CheckoutStatus":
        normalized = (value or "").strip().lower()
        for status in cls:
            if status.value.lower() == normalized:
                return status
        raise ValueError(f"Unknown checkout status: {value}")


class TransitionPolicy(str, Enum):
    last_write_wins = "last_write_wins"
    failure_wins = "failure_wins"


_TERMINAL = frozenset({CheckoutStatus.success, CheckoutStatus.failed})

TRANSITIONS: Dict[TransitionPolicy, Dict[CheckoutStatus, FrozenSet[CheckoutStatus]]] = {
    TransitionPolicy.last_write_wins: {
        CheckoutStatus.pending: _TERMINAL,
        CheckoutStatus.success: _TERMINAL,
        CheckoutStatus.failed: _TERMINAL,
    },
    TransitionPolicy.failure_wins: {
        CheckoutStatus.pending: _TERMINAL,
        CheckoutStatus.success: _TERMINAL,
        CheckoutStatus.failed: frozenset({CheckoutStatus.failed}),
    },
}


def resolve_transition(
    current: CheckoutStatus,
    requested: CheckoutStatus,
    policy: TransitionPolicy = TransitionPolicy.failure_wins,
) -> Optional[CheckoutStatus]:
    """Return the status to store, or None when the write must be refused."""
    allowed = TRANSITIONS[TransitionPolicy(policy)][current]
    return requested if requested in allowed else None


class CheckoutSession(SQLModel, table=True):
    __tablename__ = "payment_checkout_session"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    trace_id: Optional[str] = Field(default=None, max_length=128)
    invoice_id: Optional[str] = Field(default=None, max_length=100)
    invoice_reference: Optional[str] = Field(default=None, max_length=100, index=True)
    billed_entity_name: Optional[str] = Field(default=None, max_length=255)
    amount: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=2)
    space_id: Optional[str] = Field(default=None, max_length=100)
    space_name: Optional[str] = Field(default=None, max_length=255)
    raw_decrypted_payload: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(default=CheckoutStatus.pending.value, max_length=20)
    selected_channel_code: Optional[str] = Field(default=None, max_length=100)
    payment_url: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def checkout_status(self) -> CheckoutStatus:
        return CheckoutStatus.parse(self.status)

    def is_open_for_checkout(self, policy: TransitionPolicy = TransitionPolicy.failure_wins) -> bool:
        """A new invoice may only be created while a later Success could still be stored."""
        current = self.checkout_status
        if current is CheckoutStatus.success:
            return False
        return resolve_transition(current, CheckoutStatus.success, policy) is not None
