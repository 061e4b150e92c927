"""Pydantic models for payment settlement.

All monetary values use Decimal quantized to the ledger's 7 fractional
digits, never float.
"""

import secrets
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Smallest ledger unit (one stroop)
LEDGER_PRECISION = Decimal("0.0000001")

# Stellar text memos hold at most 28 bytes
MAX_MEMO_BYTES = 28


def quantize_amount(value: Decimal) -> Decimal:
    """Round an amount to ledger precision."""
    return Decimal(value).quantize(LEDGER_PRECISION)


def new_payment_id() -> str:
    """Opaque payment ID, short enough to travel as a text memo."""
    return secrets.token_urlsafe(18)  # 24 chars, 144 bits


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle states. Only pending -> confirmed|failed is allowed."""

    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class EventStatus(str, Enum):
    """Event lifecycle states. Only published events sell tickets."""

    draft = "draft"
    published = "published"
    completed = "completed"
    cancelled = "cancelled"


# =============================================================================
# Records
# =============================================================================


class Payment(BaseModel):
    """A ticket payment; its id doubles as the on-chain memo."""

    id: str = Field(default_factory=new_payment_id)
    event_id: str
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.pending
    reference_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _quantize(cls, value):
        # Supabase returns DECIMAL columns as strings
        return quantize_amount(Decimal(str(value)))

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def is_terminal(self) -> bool:
        return self.status != PaymentStatus.pending


class PaymentIntent(BaseModel):
    """What the buyer needs to build the on-chain payment."""

    payment_id: str
    escrow_wallet: str
    amount: Decimal
    currency: str
    memo: str


class EventRecord(BaseModel):
    """The slice of an event that settlement needs."""

    id: str
    title: str = ""
    organizer_id: Optional[str] = None
    ticket_price: Decimal
    currency: str
    status: EventStatus = EventStatus.draft

    @field_validator("ticket_price", mode="before")
    @classmethod
    def _decimal_price(cls, value):
        return Decimal(str(value))
