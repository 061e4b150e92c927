"""
Settlement storage layer.

Payments and events are persisted through small protocols so the service
can run against Supabase in production and plain dicts in tests.

``PaymentStorage.transition`` is the concurrency guard for confirmation: it
only updates a payment whose status is still ``pending`` and reports whether
it did, so two racing confirmations cannot both win.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from supabase import Client

from eventpay.settlement.models import EventRecord, Payment, PaymentStatus

logger = logging.getLogger(__name__)

# =============================================================================
# Table names (keep in sync with SQL migrations)
# =============================================================================

PAYMENTS_TABLE = "payments"
EVENTS_TABLE = "events"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStorage(Protocol):
    """Protocol for payment persistence backends."""

    def save_payment(self, payment: Payment) -> Payment:
        """Insert a new payment. Returns the stored record."""
        ...

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Get a payment by ID, any status."""
        ...

    def get_pending_payment(self, payment_id: str) -> Optional[Payment]:
        """Get a payment by ID only if it is still pending."""
        ...

    def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_hash: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Optional[Payment]:
        """Move a pending payment to ``status``.

        Returns the updated payment, or None if no pending payment with
        that ID exists (unknown, or already confirmed/failed).
        """
        ...


class EventLookup(Protocol):
    """Read access to events."""

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        ...


# =============================================================================
# In-memory backends
# =============================================================================


class InMemoryPaymentStorage:
    """In-memory payment storage for testing and local development."""

    def __init__(self):
        self._payments: Dict[str, Payment] = {}
        self._lock = threading.Lock()

    def save_payment(self, payment: Payment) -> Payment:
        with self._lock:
            if payment.id in self._payments:
                raise ValueError(f"Payment {payment.id} already exists")
            self._payments[payment.id] = payment.model_copy()
        return payment.model_copy()

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        with self._lock:
            payment = self._payments.get(payment_id)
            return payment.model_copy() if payment else None

    def get_pending_payment(self, payment_id: str) -> Optional[Payment]:
        payment = self.get_payment(payment_id)
        if payment is None or payment.status != PaymentStatus.pending:
            return None
        return payment

    def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_hash: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Optional[Payment]:
        if status == PaymentStatus.pending:
            raise ValueError("Cannot transition a payment back to pending")
        with self._lock:
            current = self._payments.get(payment_id)
            if current is None or current.status != PaymentStatus.pending:
                return None
            updated = current.model_copy(
                update={
                    "status": status,
                    "transaction_hash": transaction_hash or current.transaction_hash,
                    "failure_reason": failure_reason,
                    "updated_at": _now(),
                }
            )
            self._payments[payment_id] = updated
            return updated.model_copy()


class InMemoryEventLookup:
    """Dict-backed event lookup."""

    def __init__(self, events: Optional[Dict[str, EventRecord]] = None):
        self._events: Dict[str, EventRecord] = dict(events or {})

    def add_event(self, event: EventRecord) -> None:
        self._events[event.id] = event

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self._events.get(event_id)


# =============================================================================
# Supabase backends
# =============================================================================


class SupabasePaymentStorage:
    """Payment storage on a Supabase ``payments`` table."""

    def __init__(self, db: Client, table: str = PAYMENTS_TABLE):
        self.db = db
        self.table = table

    def save_payment(self, payment: Payment) -> Payment:
        data = payment.model_dump(mode="json")
        data["amount"] = str(payment.amount)  # Supabase stores DECIMAL as string

        result = self.db.table(self.table).insert(data).execute()
        if not result.data:
            raise RuntimeError(f"Failed to record payment {payment.id}")

        logger.info(f"Recorded payment {payment.id} (amount={payment.amount} {payment.currency})")
        return Payment(**result.data[0])

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        result = self.db.table(self.table).select("*").eq("id", payment_id).limit(1).execute()
        return Payment(**result.data[0]) if result.data else None

    def get_pending_payment(self, payment_id: str) -> Optional[Payment]:
        result = (
            self.db.table(self.table)
            .select("*")
            .eq("id", payment_id)
            .eq("status", PaymentStatus.pending.value)
            .limit(1)
            .execute()
        )
        return Payment(**result.data[0]) if result.data else None

    def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_hash: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Optional[Payment]:
        if status == PaymentStatus.pending:
            raise ValueError("Cannot transition a payment back to pending")

        update = {
            "status": status.value,
            "failure_reason": failure_reason,
            "updated_at": _now().isoformat(),
        }
        if transaction_hash is not None:
            update["transaction_hash"] = transaction_hash

        # Conditional update: only a still-pending row matches
        result = (
            self.db.table(self.table)
            .update(update)
            .eq("id", payment_id)
            .eq("status", PaymentStatus.pending.value)
            .execute()
        )
        if not result.data:
            return None
        return Payment(**result.data[0])


class SupabaseEventLookup:
    """Event lookup on a Supabase ``events`` table."""

    def __init__(self, db: Client, table: str = EVENTS_TABLE):
        self.db = db
        self.table = table

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        result = (
            self.db.table(self.table)
            .select("id, title, organizer_id, ticket_price, currency, status")
            .eq("id", event_id)
            .limit(1)
            .execute()
        )
        return EventRecord(**result.data[0]) if result.data else None
