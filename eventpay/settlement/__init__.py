"""Payment settlement for eventpay.

Models:
- Payment, PaymentStatus: ticket payment and its lifecycle
- PaymentIntent: instructions returned to the buyer
- EventRecord, EventStatus: the event being paid for

Storage:
- PaymentStorage / EventLookup protocols, in-memory and Supabase backends

Service:
- SettlementService: create_payment_intent, confirm_payment
"""

from eventpay.settlement.models import (
    LEDGER_PRECISION,
    EventRecord,
    EventStatus,
    Payment,
    PaymentIntent,
    PaymentStatus,
)
from eventpay.settlement.service import (
    AmountMismatchError,
    AssetMismatchError,
    DestinationMismatchError,
    EventNotFoundError,
    EventNotPurchasableError,
    MissingMemoError,
    NoPaymentOperationError,
    PaymentNotFoundError,
    PaymentVerificationError,
    SettlementError,
    SettlementService,
    TransactionFailedError,
    TransactionNotFoundError,
    UnsupportedAssetError,
)
from eventpay.settlement.storage import (
    EventLookup,
    InMemoryEventLookup,
    InMemoryPaymentStorage,
    PaymentStorage,
    SupabaseEventLookup,
    SupabasePaymentStorage,
)

__all__ = [
    # Models
    "Payment",
    "PaymentStatus",
    "PaymentIntent",
    "EventRecord",
    "EventStatus",
    "LEDGER_PRECISION",
    # Storage
    "PaymentStorage",
    "EventLookup",
    "InMemoryPaymentStorage",
    "InMemoryEventLookup",
    "SupabasePaymentStorage",
    "SupabaseEventLookup",
    # Service
    "SettlementService",
    "SettlementError",
    "EventNotFoundError",
    "EventNotPurchasableError",
    "UnsupportedAssetError",
    "TransactionNotFoundError",
    "MissingMemoError",
    "PaymentNotFoundError",
    "PaymentVerificationError",
    "TransactionFailedError",
    "NoPaymentOperationError",
    "DestinationMismatchError",
    "AssetMismatchError",
    "AmountMismatchError",
]
