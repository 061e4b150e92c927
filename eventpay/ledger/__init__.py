"""Ledger access for eventpay.

Models:
- NativeAsset / CreditAsset: tagged asset variant
- AccountState, Balance: account snapshot
- LedgerTransactionView, LedgerOperation: read-only transaction projection
- PaymentEvent: streamed payment
- SubmitResult: submission response

Client:
- LedgerClient: Horizon wrapper (load, submit, fetch, stream)
"""

from eventpay.ledger.client import (
    LedgerClient,
    LedgerError,
    LedgerNotFoundError,
    LedgerRejectedError,
    LedgerUnavailableError,
    PaymentStream,
)
from eventpay.ledger.models import (
    AccountState,
    Balance,
    CreditAsset,
    LedgerAsset,
    LedgerOperation,
    LedgerTransactionView,
    NativeAsset,
    PaymentEvent,
    SubmitResult,
)

__all__ = [
    # Models
    "NativeAsset",
    "CreditAsset",
    "LedgerAsset",
    "Balance",
    "AccountState",
    "LedgerOperation",
    "LedgerTransactionView",
    "PaymentEvent",
    "SubmitResult",
    # Client
    "LedgerClient",
    "PaymentStream",
    "LedgerError",
    "LedgerUnavailableError",
    "LedgerNotFoundError",
    "LedgerRejectedError",
]
