"""
Settlement service: payment intents and on-chain confirmation.

Flow:
1. create_payment_intent: validate the event, persist a pending Payment and
   hand the buyer the escrow address, amount and memo (= payment id)
2. The buyer submits a ledger payment carrying that memo
3. confirm_payment(tx_hash): fetch the transaction from the ledger and
   check memo, destination, asset and amount before confirming

Nothing the client says is trusted beyond the transaction hash; every
field is read back from the ledger. A payment moves pending -> confirmed
or pending -> failed exactly once. Failures are recorded (status, reason,
audit entry) before the error reaches the caller, and are terminal: a
failed payment needs a new intent.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from eventpay.audit import AuditEntry, AuditSink, emit
from eventpay.config import EventPayConfig
from eventpay.ledger.client import LedgerClient, LedgerNotFoundError
from eventpay.ledger.models import LedgerOperation, LedgerTransactionView
from eventpay.logging_config import log_payment_event
from eventpay.settlement.models import (
    LEDGER_PRECISION,
    EventStatus,
    Payment,
    PaymentIntent,
    PaymentStatus,
)
from eventpay.settlement.storage import EventLookup, PaymentStorage

logger = logging.getLogger(__name__)

# Audit actions
PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
PAYMENT_FAILED = "PAYMENT_FAILED"

# Failure reasons recorded on the payment
REASON_TX_FAILED = "transaction failed"
REASON_NO_PAYMENT_OPS = "no payment operations"
REASON_WRONG_DESTINATION = "wrong destination"
REASON_WRONG_ASSET = "wrong asset"
REASON_UNSUPPORTED_ASSET = "unsupported asset"
REASON_WRONG_AMOUNT = "wrong amount"

AMOUNT_TOLERANCE = LEDGER_PRECISION


# =============================================================================
# Errors
# =============================================================================


class SettlementError(Exception):
    """Base exception for settlement errors."""

    pass


class EventNotFoundError(SettlementError):
    """Event does not exist."""

    pass


class EventNotPurchasableError(SettlementError):
    """Event is not published."""

    pass


class UnsupportedAssetError(SettlementError):
    """Currency is not in the supported-asset allow-list."""

    def __init__(self, message: str, payment_id: Optional[str] = None):
        super().__init__(message)
        self.payment_id = payment_id


class TransactionNotFoundError(SettlementError):
    """The ledger does not know the transaction hash."""

    pass


class MissingMemoError(SettlementError):
    """Transaction has no plain-text memo to correlate with."""

    pass


class PaymentNotFoundError(SettlementError):
    """No pending payment for the memo (unknown, confirmed or failed)."""

    pass


class PaymentVerificationError(SettlementError):
    """On-chain evidence did not match the payment; the payment is now failed."""

    reason = "verification failed"

    def __init__(self, message: str, payment_id: str):
        super().__init__(message)
        self.payment_id = payment_id


class TransactionFailedError(PaymentVerificationError):
    reason = REASON_TX_FAILED


class NoPaymentOperationError(PaymentVerificationError):
    reason = REASON_NO_PAYMENT_OPS


class DestinationMismatchError(PaymentVerificationError):
    reason = REASON_WRONG_DESTINATION


class AssetMismatchError(PaymentVerificationError):
    reason = REASON_WRONG_ASSET


class AmountMismatchError(PaymentVerificationError):
    reason = REASON_WRONG_AMOUNT


# =============================================================================
# Service
# =============================================================================


class SettlementService:
    """Creates payment intents and confirms them against the ledger."""

    def __init__(
        self,
        ledger: LedgerClient,
        events: EventLookup,
        payments: PaymentStorage,
        config: EventPayConfig,
        audit: Optional[AuditSink] = None,
    ):
        self.ledger = ledger
        self.events = events
        self.payments = payments
        self.config = config
        self.audit = audit
        self.escrow_wallet = config.escrow_wallet_public_key

        if not self.escrow_wallet:
            logger.warning("Escrow wallet public key is not set. Payment confirmation will fail.")

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def create_payment_intent(self, event_id: str, payer_id: str) -> PaymentIntent:
        """Persist a pending payment for one ticket and return its instructions.

        Raises:
            EventNotFoundError: Unknown event
            EventNotPurchasableError: Event is not published
            UnsupportedAssetError: Event currency is not accepted
        """
        event = self.events.get_event(event_id)
        if event is None:
            raise EventNotFoundError(f'Event "{event_id}" not found.')

        if event.status != EventStatus.published:
            raise EventNotPurchasableError(
                f'Event "{event.title}" is not available for purchase '
                f"(status: {event.status.value})."
            )

        if not self.config.is_supported_asset(event.currency):
            raise UnsupportedAssetError(
                f'Unsupported asset "{event.currency}". '
                f"Supported assets: {', '.join(self.config.supported_assets)}."
            )

        payment = self.payments.save_payment(
            Payment(
                event_id=event_id,
                user_id=payer_id,
                amount=event.ticket_price,
                currency=event.currency.upper(),
                status=PaymentStatus.pending,
            )
        )

        self._audit(
            PAYMENT_INTENT_CREATED,
            payment,
            {"eventId": event_id, "amount": str(payment.amount), "currency": payment.currency},
        )
        log_payment_event(
            "intent_created", payment.id, details=f"event={event_id} user={payer_id}"
        )

        return PaymentIntent(
            payment_id=payment.id,
            escrow_wallet=self.escrow_wallet,
            amount=payment.amount,
            currency=payment.currency,
            memo=payment.id,
        )

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self.payments.get_payment(payment_id)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm_payment(self, transaction_hash: str) -> Payment:
        """Confirm the payment a ledger transaction refers to via its memo.

        Raises:
            TransactionNotFoundError: Ledger does not know the hash
            LedgerUnavailableError: Ledger unreachable (retryable upstream)
            MissingMemoError: No plain-text memo
            PaymentNotFoundError: No pending payment for the memo
            PaymentVerificationError: Subclass per mismatch; payment is failed
            UnsupportedAssetError: Asset matched but is not accepted; payment is failed
        """
        try:
            tx = self.ledger.get_transaction(transaction_hash)
        except LedgerNotFoundError as e:
            raise TransactionNotFoundError(
                f'Transaction "{transaction_hash}" not found on the Stellar network.'
            ) from e

        memo = tx.text_memo
        if memo is None:
            raise MissingMemoError(
                "Transaction is missing a memo. Cannot correlate with a payment intent."
            )

        payment = self.payments.get_pending_payment(memo)
        if payment is None:
            raise PaymentNotFoundError(f'No pending payment found for memo "{memo}".')

        operation = self._verify(payment, tx)

        confirmed = self.payments.transition(
            payment.id,
            PaymentStatus.confirmed,
            transaction_hash=transaction_hash,
        )
        if confirmed is None:
            # Another confirmation finished first
            raise PaymentNotFoundError(f'No pending payment found for memo "{memo}".')

        self._audit(
            PAYMENT_CONFIRMED,
            confirmed,
            {
                "transactionHash": transaction_hash,
                "amount": str(confirmed.amount),
                "currency": confirmed.currency,
                "operationId": operation.id,
            },
        )
        log_payment_event("confirmed", confirmed.id, details=f"tx={transaction_hash}")
        return confirmed

    def _verify(self, payment: Payment, tx: LedgerTransactionView) -> LedgerOperation:
        """Check the transaction against the payment, failing the payment on mismatch."""
        if not tx.successful:
            self._fail(payment, REASON_TX_FAILED)
            raise TransactionFailedError("Transaction failed on the ledger.", payment.id)

        operations = tx.payment_operations()
        if not operations:
            self._fail(payment, REASON_NO_PAYMENT_OPS)
            raise NoPaymentOperationError(
                "Transaction contains no payment operations.", payment.id
            )

        # Only the first operation paying the escrow wallet is considered
        operation = self._first_to_escrow(operations)
        if operation is None:
            self._fail(payment, REASON_WRONG_DESTINATION)
            raise DestinationMismatchError(
                "Payment destination does not match the escrow wallet.", payment.id
            )

        asset_code = operation.asset.code_or(self.config.native_asset_code) if operation.asset else ""
        if asset_code.upper() != payment.currency.upper() or not self._issuer_matches(operation):
            self._fail(payment, REASON_WRONG_ASSET)
            raise AssetMismatchError(
                f"Incorrect asset type. Expected {payment.currency}, received {asset_code}.",
                payment.id,
            )

        if not self.config.is_supported_asset(asset_code):
            self._fail(payment, REASON_UNSUPPORTED_ASSET)
            raise UnsupportedAssetError(f'Asset "{asset_code}" is not supported.', payment.id)

        if not self._amount_matches(operation.amount, payment.amount):
            self._fail(payment, REASON_WRONG_AMOUNT)
            raise AmountMismatchError(
                f"Incorrect payment amount. Expected {payment.amount} {payment.currency}, "
                f"received {operation.amount}.",
                payment.id,
            )

        return operation

    def _first_to_escrow(self, operations: List[LedgerOperation]) -> Optional[LedgerOperation]:
        if not self.escrow_wallet:
            return None
        for operation in operations:
            if operation.destination == self.escrow_wallet:
                return operation
        return None

    def _issuer_matches(self, operation: LedgerOperation) -> bool:
        asset = operation.asset
        if asset is None or asset.is_native:
            return True
        pinned = self.config.issuer_for(asset.code)
        return pinned is None or pinned == asset.issuer

    @staticmethod
    def _amount_matches(on_chain: Optional[str], expected: Decimal) -> bool:
        try:
            received = Decimal(on_chain)
        except (InvalidOperation, TypeError):
            return False
        return abs(received - expected) <= AMOUNT_TOLERANCE

    def _fail(self, payment: Payment, reason: str) -> None:
        """Record a terminal failure before the caller sees the error.

        Raises:
            PaymentNotFoundError: The payment stopped being pending meanwhile
        """
        failed = self.payments.transition(
            payment.id,
            PaymentStatus.failed,
            failure_reason=reason,
        )
        if failed is None:
            logger.warning(f"Payment {payment.id} was no longer pending; not marking failed ({reason})")
            raise PaymentNotFoundError(f'No pending payment found for memo "{payment.id}".')

        self._audit(PAYMENT_FAILED, failed, {"reason": reason})
        log_payment_event("failed", payment.id, success=False, details=f"reason={reason}")

    def _audit(self, action: str, payment: Payment, meta: dict) -> None:
        emit(
            self.audit,
            AuditEntry(action=action, user_id=payment.user_id, resource_id=payment.id, meta=meta),
        )
