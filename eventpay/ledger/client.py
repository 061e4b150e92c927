"""
Horizon client for the Stellar network.

Thin, stateful wrapper around Horizon's REST API. Request/response calls go
through ``httpx``; the payment stream uses ``stellar_sdk.Server``'s event
stream, and transaction envelopes come from ``stellar_sdk``. Every call is a
blocking network round trip bounded by the client timeout.

Error mapping:
- transport failures, timeouts, 429 and 5xx -> LedgerUnavailableError
- 404 -> LedgerNotFoundError
- 400 on submission -> LedgerRejectedError (carries Horizon result codes)
- any other unexpected status or undecodable body -> LedgerError
"""

import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from stellar_sdk import Server, TransactionEnvelope
from stellar_sdk.exceptions import BaseRequestError

from eventpay.config import EventPayConfig
from eventpay.ledger.models import (
    AccountState,
    Balance,
    LedgerOperation,
    LedgerTransactionView,
    PaymentEvent,
    SubmitResult,
    parse_asset,
)
from eventpay.logging_config import log_ledger_call

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")

# Horizon caps page size at 200
MAX_PAGE_SIZE = 200

HTTP_TOO_MANY_REQUESTS = 429


class LedgerError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerUnavailableError(LedgerError):
    """Ledger could not be reached, throttled us, or did not answer in time.

    For submissions this is an ambiguous outcome: the transaction may still
    have been applied. Re-query ``tx_hash`` instead of resubmitting.
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class LedgerNotFoundError(LedgerError):
    """Queried account or transaction does not exist."""

    pass


class LedgerRejectedError(LedgerError):
    """Ledger refused a submitted transaction."""

    def __init__(self, message: str, result_codes: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.result_codes = result_codes or {}

    @property
    def transaction_code(self) -> Optional[str]:
        return self.result_codes.get("transaction")

    @property
    def operation_codes(self) -> List[str]:
        return list(self.result_codes.get("operations") or [])


PaymentCallback = Callable[[PaymentEvent], None]


def _decode(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """JSON object body, or None when the body is not a JSON object."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class LedgerClient:
    """Client for account, transaction and payment queries against Horizon."""

    def __init__(
        self,
        config: EventPayConfig,
        http_client: Optional[httpx.Client] = None,
        server: Optional[Server] = None,
    ):
        """
        Args:
            config: Service configuration (Horizon URL, passphrase, timeouts)
            http_client: Optional pre-built client (tests inject a MockTransport)
            server: Optional ``stellar_sdk.Server`` used for payment streams
        """
        self.config = config
        self.network_passphrase = config.network_passphrase
        self._http = http_client or httpx.Client(
            base_url=config.horizon_url,
            timeout=config.request_timeout,
            headers={"Accept": "application/json"},
        )
        self._server = server or Server(horizon_url=config.horizon_url)
        self._streams: List["PaymentStream"] = []
        self._streams_lock = threading.Lock()
        logger.info(f"LedgerClient initialised -> {config.horizon_url}")

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise LedgerUnavailableError(f"Horizon timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            raise LedgerUnavailableError(f"Horizon unreachable on {method} {path}: {e}") from e

        if response.status_code == 404:
            raise LedgerNotFoundError(f"Not found: {path}")
        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise LedgerUnavailableError(f"Horizon rate limited {method} {path}")
        if response.status_code >= 500:
            raise LedgerUnavailableError(
                f"Horizon error {response.status_code} on {method} {path}"
            )
        return response

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._request("GET", path, params=params)
        if response.status_code >= 400:
            raise LedgerError(f"Horizon returned {response.status_code} for {path}")
        body = _decode(response)
        if body is None:
            raise LedgerError(f"Horizon returned a malformed body for {path}")
        return body

    # =========================================================================
    # Queries
    # =========================================================================

    def load_account(self, public_key: str) -> AccountState:
        """Load an account's sequence number and balances."""
        log_ledger_call("load_account", public_key)
        record = self._get_json(f"/accounts/{public_key}")

        balances = []
        for line in record.get("balances", []):
            asset = parse_asset(line)
            if asset is None:
                logger.debug(f"Skipping non-transferable balance line on {public_key}: {line.get('asset_type')}")
                continue
            balances.append(Balance(asset=asset, amount=line["balance"]))

        return AccountState(
            account_id=record.get("account_id", public_key),
            sequence=int(record["sequence"]),
            balances=balances,
        )

    def get_transaction(self, tx_hash: str) -> LedgerTransactionView:
        """Fetch a transaction and its operations by hash."""
        if not tx_hash or not TX_HASH_PATTERN.match(tx_hash):
            raise LedgerNotFoundError(f"Not a transaction hash: {tx_hash!r}")

        log_ledger_call("get_transaction", tx_hash)
        record = self._get_json(f"/transactions/{tx_hash}")

        return LedgerTransactionView(
            hash=record.get("hash", tx_hash),
            memo=record.get("memo"),
            memo_type=record.get("memo_type", "none"),
            successful=bool(record.get("successful", True)),
            ledger=record.get("ledger"),
            source_account=record.get("source_account"),
            operations=self.get_operations(tx_hash),
        )

    def get_operations(self, tx_hash: str) -> List[LedgerOperation]:
        """List the operations of a transaction in application order."""
        log_ledger_call("get_operations", tx_hash)
        page = self._get_json(
            f"/transactions/{tx_hash}/operations",
            params={"limit": MAX_PAGE_SIZE, "order": "asc"},
        )
        records = page.get("_embedded", {}).get("records", [])
        return [LedgerOperation.from_record(record) for record in records]

    def check_connectivity(self) -> None:
        """Raise LedgerUnavailableError unless Horizon answers a trivial query."""
        self._get_json("/ledgers", params={"limit": 1, "order": "desc"})

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_transaction(self, transaction: Union[TransactionEnvelope, str]) -> SubmitResult:
        """Submit a signed transaction and wait for the ledger's verdict.

        Args:
            transaction: Signed envelope, or its base64 XDR

        Raises:
            LedgerRejectedError: Ledger validation failed
            LedgerUnavailableError: Outcome unknown; ``tx_hash`` is set when
                it can be computed locally
        """
        if isinstance(transaction, TransactionEnvelope):
            envelope = transaction
            xdr = transaction.to_xdr()
        else:
            xdr = transaction
            envelope = TransactionEnvelope.from_xdr(xdr, self.network_passphrase)
        tx_hash = envelope.hash_hex()

        log_ledger_call("submit_transaction", tx_hash, ops=len(envelope.transaction.operations))
        try:
            response = self._request("POST", "/transactions", data={"tx": xdr})
        except LedgerUnavailableError as e:
            logger.error(f"Submission of {tx_hash} has unknown outcome: {e}")
            raise LedgerUnavailableError(str(e), tx_hash=tx_hash) from e

        body = _decode(response)
        if response.status_code == 400:
            result_codes = (body or {}).get("extras", {}).get("result_codes", {})
            logger.warning(f"Transaction {tx_hash} rejected: {result_codes}")
            raise LedgerRejectedError(
                f"Transaction rejected: {(body or {}).get('title', 'Transaction Failed')}",
                result_codes=result_codes,
            )
        if response.status_code >= 400:
            raise LedgerError(f"Horizon returned {response.status_code} on submission of {tx_hash}")
        if body is None:
            # Accepted with an unreadable body: applied or not, only a lookup can tell
            raise LedgerUnavailableError(
                f"Horizon returned a malformed body for submission of {tx_hash}",
                tx_hash=tx_hash,
            )

        return SubmitResult(
            hash=body.get("hash", tx_hash),
            ledger=body.get("ledger"),
            successful=bool(body.get("successful", True)),
            envelope_xdr=body.get("envelope_xdr", xdr),
            raw=body,
        )

    # =========================================================================
    # Streaming
    # =========================================================================

    def stream_payments(
        self,
        on_event: PaymentCallback,
        cursor: str = "now",
        retry_delay: float = 5.0,
    ) -> "PaymentStream":
        """Open a payment subscription starting from ``cursor``.

        Events are delivered on a background thread in ledger order. The
        returned stream must be closed exactly once; further closes are no-ops.
        """
        stream = PaymentStream(
            self._server,
            on_event,
            cursor=cursor,
            retry_delay=retry_delay,
            on_close=self._forget_stream,
        )
        with self._streams_lock:
            self._streams.append(stream)
        stream.start()
        return stream

    @property
    def open_streams(self) -> int:
        with self._streams_lock:
            return len(self._streams)

    def _forget_stream(self, stream: "PaymentStream") -> None:
        with self._streams_lock:
            if stream in self._streams:
                self._streams.remove(stream)

    def close(self) -> None:
        """Close open payment streams and the HTTP client."""
        with self._streams_lock:
            streams = list(self._streams)
        for stream in streams:
            logger.info("Closing payment stream")
            stream.close()
        self._http.close()
        self._server.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class PaymentStream:
    """Subscription to Horizon's ``/payments`` event stream.

    Wraps ``Server.payments().cursor(...).stream()``. When the SDK stream
    ends or fails it is reopened from the last seen paging token, until
    :meth:`close` is called. No event is delivered after ``close`` returns.
    """

    def __init__(
        self,
        server: Server,
        on_event: PaymentCallback,
        cursor: str = "now",
        retry_delay: float = 5.0,
        on_close: Optional[Callable[["PaymentStream"], None]] = None,
    ):
        self._server = server
        self._on_event = on_event
        self._on_close = on_close
        self.cursor = cursor
        self.retry_delay = retry_delay

        self._stop = threading.Event()
        # Held while a callback runs so close() can wait it out
        self._dispatch_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name="payment-stream", daemon=True)

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        self._thread.start()

    def __call__(self) -> None:
        self.close()

    def close(self, timeout: float = 5.0) -> None:
        """Terminate the subscription. Idempotent."""
        with self._close_lock:
            if self._stop.is_set():
                return
            self._stop.set()

        if threading.current_thread() is not self._thread:
            # Wait for an in-flight callback; the SDK read itself may block
            # until the next event, so the daemon thread is not joined forever
            with self._dispatch_lock:
                pass
            self._thread.join(timeout)

        if self._on_close is not None:
            self._on_close(self)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._consume()
            except BaseRequestError as e:
                if self._stop.is_set():
                    break
                logger.warning(f"Payment stream interrupted: {e}")
            self._stop.wait(self.retry_delay)

    def _consume(self) -> None:
        events = self._server.payments().cursor(self.cursor).stream()
        for record in events:
            if self._stop.is_set():
                return
            self._dispatch(record)

    def _dispatch(self, record: Any) -> None:
        # Horizon opens with "hello" and may send "byebye"
        if not isinstance(record, dict):
            return

        event = PaymentEvent.from_record(record)
        with self._dispatch_lock:
            if self._stop.is_set():
                return
            self.cursor = event.paging_token
            try:
                self._on_event(event)
            except Exception:
                logger.exception(f"Payment callback failed for operation {event.id}")
