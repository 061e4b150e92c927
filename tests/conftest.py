"""
Pytest fixtures and test configuration for eventpay tests.

The ledger is faked at the transport layer: ``FakeHorizon`` answers the Horizon
REST endpoints through ``httpx.MockTransport`` and serves the payment stream
through ``FakeStreamClient`` behind a real ``stellar_sdk.Server``, so the real
client code, real keypairs and real transaction XDR are exercised.
"""

from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qs

import httpx
import pytest
from stellar_sdk import Keypair, Server, TransactionEnvelope
from stellar_sdk.client.base_sync_client import BaseSyncClient

from eventpay.config import TESTNET_PASSPHRASE, EventPayConfig
from eventpay.ledger.client import LedgerClient

HORIZON_URL = "https://horizon.test"

USDC_ISSUER = Keypair.random().public_key
ESCROW_WALLET = Keypair.random().public_key


def native_line(amount: str) -> dict:
    return {"asset_type": "native", "balance": amount}


def credit_line(code: str, issuer: str, amount: str) -> dict:
    asset_type = "credit_alphanum4" if len(code) <= 4 else "credit_alphanum12"
    return {
        "asset_type": asset_type,
        "asset_code": code,
        "asset_issuer": issuer,
        "balance": amount,
    }


def payment_record(
    to: str,
    amount: str,
    asset_code: Optional[str] = None,
    asset_issuer: Optional[str] = None,
    op_id: str = "1001",
    source: Optional[str] = None,
) -> dict:
    """A Horizon ``payment`` operation record (native unless asset_code given)."""
    record = {
        "id": op_id,
        "paging_token": op_id,
        "type": "payment",
        "from": source or Keypair.random().public_key,
        "to": to,
        "amount": amount,
    }
    if asset_code is None:
        record["asset_type"] = "native"
    else:
        record.update(
            {
                "asset_type": "credit_alphanum4" if len(asset_code) <= 4 else "credit_alphanum12",
                "asset_code": asset_code,
                "asset_issuer": asset_issuer or USDC_ISSUER,
            }
        )
    return record


class FakeHorizon:
    """In-memory Horizon answering through httpx.MockTransport."""

    def __init__(self, network_passphrase: str = TESTNET_PASSPHRASE):
        self.network_passphrase = network_passphrase
        self.accounts: Dict[str, dict] = {}
        self.transactions: Dict[str, dict] = {}
        self.operations: Dict[str, List[dict]] = {}
        self.submitted: List[str] = []
        self.requests: List[httpx.Request] = []
        self.submit_status = 200
        self.submit_body: Optional[dict] = None
        self.stream_batches: List[Union[List[Any], Exception]] = []
        self.stream_requests: List[tuple] = []
        self.get_status: Optional[int] = None
        self.submit_text: Optional[str] = None
        self.raise_error: Optional[Callable[[httpx.Request], Exception]] = None

    # -- setup helpers -----------------------------------------------------

    def add_account(self, account_id: str, balances: List[dict], sequence: int = 1000) -> None:
        self.accounts[account_id] = {
            "account_id": account_id,
            "sequence": str(sequence),
            "balances": balances,
        }

    def add_transaction(
        self,
        tx_hash: str,
        memo: Optional[str],
        operations: List[dict],
        memo_type: str = "text",
        successful: bool = True,
    ) -> None:
        record: Dict[str, Any] = {
            "id": tx_hash,
            "hash": tx_hash,
            "successful": successful,
            "ledger": 4242,
            "memo_type": memo_type if memo is not None else "none",
        }
        if memo is not None:
            record["memo"] = memo
        self.transactions[tx_hash] = record
        self.operations[tx_hash] = operations

    def submitted_envelope(self, index: int = -1) -> TransactionEnvelope:
        return TransactionEnvelope.from_xdr(self.submitted[index], self.network_passphrase)

    def submitted_operations(self, index: int = -1) -> list:
        return self.submitted_envelope(index).transaction.operations

    # -- transport -----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error(request)

        path = request.url.path
        parts = [p for p in path.split("/") if p]

        if request.method == "POST" and parts == ["transactions"]:
            return self._submit(request)
        if self.get_status is not None:
            return httpx.Response(self.get_status, json={"status": self.get_status})
        if parts[:1] == ["accounts"] and len(parts) == 2:
            return self._found(self.accounts.get(parts[1]))
        if parts[:1] == ["transactions"] and len(parts) == 2:
            return self._found(self.transactions.get(parts[1]))
        if parts[:1] == ["transactions"] and len(parts) == 3 and parts[2] == "operations":
            if parts[1] not in self.operations:
                return self._found(None)
            return httpx.Response(200, json={"_embedded": {"records": self.operations[parts[1]]}})
        if parts == ["ledgers"]:
            return httpx.Response(200, json={"_embedded": {"records": [{"sequence": 4242}]}})
        return httpx.Response(404, json={"status": 404})

    def _found(self, record: Optional[dict]) -> httpx.Response:
        if record is None:
            return httpx.Response(404, json={"status": 404, "title": "Resource Missing"})
        return httpx.Response(200, json=record)

    def _submit(self, request: httpx.Request) -> httpx.Response:
        xdr = parse_qs(request.content.decode())["tx"][0]
        self.submitted.append(xdr)
        if self.submit_text is not None:
            return httpx.Response(
                self.submit_status, headers={"Content-Type": "text/html"}, text=self.submit_text
            )
        if self.submit_body is not None:
            return httpx.Response(self.submit_status, json=self.submit_body)
        tx_hash = TransactionEnvelope.from_xdr(xdr, self.network_passphrase).hash_hex()
        return httpx.Response(
            self.submit_status,
            json={"hash": tx_hash, "ledger": 4243, "successful": True, "envelope_xdr": xdr},
        )


class FakeStreamClient(BaseSyncClient):
    """``stellar_sdk`` sync client serving the payment stream from FakeHorizon.

    Each ``stream`` call consumes one queued batch: a list of records (the
    stream then ends and is reopened by the caller) or an exception to raise.
    """

    def __init__(self, horizon: "FakeHorizon"):
        self.horizon = horizon
        self.closed = False

    def get(self, url: str, params: Optional[Dict[str, str]] = None):
        raise NotImplementedError("REST calls go through httpx")

    def post(self, url: str, data: Optional[Dict[str, str]] = None):
        raise NotImplementedError("REST calls go through httpx")

    def stream(self, url: str, params: Optional[Dict[str, str]] = None):
        self.horizon.stream_requests.append((url, dict(params or {})))
        batch = self.horizon.stream_batches.pop(0) if self.horizon.stream_batches else []
        if isinstance(batch, Exception):
            raise batch
        for record in batch:
            yield record

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def config():
    """Create test configuration."""
    return EventPayConfig(
        horizon_url=HORIZON_URL,
        network_passphrase=TESTNET_PASSPHRASE,
        escrow_wallet_public_key=ESCROW_WALLET,
        nonce_ttl_seconds=300,
        supported_assets=("XLM", "USDC"),
    )


@pytest.fixture
def horizon():
    return FakeHorizon()


@pytest.fixture
def ledger(config, horizon):
    """LedgerClient wired to the fake Horizon."""
    http = httpx.Client(base_url=HORIZON_URL, transport=httpx.MockTransport(horizon.handler))
    server = Server(horizon_url=HORIZON_URL, client=FakeStreamClient(horizon))
    client = LedgerClient(config, http_client=http, server=server)
    yield client
    client.close()
