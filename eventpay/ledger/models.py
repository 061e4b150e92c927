"""
Read-only views of ledger state.

Horizon returns assets as loosely-typed JSON where the asset kind is inferred
from ``asset_type``. These models narrow that once, at the client boundary,
into the tagged variant ``NativeAsset | CreditAsset`` so callers never test
for field presence.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

NATIVE_ASSET_TYPE = "native"
CREDIT_ASSET_TYPES = frozenset({"credit_alphanum4", "credit_alphanum12"})

# Operation types that move value into an account
PAYMENT_OPERATION_TYPES = frozenset({"payment", "create_account"})


@dataclass(frozen=True)
class NativeAsset:
    """The ledger's native currency (lumens)."""

    is_native = True

    def code_or(self, native_code: str) -> str:
        return native_code


@dataclass(frozen=True)
class CreditAsset:
    """An issued asset identified by code and issuer."""

    code: str
    issuer: str
    is_native = False

    def code_or(self, native_code: str) -> str:
        return self.code


LedgerAsset = Union[NativeAsset, CreditAsset]


def parse_asset(record: Dict[str, Any], prefix: str = "") -> Optional[LedgerAsset]:
    """Narrow Horizon's ``asset_type``/``asset_code``/``asset_issuer`` fields.

    Args:
        record: Horizon JSON record (balance line, operation, ...)
        prefix: Field prefix, e.g. ``"selling_"`` for offer records

    Returns:
        The asset, or None for asset types that are not transferable
        (e.g. liquidity pool shares)
    """
    asset_type = record.get(f"{prefix}asset_type")
    if asset_type == NATIVE_ASSET_TYPE:
        return NativeAsset()
    if asset_type in CREDIT_ASSET_TYPES:
        return CreditAsset(
            code=record[f"{prefix}asset_code"],
            issuer=record[f"{prefix}asset_issuer"],
        )
    return None


@dataclass(frozen=True)
class Balance:
    """One balance line of an account.

    ``amount`` keeps Horizon's string representation (7 fractional digits)
    so it can be sent back to the ledger without rounding.
    """

    asset: LedgerAsset
    amount: str

    @property
    def is_native(self) -> bool:
        return self.asset.is_native

    @property
    def value(self) -> Decimal:
        return Decimal(self.amount)


@dataclass
class AccountState:
    """Snapshot of a ledger account."""

    account_id: str
    sequence: int
    balances: List[Balance] = field(default_factory=list)

    def native_balance(self) -> Optional[Balance]:
        for balance in self.balances:
            if balance.is_native:
                return balance
        return None


@dataclass(frozen=True)
class LedgerOperation:
    """A value-moving operation inside a transaction.

    For ``create_account`` operations ``destination`` is the created account
    and ``amount`` is the starting balance in the native asset.
    """

    id: str
    type: str
    destination: Optional[str]
    asset: Optional[LedgerAsset]
    amount: Optional[str]
    source: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "LedgerOperation":
        op_type = record.get("type", "")
        if op_type == "create_account":
            return cls(
                id=str(record.get("id", "")),
                type=op_type,
                destination=record.get("account"),
                asset=NativeAsset(),
                amount=record.get("starting_balance"),
                source=record.get("funder"),
            )
        return cls(
            id=str(record.get("id", "")),
            type=op_type,
            destination=record.get("to"),
            asset=parse_asset(record),
            amount=record.get("amount"),
            source=record.get("from"),
        )


@dataclass
class LedgerTransactionView:
    """Read-only projection of an on-chain transaction."""

    hash: str
    memo: Optional[str]
    memo_type: str = "none"
    successful: bool = True
    ledger: Optional[int] = None
    source_account: Optional[str] = None
    operations: List[LedgerOperation] = field(default_factory=list)

    @property
    def text_memo(self) -> Optional[str]:
        """The memo if it is a non-empty plain-text memo, else None."""
        if self.memo_type != "text" or not self.memo:
            return None
        return self.memo

    def payment_operations(self) -> List[LedgerOperation]:
        return [op for op in self.operations if op.type in PAYMENT_OPERATION_TYPES]


@dataclass(frozen=True)
class PaymentEvent:
    """A payment delivered by the payment stream."""

    id: str
    paging_token: str
    type: str
    transaction_hash: Optional[str]
    source: Optional[str]
    destination: Optional[str]
    asset: Optional[LedgerAsset]
    amount: Optional[str]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "PaymentEvent":
        op = LedgerOperation.from_record(record)
        return cls(
            id=op.id,
            paging_token=str(record.get("paging_token", op.id)),
            type=op.type,
            transaction_hash=record.get("transaction_hash"),
            source=op.source,
            destination=op.destination,
            asset=op.asset,
            amount=op.amount,
        )


@dataclass
class SubmitResult:
    """Ledger response to a synchronous transaction submission."""

    hash: str
    ledger: Optional[int] = None
    successful: bool = True
    envelope_xdr: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)
