"""Escrow subsystem for eventpay.

Each event gets a dedicated ledger account that holds ticket payments
until they are released to the organizer.
"""

from eventpay.escrow.service import (
    DEFAULT_STARTING_BALANCE,
    EscrowAccount,
    EscrowError,
    EscrowFundingError,
    EscrowKeypair,
    EscrowManager,
    FundingNotConfiguredError,
    InvalidSecretError,
)

__all__ = [
    "EscrowManager",
    "EscrowKeypair",
    "EscrowAccount",
    "EscrowError",
    "EscrowFundingError",
    "InvalidSecretError",
    "FundingNotConfiguredError",
    "DEFAULT_STARTING_BALANCE",
]
