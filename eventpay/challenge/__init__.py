"""Wallet ownership challenges for eventpay.

Store:
- NonceStore: protocol for expiring nonce storage
- InMemoryNonceStore: single-process implementation

Service:
- ChallengeService: request/verify signed challenges
- WalletLinkService: link a verified key to a user
"""

from eventpay.challenge.linking import (
    InMemoryWalletOwnerStore,
    InvalidSignatureError,
    WalletAlreadyLinkedError,
    WalletLink,
    WalletLinkService,
    WalletOwnerStore,
)
from eventpay.challenge.service import (
    CHALLENGE_PREFIX,
    ChallengeError,
    ChallengeService,
    InvalidKeyFormatError,
    NoChallengeError,
    challenge_message,
)
from eventpay.challenge.store import InMemoryNonceStore, NonceStore

__all__ = [
    # Store
    "NonceStore",
    "InMemoryNonceStore",
    # Service
    "ChallengeService",
    "ChallengeError",
    "InvalidKeyFormatError",
    "NoChallengeError",
    "CHALLENGE_PREFIX",
    "challenge_message",
    # Linking
    "WalletLinkService",
    "WalletLink",
    "WalletOwnerStore",
    "InMemoryWalletOwnerStore",
    "InvalidSignatureError",
    "WalletAlreadyLinkedError",
]
