"""
Wallet linking on top of challenge verification.

Links a verified public key to a user account. Ownership is proven by
the challenge signature; the nonce is consumed before any linking checks
run, so a failed link still burns the challenge.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from eventpay.challenge.service import ChallengeError, ChallengeService
from eventpay.ledger.client import LedgerClient, LedgerError, LedgerNotFoundError

logger = logging.getLogger(__name__)


class InvalidSignatureError(ChallengeError):
    """Challenge signature did not verify."""

    pass


class WalletAlreadyLinkedError(ChallengeError):
    """Public key is already linked to another user."""

    pass


@dataclass
class WalletLink:
    """A user's linked ledger account."""

    user_id: str
    public_key: str
    linked_at: datetime
    account_exists: bool = True


class WalletOwnerStore(Protocol):
    """Protocol for persisting user <-> public key links."""

    def get_owner(self, public_key: str) -> Optional[str]:
        """User ID that owns public_key, if any."""
        ...

    def save_link(self, link: WalletLink) -> WalletLink:
        """Persist a link, replacing the user's previous wallet."""
        ...


class InMemoryWalletOwnerStore:
    """In-memory link storage for testing and local development."""

    def __init__(self):
        self._by_key: Dict[str, WalletLink] = {}
        self._by_user: Dict[str, str] = {}  # user_id -> public_key
        self._lock = threading.Lock()

    def get_owner(self, public_key: str) -> Optional[str]:
        with self._lock:
            link = self._by_key.get(public_key)
            return link.user_id if link else None

    def save_link(self, link: WalletLink) -> WalletLink:
        with self._lock:
            previous = self._by_user.get(link.user_id)
            if previous and previous != link.public_key:
                self._by_key.pop(previous, None)
            self._by_key[link.public_key] = link
            self._by_user[link.user_id] = link.public_key
        return link

    def get_wallet(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._by_user.get(user_id)


class WalletLinkService:
    """Links wallets to users after a successful ownership challenge."""

    def __init__(
        self,
        challenges: ChallengeService,
        owners: WalletOwnerStore,
        ledger: Optional[LedgerClient] = None,
    ):
        self.challenges = challenges
        self.owners = owners
        self.ledger = ledger

    def link_wallet(self, user_id: str, public_key: str, signature_hex: str) -> WalletLink:
        """Verify the signed challenge and link ``public_key`` to ``user_id``.

        Raises:
            InvalidKeyFormatError: Malformed public key
            NoChallengeError: No live challenge
            InvalidSignatureError: Signature did not verify
            WalletAlreadyLinkedError: Key belongs to another user
        """
        if not self.challenges.verify_and_consume(public_key, signature_hex):
            raise InvalidSignatureError("Invalid signature.")

        owner = self.owners.get_owner(public_key)
        if owner is not None and owner != user_id:
            raise WalletAlreadyLinkedError(
                "This Stellar public key is already linked to another account."
            )

        account_exists = self._account_exists(public_key)
        link = self.owners.save_link(
            WalletLink(
                user_id=user_id,
                public_key=public_key,
                linked_at=datetime.now(timezone.utc),
                account_exists=account_exists,
            )
        )
        logger.info(f"Linked wallet {public_key} to user {user_id}")
        return link

    def _account_exists(self, public_key: str) -> bool:
        """Best-effort ledger lookup; an unfunded account can still be linked."""
        if self.ledger is None:
            return True
        try:
            self.ledger.load_account(public_key)
            return True
        except LedgerNotFoundError:
            logger.warning(
                f"Stellar account {public_key} not found on network (may be unfunded). "
                "Proceeding with link."
            )
            return False
        except LedgerError as e:
            logger.warning(f"Could not check account {public_key}: {e}. Proceeding with link.")
            return True
