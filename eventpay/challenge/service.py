"""
Proof-of-key-ownership challenges.

Before a ledger public key is linked to a user, the user signs a one-time
message with the matching secret key:

1. request_challenge(public_key) -> "Sign this message to link wallet: <nonce>"
2. The wallet signs that exact string (ed25519, hex-encoded signature)
3. verify_and_consume(public_key, signature_hex) -> bool

Per public key there is at most one live nonce; a new request replaces it.
A nonce is deleted on its first successful verification, so a captured
signature cannot be replayed.
"""

import logging
import secrets

from stellar_sdk import Keypair
from stellar_sdk.exceptions import BadSignatureError, Ed25519PublicKeyInvalidError

from eventpay.challenge.store import NonceStore
from eventpay.config import EventPayConfig

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "Sign this message to link wallet: "
NONCE_BYTES = 32  # 256 bits
NONCE_KEY_PREFIX = "wallet:nonce:"


class ChallengeError(Exception):
    """Base exception for challenge errors."""

    pass


class InvalidKeyFormatError(ChallengeError):
    """Public key is not a valid ledger account key."""

    pass


class NoChallengeError(ChallengeError):
    """No live challenge for this public key (never issued, expired, or consumed)."""

    pass


def challenge_message(nonce: str) -> str:
    """The exact string a wallet must sign for ``nonce``."""
    return f"{CHALLENGE_PREFIX}{nonce}"


def nonce_key(public_key: str) -> str:
    return f"{NONCE_KEY_PREFIX}{public_key}"


def parse_public_key(public_key: str) -> Keypair:
    """Parse a G... account key, raising InvalidKeyFormatError on failure."""
    try:
        return Keypair.from_public_key(public_key)
    except (Ed25519PublicKeyInvalidError, ValueError, TypeError) as e:
        raise InvalidKeyFormatError("Invalid Stellar public key format.") from e


class ChallengeService:
    """Issues and verifies wallet ownership challenges."""

    def __init__(self, store: NonceStore, config: EventPayConfig):
        self.store = store
        self.ttl_seconds = config.nonce_ttl_seconds

    def request_challenge(self, public_key: str) -> str:
        """Issue a fresh challenge for ``public_key``.

        Returns:
            The message the wallet must sign
        """
        parse_public_key(public_key)

        nonce = secrets.token_hex(NONCE_BYTES)
        self.store.set(nonce_key(public_key), nonce, self.ttl_seconds)

        logger.info(f"Challenge issued for {public_key}")
        return challenge_message(nonce)

    def verify_and_consume(self, public_key: str, signature_hex: str) -> bool:
        """Check a signed challenge and consume its nonce on success.

        Returns:
            True if the signature is valid; the nonce is gone by then.
            False for any bad signature; the nonce is left in place.

        Raises:
            InvalidKeyFormatError: If public_key cannot be parsed
            NoChallengeError: If no live nonce exists for public_key
        """
        keypair = parse_public_key(public_key)
        key = nonce_key(public_key)

        nonce = self.store.get(key)
        if nonce is None:
            raise NoChallengeError(
                "No active challenge found for this public key. Request a new challenge."
            )

        message = challenge_message(nonce).encode("utf-8")
        try:
            keypair.verify(message, bytes.fromhex(signature_hex))
        except (BadSignatureError, ValueError, TypeError) as e:
            logger.warning(f"Signature verification failed for {public_key}: {e}")
            return False

        # Only the caller whose delete wins gets to succeed
        if not self.store.delete(key):
            raise NoChallengeError("Challenge was already consumed.")

        logger.info(f"Challenge consumed for {public_key}")
        return True
