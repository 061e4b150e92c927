"""
Symmetric encryption for escrow secret keys at rest.

Tokens are AES-256-GCM encrypted and serialized as three hex fields:

    <iv_hex>:<auth_tag_hex>:<ciphertext_hex>

The 256-bit key is derived from the caller-supplied secret with SHA-256, so
environment values of any length can be used as key material.
"""

import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_LENGTH = 12  # 96-bit IV, the GCM recommendation
TAG_LENGTH = 16
TOKEN_DELIMITER = ":"


class CipherError(Exception):
    """Base exception for cipher errors."""

    pass


class DecryptionError(CipherError):
    """Decryption failed; see subclasses for the reason."""

    pass


class FormatError(DecryptionError):
    """Token is not three delimited hex fields."""

    pass


class AuthenticationError(DecryptionError):
    """Authentication tag did not verify (tampered token or wrong secret)."""

    pass


def derive_key(secret: str) -> bytes:
    """Derive a 32-byte AES key from an arbitrary secret string."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(plaintext: str, secret: str) -> str:
    """Encrypt plaintext with a key derived from secret.

    Args:
        plaintext: Value to protect (e.g. an escrow secret seed)
        secret: Encryption secret, typically from configuration

    Returns:
        Colon-delimited token of IV, auth tag and ciphertext (all hex)
    """
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, plaintext.encode("utf-8"), None)

    # AESGCM appends the tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return TOKEN_DELIMITER.join([iv.hex(), tag.hex(), ciphertext.hex()])


def decrypt(token: str, secret: str) -> str:
    """Decrypt a token produced by :func:`encrypt`.

    Raises:
        FormatError: If the token is malformed
        AuthenticationError: If the token was tampered with or the secret is wrong
    """
    parts = token.split(TOKEN_DELIMITER)
    if len(parts) != 3:
        raise FormatError("Invalid encrypted value format.")

    iv_hex, tag_hex, ciphertext_hex = parts
    try:
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as e:
        raise FormatError(f"Invalid encrypted value format: {e}") from e

    if len(iv) != IV_LENGTH:
        raise FormatError(f"Invalid IV length: expected {IV_LENGTH} bytes, got {len(iv)}")

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        logger.warning("Decryption failed: authentication tag mismatch")
        raise AuthenticationError("Authentication tag mismatch") from e

    return plaintext.decode("utf-8")
