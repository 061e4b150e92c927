"""
Ephemeral key-value storage for challenge nonces.

Any store with atomic get/set/delete and per-key expiry satisfies
``NonceStore``. ``InMemoryNonceStore`` is only correct for a single process:
multi-instance deployments need a shared store so that a nonce can be
consumed exactly once across instances.
"""

import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple


class NonceStore(Protocol):
    """Protocol for nonce storage backends."""

    def get(self, key: str) -> Optional[str]:
        """Get a live value, or None if absent or expired."""
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value, replacing any previous one, expiring after ttl_seconds."""
        ...

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True only if a live value was removed."""
        ...


class InMemoryNonceStore:
    """Thread-safe expiring dict for tests and single-instance deployments."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            del self._entries[key]
            return True

    def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
