"""Time-bounded authorization code cache.

Maps issued authorization codes to the PKCE challenge they are bound to.
Entries expire after a TTL; a background thread sweeps expired entries at a
fixed interval, and lookups treat expired-but-unswept entries as absent.

All reads, writes, the sweep and unique-key generation share one lock, so
operations on a key are linearizable and uniqueness checks cannot race
insertion.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

from oidctester.core.exceptions import CodeSpaceExhaustedError

logger = logging.getLogger("oidctester.idp")

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 180.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 120.0

# Unique key generation: 16 random bytes give 22-character URL-safe codes.
# Each width gets MAX_ATTEMPTS_PER_WIDTH tries before the width doubles.
DEFAULT_KEY_BYTES = 16
MAX_KEY_BYTES = 64
MAX_ATTEMPTS_PER_WIDTH = 8


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float
    created_at: datetime


def _default_key_generator(num_bytes: int) -> str:
    return secrets.token_urlsafe(num_bytes)


class AuthorizationCodeCache(Generic[V]):
    """Thread-safe key/value store with per-entry TTL and background expiry."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        key_generator: Callable[[int], str] = _default_key_generator,
    ) -> None:
        """Initialize the cache.

        Args:
            default_ttl: Seconds an entry lives when no TTL is given.
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic clock used for expiry (injectable for tests).
            key_generator: Produces a random key from a byte width.
        """
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._key_generator = key_generator
        self._entries: dict[str, _Entry[V]] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> AuthorizationCodeCache[V]:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _is_expired(self, entry: _Entry[V]) -> bool:
        return self._clock() >= entry.expires_at

    def _live_entry(self, key: str) -> _Entry[V] | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        """Store a value under a key, replacing any existing entry."""
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = _Entry(
                value=value,
                expires_at=self._clock() + lifetime,
                created_at=datetime.now(UTC),
            )

    def get(self, key: str) -> V | None:
        """Return the value for a key, or None if absent or expired."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    def created_at(self, key: str) -> datetime | None:
        """Return when a live entry was stored."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.created_at if entry else None

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if a live entry was removed."""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            del self._entries[key]
            return True

    def pop_if(self, key: str, predicate: Callable[[V], bool]) -> V | None:
        """Atomically remove and return a value if it satisfies a predicate.

        Entries failing the predicate are left in place.
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is None or not predicate(entry.value):
                return None
            del self._entries[key]
            return entry.value

    def add_unique(self, value: V, ttl: float | None = None) -> str:
        """Store a value under a freshly generated key that collides with no live entry.

        Retries are bounded per key width; when a width is exhausted the width
        doubles, up to MAX_KEY_BYTES.

        Returns:
            The generated key.

        Raises:
            CodeSpaceExhaustedError: If no unique key could be generated.
        """
        with self._lock:
            num_bytes = DEFAULT_KEY_BYTES
            while num_bytes <= MAX_KEY_BYTES:
                for _ in range(MAX_ATTEMPTS_PER_WIDTH):
                    key = self._key_generator(num_bytes)
                    if self._live_entry(key) is None:
                        self.set(key, value, ttl)
                        return key
                logger.warning(f"Authorization code collisions at {num_bytes} bytes, widening key space")
                num_bytes *= 2
        raise CodeSpaceExhaustedError(
            f"Could not generate a unique authorization code after widening to {MAX_KEY_BYTES} bytes"
        )

    def sweep(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        with self._lock:
            expired = [k for k, entry in self._entries.items() if self._is_expired(entry)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired authorization code(s)")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start(self) -> None:
        """Start the background sweep thread (no-op if already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="authorization-code-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the background sweep thread and wait for it to exit."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            self.sweep()
