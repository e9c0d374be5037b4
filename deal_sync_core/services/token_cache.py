"""
In-process TTL cache for decrypted tokens.

The cache only saves a database round trip and a decryption. Correctness never
depends on it: every path that changes a token writes through or invalidates.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..constants import TokenLifecycle
from ..schemas.token_schemas import StoredToken


class TokenCache:
    """Thread-safe map of ``account_id:service_name`` to StoredToken with a TTL."""

    def __init__(
        self,
        ttl_seconds: float = TokenLifecycle.CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[StoredToken, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(account_id: str, service_name: str) -> str:
        return f"{account_id}:{service_name}"

    def get(self, key: str) -> Optional[StoredToken]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: StoredToken) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        """Number of entries, expired ones included until they are next read."""
        with self._lock:
            return len(self._entries)
