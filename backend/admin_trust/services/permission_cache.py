from __future__ import annotations
import threading
import time
from typing import Callable, Dict, FrozenSet, Optional, Tuple

DEFAULT_TTL_SECONDS = 300


class PermissionCache:
    """Thread-safe per-user permission cache with a fixed TTL.

    One instance is created per application (see `services.registry`) and
    shared by every resolver call. Expired entries are evicted lazily on read.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[FrozenSet[str], float]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[FrozenSet[str]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            permissions, expires_at = entry
            if expires_at <= now:
                del self._entries[user_id]
                return None
            return permissions

    def set(self, user_id: str, permissions: FrozenSet[str]) -> None:
        expires_at = self._clock() + self.ttl_seconds
        with self._lock:
            self._entries[user_id] = (frozenset(permissions), expires_at)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None
