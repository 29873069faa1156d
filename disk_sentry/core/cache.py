from threading import Lock
from typing import Callable, Dict, Optional

class LookupCache:
    """Thread-safe memo of device id -> PnP device id lookups.

    Only non-empty results are stored, so a miss is retried on the next call.
    Device ids (\\\\.\\PHYSICALDRIVE<n>) are reused by Windows once a disk is
    removed: attach resolutions refresh the entry and detach resolutions evict it.
    """

    def __init__(self):
        self._lock = Lock()
        self._entries: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(key)

    def get_or_compute(self, key: str, compute: Callable[[], str]) -> str:
        if not key:
            return compute() or ""
        cached = self.get(key)
        if cached is not None:
            return cached
        # Computed outside the lock; concurrent misses may both query.
        value = (compute() or "").strip()
        if value:
            with self._lock:
                value = self._entries.setdefault(key, value)
        return value

    def refresh(self, key: str, compute: Callable[[], str]) -> str:
        """Always compute; store a non-empty result, drop the entry otherwise."""
        value = (compute() or "").strip()
        if not key:
            return value
        with self._lock:
            if value:
                self._entries[key] = value
            else:
                self._entries.pop(key, None)
        return value

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            return self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
