"""Per-key mutual exclusion for store writes."""

from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock


class KeyedLock:
    """Hands out one lock per key.

    Writers for the same key are serialized; writers for different keys never
    contend beyond the short registry lookup.
    """

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = defaultdict(Lock)
        self._registry_lock = Lock()

    def _lock_for(self, key: str) -> Lock:
        with self._registry_lock:
            return self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield
