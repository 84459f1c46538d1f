import time
from collections import OrderedDict
from typing import Callable, List, Optional, Protocol


class RateLimitStore(Protocol):
    """Where per-key request timestamps live. Swap for a shared cache when running more than one process."""

    def get(self, key: str) -> List[float]:
        ...

    def set(self, key: str, timestamps: List[float]) -> None:
        ...


class InMemoryRateLimitStore:
    """
    Process-local store. Once more than `max_entries` keys are held the
    oldest-inserted key is evicted, which approximates LRU without tracking reads.
    """

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()

    def get(self, key: str) -> List[float]:
        return list(self._entries.get(key, []))

    def set(self, key: str, timestamps: List[float]) -> None:
        self._entries[key] = timestamps
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        """
        Record an attempt for `key` and report whether it fits in the window.
        Rejected attempts are not recorded.
        """
        now = self.clock() if now is None else now
        timestamps = [t for t in self.store.get(key) if now - t < self.window_seconds]
        if len(timestamps) >= self.limit:
            self.store.set(key, timestamps)
            return False
        timestamps.append(now)
        self.store.set(key, timestamps)
        return True
