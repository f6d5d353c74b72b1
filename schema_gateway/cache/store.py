"""
TTL Cache Store - In-memory values tagged with their fetch time.

The store only remembers (value, timestamp) per key and reports age. It
never decides freshness: the org schema and object field entries use
different TTLs, so callers compare age against their own limit.
"""
import threading
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from schema_gateway.core.logging_config import get_logger

logger = get_logger(__name__)

Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class CacheLookup(NamedTuple):
    """Result of a store read. age_ms is None when nothing is stored."""
    value: Any
    age_ms: Optional[int]
    present: bool


MISSING = CacheLookup(value=None, age_ms=None, present=False)


class TTLCacheStore:
    """
    Thread-safe map of key -> (value, timestamp).

    Timestamps for a key never move backwards: a write carrying an older
    timestamp than the stored entry is rejected.

    Example:
        >>> store = TTLCacheStore()
        >>> store.set("org_schema", snapshot, snapshot.fetched_at)
        >>> lookup = store.get("org_schema")
        >>> lookup.present, lookup.age_ms < 3_600_000
        (True, True)
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or epoch_ms
        self._entries: Dict[str, Tuple[Any, int]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> CacheLookup:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return MISSING
        value, timestamp = entry
        return CacheLookup(value=value, age_ms=self._clock() - timestamp, present=True)

    def set(self, key: str, value: Any, timestamp: int) -> bool:
        """
        Store a value.

        Returns:
            False if the write was rejected because it is older than the current entry
        """
        with self._lock:
            current = self._entries.get(key)
            if current is not None and timestamp < current[1]:
                logger.debug(
                    f"Rejected out-of-order write for '{key}': "
                    f"{timestamp} < {current[1]}"
                )
                return False
            self._entries[key] = (value, timestamp)
        return True

    def timestamp(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._entries.get(key)
        return entry[1] if entry else None

    def clear(self, key: Optional[str] = None) -> int:
        """
        Remove one key, or every key when key is None.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if key is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            return 1 if self._entries.pop(key, None) is not None else 0

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
