import threading
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from control_plane.service_query import ReplicaObservation


class CacheEntry(NamedTuple):
    observation: ReplicaObservation
    expires_at: float


class FunctionCache:
    """
    Time-bounded memo of the latest replica observation per function.
    Expired entries read as absent and are evicted lazily on `get`.
    """
    def __init__(self, expiry: float, clock: Callable[[], float] = time.monotonic):
        self.expiry = expiry
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set(self, function_name: str, observation: ReplicaObservation) -> None:
        with self._lock:
            self._entries[function_name] = CacheEntry(observation, self._clock() + self.expiry)

    def get(self, function_name: str) -> Tuple[Optional[ReplicaObservation], bool]:
        with self._lock:
            entry = self._entries.get(function_name)
            if entry is None:
                return None, False
            if self._clock() >= entry.expires_at:
                del self._entries[function_name]
                return None, False
            return entry.observation, True

    def purge_expired(self) -> int:
        """Drops every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [name for name, entry in self._entries.items() if now >= entry.expires_at]
            for name in expired:
                del self._entries[name]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
