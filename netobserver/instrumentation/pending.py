"""
Pending split-call requests.

A legacy request is opened in one call and dispatched in another, so its
provisional start record has to live somewhere in between. Entries are
evicted when the request completes, when they outlive ``ttl`` without being
completed, or oldest-first once ``max_size`` is reached.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple

from ..types import StartRecord

logger = logging.getLogger(__name__)


class PendingRequestTable:
    """Bounded ``request id -> StartRecord`` store owned by the split-call channel."""

    def __init__(self, max_size: int = 1024, ttl: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, StartRecord]]" = OrderedDict()
        self._lock = threading.Lock()
        self.evicted = 0

    def register(self, request_id: str, record: StartRecord) -> None:
        """Store the provisional record created when a request is opened."""
        with self._lock:
            self._expire_locked()
            self._entries.pop(request_id, None)
            self._entries[request_id] = (self._clock(), record)

            while len(self._entries) > self.max_size:
                oldest_id, _ = self._entries.popitem(last=False)
                self.evicted += 1
                logger.debug(f"Pending table full, evicted request {oldest_id}")

    def get(self, request_id: Optional[str]) -> Optional[StartRecord]:
        if request_id is None:
            return None
        with self._lock:
            self._expire_locked()
            entry = self._entries.get(request_id)
            return entry[1] if entry else None

    def pop(self, request_id: Optional[str]) -> Optional[StartRecord]:
        """Remove and return an entry, e.g. at terminal completion."""
        if request_id is None:
            return None
        with self._lock:
            entry = self._entries.pop(request_id, None)
            return entry[1] if entry else None

    def expire(self) -> int:
        """Drop entries older than ``ttl``. Returns the number dropped."""
        with self._lock:
            return self._expire_locked()

    def _expire_locked(self) -> int:
        deadline = self._clock() - self.ttl
        expired = 0
        # insertion order is registration order, so stop at the first fresh entry
        while self._entries:
            request_id, (created, _) = next(iter(self._entries.items()))
            if created > deadline:
                break
            del self._entries[request_id]
            expired += 1

        if expired:
            self.evicted += expired
            logger.debug(f"Expired {expired} abandoned pending request(s)")
        return expired

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> Dict[str, StartRecord]:
        with self._lock:
            return {request_id: record for request_id, (_, record) in self._entries.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries
