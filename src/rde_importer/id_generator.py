"""
Snowflake ID generator for analysis and import run IDs.

IDs are 63-bit integers: 41 bits of milliseconds since EPOCH_MS, 10 bits of
worker ID and a 12-bit per-millisecond sequence.
"""

import threading
import time
from typing import Callable, Optional

from .exceptions import IDGeneratorError

EPOCH_MS = 1288834974657
WORKER_BITS = 10
SEQUENCE_BITS = 12
MAX_WORKER_ID = (1 << WORKER_BITS) - 1
SEQUENCE_MASK = (1 << SEQUENCE_BITS) - 1


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SnowflakeIDGenerator:
    """Generates unique, time-ordered IDs for one worker."""

    def __init__(self, worker_id: int, clock: Optional[Callable[[], int]] = None) -> None:
        """
        Initialize the generator.

        Args:
            worker_id: Worker number, 0 to 1023
            clock: Optional millisecond clock (for tests)

        Raises:
            IDGeneratorError: If worker_id is out of range
        """
        if isinstance(worker_id, bool) or not isinstance(worker_id, int) or not 0 <= worker_id <= MAX_WORKER_ID:
            raise IDGeneratorError(
                code="invalid_worker_id",
                message=f"Worker ID must be between 0 and {MAX_WORKER_ID}, got {worker_id!r}",
                details={"worker_id": worker_id},
            )
        self._worker_id = worker_id
        self._clock = clock or _now_ms
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    @property
    def worker_id(self) -> int:
        return self._worker_id

    def next_id(self) -> int:
        with self._lock:
            now = self._clock()
            if now < self._last_ms:
                # Clock went backwards: keep issuing from the last timestamp
                now = self._last_ms
            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & SEQUENCE_MASK
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond; borrow the next one
                    now = self._last_ms + 1
            else:
                self._sequence = 0
            self._last_ms = now
            return ((now - EPOCH_MS) << (WORKER_BITS + SEQUENCE_BITS)) | (
                self._worker_id << SEQUENCE_BITS
            ) | self._sequence

    def next_id_str(self) -> str:
        return str(self.next_id())
