"""
Byte counters for in-flight and completed request attempts.
"""

import threading
import logging
from typing import List

logger = logging.getLogger(__name__)


class ByteCounter:
    """Thread-safe running total of the bytes received by one request attempt."""

    def __init__(self):
        self._received = 0
        self._closed = False
        self._lock = threading.Lock()

    def on_chunk(self, length: int) -> bool:
        """Record a received chunk.

        Args:
            length: Size of the chunk in bytes

        Returns:
            True to keep the transfer going, False to make the transport abort
            the attempt (empty or invalid chunk, or counter already closed)
        """
        if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
            logger.warning(f"Received a null/empty buffer (length={length!r})")
            return False

        with self._lock:
            if self._closed:
                return False
            self._received += length
            return True

    def total(self) -> int:
        """Bytes accepted so far."""
        with self._lock:
            return self._received

    def close(self) -> None:
        """Freeze the counter once its attempt has ended."""
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __repr__(self) -> str:
        return f"ByteCounter(received={self._received}, closed={self._closed})"


class ProgressAggregator:
    """Append-only collection of every counter created during a run.

    Counters are never removed, so the sum covers in-flight attempts as well
    as attempts that already succeeded, failed or were cancelled.
    """

    def __init__(self):
        self._counters: List[ByteCounter] = []
        self._lock = threading.Lock()

    def new_counter(self) -> ByteCounter:
        """Create a counter and register it before its fetch starts."""
        counter = ByteCounter()
        with self._lock:
            self._counters.append(counter)
        return counter

    def total(self) -> int:
        """Total bytes downloaded so far across all attempts."""
        with self._lock:
            counters = list(self._counters)
        return sum(counter.total() for counter in counters)

    @property
    def counter_count(self) -> int:
        with self._lock:
            return len(self._counters)

    def __repr__(self) -> str:
        return f"ProgressAggregator(counters={self.counter_count}, total={self.total()})"
