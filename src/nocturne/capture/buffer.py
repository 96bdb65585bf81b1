"""Short-lived in-memory queue between capture sources and the store."""

from __future__ import annotations

import threading
from collections import deque

from nocturne import config, exceptions
from nocturne.models import RawSample
from nocturne.store import SampleStore

logger = config.get_logger()

MAX_BUFFER_SIZE = 10_000


class RawSampleBuffer:
    """Thread-safe FIFO of validated raw samples.

    Producers on different threads call :meth:`append`; the owner drains
    the queue into a :class:`SampleStore` with :meth:`flush_to`.  When the
    queue is full an attached store receives the backlog; without one the
    oldest sample is dropped.

    Args:
        max_size: Queue capacity.
        store: Optional store used by :meth:`flush_to` and on overflow.
    """

    def __init__(self, max_size: int = MAX_BUFFER_SIZE, store: SampleStore | None = None) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.store = store
        self._queue: deque[RawSample] = deque()
        self._lock = threading.Lock()
        self.dropped = 0  # malformed or overflowed samples

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def append(self, sample: RawSample) -> bool:
        """Validate and enqueue one sample; False if it was rejected."""
        try:
            sample.validate()
        except exceptions.MalformedSampleError:
            with self._lock:
                self.dropped += 1
            return False

        overflow: list[RawSample] = []
        with self._lock:
            if len(self._queue) >= self.max_size:
                if self.store is not None:
                    overflow = list(self._queue)
                    self._queue.clear()
                else:
                    self._queue.popleft()
                    self.dropped += 1
                    logger.warning("Sample buffer full; dropped oldest sample")
            self._queue.append(sample)

        if overflow:
            self.store.append_raw(overflow)
            logger.debug("Sample buffer full; flushed %d samples", len(overflow))
        return True

    def drain(self, limit: int | None = None) -> list[RawSample]:
        """Pop up to *limit* oldest samples (all when None)."""
        with self._lock:
            n = len(self._queue) if limit is None else min(limit, len(self._queue))
            return [self._queue.popleft() for _ in range(n)]

    def flush_to(self, store: SampleStore | None = None) -> int:
        """Hand every queued sample to *store* (or the attached one).

        Returns:
            Number of samples written.
        """
        target = store or self.store
        if target is None:
            raise ValueError("No store to flush to")
        samples = self.drain()
        if samples:
            target.append_raw(samples)
        return len(samples)
