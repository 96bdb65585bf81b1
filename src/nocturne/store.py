"""Durable ordered store interface plus an in-memory reference implementation.

The chunk aggregator relies on two guarantees from a store:

* a transaction either writes all of its chunks and flips all of its
  processed flags, or does neither;
* fetching unprocessed rows and committing the transaction that flips them
  is serialized per store, so two concurrent aggregators never chunk the
  same row twice.

:class:`MemoryStore` provides both with a re-entrant lock held from the
start of a fetch-and-commit cycle (:meth:`SampleStore.batch`) to its end.
"""

from __future__ import annotations

import abc
import threading
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from typing import Iterable, Iterator, Sequence

from nocturne import config, exceptions
from nocturne.models import RawSample, SensorChunk

logger = config.get_logger()


class StoreTransaction(abc.ABC):
    """Pending writes of one atomic batch."""

    @abc.abstractmethod
    def write_chunks(self, chunks: Sequence[SensorChunk]) -> None:
        pass

    @abc.abstractmethod
    def mark_processed(self, sample_ids: Iterable[int]) -> None:
        pass


class SampleStore(abc.ABC):
    """Raw sample backlog and chunk table for every session."""

    @abc.abstractmethod
    def append_raw(self, samples: Sequence[RawSample]) -> list[int]:
        """Append samples to the backlog and return their assigned ids."""

    @abc.abstractmethod
    def fetch_unprocessed(self, session_id: str, limit: int) -> list[RawSample]:
        """Return up to *limit* oldest unprocessed samples, by timestamp."""

    @abc.abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """Context manager committing on clean exit, rolling back on error."""

    @abc.abstractmethod
    def batch(self) -> AbstractContextManager[None]:
        """Serialize one fetch + transaction cycle against other callers."""

    @abc.abstractmethod
    def chunks_for_session(self, session_id: str) -> list[SensorChunk]:
        """All chunks of a session in creation order."""

    @abc.abstractmethod
    def count_raw(self, session_id: str) -> int:
        pass

    @abc.abstractmethod
    def count_unprocessed(self, session_id: str) -> int:
        pass

    @abc.abstractmethod
    def purge_session(self, session_id: str) -> None:
        """Drop every raw sample and chunk owned by a session."""


class _MemoryTransaction(StoreTransaction):
    def __init__(self) -> None:
        self.chunks: list[SensorChunk] = []
        self.sample_ids: set[int] = set()

    def write_chunks(self, chunks: Sequence[SensorChunk]) -> None:
        self.chunks.extend(chunks)

    def mark_processed(self, sample_ids: Iterable[int]) -> None:
        self.sample_ids.update(sample_ids)


class MemoryStore(SampleStore):
    """Thread-safe in-memory store.

    Writes are buffered on the transaction object and applied under the
    store lock only after the ``with`` body finishes without raising.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._raw: dict[str, list[RawSample]] = {}
        self._chunks: dict[str, list[SensorChunk]] = {}
        self._next_id = 1

    def append_raw(self, samples: Sequence[RawSample]) -> list[int]:
        ids: list[int] = []
        with self._lock:
            for sample in samples:
                stored = replace(sample, id=self._next_id, processed=False)
                self._next_id += 1
                self._raw.setdefault(stored.session_id, []).append(stored)
                ids.append(stored.id)
        return ids

    def fetch_unprocessed(self, session_id: str, limit: int) -> list[RawSample]:
        with self._lock:
            pending = [s for s in self._raw.get(session_id, []) if not s.processed]
            pending.sort(key=lambda s: (s.timestamp_ms, s.id))
            return [replace(s) for s in pending[:limit]]

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._lock:
            yield

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        tx = _MemoryTransaction()
        with self._lock:
            yield tx
            self._commit(tx)

    def _commit(self, tx: _MemoryTransaction) -> None:
        # Validate everything before touching state so a failure leaves no trace
        staged: dict[str, list[SensorChunk]] = {}
        for chunk in tx.chunks:
            existing = staged.get(chunk.session_id)
            if existing is None:
                existing = staged[chunk.session_id] = list(self._chunks.get(chunk.session_id, []))
            if any(c.id == chunk.id for c in existing):
                raise exceptions.ChunkOrderError(f"Chunk {chunk.id} already written")
            existing.append(chunk)

        for session_id, chunks in staged.items():
            _check_monotonic(session_id, chunks)

        for session_id, chunks in staged.items():
            self._chunks[session_id] = chunks
        for samples in self._raw.values():
            for sample in samples:
                if sample.id in tx.sample_ids:
                    sample.processed = True

    def chunks_for_session(self, session_id: str) -> list[SensorChunk]:
        with self._lock:
            return list(self._chunks.get(session_id, []))

    def count_raw(self, session_id: str) -> int:
        with self._lock:
            return len(self._raw.get(session_id, []))

    def count_unprocessed(self, session_id: str) -> int:
        with self._lock:
            return sum(1 for s in self._raw.get(session_id, []) if not s.processed)

    def purge_session(self, session_id: str) -> None:
        with self._lock:
            self._raw.pop(session_id, None)
            self._chunks.pop(session_id, None)
        logger.debug("Purged session %s", session_id)


def _check_monotonic(session_id: str, chunks: Sequence[SensorChunk]) -> None:
    """Raise ChunkOrderError if chunk timestamps decrease in creation order."""
    for prev, cur in zip(chunks, chunks[1:]):
        if cur.timestamp_ms < prev.timestamp_ms:
            raise exceptions.ChunkOrderError(
                f"Session {session_id}: chunk at {cur.timestamp_ms} written after "
                f"chunk at {prev.timestamp_ms}"
            )
