"""Convert the raw sample backlog into sensor chunks.

Work proceeds as an explicit bounded loop of atomic batches::

    fetch ≤ batch_size oldest unprocessed samples
      → group them into chunks
      → write chunks + flip processed flags in one store transaction
      → continue only if the fetch was full

Grouping is paced by one channel per batch, normally the accelerometer
(the kind with the most readings in the batch).  Every ``chunk_size``
consecutive pacing readings form one chunk window; readings of the other
channels that fall inside a window are averaged into the same chunk, so a
chunk carries every channel observed over its window.  A trailing partial
window stays in the backlog until more readings arrive, unless the caller
asks for a flush (end of session).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Sequence

from nocturne import config, exceptions
from nocturne.analytics.features import (
    SNORING_BAND_HZ,
    SNORING_MIN_DB,
    axis_means,
    in_snoring_band,
)
from nocturne.models import (
    AudioSummary,
    LightSummary,
    RawSample,
    SensorChunk,
    SensorKind,
    Vector3,
)
from nocturne.store import SampleStore

logger = config.get_logger()

CHUNK_SIZE = 30  # 30 readings ≈ 3 s at 10 Hz
BATCH_SIZE = 1000

# Pacing preference when two kinds have the same number of readings
PACING_ORDER = (SensorKind.ACCEL, SensorKind.GYRO, SensorKind.AUDIO, SensorKind.LIGHT)


@dataclass
class ProcessingStats:
    """Backlog progress for one session."""

    total: int
    processed: int
    unprocessed: int
    percentage_processed: float

    def __repr__(self) -> str:
        return (
            f"ProcessingStats({self.processed}/{self.total} processed, "
            f"{self.percentage_processed:.1f}%)"
        )


@dataclass
class _BatchPlan:
    chunks: list[SensorChunk]
    consumed_ids: list[int]
    chunked_count: int  # samples that contributed to a chunk


# ---------------------------------------------------------------------------
# Chunk construction
# ---------------------------------------------------------------------------


def summarize_group(
    session_id: str,
    timestamp_ms: int,
    groups: dict[SensorKind, list[RawSample]],
    snoring_band_hz: tuple[float, float] = SNORING_BAND_HZ,
    snoring_min_db: float = SNORING_MIN_DB,
) -> SensorChunk:
    """Average each channel's readings into one chunk.

    Raises:
        MalformedSampleError: If every channel group is empty.
    """
    if not any(groups.values()):
        raise exceptions.MalformedSampleError(
            f"Cannot create chunk at {timestamp_ms} from an empty group"
        )

    chunk = SensorChunk(
        id=str(uuid.uuid4()),
        session_id=session_id,
        timestamp_ms=timestamp_ms,
    )

    accel = groups.get(SensorKind.ACCEL)
    if accel:
        chunk.accelerometer = Vector3(*axis_means([s.values for s in accel]))

    gyro = groups.get(SensorKind.GYRO)
    if gyro:
        chunk.gyroscope = Vector3(*axis_means([s.values for s in gyro]))

    audio = groups.get(SensorKind.AUDIO)
    if audio:
        decibel, frequency = axis_means([s.values for s in audio])
        in_band = sum(
            1 for s in audio
            if in_snoring_band(s.values[0], s.values[1], snoring_band_hz, snoring_min_db)
        )
        chunk.audio = AudioSummary(
            decibel=decibel,
            frequency_hz=frequency,
            snoring_fraction=in_band / len(audio),
        )

    light = groups.get(SensorKind.LIGHT)
    if light:
        (lux,) = axis_means([s.values for s in light])
        chunk.light = LightSummary(lux=lux)

    return chunk


def _pacing_kind(samples: Sequence[RawSample]) -> SensorKind:
    counts = {kind: 0 for kind in PACING_ORDER}
    for s in samples:
        counts[s.kind] += 1
    return max(PACING_ORDER, key=lambda k: (counts[k], -PACING_ORDER.index(k)))


def plan_batch(
    session_id: str,
    samples: Sequence[RawSample],
    chunk_size: int = CHUNK_SIZE,
    flush: bool = False,
    last_chunk_ms: int | None = None,
    snoring_band_hz: tuple[float, float] = SNORING_BAND_HZ,
    snoring_min_db: float = SNORING_MIN_DB,
) -> _BatchPlan:
    """Group one fetched batch into chunks without touching the store.

    Args:
        session_id: Session the samples belong to.
        samples: Unprocessed samples ordered by timestamp.
        chunk_size: Pacing readings per chunk.
        flush: Also chunk the trailing partial window.
        last_chunk_ms: Timestamp of the newest chunk already stored; new
            chunk timestamps never go below it.
        snoring_band_hz: Frequency band counted as snoring in audio groups.
        snoring_min_db: Loudness a snoring reading must exceed.

    Returns:
        The chunks to write, the ids to mark processed, and how many samples
        actually contributed to a chunk.
    """
    valid: list[RawSample] = []
    consumed: list[int] = []
    for s in samples:
        try:
            valid.append(s.validate())
        except exceptions.MalformedSampleError:
            # Marked processed so it is not fetched forever
            logger.warning("Skipping malformed sample %s in session %s", s.id, session_id)
            if s.id is not None:
                consumed.append(s.id)

    if not valid:
        return _BatchPlan(chunks=[], consumed_ids=consumed, chunked_count=0)

    pacing = _pacing_kind(valid)
    pacing_samples = [s for s in valid if s.kind == pacing]

    # Window boundaries: each window starts at its first pacing reading
    n_full = len(pacing_samples) // chunk_size
    starts = [pacing_samples[i * chunk_size].timestamp_ms for i in range(n_full)]
    if flush and len(pacing_samples) % chunk_size > 0:
        starts.append(pacing_samples[n_full * chunk_size].timestamp_ms)
    if not starts:
        return _BatchPlan(chunks=[], consumed_ids=consumed, chunked_count=0)
    # On flush the last window is open-ended
    covered_until = None if flush else pacing_samples[n_full * chunk_size - 1].timestamp_ms

    n_windows = len(starts)
    windows: list[dict[SensorKind, list[RawSample]]] = [{} for _ in range(n_windows)]

    # Pacing readings go to their own window by position
    for i, s in enumerate(pacing_samples):
        w = i // chunk_size
        if w < n_windows:
            windows[w].setdefault(pacing, []).append(s)

    # Other channels go to the window containing their timestamp; readings
    # older than the first window join the first one
    w = 0
    for s in valid:
        if s.kind == pacing:
            continue
        if covered_until is not None and s.timestamp_ms > covered_until:
            continue
        while w + 1 < n_windows and s.timestamp_ms >= starts[w + 1]:
            w += 1
        windows[w].setdefault(s.kind, []).append(s)

    chunks: list[SensorChunk] = []
    chunked = 0
    floor = last_chunk_ms
    for start, groups in zip(starts, windows):
        group_ids = [s.id for g in groups.values() for s in g if s.id is not None]
        ts = start if floor is None else max(start, floor)
        try:
            chunk = summarize_group(session_id, ts, groups, snoring_band_hz, snoring_min_db)
        except (exceptions.MalformedSampleError, ValueError):
            logger.warning("Skipping malformed chunk group at %s in session %s", start, session_id)
            consumed.extend(group_ids)
            continue
        chunks.append(chunk)
        consumed.extend(group_ids)
        chunked += sum(len(g) for g in groups.values())
        floor = ts

    return _BatchPlan(chunks=chunks, consumed_ids=consumed, chunked_count=chunked)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class ChunkAggregator:
    """Exactly-once conversion of a session's raw backlog into chunks.

    Args:
        store: Sample store providing atomic batches.
        chunk_size: Pacing readings per chunk.
        batch_size: Maximum raw samples fetched per batch.
        snoring_band_hz: Frequency band counted as snoring in audio groups.
        snoring_min_db: Loudness a snoring reading must exceed.
    """

    def __init__(
        self,
        store: SampleStore,
        chunk_size: int = CHUNK_SIZE,
        batch_size: int = BATCH_SIZE,
        snoring_band_hz: tuple[float, float] = SNORING_BAND_HZ,
        snoring_min_db: float = SNORING_MIN_DB,
    ) -> None:
        if chunk_size <= 0 or batch_size < chunk_size:
            raise ValueError("need 0 < chunk_size <= batch_size")
        self.store = store
        self.chunk_size = chunk_size
        self.batch_size = batch_size
        self.snoring_band_hz = snoring_band_hz
        self.snoring_min_db = snoring_min_db

    def process_session_data(
        self,
        session_id: str,
        flush: bool = False,
        max_batches: int | None = None,
    ) -> int:
        """Chunk the session's unprocessed backlog.

        Args:
            session_id: Session to process.
            flush: Also chunk trailing partial windows (use at session end).
            max_batches: Optional cap on the number of batches this call runs.

        Returns:
            Number of raw samples that were chunked by this call.
        """
        total = 0
        batches = 0
        while max_batches is None or batches < max_batches:
            batches += 1
            try:
                fetched, chunked, consumed = self._process_batch(session_id, flush)
            except Exception:
                logger.exception("Batch %d failed for session %s; stopping", batches, session_id)
                break
            total += chunked
            # A short fetch means the backlog is drained; a full fetch that
            # consumed nothing cannot make progress either
            if fetched < self.batch_size or consumed == 0:
                break

        if total > 0:
            logger.info("Processed %d raw samples for session %s", total, session_id)
        return total

    def _process_batch(self, session_id: str, flush: bool) -> tuple[int, int, int]:
        with self.store.batch():
            samples = self.store.fetch_unprocessed(session_id, self.batch_size)
            if not samples:
                return 0, 0, 0

            existing = self.store.chunks_for_session(session_id)
            last_ms = existing[-1].timestamp_ms if existing else None
            # Only the batch that reaches the end of the backlog may flush a tail
            at_end = len(samples) < self.batch_size
            plan = plan_batch(
                session_id, samples, self.chunk_size, flush and at_end, last_ms,
                self.snoring_band_hz, self.snoring_min_db,
            )
            if not plan.consumed_ids and not at_end:
                # A full batch without one full window would never progress
                plan = plan_batch(
                    session_id, samples, self.chunk_size, True, last_ms,
                    self.snoring_band_hz, self.snoring_min_db,
                )
            if not plan.consumed_ids:
                return len(samples), 0, 0

            with self.store.transaction() as tx:
                tx.write_chunks(plan.chunks)
                tx.mark_processed(plan.consumed_ids)

        logger.debug(
            "Session %s: %d samples → %d chunks", session_id, len(samples), len(plan.chunks)
        )
        return len(samples), plan.chunked_count, len(plan.consumed_ids)

    def needs_processing(self, session_id: str) -> bool:
        """True iff the session has any unprocessed raw sample."""
        return self.store.count_unprocessed(session_id) > 0

    def processing_stats(self, session_id: str) -> ProcessingStats:
        total = self.store.count_raw(session_id)
        unprocessed = self.store.count_unprocessed(session_id)
        processed = total - unprocessed
        pct = processed / total * 100.0 if total > 0 else 0.0
        return ProcessingStats(
            total=total,
            processed=processed,
            unprocessed=unprocessed,
            percentage_processed=round(pct, 2),
        )
