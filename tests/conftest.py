"""Shared fixtures and helpers for the nocturne test suite."""

from __future__ import annotations

import json
import uuid
from pathlib import Path

import pytest

from nocturne.models import (
    AudioSummary,
    LightSummary,
    RawSample,
    SensorChunk,
    SensorKind,
    SleepSession,
    Vector3,
)
from nocturne.store import MemoryStore

T0 = 1_700_000_000_000  # ms, arbitrary session start


# ---------------------------------------------------------------------------
# Raw sample helpers
# ---------------------------------------------------------------------------


def make_samples(
    n: int,
    session_id: str = "s1",
    kind: SensorKind = SensorKind.ACCEL,
    start_ms: int = T0,
    period_ms: int = 100,
    values: tuple[float, ...] | None = None,
) -> list[RawSample]:
    """Build *n* evenly spaced samples of one kind."""
    if values is None:
        values = {
            SensorKind.ACCEL: (0.01, 0.02, 0.03),
            SensorKind.GYRO: (0.0, 0.0, 0.0),
            SensorKind.AUDIO: (35.0, 100.0),
            SensorKind.LIGHT: (1.0,),
        }[SensorKind(kind)]
    return [
        RawSample(session_id, SensorKind(kind), start_ms + i * period_ms, tuple(values))
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Chunk helpers
# ---------------------------------------------------------------------------


def make_chunk(
    timestamp_ms: int = T0,
    accel: tuple[float, float, float] | None = (0.0, 0.0, 0.0),
    gyro: tuple[float, float, float] | None = None,
    audio: tuple[float, float, float] | None = None,
    lux: float | None = None,
    session_id: str = "s1",
) -> SensorChunk:
    """Build a chunk; *audio* is ``(decibel, frequency_hz, snoring_fraction)``."""
    return SensorChunk(
        id=str(uuid.uuid4()),
        session_id=session_id,
        timestamp_ms=timestamp_ms,
        accelerometer=Vector3(*accel) if accel is not None else None,
        gyroscope=Vector3(*gyro) if gyro is not None else None,
        audio=AudioSummary(*audio) if audio is not None else None,
        light=LightSummary(lux) if lux is not None else None,
    )


def quiet_chunks(
    n: int,
    start_ms: int = T0,
    period_ms: int = 60_000,
    session_id: str = "s1",
) -> list[SensorChunk]:
    """Motionless, silent, dark chunks."""
    return [
        make_chunk(start_ms + i * period_ms, session_id=session_id)
        for i in range(n)
    ]


def store_chunks(store: MemoryStore, chunks: list[SensorChunk]) -> None:
    with store.transaction() as tx:
        tx.write_chunks(chunks)


def make_session(
    duration_min: float | None = 480.0,
    start_ms: int = T0,
    session_id: str = "s1",
    user_id: str = "u1",
) -> SleepSession:
    """A session, completed after *duration_min* unless it is None."""
    session = SleepSession(id=session_id, user_id=user_id, start_ms=start_ms)
    if duration_min is not None:
        session.complete(start_ms + int(duration_min * 60_000))
    return session


# ---------------------------------------------------------------------------
# JSONL capture file helpers
# ---------------------------------------------------------------------------


def write_jsonl(path: Path, entries: list[dict]) -> Path:
    """Write a list of dicts as JSONL to the given path."""
    with open(path, "w") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
    return path


def sample_entry(sample: RawSample) -> dict:
    return {
        "session_id": sample.session_id,
        "kind": SensorKind(sample.kind).value,
        "timestamp_ms": sample.timestamp_ms,
        "values": list(sample.values),
    }


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()
