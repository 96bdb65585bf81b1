"""Per-chunk feature extraction for sleep staging.

This is the shared foundation for the staging and chunking modules.  It
provides:
  - Vector magnitudes and population variance
  - Movement intensity bucketing from accelerometer chunk means
  - Audio analysis (snoring band share, mean noise level)
  - The eye-movement proxy computed from gyroscope chunk means

All thresholds are heuristic tuning knobs.  In particular the eye-movement
proxy is a deliberately simple variance test on wrist/bed gyroscope motion,
not a validated detector of REM eye movements, and "snoring" is used only as
an irregular-breathing proxy.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from nocturne.models import (
    AudioAnalysis,
    MovementIntensity,
    MovementLevel,
    SensorChunk,
    Vector3,
)


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

# Mean accelerometer magnitude boundaries: < low → none, < medium → low,
# < high → medium, else high
MOVEMENT_THRESHOLDS = (0.1, 0.5, 1.5)

EYE_MOVEMENT_MIN_CHUNKS = 5
EYE_MOVEMENT_VARIANCE = 0.01

SNORING_BAND_HZ = (200.0, 400.0)  # inclusive
SNORING_MIN_DB = 40.0  # strictly above
SNORING_FRACTION = 0.10  # share of readings in band to call it snoring
HIGH_NOISE_DB = 50.0


# ---------------------------------------------------------------------------
# Basic statistics
# ---------------------------------------------------------------------------


def magnitudes(vectors: Sequence[Vector3 | tuple[float, float, float]]) -> np.ndarray:
    """Euclidean norm of each 3-axis vector."""
    if len(vectors) == 0:
        return np.zeros(0, dtype=np.float64)
    arr = np.asarray(
        [(v.x, v.y, v.z) if isinstance(v, Vector3) else tuple(v) for v in vectors],
        dtype=np.float64,
    )
    return np.sqrt(np.sum(arr ** 2, axis=1))


def variance(values: Sequence[float]) -> float:
    """Population variance; 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.var(np.asarray(values, dtype=np.float64)))


def axis_means(values: Sequence[Sequence[float]]) -> tuple[float, ...]:
    """Arithmetic mean of each column of a list of equal-length readings.

    Raises:
        ValueError: If *values* is empty.
    """
    if len(values) == 0:
        raise ValueError("cannot average an empty group")
    arr = np.asarray(values, dtype=np.float64)
    return tuple(float(m) for m in np.mean(arr, axis=0))


# ---------------------------------------------------------------------------
# Movement
# ---------------------------------------------------------------------------


def movement_intensity(
    accel: Sequence[Vector3],
    thresholds: tuple[float, float, float] = MOVEMENT_THRESHOLDS,
    timestamp_ms: int = 0,
) -> MovementIntensity:
    """Bucket the mean magnitude of recent accelerometer chunk means.

    Args:
        accel: Accelerometer means of the recent chunks (oldest first).
        thresholds: ``(low, medium, high)`` magnitude boundaries.
        timestamp_ms: Timestamp to stamp on the result (usually the newest
            chunk's).
    """
    if len(accel) == 0:
        return MovementIntensity(MovementLevel.NONE, 0.0, timestamp_ms)

    low, medium, high = thresholds
    avg = float(np.mean(magnitudes(accel)))

    if avg < low:
        level = MovementLevel.NONE
    elif avg < medium:
        level = MovementLevel.LOW
    elif avg < high:
        level = MovementLevel.MEDIUM
    else:
        level = MovementLevel.HIGH

    return MovementIntensity(level=level, magnitude=avg, timestamp_ms=timestamp_ms)


def chunk_movement(
    chunks: Sequence[SensorChunk],
    thresholds: tuple[float, float, float] = MOVEMENT_THRESHOLDS,
) -> MovementIntensity:
    """Movement intensity over the accelerometer channel of *chunks*."""
    accel = [c.accelerometer for c in chunks if c.accelerometer is not None]
    ts = chunks[-1].timestamp_ms if chunks else 0
    return movement_intensity(accel, thresholds, ts)


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


def in_snoring_band(
    decibel: float,
    frequency_hz: float,
    band_hz: tuple[float, float] = SNORING_BAND_HZ,
    min_db: float = SNORING_MIN_DB,
) -> bool:
    """True if one audio reading looks like snoring."""
    lo, hi = band_hz
    return lo <= frequency_hz <= hi and decibel > min_db


def analyze_audio(
    samples: Sequence[tuple[float, float]],
    band_hz: tuple[float, float] = SNORING_BAND_HZ,
    min_db: float = SNORING_MIN_DB,
    snoring_fraction: float = SNORING_FRACTION,
    high_noise_db: float = HIGH_NOISE_DB,
) -> AudioAnalysis:
    """Analyze raw ``(decibel, frequency_hz)`` readings.

    ``is_snoring`` is True when at least *snoring_fraction* of the readings
    fall inside the band above the decibel floor.
    """
    if len(samples) == 0:
        return AudioAnalysis(is_snoring=False, noise_level=0.0, has_high_noise=False)

    in_band = sum(1 for db, hz in samples if in_snoring_band(db, hz, band_hz, min_db))
    noise = float(np.mean([db for db, _ in samples]))
    return AudioAnalysis(
        is_snoring=in_band >= snoring_fraction * len(samples),
        noise_level=noise,
        has_high_noise=noise > high_noise_db,
    )


def analyze_audio_chunks(
    chunks: Sequence[SensorChunk],
    snoring_fraction: float = SNORING_FRACTION,
    high_noise_db: float = HIGH_NOISE_DB,
) -> AudioAnalysis:
    """Analyze the audio channel of *chunks*.

    Each chunk already carries the share of its readings that fell inside
    the snoring band, so the snoring test averages those shares.
    """
    audio = [c.audio for c in chunks if c.audio is not None]
    if not audio:
        return AudioAnalysis(is_snoring=False, noise_level=0.0, has_high_noise=False)

    share = float(np.mean([a.snoring_fraction for a in audio]))
    noise = float(np.mean([a.decibel for a in audio]))
    return AudioAnalysis(
        is_snoring=share >= snoring_fraction,
        noise_level=noise,
        has_high_noise=noise > high_noise_db,
    )


# ---------------------------------------------------------------------------
# Eye-movement proxy
# ---------------------------------------------------------------------------


def has_eye_movement(
    chunks: Sequence[SensorChunk],
    min_chunks: int = EYE_MOVEMENT_MIN_CHUNKS,
    threshold: float = EYE_MOVEMENT_VARIANCE,
) -> bool:
    """Variance test on gyroscope magnitudes over the trailing window.

    Returns False when fewer than *min_chunks* chunks carry gyroscope data.
    """
    gyro = [c.gyroscope for c in chunks if c.gyroscope is not None]
    if len(gyro) < min_chunks:
        return False
    return variance(magnitudes(gyro)) > threshold
