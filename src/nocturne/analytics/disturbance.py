"""Sound and light disturbance flags.

A side channel next to staging: events are emitted for alerting and
insight generation but never feed the sleep score.
"""

from __future__ import annotations

from typing import Sequence

from nocturne.models import (
    DisturbanceEvent,
    DisturbanceType,
    SensorChunk,
    SensorKind,
    Severity,
)

SOUND_THRESHOLD_DB = 60.0
LIGHT_THRESHOLD_LUX = 10.0

# (high, medium) tier boundaries, both strictly above
SOUND_TIERS_DB = (70.0, 50.0)
LIGHT_TIERS_LUX = (50.0, 20.0)


def _tier(value: float, tiers: tuple[float, float]) -> Severity:
    high, medium = tiers
    if value > high:
        return Severity.HIGH
    if value > medium:
        return Severity.MEDIUM
    return Severity.LOW


def sound_severity(decibel: float) -> Severity:
    return _tier(decibel, SOUND_TIERS_DB)


def light_severity(lux: float) -> Severity:
    return _tier(lux, LIGHT_TIERS_LUX)


def detect_disturbances(
    chunk: SensorChunk,
    sound_threshold_db: float = SOUND_THRESHOLD_DB,
    light_threshold_lux: float = LIGHT_THRESHOLD_LUX,
) -> list[DisturbanceEvent]:
    """Flag a chunk whose sound or light level crosses its threshold.

    Returns:
        Zero, one or two events (sound first), stamped with the chunk's
        timestamp.
    """
    events: list[DisturbanceEvent] = []
    if chunk.audio is not None and chunk.audio.decibel > sound_threshold_db:
        events.append(
            DisturbanceEvent(
                type=DisturbanceType.SOUND,
                severity=sound_severity(chunk.audio.decibel),
                timestamp_ms=chunk.timestamp_ms,
                value=chunk.audio.decibel,
            )
        )
    if chunk.light is not None and chunk.light.lux > light_threshold_lux:
        events.append(
            DisturbanceEvent(
                type=DisturbanceType.LIGHT,
                severity=light_severity(chunk.light.lux),
                timestamp_ms=chunk.timestamp_ms,
                value=chunk.light.lux,
            )
        )
    return events


def detect_reading(
    kind: SensorKind,
    timestamp_ms: int,
    values: Sequence[float],
    sound_threshold_db: float = SOUND_THRESHOLD_DB,
    light_threshold_lux: float = LIGHT_THRESHOLD_LUX,
) -> DisturbanceEvent | None:
    """Check a single raw audio or light reading as it is captured.

    Motion readings and readings below threshold yield None.
    """
    if kind == SensorKind.AUDIO and values and values[0] > sound_threshold_db:
        return DisturbanceEvent(
            DisturbanceType.SOUND, sound_severity(values[0]), timestamp_ms, float(values[0])
        )
    if kind == SensorKind.LIGHT and values and values[0] > light_threshold_lux:
        return DisturbanceEvent(
            DisturbanceType.LIGHT, light_severity(values[0]), timestamp_ms, float(values[0])
        )
    return None
