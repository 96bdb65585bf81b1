"""Core records shared by capture, chunking, staging, scoring and alarms.

Timestamps are integer milliseconds since the Unix epoch throughout, except
for the alarm layer which works in ``datetime`` because wake windows are
times of day.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from nocturne import exceptions


class SensorKind(str, Enum):
    """Capture channel a raw sample came from."""

    ACCEL = "accel"
    GYRO = "gyro"
    AUDIO = "audio"
    LIGHT = "light"


# Number of values each sensor kind carries per reading
VALUE_ARITY = {
    SensorKind.ACCEL: 3,  # x, y, z (g)
    SensorKind.GYRO: 3,  # x, y, z (rad/s)
    SensorKind.AUDIO: 2,  # decibel, dominant frequency (Hz)
    SensorKind.LIGHT: 1,  # lux
}


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a reading
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class RawSample:
    """A single timestamped reading from one capture source."""

    session_id: str
    kind: SensorKind
    timestamp_ms: int
    values: tuple[float, ...]
    id: int | None = None  # assigned by the store
    processed: bool = False

    def validate(self) -> "RawSample":
        """Check arity and finiteness, returning self.

        Raises:
            MalformedSampleError: If the sample cannot be chunked.
        """
        try:
            kind = SensorKind(self.kind)
        except ValueError:
            raise exceptions.MalformedSampleError(f"Unknown sensor kind: {self.kind!r}")
        expected = VALUE_ARITY[kind]
        if len(self.values) != expected:
            raise exceptions.MalformedSampleError(
                f"{kind.value} sample needs {expected} values, got {len(self.values)}"
            )
        if not all(_is_number(v) and math.isfinite(v) for v in self.values):
            raise exceptions.MalformedSampleError(
                f"{kind.value} sample at {self.timestamp_ms} has invalid values"
            )
        self.kind = kind
        return self


@dataclass(frozen=True)
class Vector3:
    """Mean of a 3-axis channel over one chunk."""

    x: float
    y: float
    z: float

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x ** 2 + self.y ** 2 + self.z ** 2)


@dataclass(frozen=True)
class AudioSummary:
    """Audio channel summary for one chunk."""

    decibel: float  # mean level
    frequency_hz: float  # mean dominant frequency
    snoring_fraction: float = 0.0  # share of readings inside the snoring band


@dataclass(frozen=True)
class LightSummary:
    lux: float


@dataclass
class SensorChunk:
    """Fixed-window aggregate of raw readings; the unit of classification."""

    id: str
    session_id: str
    timestamp_ms: int  # timestamp of the first reading in the window
    accelerometer: Vector3 | None = None
    gyroscope: Vector3 | None = None
    audio: AudioSummary | None = None
    light: LightSummary | None = None

    @property
    def channels(self) -> list[str]:
        return [
            name
            for name in ("accelerometer", "gyroscope", "audio", "light")
            if getattr(self, name) is not None
        ]

    def __repr__(self) -> str:
        return (
            f"SensorChunk(t={self.timestamp_ms}, "
            f"channels={'+'.join(self.channels) or 'none'})"
        )


class MovementLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class MovementIntensity:
    """Bucketed mean accelerometer magnitude over recent chunks."""

    level: MovementLevel
    magnitude: float
    timestamp_ms: int


@dataclass(frozen=True)
class AudioAnalysis:
    is_snoring: bool
    noise_level: float  # mean dB
    has_high_noise: bool


class SleepStage(str, Enum):
    """Stage label attached to a chunk."""

    AWAKE = "awake"
    LIGHT = "light"
    DEEP = "deep"
    REM = "rem"

    @property
    def is_asleep(self) -> bool:
        return self is not SleepStage.AWAKE


class DisturbanceType(str, Enum):
    MOVEMENT = "movement"
    SOUND = "sound"
    LIGHT = "light"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class DisturbanceEvent:
    """A sound/light/movement spike, independent of staging."""

    type: DisturbanceType
    severity: Severity
    timestamp_ms: int
    value: float


class StageSource(str, Enum):
    """Where a session's stage hours came from."""

    SENSOR = "sensor"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class StageHours:
    """Hours spent in each asleep stage."""

    light: float
    deep: float
    rem: float

    @property
    def total(self) -> float:
        return self.light + self.deep + self.rem


class CaffeineHabit(str, Enum):
    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


@dataclass
class UserProfile:
    """Scoring inputs read from the user's profile."""

    user_id: str
    sleep_goal_hours: float = 8.0
    caffeine_habit: CaffeineHabit = CaffeineHabit.MODERATE


@dataclass
class SleepSession:
    """One night of tracking.

    ``end_ms``/``duration_min`` are set exactly once by :meth:`complete`;
    the evaluation outputs are set exactly once by :meth:`record_evaluation`.
    """

    id: str
    user_id: str
    start_ms: int
    end_ms: int | None = None
    duration_min: float | None = None
    stages: StageHours | None = None
    stage_source: StageSource | None = None
    sleep_score: int | None = None
    awake_count: int = 0
    sleep_latency_min: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.end_ms is None

    @property
    def is_evaluated(self) -> bool:
        return self.sleep_score is not None

    def complete(self, end_ms: int) -> "SleepSession":
        """Close the session at *end_ms*.

        Raises:
            SessionStateError: If the session was already completed.
            InvalidSessionError: If the session would last under one minute.
        """
        if self.end_ms is not None:
            raise exceptions.SessionStateError(f"Session {self.id} already ended")
        duration_min = (end_ms - self.start_ms) / 60_000
        if duration_min < 1:
            raise exceptions.InvalidSessionError(
                f"Session {self.id} must last at least 1 minute (got {duration_min:.2f})"
            )
        self.end_ms = end_ms
        self.duration_min = round(duration_min, 2)
        return self

    def record_evaluation(
        self,
        stages: StageHours,
        source: StageSource,
        sleep_score: int,
        awake_count: int,
        sleep_latency_min: float,
    ) -> "SleepSession":
        if self.is_evaluated:
            raise exceptions.SessionStateError(f"Session {self.id} already evaluated")
        self.stages = stages
        self.stage_source = source
        self.sleep_score = sleep_score
        self.awake_count = awake_count
        self.sleep_latency_min = sleep_latency_min
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (JSON-friendly)."""
        d = asdict(self)
        d["stage_source"] = self.stage_source.value if self.stage_source else None
        return d

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def __repr__(self) -> str:
        state = "active" if self.is_active else f"{self.duration_min:.0f}min"
        score = f", score={self.sleep_score}" if self.sleep_score is not None else ""
        return f"SleepSession({self.id}, {state}{score})"


@dataclass
class AlarmConfig:
    """A smart alarm's wake window; never mutated by the selector."""

    id: str
    user_id: str
    window_start: str  # "HH:MM"
    window_end: str  # "HH:MM"
    days_of_week: list[int] = field(default_factory=lambda: list(range(7)))  # 0 = Sunday
    gentle_wake: bool = False
    enabled: bool = True
