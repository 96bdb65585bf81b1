"""Rule-based sleep stage classification.

:func:`classify` is the fixed decision table applied to one chunk and its
trailing context (first match wins):

    1. deep   movement none, no eye-movement proxy, no snoring
    2. rem    movement low, eye-movement proxy present, snoring detected
    3. light  movement low or medium
    4. light  otherwise

:class:`SleepDetector` wraps the table in a rolling window with a small
sleep/wake state machine, so chunks recorded before the sleeper settles (or
during a restless spell) are labeled awake rather than pushed through the
table.  Both are heuristics tuned by hand, not a validated hypnogram.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from nocturne.analytics.features import (
    EYE_MOVEMENT_MIN_CHUNKS,
    EYE_MOVEMENT_VARIANCE,
    HIGH_NOISE_DB,
    MOVEMENT_THRESHOLDS,
    SNORING_FRACTION,
    analyze_audio_chunks,
    chunk_movement,
    has_eye_movement,
    magnitudes,
)
from nocturne.analytics.disturbance import LIGHT_THRESHOLD_LUX
from nocturne.models import (
    AudioAnalysis,
    MovementIntensity,
    MovementLevel,
    SensorChunk,
    SleepStage,
)


def classify(
    movement: MovementIntensity,
    audio: AudioAnalysis,
    trailing_chunks: Sequence[SensorChunk],
    eye_min_chunks: int = EYE_MOVEMENT_MIN_CHUNKS,
    eye_variance: float = EYE_MOVEMENT_VARIANCE,
) -> SleepStage:
    """Label one chunk with a sleep stage.

    Args:
        movement: Movement intensity over the recent accelerometer chunks.
        audio: Audio analysis over the recent chunks.
        trailing_chunks: The chunk being labeled plus its recent
            predecessors, oldest first; used for the eye-movement proxy.
        eye_min_chunks: Minimum gyroscope chunks for the proxy.
        eye_variance: Gyroscope magnitude variance above which the proxy
            counts as present.

    Returns:
        Never :attr:`SleepStage.AWAKE`; wakefulness is decided by
        :class:`SleepDetector` before the table is consulted.
    """
    eye_movement = has_eye_movement(trailing_chunks, eye_min_chunks, eye_variance)

    if movement.level == MovementLevel.NONE and not eye_movement and not audio.is_snoring:
        return SleepStage.DEEP
    if movement.level == MovementLevel.LOW and eye_movement and audio.is_snoring:
        return SleepStage.REM
    if movement.level in (MovementLevel.LOW, MovementLevel.MEDIUM):
        return SleepStage.LIGHT
    return SleepStage.LIGHT


# ---------------------------------------------------------------------------
# Rolling detector
# ---------------------------------------------------------------------------

WINDOW_CHUNKS = 30
QUIET_MAGNITUDE = 0.3  # below → a quiet window
RESTLESS_MAGNITUDE = 0.8  # above → a restless window
QUIET_TO_SLEEP = 3
RESTLESS_TO_WAKE = 2
MIN_CONFIDENCE = 0.7
SIGNIFICANT_MOVEMENT = 0.5


@dataclass
class Detection:
    """Outcome of feeding one chunk to a :class:`SleepDetector`."""

    timestamp_ms: int
    stage: SleepStage
    is_asleep: bool
    confidence: float  # 0-1, from accelerometer steadiness over the window
    movement: MovementIntensity
    audio: AudioAnalysis
    disturbances: int  # restless/noisy/bright signals seen in the window

    def __repr__(self) -> str:
        return (
            f"Detection(t={self.timestamp_ms}, {self.stage.value}, "
            f"conf={self.confidence:.2f})"
        )


class SleepDetector:
    """Stateful per-session labeler.

    Keeps the last *window* chunks.  Three consecutive quiet windows enter
    sleep and two consecutive restless windows leave it; in between the
    state holds.  A chunk is passed to :func:`classify` only while asleep
    with confidence above *min_confidence*; otherwise it is labeled awake.

    The remaining keyword arguments tune the feature tests: the gyroscope
    variance of the eye-movement proxy, the snoring share and noise level of
    the audio analysis, and the light level counted as a disturbance.

    Not thread-safe: use one detector per session.
    """

    def __init__(
        self,
        window: int = WINDOW_CHUNKS,
        thresholds: tuple[float, float, float] = MOVEMENT_THRESHOLDS,
        min_confidence: float = MIN_CONFIDENCE,
        eye_variance: float = EYE_MOVEMENT_VARIANCE,
        snoring_fraction: float = SNORING_FRACTION,
        high_noise_db: float = HIGH_NOISE_DB,
        light_threshold_lux: float = LIGHT_THRESHOLD_LUX,
    ) -> None:
        self.window = window
        self.thresholds = thresholds
        self.min_confidence = min_confidence
        self.eye_variance = eye_variance
        self.snoring_fraction = snoring_fraction
        self.high_noise_db = high_noise_db
        self.light_threshold_lux = light_threshold_lux
        self._recent: deque[SensorChunk] = deque(maxlen=window)
        self._quiet_run = 0
        self._restless_run = 0
        self.is_asleep = False

    def process_chunk(self, chunk: SensorChunk) -> Detection:
        self._recent.append(chunk)
        recent = list(self._recent)

        movement = chunk_movement(recent, self.thresholds)
        audio = analyze_audio_chunks(recent, self.snoring_fraction, self.high_noise_db)
        confidence = self._update_state(movement, recent)

        if self.is_asleep and confidence > self.min_confidence:
            stage = classify(movement, audio, recent, EYE_MOVEMENT_MIN_CHUNKS, self.eye_variance)
        else:
            stage = SleepStage.AWAKE

        return Detection(
            timestamp_ms=chunk.timestamp_ms,
            stage=stage,
            is_asleep=self.is_asleep,
            confidence=confidence,
            movement=movement,
            audio=audio,
            disturbances=_count_disturbances(movement, audio, recent, self.light_threshold_lux),
        )

    def _update_state(self, movement: MovementIntensity, recent: list[SensorChunk]) -> float:
        if movement.magnitude < QUIET_MAGNITUDE:
            self._quiet_run += 1
            self._restless_run = 0
        elif movement.magnitude > RESTLESS_MAGNITUDE:
            self._restless_run += 1
            self._quiet_run = 0

        if not self.is_asleep and self._quiet_run >= QUIET_TO_SLEEP:
            self.is_asleep = True
        elif self.is_asleep and self._restless_run >= RESTLESS_TO_WAKE:
            self.is_asleep = False

        mags = magnitudes([c.accelerometer for c in recent if c.accelerometer is not None])
        spread = float(np.std(mags)) if len(mags) else 0.0
        return max(0.0, min(1.0, 1.0 - spread))

    def reset(self) -> None:
        """Forget the window and return to the awake state."""
        self._recent.clear()
        self._quiet_run = 0
        self._restless_run = 0
        self.is_asleep = False


def _count_disturbances(
    movement: MovementIntensity,
    audio: AudioAnalysis,
    recent: Sequence[SensorChunk],
    light_threshold_lux: float = LIGHT_THRESHOLD_LUX,
) -> int:
    count = 0
    if movement.magnitude > SIGNIFICANT_MOVEMENT:
        count += 1
    if audio.has_high_noise:
        count += 1
    lux = [c.light.lux for c in recent if c.light is not None]
    if lux and float(np.mean(lux)) > light_threshold_lux:
        count += 1
    return count


def label_chunks(
    chunks: Sequence[SensorChunk],
    detector: SleepDetector | None = None,
) -> list[Detection]:
    """Run *chunks* (timestamp order) through a detector."""
    detector = detector or SleepDetector()
    return [detector.process_chunk(c) for c in chunks]
