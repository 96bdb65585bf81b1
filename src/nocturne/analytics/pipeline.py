"""Session evaluation: stored chunks → labels → metrics → score.

This module wires the chunk store, the stage detector and the scorer
together for one completed session, and writes the write-once evaluation
fields back onto the session.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from nocturne import config, exceptions
from nocturne.analytics.disturbance import (
    LIGHT_THRESHOLD_LUX,
    SOUND_THRESHOLD_DB,
    detect_disturbances,
)
from nocturne.analytics.scoring import (
    ScoreBreakdown,
    SessionMetrics,
    aggregate_stages,
    estimate_stages,
    quality_label,
    score_breakdown,
    sleep_debt_hours,
)
from nocturne.analytics.stages import SleepDetector
from nocturne.models import (
    DisturbanceEvent,
    SleepSession,
    SleepStage,
    UserProfile,
)
from nocturne.store import SampleStore

logger = config.get_logger()


class ProfileReader(Protocol):
    """Supplies the scoring inputs kept on a user's profile."""

    def get_profile(self, user_id: str) -> UserProfile | None:
        ...


class MemoryProfiles:
    """Dict-backed :class:`ProfileReader`."""

    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self._profiles = {p.user_id: p for p in profiles or []}

    def put(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)


@dataclass
class EvaluationResult:
    """Everything produced by evaluating one session."""

    session: SleepSession
    metrics: SessionMetrics
    breakdown: ScoreBreakdown
    quality: str
    sleep_debt_hours: float
    disturbances: list[DisturbanceEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (JSON-friendly)."""
        return {
            "session": self.session.to_dict(),
            "quality": self.quality,
            "sleep_debt_hours": self.sleep_debt_hours,
            "sleep_onset_ms": self.metrics.sleep_onset_ms,
            "stage_counts": {s.value: n for s, n in self.metrics.stage_counts.items()},
            "breakdown": self.breakdown.to_dict(),
            "disturbances": [
                {
                    "type": d.type.value,
                    "severity": d.severity.value,
                    "timestamp_ms": d.timestamp_ms,
                    "value": d.value,
                }
                for d in self.disturbances
            ],
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def __repr__(self) -> str:
        return (
            f"EvaluationResult({self.session.id}: score={self.session.sleep_score}, "
            f"{self.quality}, {self.metrics.source.value})"
        )


def evaluate_session(
    session: SleepSession,
    store: SampleStore,
    profiles: ProfileReader | None = None,
    detector: SleepDetector | None = None,
    sound_threshold_db: float = SOUND_THRESHOLD_DB,
    light_threshold_lux: float = LIGHT_THRESHOLD_LUX,
) -> EvaluationResult:
    """Classify, aggregate and score a completed session.

    Args:
        session: A completed, not yet evaluated session.
        store: Store holding the session's chunks.
        profiles: Profile reader for the sleep goal and caffeine habit;
            defaults apply when absent or when the user has no profile.
        detector: Detector to label chunks with (default: a fresh one).
        sound_threshold_db: Sound level above which a chunk is a disturbance.
        light_threshold_lux: Light level above which a chunk is a disturbance.

    Returns:
        The evaluation result; *session* itself carries the written
        stages, score, awakenings and latency.

    Raises:
        InvalidSessionError: If the session has no positive duration.
        SessionStateError: If the session was already evaluated.
    """
    if session.duration_min is None or session.duration_min <= 0:
        raise exceptions.InvalidSessionError(
            f"Session {session.id} has no duration; complete it before evaluating"
        )
    if session.is_evaluated:
        raise exceptions.SessionStateError(f"Session {session.id} already evaluated")

    chunks = store.chunks_for_session(session.id)
    detector = detector or SleepDetector()

    labels: list[tuple[int, SleepStage]] = []
    disturbances: list[DisturbanceEvent] = []
    for chunk in chunks:
        try:
            detection = detector.process_chunk(chunk)
        except Exception:
            logger.exception("Skipping chunk %s of session %s", chunk.id, session.id)
            continue
        labels.append((chunk.timestamp_ms, detection.stage))
        disturbances.extend(detect_disturbances(chunk, sound_threshold_db, light_threshold_lux))

    if labels:
        metrics = aggregate_stages(labels, session.start_ms, session.duration_min)
    else:
        logger.warning("Session %s has no classified chunks; using fallback stages", session.id)
        metrics = estimate_stages(session.duration_min)

    profile = profiles.get_profile(session.user_id) if profiles is not None else None
    if profile is None:
        profile = UserProfile(user_id=session.user_id)

    breakdown = score_breakdown(
        session.duration_min,
        profile.sleep_goal_hours,
        metrics.awake_count,
        metrics.sleep_latency_min,
        profile.caffeine_habit,
        metrics.stages,
    )
    session.record_evaluation(
        stages=metrics.stages,
        source=metrics.source,
        sleep_score=breakdown.score,
        awake_count=metrics.awake_count,
        sleep_latency_min=round(metrics.sleep_latency_min, 2),
    )
    logger.info(
        "Evaluated session %s: score=%d from %d chunks (%s)",
        session.id, breakdown.score, len(labels), metrics.source.value,
    )

    return EvaluationResult(
        session=session,
        metrics=metrics,
        breakdown=breakdown,
        quality=quality_label(breakdown.score),
        sleep_debt_hours=sleep_debt_hours(profile.sleep_goal_hours, metrics.stages.total),
        disturbances=disturbances,
    )
