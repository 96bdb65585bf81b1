"""Whole-session metrics and the composite sleep score.

Folding a labeled chunk stream into session metrics:
  - stage counts per asleep stage, converted to hours of the session
  - sleep onset (first asleep label after an awake or initial state)
  - awakenings (asleep → awake transitions)
  - sleep latency (onset minus session start, in minutes)

When there is nothing to fold, stages come from a fixed split of the session
duration and are flagged as :attr:`StageSource.FALLBACK`.

The score starts from goal attainment and applies fixed adjustments:

    base        min(100, 100 × asleep_hours / goal_hours)
    awakenings  −5 per awakening beyond the second
    latency     +3 below 20 min (only if sleep began), −5 above 45 min
    caffeine    −10 for a "high" habit
    deep        +5 if deep share of duration ∈ [0.15, 0.25]
    rem         +5 if REM share of duration ∈ [0.20, 0.30]

then clamps to [0, 100] and rounds.  ``asleep_hours`` is the sum of the stage
hours, which equals the duration unless no chunk was ever asleep.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

from nocturne import config, exceptions
from nocturne.models import (
    CaffeineHabit,
    SleepSession,
    SleepStage,
    StageHours,
    StageSource,
)

logger = config.get_logger()


@dataclass
class SessionMetrics:
    """Metrics folded from one session's stage labels."""

    stages: StageHours
    stage_counts: dict[SleepStage, int] = field(default_factory=dict)
    awake_count: int = 0
    sleep_latency_min: float = 0.0
    sleep_onset_ms: int | None = None
    source: StageSource = StageSource.SENSOR

    def __repr__(self) -> str:
        return (
            f"SessionMetrics(light={self.stages.light:.2f}h, "
            f"deep={self.stages.deep:.2f}h, rem={self.stages.rem:.2f}h, "
            f"awake={self.awake_count}, latency={self.sleep_latency_min:.0f}min, "
            f"{self.source.value})"
        )


# ---------------------------------------------------------------------------
# Stage hours
# ---------------------------------------------------------------------------

FALLBACK_DEEP_SHARE = 0.20
FALLBACK_REM_SHARE = 0.25


def estimate_stages(duration_min: float) -> SessionMetrics:
    """Fixed statistical split for a session without usable chunks.

    Deep and REM take fixed shares of the duration and light sleep takes the
    rest, so the hours always sum to the duration.  Awakenings and latency
    are left at zero rather than guessed.
    """
    hours = duration_min / 60.0
    deep = hours * FALLBACK_DEEP_SHARE
    rem = hours * FALLBACK_REM_SHARE
    return SessionMetrics(
        stages=StageHours(light=hours - deep - rem, deep=deep, rem=rem),
        source=StageSource.FALLBACK,
    )


def aggregate_stages(
    labels: Iterable[tuple[int, SleepStage]],
    session_start_ms: int,
    duration_min: float,
) -> SessionMetrics:
    """Fold ``(timestamp_ms, stage)`` labels into session metrics.

    Args:
        labels: Stage labels; sorted by timestamp before folding.
        session_start_ms: Session start, for sleep latency.
        duration_min: Session duration in minutes.

    Returns:
        Sensor-derived metrics, or the fixed split when there are no labels
        at all.  Asleep-stage hours are distributed over the whole duration
        in proportion to their chunk counts, so they sum to the duration
        whenever any label is asleep; a stream without an asleep label
        yields zero stage hours and no onset.
    """
    ordered = sorted(labels, key=lambda item: item[0])
    if not ordered:
        return estimate_stages(duration_min)

    counts = {stage: 0 for stage in SleepStage}
    awake_count = 0
    onset_ms: int | None = None
    was_asleep = False

    for ts, stage in ordered:
        counts[stage] += 1
        if stage.is_asleep:
            if not was_asleep and onset_ms is None:
                onset_ms = ts
            was_asleep = True
        else:
            if was_asleep:
                awake_count += 1
            was_asleep = False

    asleep_total = sum(n for stage, n in counts.items() if stage.is_asleep)
    if asleep_total == 0:
        # Chunks were classified but the sleeper never settled
        return SessionMetrics(
            stages=StageHours(light=0.0, deep=0.0, rem=0.0),
            stage_counts=counts,
            source=StageSource.SENSOR,
        )

    hours = duration_min / 60.0
    stages = StageHours(
        light=hours * counts[SleepStage.LIGHT] / asleep_total,
        deep=hours * counts[SleepStage.DEEP] / asleep_total,
        rem=hours * counts[SleepStage.REM] / asleep_total,
    )
    latency = max(0.0, (onset_ms - session_start_ms) / 60_000) if onset_ms is not None else 0.0

    return SessionMetrics(
        stages=stages,
        stage_counts=counts,
        awake_count=awake_count,
        sleep_latency_min=latency,
        sleep_onset_ms=onset_ms,
        source=StageSource.SENSOR,
    )


# ---------------------------------------------------------------------------
# Composite score
# ---------------------------------------------------------------------------

FREE_AWAKENINGS = 2
AWAKENING_PENALTY = 5.0
FAST_LATENCY_MIN = 20.0
FAST_LATENCY_BONUS = 3.0
SLOW_LATENCY_MIN = 45.0
SLOW_LATENCY_PENALTY = 5.0
HIGH_CAFFEINE_PENALTY = 10.0
DEEP_SHARE_RANGE = (0.15, 0.25)
REM_SHARE_RANGE = (0.20, 0.30)
STAGE_BONUS = 5.0


@dataclass
class ScoreBreakdown:
    """Each adjustment that went into a sleep score."""

    base: float
    awakenings: float = 0.0
    latency: float = 0.0
    caffeine: float = 0.0
    deep: float = 0.0
    rem: float = 0.0

    @property
    def raw(self) -> float:
        return self.base + self.awakenings + self.latency + self.caffeine + self.deep + self.rem

    @property
    def score(self) -> int:
        return int(round(max(0.0, min(100.0, self.raw))))

    def to_dict(self) -> dict[str, float]:
        return {
            "base": round(self.base, 1),
            "awakenings": self.awakenings,
            "latency": self.latency,
            "caffeine": self.caffeine,
            "deep": self.deep,
            "rem": self.rem,
        }


def score_breakdown(
    duration_min: float,
    goal_hours: float,
    awake_count: int,
    latency_min: float,
    caffeine_habit: CaffeineHabit | str,
    stages: StageHours,
) -> ScoreBreakdown:
    """Compute every score adjustment.

    Raises:
        InvalidSessionError: If the duration or the sleep goal is not
            positive.
    """
    if duration_min <= 0:
        raise exceptions.InvalidSessionError(
            f"Cannot score a session with duration {duration_min} min"
        )
    if goal_hours <= 0:
        raise exceptions.InvalidSessionError(f"Sleep goal must be positive, got {goal_hours}")

    hours = duration_min / 60.0
    asleep_hours = stages.total
    breakdown = ScoreBreakdown(base=min(100.0, 100.0 * asleep_hours / goal_hours))

    breakdown.awakenings = -AWAKENING_PENALTY * max(0, awake_count - FREE_AWAKENINGS)

    if latency_min < FAST_LATENCY_MIN and asleep_hours > 0:
        breakdown.latency = FAST_LATENCY_BONUS
    elif latency_min > SLOW_LATENCY_MIN:
        breakdown.latency = -SLOW_LATENCY_PENALTY

    if CaffeineHabit(caffeine_habit) == CaffeineHabit.HIGH:
        breakdown.caffeine = -HIGH_CAFFEINE_PENALTY

    deep_share = stages.deep / hours
    rem_share = stages.rem / hours
    if DEEP_SHARE_RANGE[0] <= deep_share <= DEEP_SHARE_RANGE[1]:
        breakdown.deep = STAGE_BONUS
    if REM_SHARE_RANGE[0] <= rem_share <= REM_SHARE_RANGE[1]:
        breakdown.rem = STAGE_BONUS

    return breakdown


def score_session(
    duration_min: float,
    goal_hours: float,
    awake_count: int,
    latency_min: float,
    caffeine_habit: CaffeineHabit | str,
    stages: StageHours,
) -> int:
    """Composite 0-100 sleep score.

    Args:
        duration_min: Session duration in minutes.
        goal_hours: The user's sleep goal in hours.
        awake_count: Asleep → awake transitions.
        latency_min: Minutes from session start to sleep onset.
        caffeine_habit: One of ``none|low|moderate|high``.
        stages: Stage hours of the session.

    Returns:
        The clamped, rounded score.
    """
    return score_breakdown(
        duration_min, goal_hours, awake_count, latency_min, caffeine_habit, stages
    ).score


# ---------------------------------------------------------------------------
# Labels and helpers
# ---------------------------------------------------------------------------

QUALITY_BANDS = ((90, "excellent"), (75, "good"), (60, "fair"))


def quality_label(score: int) -> str:
    for floor, label in QUALITY_BANDS:
        if score >= floor:
            return label
    return "poor"


def sleep_debt_hours(goal_hours: float, actual_hours: float) -> float:
    """Shortfall against the sleep goal; never negative."""
    return round(max(0.0, goal_hours - actual_hours), 2)


def merge_sessions(
    sessions: Sequence[SleepSession],
    max_gap_min: float = 30.0,
) -> list[SleepSession]:
    """Merge completed sessions separated by short gaps.

    Sessions are taken in start order; a session starting at most
    *max_gap_min* after the previous one ended is folded into it.  Merged
    sessions keep the first session's id and latency, sum durations, stage
    hours and awakenings, and come back unscored.  The inputs are not
    modified.

    Raises:
        SessionStateError: If any session is still active.
    """
    if any(s.is_active for s in sessions):
        raise exceptions.SessionStateError("Cannot merge a session that is still active")

    ordered = sorted(sessions, key=lambda s: s.start_ms)
    if len(ordered) <= 1:
        return list(ordered)

    merged: list[SleepSession] = []
    current = ordered[0]
    for nxt in ordered[1:]:
        gap_min = (nxt.start_ms - current.end_ms) / 60_000
        if gap_min <= max_gap_min:
            current = _merge_two(current, nxt)
        else:
            merged.append(current)
            current = nxt
    merged.append(current)

    if len(merged) < len(ordered):
        logger.info("Merged %d sessions into %d", len(ordered), len(merged))
    return merged


def _merge_two(first: SleepSession, second: SleepSession) -> SleepSession:
    stages = None
    source = None
    if first.stages is not None and second.stages is not None:
        stages = StageHours(
            light=first.stages.light + second.stages.light,
            deep=first.stages.deep + second.stages.deep,
            rem=first.stages.rem + second.stages.rem,
        )
        both_sensor = first.stage_source == second.stage_source == StageSource.SENSOR
        source = StageSource.SENSOR if both_sensor else StageSource.FALLBACK

    return replace(
        first,
        end_ms=max(first.end_ms, second.end_ms),
        duration_min=round((first.duration_min or 0.0) + (second.duration_min or 0.0), 2),
        stages=stages,
        stage_source=source,
        sleep_score=None,
        awake_count=first.awake_count + second.awake_count,
    )
