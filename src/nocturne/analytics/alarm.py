"""Smart alarm: pick the wake instant inside a configured window.

The selector looks at a stage timeline, a list of ``(instant, stage)``
points, and returns the earliest light-sleep instant inside the wake window
that is still in the future, or the window start when there is none.

The timeline comes from one of two places:
  - the live session's stored chunks, labeled by a fresh detector and
    continued past the last chunk by the fixed-cycle model
  - the fixed-cycle model alone, starting at the session start

The fixed-cycle model repeats a 90-minute cycle::

    light 20 min → deep 30 min → light 20 min → REM 20 min

Only today's alarm looks at sleep state; alarms on later days of the
look-ahead ring at their window start.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Iterable, Iterator, Protocol, Sequence

from nocturne import config, exceptions
from nocturne.analytics.stages import SleepDetector, label_chunks
from nocturne.models import AlarmConfig, SleepSession, SleepStage
from nocturne.store import SampleStore

logger = config.get_logger()

Timeline = list[tuple[datetime, SleepStage]]

MIN_WINDOW_MIN = 15
MAX_WINDOW_MIN = 120
HORIZON_DAYS = 14
PAST_TOLERANCE = timedelta(minutes=1)
DEFAULT_SLEEP_HOURS = 8.0

# One sleep cycle as (stage, minutes)
CYCLE = (
    (SleepStage.LIGHT, 20),
    (SleepStage.DEEP, 30),
    (SleepStage.LIGHT, 20),
    (SleepStage.REM, 20),
)

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# ---------------------------------------------------------------------------
# Window handling
# ---------------------------------------------------------------------------


def parse_time_of_day(value: str) -> time:
    """Parse ``"HH:MM"`` (24-hour).

    Raises:
        InvalidAlarmWindowError: If *value* is not a valid time of day.
    """
    match = _HHMM.match(value or "")
    if match is None:
        raise exceptions.InvalidAlarmWindowError(f"Invalid time of day: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def _window_minutes(start: time, end: time) -> int:
    start_min = start.hour * 60 + start.minute
    end_min = end.hour * 60 + end.minute
    if end_min <= start_min:
        end_min += 24 * 60
    return end_min - start_min


def validate_alarm(alarm: AlarmConfig) -> None:
    """Reject an unusable alarm configuration.

    Raises:
        InvalidAlarmWindowError: On a malformed time, an empty or
            out-of-range day set, a window ending when it starts, or a
            window shorter than 15 or longer than 120 minutes.
    """
    start = parse_time_of_day(alarm.window_start)
    end = parse_time_of_day(alarm.window_end)
    if not alarm.days_of_week:
        raise exceptions.InvalidAlarmWindowError(f"Alarm {alarm.id} has no days selected")
    bad_days = [d for d in alarm.days_of_week if not 0 <= d <= 6]
    if bad_days:
        raise exceptions.InvalidAlarmWindowError(
            f"Alarm {alarm.id} has invalid days {bad_days} (0=Sunday..6=Saturday)"
        )
    if start == end:
        raise exceptions.InvalidAlarmWindowError(
            f"Alarm {alarm.id} window ends when it starts ({alarm.window_start})"
        )
    length = _window_minutes(start, end)
    if not MIN_WINDOW_MIN <= length <= MAX_WINDOW_MIN:
        raise exceptions.InvalidAlarmWindowError(
            f"Alarm {alarm.id} window is {length} min; must be "
            f"{MIN_WINDOW_MIN}-{MAX_WINDOW_MIN} min"
        )


def window_bounds(
    alarm: AlarmConfig,
    day: date,
    tz: tzinfo | None = None,
) -> tuple[datetime, datetime]:
    """Window start and end on *day*; the end rolls to the next day when it
    is not after the start."""
    start = datetime.combine(day, parse_time_of_day(alarm.window_start), tzinfo=tz)
    end = datetime.combine(day, parse_time_of_day(alarm.window_end), tzinfo=tz)
    if end <= start:
        end += timedelta(days=1)
    return start, end


def weekday_index(day: date) -> int:
    """Day of week with 0 = Sunday."""
    return (day.weekday() + 1) % 7


def current_window(alarm: AlarmConfig, now: datetime) -> tuple[datetime, datetime]:
    """The window that *now* is in or that comes next."""
    for offset in (-1, 0, 1):
        start, end = window_bounds(alarm, now.date() + timedelta(days=offset), now.tzinfo)
        if end >= now:
            return start, end
    return start, end


# ---------------------------------------------------------------------------
# Timelines
# ---------------------------------------------------------------------------


def predict_timeline(
    session_start: datetime,
    duration_hours: float = DEFAULT_SLEEP_HOURS,
    step_min: int = 1,
) -> Timeline:
    """Fixed-cycle stage timeline sampled every *step_min* minutes."""
    cycle_min = sum(minutes for _, minutes in CYCLE)
    total_min = int(duration_hours * 60)
    timeline: Timeline = []
    for offset in range(0, total_min + 1, step_min):
        pos = offset % cycle_min
        for stage, minutes in CYCLE:
            if pos < minutes:
                break
            pos -= minutes
        timeline.append((session_start + timedelta(minutes=offset), stage))
    return timeline


def timeline_from_labels(
    labels: Iterable[tuple[int, SleepStage]],
    tz: tzinfo | None = None,
) -> Timeline:
    """Convert ``(timestamp_ms, stage)`` labels into a sorted timeline."""
    return sorted(
        (datetime.fromtimestamp(ms / 1000, tz), stage) for ms, stage in labels
    )


def select_wake_time(
    timeline: Sequence[tuple[datetime, SleepStage]],
    window_start: datetime,
    window_end: datetime,
    now: datetime,
) -> datetime:
    """Earliest light-sleep instant after *now* inside the window.

    Returns *window_start* when no instant qualifies.
    """
    candidates = [
        instant
        for instant, stage in timeline
        if stage == SleepStage.LIGHT
        and instant > now
        and window_start <= instant <= window_end
    ]
    return min(candidates) if candidates else window_start


# ---------------------------------------------------------------------------
# Smart alarm
# ---------------------------------------------------------------------------


class ActiveSessionLookup(Protocol):
    def active_for_user(self, user_id: str) -> SleepSession | None:
        ...


class NotificationScheduler(Protocol):
    """Delivers a wake notification; this package never dispatches one."""

    def schedule(self, alarm_id: str, instant: datetime, gentle: bool) -> None:
        ...


@dataclass(frozen=True)
class ScheduledWake:
    alarm_id: str
    instant: datetime
    gentle: bool
    day_offset: int  # 0 = today

    def __repr__(self) -> str:
        return f"ScheduledWake({self.alarm_id} @ {self.instant.isoformat()})"


class SmartAlarm:
    """Wake-time selection against a user's live session.

    Args:
        sessions: Looks up the user's active session.
        store: Chunk store for the live session.
        detector_factory: Builds the detector used to label live chunks.
        notifier: Optional scheduler that receives every planned wake.
    """

    def __init__(
        self,
        sessions: ActiveSessionLookup,
        store: SampleStore,
        detector_factory: Callable[[], SleepDetector] = SleepDetector,
        notifier: NotificationScheduler | None = None,
    ) -> None:
        self.sessions = sessions
        self.store = store
        self.detector_factory = detector_factory
        self.notifier = notifier

    def compute_optimal_wake_time(
        self,
        alarm: AlarmConfig,
        now: datetime,
        window: tuple[datetime, datetime] | None = None,
    ) -> datetime:
        """Pick the wake instant for the current (or given) window.

        Raises:
            InvalidAlarmWindowError: If the alarm configuration is invalid.
        """
        validate_alarm(alarm)
        window_start, window_end = window or current_window(alarm, now)

        try:
            session = self.sessions.active_for_user(alarm.user_id)
        except Exception:
            logger.exception("Active session lookup failed for user %s", alarm.user_id)
            return window_start
        if session is None:
            return window_start

        timeline = self._timeline_for(session, now.tzinfo)
        wake = select_wake_time(timeline, window_start, window_end, now)
        logger.debug("Alarm %s: wake at %s (session %s)", alarm.id, wake, session.id)
        return wake

    def _timeline_for(self, session: SleepSession, tz: tzinfo | None) -> Timeline:
        start = datetime.fromtimestamp(session.start_ms / 1000, tz)
        predicted = predict_timeline(start)
        chunks = self.store.chunks_for_session(session.id)
        if not chunks:
            return predicted

        detections = label_chunks(chunks, self.detector_factory())
        observed = timeline_from_labels(((d.timestamp_ms, d.stage) for d in detections), tz)
        last = observed[-1][0]
        return observed + [(instant, stage) for instant, stage in predicted if instant > last]

    def schedule(
        self,
        alarm: AlarmConfig,
        now: datetime,
        horizon_days: int = HORIZON_DAYS,
    ) -> list[ScheduledWake]:
        """Plan one wake per eligible day of the look-ahead.

        Days outside the alarm's day set are skipped, and so is any instant
        more than a minute in the past.  Only today's instant uses sleep
        state.
        """
        if not alarm.enabled:
            return []
        validate_alarm(alarm)

        planned: list[ScheduledWake] = []
        for offset in range(horizon_days):
            day = now.date() + timedelta(days=offset)
            if weekday_index(day) not in alarm.days_of_week:
                continue
            window = window_bounds(alarm, day, now.tzinfo)
            if offset == 0:
                instant = self.compute_optimal_wake_time(alarm, now, window)
            else:
                instant = window[0]
            if instant < now - PAST_TOLERANCE:
                continue
            planned.append(ScheduledWake(alarm.id, instant, alarm.gentle_wake, offset))

        if self.notifier is not None:
            for wake in planned:
                self.notifier.schedule(wake.alarm_id, wake.instant, wake.gentle)
        logger.info("Alarm %s: %d wakes planned over %d days", alarm.id, len(planned), horizon_days)
        return planned


# ---------------------------------------------------------------------------
# Fired-alarm tracking
# ---------------------------------------------------------------------------


class FiredAlarms:
    """Process-lifetime record of ``(alarm_id, instant)`` keys that fired."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired: set[tuple[str, datetime]] = set()

    def mark(self, alarm_id: str, instant: datetime) -> bool:
        """Record a firing; True only the first time for this key."""
        key = (alarm_id, instant)
        with self._lock:
            if key in self._fired:
                return False
            self._fired.add(key)
            return True

    def __contains__(self, key: tuple[str, datetime]) -> bool:
        with self._lock:
            return key in self._fired

    def __len__(self) -> int:
        with self._lock:
            return len(self._fired)


def due_alarms(
    alarms: Iterable[AlarmConfig],
    now: datetime,
    fired: FiredAlarms,
    lookback_min: int = 5,
) -> Iterator[tuple[AlarmConfig, datetime]]:
    """Alarms whose window start today fell within the last *lookback_min*
    minutes and that have not fired yet; each is marked as fired."""
    lookback = timedelta(minutes=lookback_min)
    for alarm in alarms:
        if not alarm.enabled or weekday_index(now.date()) not in alarm.days_of_week:
            continue
        start, _ = window_bounds(alarm, now.date(), now.tzinfo)
        if now - lookback <= start <= now and fired.mark(alarm.id, start):
            yield alarm, start
