"""Tracking session lifecycle.

:class:`SleepTracker` owns the order of operations for a night:

    start  create the session, start capture
    stop   stop capture, flush the buffer, chunk the backlog,
           complete the session, evaluate it

Chunking failures during stop are logged and never block completion, so a
session always ends up evaluated (on the fallback split if need be).
"""

from __future__ import annotations

import abc
import threading
import uuid

from nocturne import config, exceptions
from nocturne.analytics.chunking import ChunkAggregator
from nocturne.analytics.pipeline import EvaluationResult, ProfileReader, evaluate_session
from nocturne.capture.manager import CaptureManager
from nocturne.models import SleepSession

logger = config.get_logger()


class SessionStore(abc.ABC):
    """Persistence for session records."""

    @abc.abstractmethod
    def create(self, session: SleepSession) -> SleepSession:
        pass

    @abc.abstractmethod
    def get(self, session_id: str) -> SleepSession | None:
        pass

    @abc.abstractmethod
    def active_for_user(self, user_id: str) -> SleepSession | None:
        """The user's session without an end, if any."""

    @abc.abstractmethod
    def update(self, session: SleepSession) -> None:
        pass

    @abc.abstractmethod
    def recent(self, user_id: str, limit: int = 7) -> list[SleepSession]:
        """The user's newest sessions, newest first."""


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: dict[str, SleepSession] = {}
        self._lock = threading.Lock()

    def create(self, session: SleepSession) -> SleepSession:
        with self._lock:
            if session.id in self._sessions:
                raise exceptions.SessionStateError(f"Session {session.id} already exists")
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> SleepSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def active_for_user(self, user_id: str) -> SleepSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.user_id == user_id and session.is_active:
                    return session
        return None

    def update(self, session: SleepSession) -> None:
        with self._lock:
            if session.id not in self._sessions:
                raise exceptions.SessionStateError(f"Unknown session {session.id}")
            self._sessions[session.id] = session

    def recent(self, user_id: str, limit: int = 7) -> list[SleepSession]:
        with self._lock:
            mine = [s for s in self._sessions.values() if s.user_id == user_id]
        mine.sort(key=lambda s: s.start_ms, reverse=True)
        return mine[:limit]


class SleepTracker:
    """Start and stop tracking sessions.

    Args:
        sessions: Session records.
        aggregator: Chunk aggregator over the sample store.
        capture: Capture manager; its buffer must be attached to the
            aggregator's store.
        profiles: Profile reader used when scoring.
    """

    def __init__(
        self,
        sessions: SessionStore,
        aggregator: ChunkAggregator,
        capture: CaptureManager | None = None,
        profiles: ProfileReader | None = None,
    ) -> None:
        self.sessions = sessions
        self.aggregator = aggregator
        self.capture = capture
        self.profiles = profiles

    def start(self, user_id: str, now_ms: int) -> SleepSession:
        """Open a session and start capture.

        Raises:
            SessionStateError: If the user already has an active session.
        """
        active = self.sessions.active_for_user(user_id)
        if active is not None:
            raise exceptions.SessionStateError(
                f"User {user_id} already has an active session {active.id}"
            )

        session = self.sessions.create(
            SleepSession(id=str(uuid.uuid4()), user_id=user_id, start_ms=now_ms)
        )
        if self.capture is not None:
            try:
                self.capture.start(session.id)
            except Exception:
                logger.exception("Capture failed to start for session %s", session.id)
        logger.info("Started session %s for user %s", session.id, user_id)
        return session

    def stop(self, session_id: str, now_ms: int) -> EvaluationResult:
        """Stop capture, chunk what was captured, complete and evaluate.

        Raises:
            SessionStateError: If the session is unknown or already ended.
            InvalidSessionError: If the session lasted under one minute.
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise exceptions.SessionStateError(f"Unknown session {session_id}")
        if not session.is_active:
            raise exceptions.SessionStateError(f"Session {session_id} already ended")
        # Reject before touching capture so the session can still be stopped later
        if now_ms - session.start_ms < 60_000:
            raise exceptions.InvalidSessionError(
                f"Session {session_id} must last at least 1 minute"
            )

        if self.capture is not None:
            try:
                self.capture.stop()
            except Exception:
                logger.exception("Capture failed to stop cleanly for session %s", session_id)

        try:
            self.aggregator.process_session_data(session_id, flush=True)
        except Exception:
            logger.exception("Chunking failed for session %s; evaluating what exists", session_id)

        session.complete(now_ms)
        self.sessions.update(session)
        result = evaluate_session(session, self.aggregator.store, self.profiles)
        self.sessions.update(session)
        return result
