"""Capture lifecycle for one tracking session.

A :class:`CaptureManager` is built explicitly with its buffer and sources
and owned by whoever runs the session; there is no module-level instance.
"""

from __future__ import annotations

import threading
from typing import Callable, Sequence

from nocturne import config
from nocturne.analytics.disturbance import detect_reading
from nocturne.capture.base import SampleCallback, SensorSource
from nocturne.capture.buffer import RawSampleBuffer
from nocturne.models import DisturbanceEvent, RawSample, SensorKind

logger = config.get_logger()


class CaptureManager:
    """Start/stop every capture source and route readings into a buffer.

    Audio and light readings are also checked for disturbances as they
    arrive; events go to *on_disturbance* and are kept on
    :attr:`disturbances`.

    Args:
        buffer: Buffer receiving every reading.
        sources: One source per channel.
        on_disturbance: Optional listener for disturbance events.
    """

    def __init__(
        self,
        buffer: RawSampleBuffer,
        sources: Sequence[SensorSource],
        on_disturbance: Callable[[DisturbanceEvent], None] | None = None,
    ) -> None:
        self.buffer = buffer
        self.sources = list(sources)
        self.on_disturbance = on_disturbance
        self.disturbances: list[DisturbanceEvent] = []
        self.session_id: str | None = None
        self._started: list[SensorSource] = []
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self.session_id is not None

    def start(self, session_id: str) -> list[SensorKind]:
        """Start every available source for *session_id*.

        A source that is unavailable or fails to start is logged and
        skipped; the others still start.

        Returns:
            Kinds of the sources that started.
        """
        if self.is_active:
            raise RuntimeError(f"Capture already running for session {self.session_id}")
        self.session_id = session_id

        for source in self.sources:
            if not source.is_available():
                logger.warning("%s unavailable; not capturing %s", source, source.kind.value)
                continue
            try:
                source.start(self._callback_for(session_id, source.kind))
            except Exception:
                logger.exception("Failed to start %s", source)
                continue
            self._started.append(source)

        kinds = [s.kind for s in self._started]
        logger.info(
            "Capture started for session %s: %s",
            session_id, ", ".join(k.value for k in kinds) or "no sources",
        )
        return kinds

    def _callback_for(self, session_id: str, kind: SensorKind) -> SampleCallback:
        def callback(timestamp_ms: int, values: Sequence[float]) -> None:
            values = tuple(values)
            self.buffer.append(RawSample(session_id, kind, int(timestamp_ms), values))
            event = detect_reading(kind, int(timestamp_ms), values)
            if event is not None:
                with self._lock:
                    self.disturbances.append(event)
                if self.on_disturbance is not None:
                    self.on_disturbance(event)
        return callback

    def stop(self) -> int:
        """Stop every started source and flush the buffer.

        Safe to call when capture never started.

        Returns:
            Number of samples flushed to the buffer's store.
        """
        for source in self._started:
            try:
                source.stop()
            except Exception:
                logger.exception("Failed to stop %s", source)
        self._started = []

        flushed = 0
        if self.buffer.store is not None:
            flushed = self.buffer.flush_to()
        if self.session_id is not None:
            logger.info("Capture stopped for session %s (%d samples flushed)", self.session_id, flushed)
        self.session_id = None
        return flushed
