"""Capture source interface.

Each sensor channel is a :class:`SensorSource` chosen when the capture
manager is built.  Availability is checked once through
:meth:`SensorSource.is_available` instead of probing the platform at call
time.
"""

from __future__ import annotations

import abc
from typing import Callable, Sequence

from nocturne.models import SensorKind

# callback(timestamp_ms, values)
SampleCallback = Callable[[int, Sequence[float]], None]


class SensorSource(abc.ABC):
    """One capture channel delivering timestamped readings at its own rate."""

    kind: SensorKind
    rate_hz: float

    @abc.abstractmethod
    def is_available(self) -> bool:
        """True if the channel can be started on this host."""

    @abc.abstractmethod
    def start(self, callback: SampleCallback) -> None:
        """Begin delivering readings to *callback*."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop delivering readings; safe to call when not started."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value}, {self.rate_hz:g} Hz)"


class CallbackSource(SensorSource):
    """A push-style source fed by :meth:`emit`.

    Host platforms wire their native sensor callbacks to :meth:`emit`;
    tests call it directly.
    """

    def __init__(self, kind: SensorKind, rate_hz: float = 1.0, available: bool = True) -> None:
        self.kind = SensorKind(kind)
        self.rate_hz = rate_hz
        self.available = available
        self._callback: SampleCallback | None = None

    @property
    def is_running(self) -> bool:
        return self._callback is not None

    def is_available(self) -> bool:
        return self.available

    def start(self, callback: SampleCallback) -> None:
        if not self.available:
            raise RuntimeError(f"{self.kind.value} source is not available")
        self._callback = callback

    def stop(self) -> None:
        self._callback = None

    def emit(self, timestamp_ms: int, values: Sequence[float]) -> bool:
        """Deliver one reading; returns False when the source is stopped."""
        if self._callback is None:
            return False
        self._callback(timestamp_ms, values)
        return True
