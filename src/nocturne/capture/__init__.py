"""Capture sources, the raw sample buffer and the capture lifecycle."""

from nocturne.capture.base import SensorSource, CallbackSource
from nocturne.capture.buffer import RawSampleBuffer
from nocturne.capture.manager import CaptureManager

__all__ = [
    "SensorSource",
    "CallbackSource",
    "RawSampleBuffer",
    "CaptureManager",
]
