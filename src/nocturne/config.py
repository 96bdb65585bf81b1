"""Configuration for nocturne: package logger, version and tuning knobs.

Every threshold used by the analytics layer is a heuristic tuning knob, not
a value derived from a physiological model.  The module-level constants in
each analytics module are the defaults; :class:`Settings` collects them in
one place so a host application can override them (for instance from
``NOCTURNE_*`` environment variables) and pass them down explicitly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from importlib import metadata

ENV_PREFIX = "NOCTURNE_"


def get_version() -> str:
    """Return the installed nocturne version."""
    try:
        return metadata.version("nocturne")
    except metadata.PackageNotFoundError:
        return "Version unknown"


def get_logger() -> logging.Logger:
    """Gets the nocturne logger."""
    logger = logging.getLogger("nocturne")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)s - %(funcName)s - %(message)s",  # noqa: E501
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


@dataclass(frozen=True)
class Settings:
    """Tuning knobs shared by the capture, chunking and alarm layers."""

    chunk_size: int = 30  # raw readings per chunk (~3 s at 10 Hz)
    batch_size: int = 1000  # raw readings fetched per atomic batch
    movement_low: float = 0.1
    movement_medium: float = 0.5
    movement_high: float = 1.5
    eye_movement_variance: float = 0.01
    snoring_min_hz: float = 200.0
    snoring_max_hz: float = 400.0
    snoring_min_db: float = 40.0
    high_noise_db: float = 50.0
    sound_disturbance_db: float = 60.0
    light_disturbance_lux: float = 10.0
    alarm_horizon_days: int = 14
    default_sleep_goal_hours: float = 8.0

    @property
    def movement_thresholds(self) -> tuple[float, float, float]:
        return (self.movement_low, self.movement_medium, self.movement_high)

    @property
    def snoring_band_hz(self) -> tuple[float, float]:
        return (self.snoring_min_hz, self.snoring_max_hz)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from ``NOCTURNE_<FIELD>`` environment variables.

        Unset variables keep their defaults.  A value that cannot be parsed
        into the field's type raises ValueError naming the variable.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, int | float] = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            raw = env.get(key)
            if raw is None:
                continue
            cast = int if f.type in (int, "int") else float
            try:
                overrides[f.name] = cast(raw)
            except ValueError as exc:
                raise ValueError(f"{key}={raw!r} is not a valid {cast.__name__}") from exc
        return cls(**overrides)
