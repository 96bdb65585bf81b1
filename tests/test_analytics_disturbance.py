"""Tests for nocturne.analytics.disturbance -- sound/light disturbance flags."""

import pytest

from nocturne.analytics.disturbance import (
    detect_disturbances,
    detect_reading,
    light_severity,
    sound_severity,
)
from nocturne.models import DisturbanceType, SensorKind, Severity
from tests.conftest import T0, make_chunk


class TestSeverity:
    @pytest.mark.parametrize(
        "db,severity",
        [(70.1, Severity.HIGH), (70.0, Severity.MEDIUM), (50.1, Severity.MEDIUM),
         (50.0, Severity.LOW), (10.0, Severity.LOW)],
    )
    def test_sound_tiers(self, db, severity):
        assert sound_severity(db) == severity

    @pytest.mark.parametrize(
        "lux,severity",
        [(50.1, Severity.HIGH), (50.0, Severity.MEDIUM), (20.1, Severity.MEDIUM),
         (20.0, Severity.LOW), (11.0, Severity.LOW)],
    )
    def test_light_tiers(self, lux, severity):
        assert light_severity(lux) == severity


class TestDetectDisturbances:
    def test_quiet_dark_chunk(self):
        assert detect_disturbances(make_chunk(T0, audio=(40.0, 100.0, 0.0), lux=2.0)) == []

    def test_sound_threshold_is_strict(self):
        assert detect_disturbances(make_chunk(T0, audio=(60.0, 100.0, 0.0))) == []
        events = detect_disturbances(make_chunk(T0, audio=(60.5, 100.0, 0.0)))
        assert len(events) == 1
        assert events[0].type == DisturbanceType.SOUND
        assert events[0].severity == Severity.MEDIUM
        assert events[0].timestamp_ms == T0

    def test_light_threshold_is_strict(self):
        assert detect_disturbances(make_chunk(T0, lux=10.0)) == []
        events = detect_disturbances(make_chunk(T0, lux=10.5))
        assert events[0].type == DisturbanceType.LIGHT
        assert events[0].severity == Severity.LOW

    def test_both(self):
        events = detect_disturbances(make_chunk(T0, audio=(75.0, 100.0, 0.0), lux=60.0))
        assert [e.type for e in events] == [DisturbanceType.SOUND, DisturbanceType.LIGHT]
        assert all(e.severity == Severity.HIGH for e in events)

    def test_movement_only_chunk(self):
        assert detect_disturbances(make_chunk(T0, accel=(5.0, 0.0, 0.0))) == []


class TestDetectReading:
    def test_audio_reading(self):
        event = detect_reading(SensorKind.AUDIO, T0, (72.0, 300.0))
        assert event.type == DisturbanceType.SOUND
        assert event.value == 72.0

    def test_light_reading(self):
        event = detect_reading(SensorKind.LIGHT, T0, (25.0,))
        assert event.severity == Severity.MEDIUM

    def test_motion_reading_ignored(self):
        assert detect_reading(SensorKind.ACCEL, T0, (100.0, 0.0, 0.0)) is None

    def test_below_threshold(self):
        assert detect_reading(SensorKind.AUDIO, T0, (30.0, 300.0)) is None
