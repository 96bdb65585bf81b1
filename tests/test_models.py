"""Tests for nocturne.models."""

import json
import math

import pytest

from nocturne import exceptions
from nocturne.models import (
    RawSample,
    SensorKind,
    SleepSession,
    SleepStage,
    StageHours,
    StageSource,
    Vector3,
)
from tests.conftest import T0, make_chunk, make_session


class TestRawSample:
    def test_validate_normalizes_kind(self):
        sample = RawSample("s1", "gyro", T0, (0.1, 0.2, 0.3)).validate()
        assert sample.kind is SensorKind.GYRO

    @pytest.mark.parametrize(
        "kind,values",
        [("accel", (1.0, 2.0)), ("audio", (40.0,)), ("light", (1.0, 2.0)),
         ("light", (math.nan,)), ("accel", (1.0, "2", 3.0)), ("sonar", (1.0,)),
         ("light", (True,)), ("accel", (1.0, False, 0.0))],
    )
    def test_malformed(self, kind, values):
        with pytest.raises(exceptions.MalformedSampleError):
            RawSample("s1", kind, T0, values).validate()


class TestChunk:
    def test_magnitude(self):
        assert Vector3(3.0, 4.0, 0.0).magnitude == pytest.approx(5.0)

    def test_channels(self):
        chunk = make_chunk(T0, lux=3.0)
        assert chunk.channels == ["accelerometer", "light"]
        assert "accelerometer+light" in repr(chunk)

    def test_stage_is_asleep(self):
        assert not SleepStage.AWAKE.is_asleep
        assert all(s.is_asleep for s in (SleepStage.LIGHT, SleepStage.DEEP, SleepStage.REM))


class TestSleepSession:
    def test_complete(self):
        session = make_session(None)
        assert session.is_active
        session.complete(T0 + 90_500)
        assert session.duration_min == pytest.approx(1.51)
        assert not session.is_active

    def test_complete_once(self):
        session = make_session(60)
        with pytest.raises(exceptions.SessionStateError):
            session.complete(T0 + 7_200_000)

    def test_under_one_minute(self):
        session = make_session(None)
        with pytest.raises(exceptions.InvalidSessionError):
            session.complete(T0 + 59_000)
        assert session.is_active

    def test_evaluation_written_once(self):
        session = make_session(60)
        session.record_evaluation(StageHours(0.5, 0.25, 0.25), StageSource.SENSOR, 70, 1, 4.0)
        assert session.is_evaluated
        with pytest.raises(exceptions.SessionStateError):
            session.record_evaluation(StageHours(1, 0, 0), StageSource.FALLBACK, 50, 0, 0.0)
        assert session.sleep_score == 70

    def test_to_json(self):
        session = make_session(60)
        session.record_evaluation(StageHours(0.5, 0.25, 0.25), StageSource.FALLBACK, 70, 0, 0.0)
        data = json.loads(session.to_json())
        assert data["stage_source"] == "fallback"
        assert data["stages"] == {"light": 0.5, "deep": 0.25, "rem": 0.25}
        assert data["duration_min"] == 60

    def test_repr(self):
        assert repr(make_session(None)) == "SleepSession(s1, active)"
        assert repr(make_session(60)) == "SleepSession(s1, 60min)"
