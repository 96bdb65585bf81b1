"""Tests for nocturne.analytics.stages -- stage table and sleep detector."""

import pytest

from nocturne.analytics.stages import (
    Detection,
    SleepDetector,
    classify,
    label_chunks,
)
from nocturne.models import (
    AudioAnalysis,
    MovementIntensity,
    MovementLevel,
    SleepStage,
)
from tests.conftest import T0, make_chunk, quiet_chunks

SILENT = AudioAnalysis(is_snoring=False, noise_level=30.0, has_high_noise=False)
SNORING = AudioAnalysis(is_snoring=True, noise_level=45.0, has_high_noise=False)


def _movement(level, magnitude=0.0):
    return MovementIntensity(level=level, magnitude=magnitude, timestamp_ms=T0)


def _eye_chunks():
    # Gyroscope magnitudes alternating 0/1 → variance well above 0.01
    return [make_chunk(T0 + i, gyro=(float(i % 2), 0.0, 0.0)) for i in range(6)]


def _still_chunks():
    return [make_chunk(T0 + i, gyro=(0.2, 0.0, 0.0)) for i in range(6)]


class TestClassify:
    def test_still_silent_is_deep(self):
        stage = classify(_movement(MovementLevel.NONE), SILENT, _still_chunks())
        assert stage == SleepStage.DEEP

    def test_deep_without_gyro_history(self):
        assert classify(_movement(MovementLevel.NONE), SILENT, []) == SleepStage.DEEP

    def test_snoring_blocks_deep(self):
        stage = classify(_movement(MovementLevel.NONE), SNORING, _still_chunks())
        assert stage == SleepStage.LIGHT

    def test_eye_movement_blocks_deep(self):
        stage = classify(_movement(MovementLevel.NONE), SILENT, _eye_chunks())
        assert stage == SleepStage.LIGHT

    def test_rem(self):
        stage = classify(_movement(MovementLevel.LOW), SNORING, _eye_chunks())
        assert stage == SleepStage.REM

    def test_rem_needs_snoring(self):
        stage = classify(_movement(MovementLevel.LOW), SILENT, _eye_chunks())
        assert stage == SleepStage.LIGHT

    def test_rem_needs_low_movement(self):
        stage = classify(_movement(MovementLevel.MEDIUM), SNORING, _eye_chunks())
        assert stage == SleepStage.LIGHT

    @pytest.mark.parametrize("level", [MovementLevel.LOW, MovementLevel.MEDIUM])
    def test_low_or_medium_is_light(self, level):
        assert classify(_movement(level), SILENT, _still_chunks()) == SleepStage.LIGHT

    def test_high_falls_back_to_light(self):
        assert classify(_movement(MovementLevel.HIGH), SILENT, []) == SleepStage.LIGHT

    def test_deterministic(self):
        args = (_movement(MovementLevel.LOW), SNORING, _eye_chunks())
        assert len({classify(*args) for _ in range(20)}) == 1


class TestSleepDetector:
    def test_first_chunks_are_awake(self):
        detector = SleepDetector()
        results = [detector.process_chunk(c) for c in quiet_chunks(2)]
        assert all(r.stage == SleepStage.AWAKE for r in results)
        assert detector.is_asleep is False

    def test_three_quiet_windows_enter_sleep(self):
        detector = SleepDetector()
        results = [detector.process_chunk(c) for c in quiet_chunks(3)]
        assert results[-1].is_asleep is True
        assert results[-1].stage == SleepStage.DEEP
        assert results[-1].confidence == pytest.approx(1.0)

    def test_two_restless_windows_wake(self):
        detector = SleepDetector(window=1)
        for c in quiet_chunks(3):
            detector.process_chunk(c)
        restless = [make_chunk(T0 + 10_000_000 + i, accel=(1.0, 0.0, 0.0)) for i in range(2)]
        first = detector.process_chunk(restless[0])
        assert first.is_asleep is True
        second = detector.process_chunk(restless[1])
        assert second.is_asleep is False
        assert second.stage == SleepStage.AWAKE

    def test_low_confidence_is_awake(self):
        detector = SleepDetector()
        # One jolt then stillness: the window mean drops under 0.3 but the
        # spread of magnitudes keeps confidence under 0.7
        chunks = [make_chunk(T0, accel=(1.2, 0.0, 0.0))] + quiet_chunks(6, start_ms=T0 + 10)
        results = [detector.process_chunk(c) for c in chunks]
        assert detector.is_asleep is True
        assert results[-1].confidence < 0.7
        assert results[-1].stage == SleepStage.AWAKE

    def test_reset(self):
        detector = SleepDetector()
        for c in quiet_chunks(5):
            detector.process_chunk(c)
        detector.reset()
        assert detector.is_asleep is False
        assert detector.process_chunk(quiet_chunks(1)[0]).stage == SleepStage.AWAKE

    def test_disturbance_count(self):
        detector = SleepDetector()
        chunk = make_chunk(T0, accel=(1.0, 0.0, 0.0), audio=(65.0, 100.0, 0.0), lux=30.0)
        assert detector.process_chunk(chunk).disturbances == 3

    def test_tuned_thresholds_change_disturbances(self):
        detector = SleepDetector(high_noise_db=70.0, light_threshold_lux=40.0)
        chunk = make_chunk(T0, accel=(1.0, 0.0, 0.0), audio=(65.0, 100.0, 0.0), lux=30.0)
        assert detector.process_chunk(chunk).disturbances == 1

    def test_tuned_eye_variance_changes_stage(self):
        # Low movement plus snoring: REM only when the gyroscope counts as eye movement
        chunks = [
            make_chunk(T0 + i, accel=(0.2, 0.0, 0.0), gyro=(float(i % 2), 0.0, 0.0),
                       audio=(45.0, 300.0, 1.0))
            for i in range(6)
        ]
        loose = label_chunks(chunks, SleepDetector())
        strict = label_chunks(chunks, SleepDetector(eye_variance=1.0))
        assert loose[-1].stage == SleepStage.REM
        assert strict[-1].stage == SleepStage.LIGHT

    def test_label_chunks(self):
        detections = label_chunks(quiet_chunks(4))
        assert all(isinstance(d, Detection) for d in detections)
        assert [d.stage for d in detections] == [
            SleepStage.AWAKE, SleepStage.AWAKE, SleepStage.DEEP, SleepStage.DEEP,
        ]
