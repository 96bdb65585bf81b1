"""Tests for nocturne.analytics.features -- movement, audio and eye-movement features."""

import pytest

from nocturne.analytics.features import (
    EYE_MOVEMENT_MIN_CHUNKS,
    analyze_audio,
    analyze_audio_chunks,
    axis_means,
    chunk_movement,
    has_eye_movement,
    in_snoring_band,
    magnitudes,
    movement_intensity,
    variance,
)
from nocturne.models import MovementLevel, Vector3
from tests.conftest import make_chunk


class TestBasicStats:
    def test_magnitudes(self):
        mags = magnitudes([Vector3(3.0, 4.0, 0.0), (0.0, 0.0, 2.0)])
        assert list(mags) == pytest.approx([5.0, 2.0])

    def test_magnitudes_empty(self):
        assert len(magnitudes([])) == 0

    def test_population_variance(self):
        assert variance([1.0, 3.0]) == pytest.approx(1.0)
        assert variance([]) == 0.0

    def test_axis_means(self):
        assert axis_means([(0.0, 2.0), (2.0, 4.0)]) == pytest.approx((1.0, 3.0))

    def test_axis_means_empty_raises(self):
        with pytest.raises(ValueError):
            axis_means([])


class TestMovementIntensity:
    @pytest.mark.parametrize(
        "mag,level",
        [
            (0.0, MovementLevel.NONE),
            (0.0999, MovementLevel.NONE),
            (0.1, MovementLevel.LOW),
            (0.4999, MovementLevel.LOW),
            (0.5, MovementLevel.MEDIUM),
            (1.4999, MovementLevel.MEDIUM),
            (1.5, MovementLevel.HIGH),
            (3.0, MovementLevel.HIGH),
        ],
    )
    def test_threshold_edges(self, mag, level):
        result = movement_intensity([Vector3(mag, 0.0, 0.0)])
        assert result.level == level
        assert result.magnitude == pytest.approx(mag)

    def test_mean_of_magnitudes(self):
        result = movement_intensity([Vector3(0.0, 0.0, 0.0), Vector3(0.0, 0.0, 1.0)])
        assert result.magnitude == pytest.approx(0.5)
        assert result.level == MovementLevel.MEDIUM

    def test_empty_is_none(self):
        result = movement_intensity([], timestamp_ms=7)
        assert result.level == MovementLevel.NONE
        assert result.magnitude == 0.0
        assert result.timestamp_ms == 7

    def test_custom_thresholds(self):
        result = movement_intensity([Vector3(0.2, 0.0, 0.0)], thresholds=(0.3, 0.6, 0.9))
        assert result.level == MovementLevel.NONE

    def test_chunk_movement_uses_newest_timestamp(self):
        chunks = [make_chunk(1000), make_chunk(2000, accel=None), make_chunk(3000)]
        result = chunk_movement(chunks)
        assert result.timestamp_ms == 3000
        assert result.level == MovementLevel.NONE


class TestAudio:
    @pytest.mark.parametrize(
        "db,hz,expected",
        [
            (45.0, 200.0, True),
            (45.0, 400.0, True),
            (45.0, 199.9, False),
            (45.0, 400.1, False),
            (40.0, 300.0, False),
            (40.1, 300.0, True),
        ],
    )
    def test_snoring_band_edges(self, db, hz, expected):
        assert in_snoring_band(db, hz) is expected

    def test_exactly_ten_percent_is_snoring(self):
        samples = [(45.0, 300.0)] + [(30.0, 1000.0)] * 9
        assert analyze_audio(samples).is_snoring is True

    def test_below_ten_percent_is_not_snoring(self):
        samples = [(45.0, 300.0)] + [(30.0, 1000.0)] * 10
        assert analyze_audio(samples).is_snoring is False

    def test_noise_level_and_high_noise(self):
        result = analyze_audio([(50.0, 100.0), (52.0, 100.0)])
        assert result.noise_level == pytest.approx(51.0)
        assert result.has_high_noise is True

    def test_noise_at_ceiling_is_not_high(self):
        assert analyze_audio([(50.0, 100.0)]).has_high_noise is False

    def test_empty(self):
        result = analyze_audio([])
        assert result.is_snoring is False
        assert result.noise_level == 0.0

    def test_chunk_audio_uses_snoring_fraction(self):
        chunks = [
            make_chunk(audio=(45.0, 300.0, 0.2)),
            make_chunk(audio=(45.0, 300.0, 0.0)),
        ]
        result = analyze_audio_chunks(chunks)
        assert result.is_snoring is True  # mean 0.10
        assert result.noise_level == pytest.approx(45.0)

    def test_chunks_without_audio(self):
        assert analyze_audio_chunks([make_chunk()]).is_snoring is False


class TestEyeMovement:
    def _gyro_chunks(self, mags):
        return [make_chunk(gyro=(m, 0.0, 0.0)) for m in mags]

    def test_too_few_gyro_chunks(self):
        chunks = self._gyro_chunks([0.0, 1.0, 0.0, 1.0])
        assert has_eye_movement(chunks) is False

    def test_high_variance_is_present(self):
        chunks = self._gyro_chunks([0.0, 1.0, 0.0, 1.0, 0.0])
        assert len(chunks) == EYE_MOVEMENT_MIN_CHUNKS
        assert has_eye_movement(chunks) is True

    def test_constant_gyro_is_absent(self):
        chunks = self._gyro_chunks([0.5] * 6)
        assert has_eye_movement(chunks) is False

    def test_threshold_is_strict(self):
        chunks = self._gyro_chunks([0.0, 1.0, 0.0, 1.0, 0.0])
        assert has_eye_movement(chunks, threshold=0.25) is False
        assert has_eye_movement(chunks, threshold=0.2) is True

    def test_chunks_without_gyro_ignored(self):
        chunks = self._gyro_chunks([0.0, 1.0, 0.0, 1.0]) + [make_chunk()]
        assert has_eye_movement(chunks) is False
