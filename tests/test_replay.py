"""Tests for nocturne.capture.replay -- JSONL capture logs."""

from __future__ import annotations

import pytest

from nocturne.capture.replay import load_samples, write_samples
from nocturne.models import SensorKind
from tests.conftest import T0, make_samples, sample_entry, write_jsonl


class TestLoadSamples:
    def test_loads_valid_lines(self, tmp_path):
        samples = make_samples(3) + make_samples(2, kind=SensorKind.LIGHT)
        path = write_jsonl(tmp_path / "night.jsonl", [sample_entry(s) for s in samples])

        result = load_samples(path)
        assert len(result.samples) == 5
        assert result.skipped == 0
        assert result.samples[3].kind == SensorKind.LIGHT
        assert result.samples[0].values == (0.01, 0.02, 0.03)
        assert result.session_ids == ["s1"]

    def test_skips_bad_lines(self, tmp_path):
        path = tmp_path / "mixed.jsonl"
        good = sample_entry(make_samples(1)[0])
        write_jsonl(path, [
            good,
            {"session_id": "s1", "kind": "accel", "timestamp_ms": T0, "values": [1.0]},
            {"session_id": "s1", "kind": "sonar", "timestamp_ms": T0, "values": [1.0]},
            {"kind": "light", "timestamp_ms": T0, "values": [1.0]},
        ])
        with open(path, "a") as f:
            f.write("\n{not json\n")

        result = load_samples(path)
        assert len(result.samples) == 1
        assert result.skipped == 4

    def test_session_override(self, tmp_path):
        entries = [sample_entry(s) for s in make_samples(2, session_id="phone-123")]
        path = write_jsonl(tmp_path / "night.jsonl", entries)
        result = load_samples(path, session_id="s9")
        assert result.session_ids == ["s9"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_samples(tmp_path / "missing.jsonl")


class TestWriteSamples:
    def test_write_then_load(self, tmp_path):
        path = tmp_path / "out" / "night.jsonl"
        samples = make_samples(4, kind=SensorKind.AUDIO)
        assert write_samples(path, samples) == 4
        loaded = load_samples(path).samples
        assert [s.timestamp_ms for s in loaded] == [s.timestamp_ms for s in samples]
        assert loaded[0].values == (35.0, 100.0)

    def test_append(self, tmp_path):
        path = tmp_path / "night.jsonl"
        write_samples(path, make_samples(2))
        write_samples(path, make_samples(3, start_ms=T0 + 1000), append=True)
        assert len(load_samples(path).samples) == 5
