"""Read and write raw-sample capture logs (JSONL).

One sample per line::

    {"session_id": "s1", "kind": "accel", "timestamp_ms": 1700000000000,
     "values": [0.01, -0.02, 0.98]}

Blank lines are ignored; lines that are not valid JSON or do not describe a
valid sample are skipped and counted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from nocturne import config, exceptions
from nocturne.models import RawSample, SensorKind

logger = config.get_logger()


@dataclass
class ReplayResult:
    """Samples loaded from a capture file."""

    samples: list[RawSample] = field(default_factory=list)
    skipped: int = 0

    @property
    def session_ids(self) -> list[str]:
        return sorted({s.session_id for s in self.samples})

    def __repr__(self) -> str:
        return f"ReplayResult({len(self.samples)} samples, {self.skipped} skipped)"


def _parse_line(entry: dict, session_override: str | None) -> RawSample:
    try:
        sample = RawSample(
            session_id=session_override or str(entry["session_id"]),
            kind=SensorKind(entry["kind"]),
            timestamp_ms=int(entry["timestamp_ms"]),
            values=tuple(float(v) for v in entry["values"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise exceptions.MalformedSampleError(f"Unparseable sample: {exc}") from exc
    return sample.validate()


def load_samples(path: str | Path, session_id: str | None = None) -> ReplayResult:
    """Load every valid sample of a capture file.

    Args:
        path: JSONL capture file.
        session_id: Optional session id replacing the one on each line.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    path = Path(path)
    result = ReplayResult()

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("%s:%d: invalid JSON, skipping", path.name, line_num)
                result.skipped += 1
                continue
            try:
                result.samples.append(_parse_line(entry, session_id))
            except exceptions.MalformedSampleError:
                result.skipped += 1

    logger.info("Loaded %d samples from %s (%d skipped)", len(result.samples), path.name, result.skipped)
    return result


def sample_to_record(sample: RawSample) -> dict:
    return {
        "session_id": sample.session_id,
        "kind": SensorKind(sample.kind).value,
        "timestamp_ms": sample.timestamp_ms,
        "values": list(sample.values),
    }


def write_samples(path: str | Path, samples: Iterable[RawSample], append: bool = False) -> int:
    """Write samples as JSONL; returns the number of lines written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "a" if append else "w") as f:
        for sample in samples:
            f.write(json.dumps(sample_to_record(sample)) + "\n")
            count += 1
    return count
