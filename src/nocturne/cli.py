"""CLI for the nocturne sleep tracking toolkit."""

import time
from datetime import datetime
from pathlib import Path

import click

from nocturne import config
from nocturne.models import CaffeineHabit, SensorKind


def _load_into_store(file: str, session: str | None, settings: config.Settings):
    from nocturne.analytics.chunking import ChunkAggregator
    from nocturne.capture.replay import load_samples
    from nocturne.store import MemoryStore

    result = load_samples(file, session_id=session)
    store = MemoryStore()
    store.append_raw(result.samples)
    aggregator = ChunkAggregator(
        store,
        settings.chunk_size,
        settings.batch_size,
        snoring_band_hz=settings.snoring_band_hz,
        snoring_min_db=settings.snoring_min_db,
    )
    return result, store, aggregator


@click.group()
@click.version_option(config.get_version(), prog_name="nocturne")
def main() -> None:
    """nocturne: sleep staging, scoring and smart alarms from sensor captures."""


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--session", "-s", default=None, help="Treat every sample as this session.")
def ingest(file: str, session: str | None) -> None:
    """Load a JSONL capture, chunk it and print processing stats."""
    settings = config.Settings.from_env()
    result, _store, aggregator = _load_into_store(file, session, settings)

    click.echo(f"Loaded {len(result.samples)} samples ({result.skipped} skipped)")
    for session_id in result.session_ids:
        processed = aggregator.process_session_data(session_id, flush=True)
        stats = aggregator.processing_stats(session_id)
        chunks = len(aggregator.store.chunks_for_session(session_id))
        click.echo(f"  {session_id}: {processed} samples → {chunks} chunks, {stats!r}")


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--session", "-s", default=None, help="Session to evaluate (default: the only one).")
@click.option("--user", "-u", default="cli", help="User id recorded on the session.")
@click.option("--start-ms", type=int, default=None, help="Session start (default: first sample).")
@click.option("--end-ms", type=int, default=None, help="Session end (default: last sample).")
@click.option("--goal", type=float, default=None, help="Sleep goal in hours.")
@click.option("--caffeine", type=click.Choice([c.value for c in CaffeineHabit]),
              default=CaffeineHabit.MODERATE.value, help="Caffeine habit.")
@click.option("--output", "-o", default=None, help="Write the evaluation as JSON.")
def evaluate(
    file: str,
    session: str | None,
    user: str,
    start_ms: int | None,
    end_ms: int | None,
    goal: float | None,
    caffeine: str,
    output: str | None,
) -> None:
    """Chunk, classify and score one session of a JSONL capture."""
    from nocturne.analytics.pipeline import MemoryProfiles, evaluate_session
    from nocturne.analytics.stages import SleepDetector
    from nocturne.exceptions import NocturneError
    from nocturne.models import SleepSession, UserProfile

    settings = config.Settings.from_env()
    result, store, aggregator = _load_into_store(file, session, settings)

    session_ids = result.session_ids
    if session is None:
        if len(session_ids) != 1:
            raise click.UsageError(
                f"Capture holds {len(session_ids)} sessions; pick one with --session"
            )
        session = session_ids[0]

    timestamps = [s.timestamp_ms for s in result.samples if s.session_id == session]
    if start_ms is None or end_ms is None:
        if not timestamps:
            raise click.UsageError("No samples to infer the session bounds from; pass --start-ms/--end-ms")
        start_ms = min(timestamps) if start_ms is None else start_ms
        end_ms = max(timestamps) if end_ms is None else end_ms

    aggregator.process_session_data(session, flush=True)

    profile = UserProfile(
        user_id=user,
        sleep_goal_hours=goal if goal is not None else settings.default_sleep_goal_hours,
        caffeine_habit=CaffeineHabit(caffeine),
    )
    record = SleepSession(id=session, user_id=user, start_ms=start_ms)
    try:
        record.complete(end_ms)
        evaluation = evaluate_session(
            record,
            store,
            MemoryProfiles([profile]),
            SleepDetector(
                thresholds=settings.movement_thresholds,
                eye_variance=settings.eye_movement_variance,
                high_noise_db=settings.high_noise_db,
                light_threshold_lux=settings.light_disturbance_lux,
            ),
            sound_threshold_db=settings.sound_disturbance_db,
            light_threshold_lux=settings.light_disturbance_lux,
        )
    except NocturneError as exc:
        raise click.ClickException(str(exc))

    s = evaluation.session
    click.echo(f"\n--- Session {s.id} ---")
    click.echo(f"  Duration:   {s.duration_min:.0f} min")
    click.echo(
        f"  Stages:     light {s.stages.light:.2f} h, deep {s.stages.deep:.2f} h, "
        f"REM {s.stages.rem:.2f} h ({s.stage_source.value})"
    )
    click.echo(f"  Awakenings: {s.awake_count}")
    click.echo(f"  Latency:    {s.sleep_latency_min:.0f} min")
    click.echo(f"  Score:      {s.sleep_score} ({evaluation.quality})")
    click.echo(f"  Disturbances: {len(evaluation.disturbances)}")

    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(evaluation.to_json())
        click.echo(f"Wrote {output}")


@main.command("wake-time")
@click.option("--start", "window_start", required=True, help="Window start, HH:MM.")
@click.option("--end", "window_end", required=True, help="Window end, HH:MM.")
@click.option("--now", default=None, help="Current time, ISO 8601 (default: now).")
@click.option("--days", default=None, help="Schedule over the look-ahead for these weekdays "
              "(comma-separated, 0=Sunday).")
def wake_time(window_start: str, window_end: str, now: str | None, days: str | None) -> None:
    """Print the wake instant for a window (window start when nobody is asleep)."""
    from nocturne.analytics.alarm import SmartAlarm
    from nocturne.exceptions import InvalidAlarmWindowError
    from nocturne.models import AlarmConfig
    from nocturne.sessions import MemorySessionStore
    from nocturne.store import MemoryStore

    settings = config.Settings.from_env()
    current = datetime.fromisoformat(now) if now else datetime.now()
    alarm = AlarmConfig(id="cli", user_id="cli", window_start=window_start, window_end=window_end)
    if days:
        try:
            alarm.days_of_week = [int(d) for d in days.split(",")]
        except ValueError:
            raise click.BadParameter(f"Invalid day list: {days!r}", param_hint="--days")

    smart = SmartAlarm(MemorySessionStore(), MemoryStore())
    try:
        if days:
            for wake in smart.schedule(alarm, current, settings.alarm_horizon_days):
                click.echo(wake.instant.isoformat())
        else:
            click.echo(smart.compute_optimal_wake_time(alarm, current).isoformat())
    except InvalidAlarmWindowError as exc:
        raise click.ClickException(str(exc))


@main.command()
@click.argument("address")
@click.option("--char", "char_uuid", required=True, help="Notify characteristic UUID.")
@click.option("--kind", type=click.Choice([SensorKind.ACCEL.value, SensorKind.GYRO.value]),
              default=SensorKind.ACCEL.value, help="Channel carried by the characteristic.")
@click.option("--rate", default=10.0, help="Sample rate of the peripheral in Hz.")
@click.option("--session", "-s", default="capture", help="Session id written to each sample.")
@click.option("--duration", "-d", default=60.0, type=float, help="Capture duration in seconds.")
@click.option("--output", "-o", required=True, help="Output JSONL file.")
def capture(
    address: str,
    char_uuid: str,
    kind: str,
    rate: float,
    session: str,
    duration: float,
    output: str,
) -> None:
    """Record a BLE IMU stream to a JSONL capture file."""
    from nocturne.capture.ble import BleImuSource
    from nocturne.capture.buffer import RawSampleBuffer
    from nocturne.capture.manager import CaptureManager
    from nocturne.capture.replay import write_samples

    source = BleImuSource(address, char_uuid, kind=SensorKind(kind), rate_hz=rate)
    buffer = RawSampleBuffer(max_size=max(1, int(duration * rate * 2)))
    manager = CaptureManager(buffer, [source])

    click.echo(f"Connecting to {address}...")
    started = manager.start(session)
    if not started:
        manager.stop()
        raise click.ClickException(f"Could not start capture from {address}")

    click.echo(f"Capturing {kind} for {duration:.0f}s (Ctrl+C to stop early)...")
    try:
        time.sleep(duration)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    finally:
        manager.stop()

    written = write_samples(output, buffer.drain())
    click.echo(f"Wrote {written} samples from {source.packet_count} packets to {output}")


if __name__ == "__main__":
    main()
