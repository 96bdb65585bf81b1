"""Analytics engine turning captured sensor data into sleep metrics.

Modules:
    features    -- Movement intensity, audio analysis, eye-movement proxy
    chunking    -- Exactly-once batching of raw samples into chunks
    stages      -- Rule-based stage table and the rolling sleep detector
    disturbance -- Sound/light disturbance flags
    scoring     -- Session metrics, fallback split and the sleep score
    pipeline    -- End-to-end session evaluation
    alarm       -- Smart-alarm wake-time selection and scheduling
"""

from nocturne.analytics.features import (
    movement_intensity,
    analyze_audio,
    analyze_audio_chunks,
    has_eye_movement,
)
from nocturne.analytics.chunking import ChunkAggregator, ProcessingStats
from nocturne.analytics.stages import classify, SleepDetector, Detection
from nocturne.analytics.disturbance import detect_disturbances
from nocturne.analytics.scoring import (
    aggregate_stages,
    estimate_stages,
    score_session,
    SessionMetrics,
    ScoreBreakdown,
)
from nocturne.analytics.pipeline import evaluate_session, EvaluationResult
from nocturne.analytics.alarm import (
    SmartAlarm,
    FiredAlarms,
    select_wake_time,
    predict_timeline,
    validate_alarm,
)

__all__ = [
    # features
    "movement_intensity",
    "analyze_audio",
    "analyze_audio_chunks",
    "has_eye_movement",
    # chunking
    "ChunkAggregator",
    "ProcessingStats",
    # stages
    "classify",
    "SleepDetector",
    "Detection",
    # disturbance
    "detect_disturbances",
    # scoring
    "aggregate_stages",
    "estimate_stages",
    "score_session",
    "SessionMetrics",
    "ScoreBreakdown",
    # pipeline
    "evaluate_session",
    "EvaluationResult",
    # alarm
    "SmartAlarm",
    "FiredAlarms",
    "select_wake_time",
    "predict_timeline",
    "validate_alarm",
]
