"""Lightweight Prometheus-style metrics helpers for voice chat sessions."""
from __future__ import annotations

import time
from typing import Literal

from prometheus_client import Counter, Gauge, Histogram  # type: ignore

# Gauges
VOICE_ACTIVE_SESSIONS = Gauge(
    "voice_active_sessions",
    "Number of chat sessions currently holding a recognizer handle",
)

# Counters
RECOGNITION_EVENTS = Counter(
    "voice_recognition_events_total",
    "Recognition events delivered to the state machine",
    labelnames=("kind",),
)
RECOGNITION_ERRORS = Counter(
    "voice_recognition_errors_total",
    "Capture cycles terminated by a recognizer error",
)
DROPPED_EVENTS = Counter(
    "voice_dropped_events_total",
    "Recognizer events discarded before reaching the state machine",
    labelnames=("reason",),
)
UTTERANCES = Counter(
    "voice_utterances_total",
    "Final results by outcome",
    labelnames=("result",),
)
PERMISSION_REQUESTS = Counter(
    "voice_permission_requests_total",
    "Mic taps that had to ask for the microphone permission",
)
CONVERSATION_TURNS = Counter(
    "conversation_turns_total",
    "Conversation turns handled by the coordinator",
    labelnames=("result",),
)

# Histograms
REPLY_LATENCY = Histogram(
    "conversation_reply_latency_milliseconds",
    "Time from accepting an utterance to posting the assistant reply",
    buckets=(50, 100, 250, 500, 1000, 2000, 5000, 10000),
)


def session_opened() -> None:
    VOICE_ACTIVE_SESSIONS.inc()


def session_closed() -> None:
    VOICE_ACTIVE_SESSIONS.dec()


def recognition_event(kind: str) -> None:
    RECOGNITION_EVENTS.labels(kind=kind).inc()


def recognition_error() -> None:
    RECOGNITION_ERRORS.inc()


def event_dropped(reason: Literal["stale", "volume_backlog", "disposed"]) -> None:
    DROPPED_EVENTS.labels(reason=reason).inc()


def utterance(result: Literal["finalized", "empty", "duplicate"]) -> None:
    UTTERANCES.labels(result=result).inc()


def permission_requested() -> None:
    PERMISSION_REQUESTS.inc()


def turn_started() -> float:
    return time.perf_counter()


def turn_completed(started_at: float) -> None:
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    REPLY_LATENCY.observe(elapsed_ms)
    CONVERSATION_TURNS.labels(result="success").inc()


def turn_failed(started_at: float) -> None:
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    REPLY_LATENCY.observe(elapsed_ms)
    CONVERSATION_TURNS.labels(result="error").inc()


def turn_cancelled() -> None:
    CONVERSATION_TURNS.labels(result="cancelled").inc()
