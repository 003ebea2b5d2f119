"""Pytest configuration and shared fixtures."""
import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest

# Ensure the repository root is on sys.path so 'gpplus' resolves without installation
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from gpplus.core.config import Settings
from gpplus.voice.permissions import StaticPermissionGate


class ScriptedRecognitionProvider:
    """Stand-in for the platform recognizer; tests fire callbacks by hand."""

    def __init__(self) -> None:
        self.listener: Optional[Any] = None
        self.calls: List[str] = []
        self.start_kwargs: List[dict] = []
        self.fail_on_start: Optional[Exception] = None

    # provider protocol
    def set_listener(self, listener: Optional[Any]) -> None:
        self.calls.append("set_listener" if listener is not None else "clear_listener")
        self.listener = listener

    def start_listening(self, *, language: str, partial_results: bool) -> None:
        self.calls.append("start")
        self.start_kwargs.append({"language": language, "partial_results": partial_results})
        if self.fail_on_start is not None:
            raise self.fail_on_start

    def stop_listening(self) -> None:
        self.calls.append("stop")

    def cancel(self) -> None:
        self.calls.append("cancel")

    def destroy(self) -> None:
        self.calls.append("destroy")

    # scripted callbacks
    def ready(self) -> None:
        self.listener.on_ready_for_speech()

    def partial(self, *candidates: str) -> None:
        self.listener.on_partial_results(list(candidates))

    def final(self, *candidates: str) -> None:
        self.listener.on_results(list(candidates))

    def error(self, code: Any) -> None:
        self.listener.on_error(code)

    def rms(self, rms_db: float) -> None:
        self.listener.on_rms_changed(rms_db)

    def count(self, call: str) -> int:
        return self.calls.count(call)


class StubMetrics:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def __getattr__(self, name: str):
        def _record(*args: Any) -> float:
            self.events.append((name, *args))
            return 0.0

        return _record

    def count(self, name: str, *args: Any) -> int:
        return sum(1 for event in self.events if event[0] == name and tuple(event[1:]) == args)


@pytest.fixture
def provider() -> ScriptedRecognitionProvider:
    return ScriptedRecognitionProvider()


@pytest.fixture
def provider_factory(provider):
    created: List[ScriptedRecognitionProvider] = []

    def _factory() -> ScriptedRecognitionProvider:
        created.append(provider)
        return provider

    _factory.created = created  # type: ignore[attr-defined]
    return _factory


@pytest.fixture
def stub_metrics() -> StubMetrics:
    return StubMetrics()


@pytest.fixture
def permission_gate() -> StaticPermissionGate:
    return StaticPermissionGate(granted=True)


@pytest.fixture
def settings() -> Settings:
    """Settings with no artificial reply delay so turns complete immediately."""
    return Settings(REPLY_DELAY_MS=0, AUTO_REARM=False, METRICS_ENABLED=True)


@pytest.fixture
def clean_environment(monkeypatch):
    """Clean environment variables for testing."""
    env_vars_to_remove = [
        'APP_NAME',
        'APP_VERSION',
        'ENVIRONMENT',
        'LOG_LEVEL',
        'LOG_FORMAT',
        'LOG_DIR',
        'SPEECH_LANGUAGE',
        'PARTIAL_RESULTS',
        'REPLY_DELAY_MS',
        'AUTO_REARM',
        'VOLUME_BACKLOG_LIMIT',
        'METRICS_ENABLED',
    ]

    for var in env_vars_to_remove:
        monkeypatch.delenv(var, raising=False)
