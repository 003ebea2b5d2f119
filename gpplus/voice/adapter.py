"""Speech session adapter: owns the recognizer handle and normalizes its callbacks."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence

from gpplus.core.exceptions import RecognitionFailure
from gpplus.core.logging import get_logger
from gpplus.voice import metrics as voice_metrics
from gpplus.voice.channel import EventChannel
from gpplus.voice.models import (
    FinalText,
    PartialText,
    Ready,
    RecognitionError,
    RecognitionEvent,
    VolumeLevel,
)

logger = get_logger(__name__)

# Recognizers report loudness as roughly 0..10 dB above the noise floor.
RMS_DB_CEILING = 10.0


class RecognitionListener(Protocol):
    def on_ready_for_speech(self) -> None: ...
    def on_partial_results(self, candidates: Sequence[str]) -> None: ...
    def on_results(self, candidates: Sequence[str]) -> None: ...
    def on_error(self, code: Any) -> None: ...
    def on_rms_changed(self, rms_db: float) -> None: ...


class RecognitionProvider(Protocol):
    """The platform recognizer. Callbacks may fire on any thread."""

    def set_listener(self, listener: Optional[RecognitionListener]) -> None: ...
    def start_listening(self, *, language: str, partial_results: bool) -> None: ...
    def stop_listening(self) -> None: ...
    def cancel(self) -> None: ...
    def destroy(self) -> None: ...


ProviderFactory = Callable[[], RecognitionProvider]
EventHandler = Callable[[RecognitionEvent], None]


def normalize_rms(rms_db: float) -> float:
    return max(0.0, min(float(rms_db), RMS_DB_CEILING)) / RMS_DB_CEILING


def first_candidate(candidates: Sequence[str] | None) -> str:
    if not candidates:
        return ""
    return candidates[0] or ""


@dataclass
class SessionHandle:
    """One live recognizer instance, created on first use and destroyed on dispose."""

    provider: RecognitionProvider
    session_id: str
    released: bool = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self.provider.set_listener(None)
            self.provider.destroy()
        except Exception as exc:
            logger.warning(
                {"event": "voice_handle_release_failed", "session_id": self.session_id, "error": str(exc)}
            )


class _ProviderListener:
    """Listener object handed to the recognizer; forwards into the adapter."""

    def __init__(self, adapter: "SpeechSessionAdapter") -> None:
        self._adapter = adapter

    def on_ready_for_speech(self) -> None:
        self._adapter._post(Ready())

    def on_partial_results(self, candidates: Sequence[str]) -> None:
        text = first_candidate(candidates)
        if text.strip():
            self._adapter._post(PartialText(text))

    def on_results(self, candidates: Sequence[str]) -> None:
        self._adapter._post(FinalText(first_candidate(candidates)), ends_cycle=True)

    def on_error(self, code: Any) -> None:
        self._adapter._post(RecognitionError(f"ASR error: {code}"), ends_cycle=True)

    def on_rms_changed(self, rms_db: float) -> None:
        self._adapter._post(VolumeLevel(normalize_rms(rms_db)))


class SpeechSessionAdapter:
    """Wraps a recognizer behind begin/end/cancel/dispose.

    Every begin opens a new capture cycle. Callbacks are stamped with the cycle
    that was current when they fired and anything from an older cycle is dropped,
    so a cancelled or replaced capture can never leak events into the next one.
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        *,
        language: str = "en-GB",
        partial_results: bool = True,
        volume_backlog_limit: int = 8,
        session_id: str = "",
        metrics: Any | None = None,
    ) -> None:
        self._provider_factory = provider_factory
        self.language = language
        self.partial_results = partial_results
        self.volume_backlog_limit = max(1, int(volume_backlog_limit))
        self.session_id = session_id
        self.metrics = metrics or voice_metrics
        self._channel: EventChannel[RecognitionEvent] = EventChannel(name=f"recognition-{session_id or 'default'}")
        self._handle: Optional[SessionHandle] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cycle = 0
        self._active = False
        self._stopping = False
        self._disposed = False

    # ----------------- state -----------------
    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def cycle(self) -> int:
        return self._cycle

    @property
    def handle(self) -> Optional[SessionHandle]:
        return self._handle

    @property
    def channel(self) -> EventChannel[RecognitionEvent]:
        return self._channel

    def on_event(self, handler: Optional[EventHandler]) -> None:
        """Register the single consumer of recognition events (last one wins)."""
        self._channel.subscribe(handler)

    # ----------------- commands -----------------
    def begin(self) -> bool:
        if self._disposed:
            logger.debug({"event": "voice_begin_ignored", "reason": "disposed", "session_id": self.session_id})
            return False
        if self._active and not self._stopping:
            logger.debug({"event": "voice_begin_ignored", "reason": "already_active", "session_id": self.session_id})
            return False
        if self._active:
            # previous capture still waiting for its final result
            self._release_cycle(reason="superseded")

        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._cycle += 1
        self._active = True
        self._stopping = False
        logger.info({"event": "voice_begin", "session_id": self.session_id, "cycle": self._cycle})
        try:
            handle = self._ensure_handle()
            handle.provider.start_listening(language=self.language, partial_results=self.partial_results)
        except Exception as exc:
            failure = RecognitionFailure(f"ASR error: {exc}", {"cycle": self._cycle})
            logger.warning(
                {"event": "voice_begin_failed", "session_id": self.session_id, "error": failure.reason}
            )
            self._active = False
            self._channel.publish(RecognitionError(failure.reason))
        return True

    def end(self) -> bool:
        if self._disposed or not self._active or self._stopping:
            return False
        self._stopping = True
        logger.info({"event": "voice_end", "session_id": self.session_id, "cycle": self._cycle})
        try:
            self._handle.provider.stop_listening()  # type: ignore[union-attr]
        except Exception as exc:
            logger.warning({"event": "voice_end_failed", "session_id": self.session_id, "error": str(exc)})
            self._release_cycle(reason="stop_failed")
            self._channel.publish(RecognitionError(f"ASR error: {exc}"))
        return True

    def cancel(self) -> bool:
        if self._disposed or not self._active:
            return False
        self._release_cycle(reason="cancelled")
        return True

    def dispose(self) -> None:
        if self._disposed:
            return
        if self._active:
            self._release_cycle(reason="disposed")
        self._disposed = True
        self._channel.close()
        if self._handle is not None:
            self._handle.release()
            self._safe_metric("session_closed")
        logger.info({"event": "voice_session_disposed", "session_id": self.session_id})

    async def drain(self) -> None:
        """Wait until queued events have reached the registered handler."""
        if not self._channel.closed:
            await self._channel.drain()

    # ----------------- internals -----------------
    def _ensure_handle(self) -> SessionHandle:
        if self._handle is None:
            provider = self._provider_factory()
            handle = SessionHandle(provider=provider, session_id=self.session_id)
            try:
                provider.set_listener(_ProviderListener(self))
            except Exception:
                handle.release()
                raise
            self._handle = handle
            self._safe_metric("session_opened")
            logger.info({"event": "voice_handle_created", "session_id": self.session_id})
        return self._handle

    def _release_cycle(self, *, reason: str) -> None:
        self._active = False
        self._stopping = False
        # bump the cycle so callbacks already in flight are recognised as stale
        self._cycle += 1
        self._channel.clear()
        logger.info({"event": "voice_cycle_released", "session_id": self.session_id, "reason": reason})
        if self._handle is None:
            return
        try:
            self._handle.provider.cancel()
        except Exception as exc:
            logger.warning({"event": "voice_cancel_failed", "session_id": self.session_id, "error": str(exc)})

    def _post(self, event: RecognitionEvent, *, ends_cycle: bool = False) -> None:
        cycle = self._cycle
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._accept(cycle, event, ends_cycle)
        else:
            loop.call_soon_threadsafe(self._accept, cycle, event, ends_cycle)

    def _accept(self, cycle: int, event: RecognitionEvent, ends_cycle: bool) -> None:
        if self._disposed:
            self._safe_metric("event_dropped", "disposed")
            return
        if cycle != self._cycle or not self._active:
            self._safe_metric("event_dropped", "stale")
            return
        if isinstance(event, VolumeLevel) and self._channel.pending >= self.volume_backlog_limit:
            self._safe_metric("event_dropped", "volume_backlog")
            return
        if ends_cycle:
            self._active = False
            self._stopping = False
        self._channel.publish(event)

    def _safe_metric(self, name: str, *args: Any) -> None:
        hook = getattr(self.metrics, name, None)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:  # pragma: no cover - metrics must not break capture
            pass
