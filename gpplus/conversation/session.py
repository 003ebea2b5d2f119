"""One chat session: recognizer adapter, voice state machine and conversation wired together."""
from __future__ import annotations

from typing import Any, Callable, Optional, Tuple
from uuid import uuid4

from gpplus.core.config import Settings, get_settings
from gpplus.core.exceptions import SessionDisposedError
from gpplus.core.logging import get_logger
from gpplus.conversation.coordinator import ConversationCoordinator, MessagesListener, ReplyFunction
from gpplus.conversation.replies import generate_reply
from gpplus.voice import metrics as voice_metrics
from gpplus.voice.adapter import ProviderFactory, SpeechSessionAdapter
from gpplus.voice.machine import SnapshotListener, VoiceStateMachine
from gpplus.voice.models import ChatMessage, UiSnapshot, Utterance
from gpplus.voice.permissions import PermissionGate

logger = get_logger(__name__)


class ChatSession:
    """Scoped owner of everything one hosting UI context needs.

    Use as ``async with ChatSession(...) as session`` or call `aclose()`;
    teardown releases the recognizer handle and cancels a pending reply.
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        *,
        settings: Settings | None = None,
        permission_gate: PermissionGate | None = None,
        reply_fn: ReplyFunction = generate_reply,
        session_id: str | None = None,
        metrics: Any | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_id = session_id or uuid4().hex
        self.metrics = metrics or voice_metrics
        self.adapter = SpeechSessionAdapter(
            provider_factory,
            language=self.settings.SPEECH_LANGUAGE,
            partial_results=self.settings.PARTIAL_RESULTS,
            volume_backlog_limit=self.settings.VOLUME_BACKLOG_LIMIT,
            session_id=self.session_id,
            metrics=self.metrics,
        )
        self.machine = VoiceStateMachine(
            self.adapter,
            permission_gate=permission_gate,
            session_id=self.session_id,
            metrics=self.metrics,
        )
        self.coordinator = ConversationCoordinator(
            reply_fn,
            reply_delay=self.settings.reply_delay_seconds,
            session_id=self.session_id,
            metrics=self.metrics,
            on_consumed=self._on_consumed,
            on_turn_complete=self._on_turn_complete,
        )
        self.machine.subscribe_finalized(self.coordinator.on_utterance_finalized)
        self._disposed = False
        logger.info(
            {
                "event": "chat_session_created",
                "session_id": self.session_id,
                "auto_rearm": self.settings.AUTO_REARM,
                "language": self.settings.SPEECH_LANGUAGE,
            }
        )

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ----------------- state -----------------
    @property
    def snapshot(self) -> UiSnapshot:
        return self.machine.snapshot

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self.coordinator.messages

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe_snapshots(self, listener: SnapshotListener) -> Callable[[], None]:
        return self.machine.subscribe_snapshots(listener)

    def subscribe_messages(self, listener: MessagesListener) -> Callable[[], None]:
        return self.coordinator.subscribe(listener)

    # ----------------- intents -----------------
    def mic_tapped(self) -> UiSnapshot:
        self._ensure_open()
        return self.machine.mic_tapped()

    def stop_listening(self) -> UiSnapshot:
        self._ensure_open()
        return self.machine.stop()

    def submit_text(self, text: str) -> UiSnapshot:
        self._ensure_open()
        return self.machine.submit_text(text)

    async def settle(self) -> None:
        """Wait for queued recognizer events and pending turns to finish."""
        if self._disposed:
            return
        await self.adapter.drain()
        await self.coordinator.drain()

    # ----------------- teardown -----------------
    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.machine.dispose()
        self.coordinator.close()
        self.adapter.dispose()
        logger.info({"event": "chat_session_disposed", "session_id": self.session_id})

    async def aclose(self) -> None:
        self.dispose()
        await self.coordinator.aclose()

    # ----------------- internals -----------------
    def _ensure_open(self) -> None:
        if self._disposed:
            raise SessionDisposedError("Chat session already closed", {"session_id": self.session_id})

    def _on_consumed(self, utterance: Utterance) -> None:
        self.machine.utterance_consumed(utterance.turn_id)

    def _on_turn_complete(self, utterance: Utterance) -> None:
        self.machine.turn_completed(utterance.turn_id, rearm=self.settings.AUTO_REARM)
