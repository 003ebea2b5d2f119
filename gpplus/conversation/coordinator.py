"""Coordinator for conversation turns fed by finalized utterances."""
from __future__ import annotations

import asyncio
from collections import deque
from contextlib import suppress
from typing import Any, Callable, Deque, Optional, Tuple

from gpplus.core.logging import get_logger
from gpplus.conversation.replies import generate_reply
from gpplus.voice import metrics as voice_metrics
from gpplus.voice.models import Author, ChatMessage, Utterance

logger = get_logger(__name__)

ReplyFunction = Callable[[str], str]
MessagesListener = Callable[[Tuple[ChatMessage, ...]], None]
TurnCallback = Callable[[Utterance], None]

# Turn ids can arrive out of order (text typed during a capture); dedup
# checks a window of recently accepted ids.
RECENT_TURNS = 32


class ConversationCoordinator:
    """Appends user/assistant message pairs, one turn at a time.

    Turns are queued and handled by a single worker task so a reply is always
    appended right after the user message it answers. The artificial delay
    before each reply is cancelled by `close()`.
    """

    def __init__(
        self,
        reply_fn: ReplyFunction = generate_reply,
        *,
        reply_delay: float = 0.0,
        session_id: str = "",
        metrics: Any | None = None,
        on_consumed: Optional[TurnCallback] = None,
        on_turn_complete: Optional[TurnCallback] = None,
    ) -> None:
        self.reply_fn = reply_fn
        self.reply_delay = max(0.0, float(reply_delay))
        self.session_id = session_id
        self.metrics = metrics or voice_metrics
        self.on_consumed = on_consumed
        self.on_turn_complete = on_turn_complete
        self._messages: list[ChatMessage] = []
        self._listeners: list[MessagesListener] = []
        self._recent_turns: Deque[int] = deque(maxlen=RECENT_TURNS)
        self._queue: asyncio.Queue[Utterance] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: MessagesListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_utterance_finalized(self, utterance: Utterance) -> bool:
        """Accept a finalized utterance. Returns False when it was dropped."""
        if self._closed:
            logger.debug({"event": "conversation_utterance_ignored", "reason": "closed", "session_id": self.session_id})
            return False
        text = utterance.text.strip()
        if not text:
            self._safe_metric("utterance", "empty")
            return False
        if utterance.turn_id in self._recent_turns:
            self._safe_metric("utterance", "duplicate")
            logger.info(
                {
                    "event": "conversation_duplicate_utterance",
                    "session_id": self.session_id,
                    "turn_id": utterance.turn_id,
                }
            )
            return False
        self._recent_turns.append(utterance.turn_id)
        self._queue.put_nowait(Utterance(text=text, turn_id=utterance.turn_id))
        self._ensure_worker()
        return True

    async def drain(self) -> None:
        """Wait until every accepted turn has been answered."""
        await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        logger.info({"event": "conversation_closed", "session_id": self.session_id, "messages": len(self._messages)})

    async def aclose(self) -> None:
        self.close()
        worker, self._worker = self._worker, None
        if worker is not None:
            with suppress(asyncio.CancelledError):
                await worker

    # ----------------- worker -----------------
    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"conversation-{self.session_id or 'default'}"
            )

    async def _run(self) -> None:
        while True:
            utterance = await self._queue.get()
            try:
                await self._process(utterance)
            except asyncio.CancelledError:
                self._safe_metric("turn_cancelled")
                raise
            except Exception as exc:
                logger.exception(
                    {
                        "event": "conversation_turn_error",
                        "session_id": self.session_id,
                        "turn_id": utterance.turn_id,
                        "error": str(exc),
                    }
                )
            finally:
                self._queue.task_done()

    async def _process(self, utterance: Utterance) -> None:
        started_at = self._safe_metric("turn_started")
        self._append(ChatMessage(Author.USER, utterance.text))
        self._notify(self.on_consumed, utterance)

        try:
            reply = self.reply_fn(utterance.text)
        except Exception as exc:
            if started_at is not None:
                self._safe_metric("turn_failed", started_at)
            logger.error(
                {
                    "event": "conversation_reply_failed",
                    "session_id": self.session_id,
                    "turn_id": utterance.turn_id,
                    "error": str(exc),
                }
            )
            self._notify(self.on_turn_complete, utterance)
            return

        if self.reply_delay > 0:
            await asyncio.sleep(self.reply_delay)
        if self._closed:
            return

        self._append(ChatMessage(Author.ASSISTANT, reply))
        if started_at is not None:
            self._safe_metric("turn_completed", started_at)
        logger.info(
            {"event": "conversation_turn_complete", "session_id": self.session_id, "turn_id": utterance.turn_id}
        )
        self._notify(self.on_turn_complete, utterance)

    def _append(self, message: ChatMessage) -> None:
        if self._closed:
            return
        self._messages.append(message)
        snapshot = tuple(self._messages)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.exception(
                    {"event": "conversation_listener_error", "session_id": self.session_id, "error": str(exc)}
                )

    def _notify(self, callback: Optional[TurnCallback], utterance: Utterance) -> None:
        if callback is None or self._closed:
            return
        try:
            callback(utterance)
        except Exception as exc:
            logger.exception(
                {"event": "conversation_callback_error", "session_id": self.session_id, "error": str(exc)}
            )

    def _safe_metric(self, name: str, *args: Any) -> Any:
        hook = getattr(self.metrics, name, None)
        if hook is None:
            return None
        try:
            return hook(*args)
        except Exception:  # pragma: no cover - metrics must not break flow
            return None
