"""Voice input state machine.

`transition(state, input)` is pure and returns the next state together with
the side effects to perform. `VoiceStateMachine` feeds it adapter events and UI
intents, performs the effects against the adapter and publishes snapshots.

    Idle --tap--> Listening --tap/stop--> Processing (awaiting final)
      ^              |                         |
      |           final(t)                  final(t)
      |              v                         v
      +--turn done-- Processing <--------------+
    errors from Listening/Processing drop straight back to Idle.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Optional, Tuple, Union

from gpplus.core.logging import get_logger
from gpplus.voice import metrics as voice_metrics
from gpplus.voice.adapter import SpeechSessionAdapter
from gpplus.voice.models import (
    FinalText,
    PartialText,
    Ready,
    RecognitionError,
    RecognitionEvent,
    UiSnapshot,
    Utterance,
    VoiceState,
    VolumeLevel,
    event_kind,
)
from gpplus.voice.permissions import PermissionGate, StaticPermissionGate

logger = get_logger(__name__)


# --------- Intents ---------
@dataclass(frozen=True)
class MicTapped:
    permission_granted: bool = True


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class TextSubmitted:
    text: str


@dataclass(frozen=True)
class UtteranceConsumed:
    turn_id: int


@dataclass(frozen=True)
class TurnCompleted:
    turn_id: int
    rearm: bool = False
    permission_granted: bool = True


MachineInput = Union[
    RecognitionEvent, MicTapped, StopRequested, TextSubmitted, UtteranceConsumed, TurnCompleted
]


# --------- Effects ---------
@dataclass(frozen=True)
class BeginCapture:
    turn_id: int


@dataclass(frozen=True)
class EndCapture:
    pass


@dataclass(frozen=True)
class CancelCapture:
    pass


@dataclass(frozen=True)
class RequestPermission:
    pass


@dataclass(frozen=True)
class Finalize:
    utterance: Utterance


@dataclass(frozen=True)
class DiscardEmpty:
    pass


Effect = Union[BeginCapture, EndCapture, CancelCapture, RequestPermission, Finalize, DiscardEmpty]


@dataclass(frozen=True)
class MachineState:
    state: VoiceState = VoiceState.IDLE
    live_transcript: Optional[str] = None
    error_message: Optional[str] = None
    volume_level: float = 0.0
    # capture stopped, final result not in yet
    awaiting_final: bool = False
    # tap received while awaiting the final; listen again once the turn is done
    rearm_pending: bool = False
    last_turn_id: int = 0
    capture_turn_id: int = 0

    def snapshot(self) -> UiSnapshot:
        return UiSnapshot(
            state=self.state,
            live_transcript=self.live_transcript,
            error_message=self.error_message,
            volume_level=self.volume_level,
        )


@dataclass(frozen=True)
class Transition:
    state: MachineState
    effects: Tuple[Effect, ...] = ()


def _unchanged(state: MachineState) -> Transition:
    return Transition(state)


def _start_listening(state: MachineState) -> Transition:
    turn_id = state.last_turn_id + 1
    next_state = replace(
        state,
        state=VoiceState.LISTENING,
        live_transcript=None,
        error_message=None,
        volume_level=0.0,
        awaiting_final=False,
        rearm_pending=False,
        last_turn_id=turn_id,
        capture_turn_id=turn_id,
    )
    return Transition(next_state, (BeginCapture(turn_id),))


def _stop_listening(state: MachineState) -> Transition:
    return Transition(
        replace(state, state=VoiceState.PROCESSING, awaiting_final=True, volume_level=0.0),
        (EndCapture(),),
    )


def _to_idle(state: MachineState, **changes: Any) -> MachineState:
    base = dict(
        state=VoiceState.IDLE,
        live_transcript=None,
        volume_level=0.0,
        awaiting_final=False,
        rearm_pending=False,
    )
    base.update(changes)
    return replace(state, **base)


def _on_mic_tapped(state: MachineState, intent: MicTapped) -> Transition:
    if state.state is VoiceState.LISTENING:
        return _stop_listening(state)
    if not intent.permission_granted:
        return Transition(state, (RequestPermission(),))
    if state.state is VoiceState.PROCESSING and state.awaiting_final:
        if state.rearm_pending:
            return _unchanged(state)
        return Transition(replace(state, rearm_pending=True))
    return _start_listening(state)


def _on_final(state: MachineState, event: FinalText) -> Transition:
    capturing = state.state is VoiceState.LISTENING or (
        state.state is VoiceState.PROCESSING and state.awaiting_final
    )
    if not capturing:
        return _unchanged(state)

    text = event.text.strip()
    if not text:
        idle = _to_idle(state)
        if state.rearm_pending:
            begun = _start_listening(idle)
            return Transition(begun.state, (DiscardEmpty(),) + begun.effects)
        return Transition(idle, (DiscardEmpty(),))

    next_state = replace(
        state,
        state=VoiceState.PROCESSING,
        live_transcript=event.text,
        volume_level=0.0,
        awaiting_final=False,
    )
    return Transition(next_state, (Finalize(Utterance(text=text, turn_id=state.capture_turn_id)),))


def _on_turn_completed(state: MachineState, intent: TurnCompleted) -> Transition:
    if state.state is not VoiceState.PROCESSING or state.awaiting_final:
        return _unchanged(state)
    if intent.turn_id != state.capture_turn_id:
        return _unchanged(state)
    idle = _to_idle(state)
    if intent.rearm or state.rearm_pending:
        if not intent.permission_granted:
            return Transition(idle, (RequestPermission(),))
        return _start_listening(idle)
    return Transition(idle)


def transition(state: MachineState, event: MachineInput) -> Transition:
    """Pure transition function: (state, input) -> (state, effects)."""
    current = state.state

    if isinstance(event, MicTapped):
        return _on_mic_tapped(state, event)

    if isinstance(event, StopRequested):
        if current is VoiceState.LISTENING:
            return _stop_listening(state)
        return _unchanged(state)

    if isinstance(event, TextSubmitted):
        text = event.text.strip()
        if not text:
            return Transition(state, (DiscardEmpty(),))
        turn_id = state.last_turn_id + 1
        return Transition(
            replace(state, last_turn_id=turn_id),
            (Finalize(Utterance(text=text, turn_id=turn_id)),),
        )

    if isinstance(event, UtteranceConsumed):
        if current is VoiceState.PROCESSING and event.turn_id == state.capture_turn_id:
            return Transition(replace(state, live_transcript=None))
        return _unchanged(state)

    if isinstance(event, TurnCompleted):
        return _on_turn_completed(state, event)

    if isinstance(event, RecognitionError):
        if current is VoiceState.IDLE:
            return _unchanged(state)
        return Transition(_to_idle(state, error_message=event.reason), (CancelCapture(),))

    if isinstance(event, FinalText):
        return _on_final(state, event)

    if current is not VoiceState.LISTENING:
        # partials, volume and ready only matter while capturing
        return _unchanged(state)

    if isinstance(event, PartialText):
        if not event.text.strip():
            return _unchanged(state)
        return Transition(replace(state, live_transcript=event.text, error_message=None))

    if isinstance(event, VolumeLevel):
        level = max(0.0, min(1.0, float(event.value)))
        return Transition(replace(state, volume_level=level))

    if isinstance(event, Ready):
        return Transition(replace(state, error_message=None))

    return _unchanged(state)


SnapshotListener = Callable[[UiSnapshot], None]
UtteranceListener = Callable[[Utterance], None]


class VoiceStateMachine:
    """Owns the authoritative voice state for one chat session."""

    def __init__(
        self,
        adapter: SpeechSessionAdapter,
        *,
        permission_gate: PermissionGate | None = None,
        session_id: str = "",
        metrics: Any | None = None,
    ) -> None:
        self.adapter = adapter
        self.permission_gate = permission_gate or StaticPermissionGate()
        self.session_id = session_id
        self.metrics = metrics or voice_metrics
        self._state = MachineState()
        self._snapshot_listeners: list[SnapshotListener] = []
        self._utterance_listeners: list[UtteranceListener] = []
        self._inbox: Deque[MachineInput] = deque()
        self._dispatching = False
        self._disposed = False
        adapter.on_event(self.handle_event)

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def snapshot(self) -> UiSnapshot:
        return self._state.snapshot()

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ----------------- subscriptions -----------------
    def subscribe_snapshots(self, listener: SnapshotListener) -> Callable[[], None]:
        self._snapshot_listeners.append(listener)
        return lambda: self._remove(self._snapshot_listeners, listener)

    def subscribe_finalized(self, listener: UtteranceListener) -> Callable[[], None]:
        self._utterance_listeners.append(listener)
        return lambda: self._remove(self._utterance_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ----------------- inputs -----------------
    def mic_tapped(self) -> UiSnapshot:
        if self._state.state is VoiceState.LISTENING:
            return self.dispatch(MicTapped())
        return self.dispatch(MicTapped(permission_granted=self.permission_gate.is_granted()))

    def stop(self) -> UiSnapshot:
        return self.dispatch(StopRequested())

    def submit_text(self, text: str) -> UiSnapshot:
        return self.dispatch(TextSubmitted(text))

    def utterance_consumed(self, turn_id: int) -> UiSnapshot:
        return self.dispatch(UtteranceConsumed(turn_id))

    def turn_completed(self, turn_id: int, *, rearm: bool = False) -> UiSnapshot:
        granted = self.permission_gate.is_granted() if rearm or self._state.rearm_pending else True
        return self.dispatch(TurnCompleted(turn_id, rearm=rearm, permission_granted=granted))

    def handle_event(self, event: RecognitionEvent) -> None:
        if not self._disposed:
            self._safe_metric("recognition_event", event_kind(event))
        self.dispatch(event)

    def dispatch(self, event: MachineInput) -> UiSnapshot:
        if self._disposed:
            logger.debug({"event": "voice_input_ignored", "reason": "disposed", "session_id": self.session_id})
            return self.snapshot
        self._inbox.append(event)
        if self._dispatching:
            # re-entrant call from a listener; handled by the outer loop in order
            return self.snapshot
        self._dispatching = True
        try:
            while self._inbox and not self._disposed:
                self._step(self._inbox.popleft())
        finally:
            self._dispatching = False
            self._inbox.clear()
        return self.snapshot

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._inbox.clear()
        self.adapter.on_event(None)
        self._snapshot_listeners.clear()
        self._utterance_listeners.clear()

    # ----------------- internals -----------------
    def _step(self, event: MachineInput) -> None:
        before = self._state
        result = transition(before, event)
        self._state = result.state
        if result.state.state is not before.state:
            logger.info(
                {
                    "event": "voice_transition",
                    "session_id": self.session_id,
                    "from": before.state.value,
                    "to": result.state.state.value,
                    "input": type(event).__name__,
                }
            )
        for effect in result.effects:
            self._apply(effect)
        snapshot = result.state.snapshot()
        if snapshot != before.snapshot():
            self._publish(snapshot)

    def _apply(self, effect: Effect) -> None:
        if isinstance(effect, BeginCapture):
            self.adapter.begin()
        elif isinstance(effect, EndCapture):
            self.adapter.end()
        elif isinstance(effect, CancelCapture):
            self._safe_metric("recognition_error")
            logger.warning(
                {
                    "event": "voice_recognition_error",
                    "session_id": self.session_id,
                    "error": self._state.error_message,
                }
            )
            self.adapter.cancel()
        elif isinstance(effect, RequestPermission):
            self._safe_metric("permission_requested")
            logger.info({"event": "voice_permission_required", "session_id": self.session_id})
            self.permission_gate.request()
        elif isinstance(effect, DiscardEmpty):
            self._safe_metric("utterance", "empty")
            logger.debug({"event": "voice_empty_utterance", "session_id": self.session_id})
        elif isinstance(effect, Finalize):
            self._safe_metric("utterance", "finalized")
            logger.info(
                {
                    "event": "voice_utterance_finalized",
                    "session_id": self.session_id,
                    "turn_id": effect.utterance.turn_id,
                }
            )
            for listener in list(self._utterance_listeners):
                try:
                    listener(effect.utterance)
                except Exception as exc:
                    logger.exception(
                        {"event": "voice_finalize_listener_error", "session_id": self.session_id, "error": str(exc)}
                    )

    def _publish(self, snapshot: UiSnapshot) -> None:
        for listener in list(self._snapshot_listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.exception(
                    {"event": "voice_snapshot_listener_error", "session_id": self.session_id, "error": str(exc)}
                )

    def _safe_metric(self, name: str, *args: Any) -> None:
        hook = getattr(self.metrics, name, None)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:  # pragma: no cover - metrics must not break transitions
            pass
