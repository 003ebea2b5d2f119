"""Voice input: recognizer adapter, event channel and state machine."""

from .adapter import RecognitionListener, RecognitionProvider, SessionHandle, SpeechSessionAdapter
from .machine import MachineState, VoiceStateMachine, transition
from .models import (
    Author,
    ChatMessage,
    FinalText,
    PartialText,
    Ready,
    RecognitionError,
    RecognitionEvent,
    UiSnapshot,
    Utterance,
    VoiceState,
    VolumeLevel,
)

__all__ = [
    "Author",
    "ChatMessage",
    "FinalText",
    "MachineState",
    "PartialText",
    "Ready",
    "RecognitionError",
    "RecognitionEvent",
    "RecognitionListener",
    "RecognitionProvider",
    "SessionHandle",
    "SpeechSessionAdapter",
    "UiSnapshot",
    "Utterance",
    "VoiceState",
    "VoiceStateMachine",
    "VolumeLevel",
    "transition",
]
