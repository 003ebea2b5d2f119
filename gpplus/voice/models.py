"""Typed models shared across the voice pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"


class Author(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# --------- Recognition events ---------
@dataclass(frozen=True)
class Ready:
    pass


@dataclass(frozen=True)
class PartialText:
    text: str


@dataclass(frozen=True)
class FinalText:
    text: str


@dataclass(frozen=True)
class RecognitionError:
    reason: str


@dataclass(frozen=True)
class VolumeLevel:
    value: float


RecognitionEvent = Union[Ready, PartialText, FinalText, RecognitionError, VolumeLevel]


def event_kind(event: RecognitionEvent) -> str:
    """Stable lowercase name for logs and metric labels."""
    return {
        Ready: "ready",
        PartialText: "partial",
        FinalText: "final",
        RecognitionError: "error",
        VolumeLevel: "volume",
    }.get(type(event), "unknown")


# --------- Conversation ---------
@dataclass(frozen=True)
class ChatMessage:
    author: Author
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"author": self.author.value, "text": self.text}


@dataclass(frozen=True)
class Utterance:
    """A finalized piece of user text plus the turn it belongs to."""

    text: str
    turn_id: int


# --------- Presentation projection ---------
IDLE_LABEL = "Describe your symptoms or tap the mic…"
LISTENING_LABEL = "Listening…"
PROCESSING_LABEL = "Processing…"


@dataclass(frozen=True)
class UiSnapshot:
    state: VoiceState = VoiceState.IDLE
    live_transcript: Optional[str] = None
    error_message: Optional[str] = None
    volume_level: float = 0.0

    @property
    def label(self) -> str:
        """Helper text shown above the mic button."""
        if self.state is VoiceState.LISTENING:
            return self.live_transcript or LISTENING_LABEL
        if self.state is VoiceState.PROCESSING:
            return PROCESSING_LABEL
        return IDLE_LABEL

    def to_dict(self) -> dict[str, str | float | None]:
        return {
            "state": self.state.value,
            "live_transcript": self.live_transcript,
            "error_message": self.error_message,
            "volume_level": self.volume_level,
            "label": self.label,
        }
