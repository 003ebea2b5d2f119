"""Conversation turns: coordinator, reply rules and the chat session facade."""

from .coordinator import ConversationCoordinator
from .replies import generate_reply
from .session import ChatSession

__all__ = ["ChatSession", "ConversationCoordinator", "generate_reply"]
