"""Microphone permission gate consulted before every capture."""
from __future__ import annotations

from typing import Protocol


class PermissionGate(Protocol):
    def is_granted(self) -> bool: ...

    def request(self) -> None:
        """Ask the presentation layer to prompt the user."""
        ...


class StaticPermissionGate:
    """Fixed answer; counts how often a prompt was requested."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.requests = 0

    def is_granted(self) -> bool:
        return self.granted

    def request(self) -> None:
        self.requests += 1
