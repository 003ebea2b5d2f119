"""Recognizer and permission gate living on the connected mobile client.

Commands travel to the device as JSON messages; the device reports recognizer
callbacks back and `RemoteRecognitionProvider.deliver` replays them on the
registered listener.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from gpplus.voice.adapter import RecognitionListener

Send = Callable[[Dict[str, Any]], None]


class RemoteRecognitionProvider:
    def __init__(self, send: Send) -> None:
        self._send = send
        self._listener: Optional[RecognitionListener] = None
        self.destroyed = False

    def set_listener(self, listener: Optional[RecognitionListener]) -> None:
        self._listener = listener

    def start_listening(self, *, language: str, partial_results: bool) -> None:
        self._command("start", language=language, partial_results=partial_results)

    def stop_listening(self) -> None:
        self._command("stop")

    def cancel(self) -> None:
        self._command("cancel")

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self._listener = None
        self._command("destroy")

    def deliver(self, payload: Dict[str, Any]) -> None:
        """Replay one recognizer callback reported by the client."""
        callback = payload.get("callback")
        listener = self._listener
        if listener is None:
            return
        if callback == "ready":
            listener.on_ready_for_speech()
        elif callback == "partial_results":
            listener.on_partial_results(_results(payload))
        elif callback == "results":
            listener.on_results(_results(payload))
        elif callback == "error":
            listener.on_error(payload.get("code", "unknown"))
        elif callback == "rms_changed":
            listener.on_rms_changed(float(payload.get("rms_db", 0.0)))
        else:
            raise ValueError(f"Unknown recognizer callback: {callback!r}")

    def _command(self, command: str, **extra: Any) -> None:
        self._send({"type": "recognizer", "command": command, **extra})


def _results(payload: Dict[str, Any]) -> list[str]:
    results = payload.get("results")
    if isinstance(results, str):
        return [results]
    if not isinstance(results, list):
        return []
    return [str(item) for item in results]


class RemotePermissionGate:
    """Microphone permission as last reported by the client."""

    def __init__(self, send: Send, *, granted: bool = False) -> None:
        self._send = send
        self.granted = granted

    def is_granted(self) -> bool:
        return self.granted

    def request(self) -> None:
        self._send({"type": "permission_required"})
