"""Chat WebSocket bridging a mobile client's recognizer into a server-side chat session."""
from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from gpplus.api.remote_provider import RemotePermissionGate, RemoteRecognitionProvider
from gpplus.core.config import Settings
from gpplus.core.exceptions import HTTPServiceUnavailableError
from gpplus.core.logging import get_logger
from gpplus.conversation.session import ChatSession
from gpplus.voice.models import ChatMessage, UiSnapshot

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = get_logger(__name__)


def _get_settings(scope_obj: Union[Request, WebSocket]) -> Settings:
    app = getattr(scope_obj, "app", None)
    settings = getattr(getattr(app, "state", None), "settings", None)
    if settings is None:
        raise HTTPServiceUnavailableError("Chat settings not initialised")
    return settings


@router.get("/config")
async def chat_config(request: Request) -> Dict[str, Any]:
    """Expose non-sensitive configuration for clients and health checks."""
    settings = _get_settings(request)
    return {
        "language": settings.SPEECH_LANGUAGE,
        "partial_results": settings.PARTIAL_RESULTS,
        "reply_delay_ms": settings.REPLY_DELAY_MS,
        "auto_rearm": settings.AUTO_REARM,
        "volume_backlog_limit": settings.VOLUME_BACKLOG_LIMIT,
    }


@router.websocket("/session")
async def chat_session(websocket: WebSocket) -> None:
    """Bidirectional WebSocket: client intents and recognizer callbacks in, snapshots and messages out."""
    await websocket.accept()
    settings = _get_settings(websocket)
    outbound: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()
    session_id = str(websocket.query_params.get("session_id") or uuid4())
    granted = str(websocket.query_params.get("permission", "")).lower() in ("1", "true", "granted")

    provider = RemoteRecognitionProvider(outbound.put_nowait)
    gate = RemotePermissionGate(outbound.put_nowait, granted=granted)
    session = ChatSession(
        lambda: provider,
        settings=settings,
        permission_gate=gate,
        session_id=session_id,
    )
    session.subscribe_snapshots(lambda snapshot: outbound.put_nowait(_snapshot_payload(snapshot)))
    session.subscribe_messages(lambda messages: outbound.put_nowait(_messages_payload(messages)))

    outbound.put_nowait({
        "type": "session_ack",
        "session_id": session_id,
        "auto_rearm": settings.AUTO_REARM,
        "language": settings.SPEECH_LANGUAGE,
    })
    outbound.put_nowait(_snapshot_payload(session.snapshot))
    outbound.put_nowait(_messages_payload(session.messages))
    sender = asyncio.create_task(_send_outbound(websocket, outbound))

    try:
        while True:
            payload = await _receive_json(websocket)
            try:
                _handle_client_event(session, provider, gate, payload, outbound)
            except (ValueError, TypeError) as exc:
                outbound.put_nowait({"type": "error", "message": str(exc)})
    except WebSocketDisconnect:
        logger.info({"event": "chat_session_disconnect", "session_id": session_id, "client": str(websocket.client)})
    finally:
        await session.aclose()
        outbound.put_nowait(None)
        with suppress(Exception):
            await asyncio.wait_for(sender, timeout=1.0)
        if not sender.done():
            sender.cancel()
            with suppress(asyncio.CancelledError):
                await sender


def _handle_client_event(
    session: ChatSession,
    provider: RemoteRecognitionProvider,
    gate: RemotePermissionGate,
    payload: Dict[str, Any],
    outbound: asyncio.Queue[Optional[Dict[str, Any]]],
) -> None:
    event = payload.get("event")
    if event == "mic_tap":
        session.mic_tapped()
    elif event == "stop":
        session.stop_listening()
    elif event == "text":
        session.submit_text(str(payload.get("text") or ""))
    elif event == "permission":
        gate.granted = bool(payload.get("granted"))
        logger.info({"event": "chat_permission_update", "session_id": session.session_id, "granted": gate.granted})
    elif event == "recognizer":
        provider.deliver(payload)
    elif event == "ping":
        outbound.put_nowait({"type": "pong"})
    else:
        raise ValueError(f"Unknown event: {event!r}")


async def _send_outbound(websocket: WebSocket, outbound: asyncio.Queue[Optional[Dict[str, Any]]]) -> None:
    """Single writer for the socket so messages leave in the order they were produced."""
    while True:
        message = await outbound.get()
        if message is None:
            break
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.info({"event": "chat_send_stopped", "error": str(exc)})
            break


def _snapshot_payload(snapshot: UiSnapshot) -> Dict[str, Any]:
    return {"type": "snapshot", **snapshot.to_dict()}


def _messages_payload(messages: Tuple[ChatMessage, ...]) -> Dict[str, Any]:
    return {"type": "messages", "messages": [message.to_dict() for message in messages]}


async def _receive_json(websocket: WebSocket) -> Dict[str, Any]:
    message = await websocket.receive()
    if message.get("type") == "websocket.disconnect":
        raise WebSocketDisconnect()
    text = message.get("text")
    if text is None:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}
