"""Single-subscriber event channel used between the speech adapter and the state machine.

Delivery happens from one pump task on the owning event loop, in publish order.
Only one handler is attached at a time: subscribing again replaces the previous
handler (last registration wins), exactly like the platform recognizer's
listener slot.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

from gpplus.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EventChannel(Generic[T]):
    def __init__(self, *, name: str = "events") -> None:
        self.name = name
        self._queue: asyncio.Queue[T] = asyncio.Queue()
        self._handler: Optional[Callable[[T], None]] = None
        self._pump: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def subscribe(self, handler: Optional[Callable[[T], None]]) -> None:
        """Attach *handler*, dropping whichever handler was attached before."""
        if self._handler is not None and handler is not None and handler is not self._handler:
            logger.debug({"event": "channel_handler_replaced", "channel": self.name})
        self._handler = handler

    def publish(self, item: T) -> bool:
        """Queue *item* for delivery. Must be called on the owning loop."""
        if self._closed:
            return False
        self._queue.put_nowait(item)
        self._ensure_pump()
        return True

    def clear(self) -> int:
        """Drop everything still waiting for delivery."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.debug({"event": "channel_cleared", "channel": self.name, "dropped": dropped})
        return dropped

    async def drain(self) -> None:
        """Wait until every published item has been handed to the handler."""
        await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.clear()
        self._handler = None
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
        self._pump = None

    def _ensure_pump(self) -> None:
        if self._pump is None or self._pump.done():
            self._pump = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-pump")

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                handler = self._handler
                if self._closed or handler is None:
                    continue
                try:
                    handler(item)
                except Exception as exc:
                    logger.exception(
                        {"event": "channel_handler_error", "channel": self.name, "error": str(exc)}
                    )
            finally:
                self._queue.task_done()
