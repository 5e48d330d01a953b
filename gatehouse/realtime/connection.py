from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

_CLOSE = object()


class WebSocketConnection:
    """Thread-safe sender for one WebSocket.

    Sync route handlers run in the threadpool, so ``send`` only enqueues onto
    the socket's event loop; ``pump`` is the single writer.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop) -> None:
        self.websocket = websocket
        self.loop = loop
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue()

    def send(self, event: str, payload: Any = None) -> None:
        if self.closed:
            raise ConnectionError('Realtime connection is closed')
        self._enqueue({'event': event, 'data': jsonable_encoder(payload)})

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._enqueue(_CLOSE)

    def _enqueue(self, item: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._outbox.put_nowait(item)
        else:
            self.loop.call_soon_threadsafe(self._outbox.put_nowait, item)

    async def pump(self) -> None:
        while True:
            item = await self._outbox.get()
            try:
                if item is _CLOSE:
                    await self.websocket.close(code=1000)
                    return
                await self.websocket.send_json(item)
            except Exception as exc:
                logger.debug('Realtime write dropped: %s', exc)
                self.closed = True
                return
