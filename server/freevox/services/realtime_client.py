"""Websocket client for one upstream OpenAI Realtime connection."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException


logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    ABSENT = "absent"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class RealtimeListener(Protocol):
    """Receiver of everything the upstream connection reports."""

    async def on_upstream_ready(self) -> None: ...

    async def on_upstream_event(self, payload: Dict[str, Any]) -> None: ...

    async def on_upstream_closed(self) -> None: ...

    async def on_upstream_error(self, detail: str) -> None: ...


Connector = Callable[..., Awaitable[Any]]


def decode_frame(raw: Any) -> Optional[Dict[str, Any]]:
    """Parse one text frame; garbled or non-object frames yield ``None``."""

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Dropping undecodable realtime frame")
        return None
    return payload if isinstance(payload, dict) else None


class RealtimeConnection:
    """Owns a single websocket to the realtime endpoint.

    ``connect`` only schedules the handshake; readiness, frames and closure are
    reported to the listener from the reader task. There is no reconnect: a
    dropped socket surfaces as ``on_upstream_closed`` and the connection is
    finished.
    """

    def __init__(
        self,
        url: str,
        headers: Dict[str, str],
        listener: RealtimeListener,
        *,
        connector: Connector = websocket_connect,
    ) -> None:
        self.url = url
        self.headers = headers
        self.state = ConnectionState.ABSENT
        self._listener = listener
        self._connector = connector
        self._websocket: Any = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def ready(self) -> bool:
        return self.state is ConnectionState.READY

    async def connect(self) -> None:
        if self.state is not ConnectionState.ABSENT:
            return
        self.state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(self._run(), name="realtime-upstream")

    async def send(self, frame: Dict[str, Any]) -> bool:
        """Send ``frame`` if the socket is ready; callers queue anything sent earlier."""

        if self.state is not ConnectionState.READY or self._websocket is None:
            return False
        try:
            await self._websocket.send(json.dumps(frame))
        except ConnectionClosed:
            logger.debug("Realtime socket closed while sending %s", frame.get("type"))
            return False
        return True

    async def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, WebSocketException):
                logger.debug("Error while closing realtime socket", exc_info=True)
        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        try:
            websocket = await self._connector(self.url, additional_headers=self.headers, max_size=None)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            logger.warning("Realtime connection to %s failed: %s", self.url, exc)
            if self.state is ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSED
            await self._listener.on_upstream_error(str(exc))
            await self._listener.on_upstream_closed()
            return

        if self.state is ConnectionState.CLOSED:
            await websocket.close()
            return

        self._websocket = websocket
        self.state = ConnectionState.READY
        logger.info("Realtime connection ready: %s", self.url)

        try:
            await self._listener.on_upstream_ready()
            async for raw in websocket:
                payload = decode_frame(raw)
                if payload is None:
                    continue
                await self._listener.on_upstream_event(payload)
        except ConnectionClosedError as exc:
            if self.state is not ConnectionState.CLOSED:
                logger.warning("Realtime connection dropped: %s", exc)
                await self._listener.on_upstream_error(str(exc))
        except Exception:
            logger.exception("Realtime reader failed; closing connection")
        finally:
            if self.state is not ConnectionState.CLOSED:
                self.state = ConnectionState.CLOSED
                self._websocket = None
                with contextlib.suppress(OSError, WebSocketException):
                    await websocket.close()
                logger.info("Realtime connection closed")
                await self._listener.on_upstream_closed()
