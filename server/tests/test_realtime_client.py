from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from websockets.exceptions import ConnectionClosedError

from freevox.services.realtime_client import ConnectionState, RealtimeConnection, decode_frame


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class FakeWebSocket:
    def __init__(self, frames: List[Any], *, error: Optional[Exception] = None, hang: bool = False) -> None:
        self.frames = list(frames)
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._error = error
        self._hang = hang

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):  # noqa: ANN204
        return self._iterate()

    async def _iterate(self):  # noqa: ANN202
        for frame in self.frames:
            yield frame
        if self._error is not None:
            raise self._error
        if self._hang:
            await asyncio.Event().wait()


class RecordingListener:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.connection: Optional[RealtimeConnection] = None
        self.ready = asyncio.Event()

    async def on_upstream_ready(self) -> None:
        self.calls.append(("ready",))
        if self.connection is not None:
            await self.connection.send({"type": "session.update"})
        self.ready.set()

    async def on_upstream_event(self, payload: Dict[str, Any]) -> None:
        self.calls.append(("event", payload))

    async def on_upstream_closed(self) -> None:
        self.calls.append(("closed",))

    async def on_upstream_error(self, detail: str) -> None:
        self.calls.append(("error", detail))


def test_decode_frame_drops_garbage() -> None:
    assert decode_frame('{"type": "ok"}') == {"type": "ok"}
    assert decode_frame(b'{"type": "ok"}') == {"type": "ok"}
    assert decode_frame("not json") is None
    assert decode_frame("[1, 2]") is None


def test_frames_are_relayed_in_order_then_remote_close_reported() -> None:
    captured: Dict[str, Any] = {}

    async def scenario():  # noqa: ANN202
        websocket = FakeWebSocket(['{"type": "a"}', "garbage", "[1]", b'{"type": "b"}'])
        listener = RecordingListener()

        async def connector(url, **kwargs):  # noqa: ANN001, ANN003
            captured["url"] = url
            captured.update(kwargs)
            return websocket

        connection = RealtimeConnection(
            "wss://example.test/v1/realtime?model=m", {"Authorization": "Bearer k"}, listener, connector=connector
        )
        listener.connection = connection
        await connection.connect()
        assert connection._task is not None
        await connection._task
        return connection, websocket, listener

    connection, websocket, listener = _run(scenario())

    assert listener.calls == [
        ("ready",),
        ("event", {"type": "a"}),
        ("event", {"type": "b"}),
        ("closed",),
    ]
    assert websocket.sent == [{"type": "session.update"}]
    assert captured == {
        "url": "wss://example.test/v1/realtime?model=m",
        "additional_headers": {"Authorization": "Bearer k"},
        "max_size": None,
    }
    assert connection.state is ConnectionState.CLOSED


def test_send_before_ready_is_refused() -> None:
    async def scenario():  # noqa: ANN202
        connection = RealtimeConnection("wss://example.test", {}, RecordingListener())
        return await connection.send({"type": "input_audio_buffer.append"})

    assert _run(scenario()) is False


def test_connect_failure_reports_error_then_closed() -> None:
    async def scenario():  # noqa: ANN202
        listener = RecordingListener()

        async def connector(url, **kwargs):  # noqa: ANN001, ANN003
            raise OSError("connection refused")

        connection = RealtimeConnection("wss://example.test", {}, listener, connector=connector)
        await connection.connect()
        await connection._task
        return listener

    listener = _run(scenario())
    assert listener.calls == [("error", "connection refused"), ("closed",)]


def test_abnormal_drop_reports_error_before_closed() -> None:
    async def scenario():  # noqa: ANN202
        listener = RecordingListener()
        websocket = FakeWebSocket([], error=ConnectionClosedError(None, None))

        async def connector(url, **kwargs):  # noqa: ANN001, ANN003
            return websocket

        connection = RealtimeConnection("wss://example.test", {}, listener, connector=connector)
        await connection.connect()
        await connection._task
        return listener

    listener = _run(scenario())
    assert [call[0] for call in listener.calls] == ["ready", "error", "closed"]


def test_local_close_is_idempotent_and_silent() -> None:
    async def scenario():  # noqa: ANN202
        listener = RecordingListener()
        websocket = FakeWebSocket([], hang=True)

        async def connector(url, **kwargs):  # noqa: ANN001, ANN003
            return websocket

        connection = RealtimeConnection("wss://example.test", {}, listener, connector=connector)
        await connection.connect()
        await listener.ready.wait()
        await connection.close()
        await connection.close()
        return connection, websocket, listener

    connection, websocket, listener = _run(scenario())
    assert websocket.closed
    assert connection.state is ConnectionState.CLOSED
    assert listener.calls == [("ready",)]


def test_listener_failure_still_reports_closed() -> None:
    class FailingListener(RecordingListener):
        async def on_upstream_event(self, payload: Dict[str, Any]) -> None:
            await super().on_upstream_event(payload)
            raise RuntimeError("listener bug")

    async def scenario():  # noqa: ANN202
        listener = FailingListener()
        websocket = FakeWebSocket(['{"type": "a"}', '{"type": "b"}'], hang=True)

        async def connector(url, **kwargs):  # noqa: ANN001, ANN003
            return websocket

        connection = RealtimeConnection("wss://example.test", {}, listener, connector=connector)
        await connection.connect()
        await connection._task
        return connection, websocket, listener

    connection, websocket, listener = _run(scenario())
    assert listener.calls == [("ready",), ("event", {"type": "a"}), ("closed",)]
    assert websocket.closed
    assert connection.state is ConnectionState.CLOSED
