"""Per-connection queue listeners and the socket writer that drains them."""
from __future__ import annotations

import json

import pytest
from aiohttp import WSCloseCode

from agentkit.adapters.subscribers import QueueListener, deliver
from agentkit.engine.session_manager import Connection
from agentkit.web.server import AgentKitServer


class _RecordingSocket:
    def __init__(self) -> None:
        self.closed = False
        self.sent: list[dict] = []
        self.close_code = None

    async def send_str(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, *, code, message=b"") -> None:
        self.closed = True
        self.close_code = code


@pytest.mark.asyncio
async def test_consume_yields_until_close() -> None:
    listener = QueueListener("c1", maxsize=10)
    listener({"type": "a"})
    listener({"type": "b"})
    listener.close()
    listener({"type": "after close"})

    received = [payload async for payload in listener.consume()]

    assert received == [{"type": "a"}, {"type": "b"}]
    assert listener.overflowed is False


@pytest.mark.asyncio
async def test_overflow_closes_listener_instead_of_skipping() -> None:
    listener = QueueListener("slow", maxsize=2)
    listener({"type": "a"})
    listener({"type": "b"})

    listener({"type": "c"})
    listener({"type": "d"})

    assert listener.overflowed is True
    received = [payload async for payload in listener.consume()]
    assert {"type": "c"} not in received
    assert {"type": "d"} not in received


@pytest.mark.asyncio
async def test_writer_closes_socket_after_overflow() -> None:
    listener = QueueListener("slow", maxsize=1)
    listener({"type": "a"})
    listener({"type": "b"})
    ws = _RecordingSocket()

    await AgentKitServer._write_loop(ws, listener, Connection("slow", listener))

    assert ws.sent == []
    assert ws.closed is True
    assert ws.close_code == WSCloseCode.TRY_AGAIN_LATER


@pytest.mark.asyncio
async def test_writer_leaves_socket_open_on_normal_close() -> None:
    listener = QueueListener("c1", maxsize=10)
    listener({"type": "a"})
    listener.close()
    ws = _RecordingSocket()

    await AgentKitServer._write_loop(ws, listener, Connection("c1", listener))

    assert ws.sent == [{"type": "a"}]
    assert ws.closed is False


def test_deliver_continues_past_failing_listener() -> None:
    seen: list[dict] = []

    def broken(payload):
        raise RuntimeError("boom")

    deliver([broken, seen.append], {"type": "x"})

    assert seen == [{"type": "x"}]
