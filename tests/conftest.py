from __future__ import annotations

import asyncio
from typing import Any, AsyncIterable

import pytest

from agentkit.adapters.events import AgentEvent
from agentkit.engine.providers.base import AgentClient
from agentkit.shared.models.message import UserInput

_END = object()


class FakeStream:
    """One scripted backend stream. Tests push events; inputs are recorded."""

    def __init__(self, options: dict[str, Any], sink: asyncio.Queue[UserInput]) -> None:
        self.options = options
        self._sink = sink
        self.events: asyncio.Queue[Any] = asyncio.Queue()
        self.inputs: list[UserInput] = []
        self.closed = False

    def emit(self, *events: AgentEvent) -> None:
        for event in events:
            self.events.put_nowait(event)

    def end(self) -> None:
        self.events.put_nowait(_END)

    def fail(self, exc: BaseException) -> None:
        self.events.put_nowait(exc)

    async def read_inputs(self, prompt: AsyncIterable[UserInput]) -> None:
        async for user_input in prompt:
            self.inputs.append(user_input)
            self._sink.put_nowait(user_input)


class FakeAgentClient(AgentClient):
    """In-memory backend driven by asyncio queues.

    Inputs are read from the producer in a separate task, the way the
    SDK does, so the producer's pull-after-result gating is observable.
    """

    def __init__(self) -> None:
        self.streams: list[FakeStream] = []
        self.histories: dict[str, list[AgentEvent]] = {}
        self.history_errors: dict[str, Exception] = {}
        # Replayed, then ended, for single-prompt streams (capability probes).
        self.scripted: list[AgentEvent] = []
        # Inputs read by any stream, in order.
        self.received: asyncio.Queue[UserInput] = asyncio.Queue()

    @property
    def name(self) -> str:
        return "fake"

    @property
    def last(self) -> FakeStream:
        return self.streams[-1]

    async def next_input(self, timeout: float = 1.0) -> UserInput:
        """Next input read by any stream. Streams open lazily, so wait here."""
        return await asyncio.wait_for(self.received.get(), timeout)

    async def stream(self, prompt, **options):
        fake = FakeStream(options, self.received)
        self.streams.append(fake)
        reader: asyncio.Task | None = None
        if isinstance(prompt, str):
            fake.inputs.append(UserInput(content=prompt))
            fake.emit(*self.scripted)
            fake.end()
        else:
            reader = asyncio.create_task(fake.read_inputs(prompt))
        try:
            while True:
                item = await fake.events.get()
                if item is _END:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            fake.closed = True
            if reader is not None:
                reader.cancel()

    async def load_history(self, session_id: str):
        if session_id in self.history_errors:
            raise self.history_errors[session_id]
        return self.histories.get(session_id)


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_client() -> FakeAgentClient:
    return FakeAgentClient()


@pytest.fixture
def wait_until():
    return _wait_until
