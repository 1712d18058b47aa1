"""One logical conversation over a single long-lived backend stream.

A Session owns its state machine, the input channel the backend pulls
from, the coalesced history and the subscriber list it broadcasts to.

Every public entry point and every received event is serialized through
one asyncio.Lock per session. The consumption task only holds the lock
while it applies a single event, so ``interrupt()`` and ``resume()`` can
always get in between two events, and once they have marked the stream
cancelled no further event from it is applied.

Turn flow on one stream:

    send() ──push──> InputChannel ──pull──> producer ──yield──> backend
                                               │
                              waits for result-* of the turn
                                               │
    subscribers <──broadcast── consume loop <──events──┘
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from agentkit.adapters import protocol
from agentkit.adapters.coalescer import (
    History,
    append_user,
    build_history,
    diff,
    fold,
    part_key,
    user_entry,
)
from agentkit.adapters.events import (
    AgentEvent,
    AssistantDelta,
    ResultError,
    ResultSuccess,
    SystemInit,
    UserEcho,
    event_to_dict,
    is_terminal,
)
from agentkit.adapters.subscribers import Listener, deliver
from agentkit.shared.attachments import compose_user_content
from agentkit.shared.models.message import CoalescedMessage, MessageRole, UserInput
from agentkit.shared.services.transcript_store import normalize_session_id

from .errors import EmptyMessageError, SessionClosedError, StreamError
from .input_channel import InputChannel
from .lifecycle import validate_transition
from .models import SessionOptions, SessionState
from .providers.base import AgentClient

logger = logging.getLogger(__name__)

SessionIdCallback = Callable[["Session", "str | None"], None]
IdleCallback = Callable[["Session"], None]


@dataclass
class QueuedInput:
    """A submitted input waiting for the backend to read it."""
    entry_id: str
    user_input: UserInput


@dataclass
class ActiveStream:
    """Handle on the one stream a session may have open."""
    generation: int
    channel: InputChannel[QueuedInput] = field(default_factory=InputChannel)
    task: asyncio.Task | None = None
    cancelled: bool = False
    # Set when the current turn's result arrives; gates the producer.
    turn_done: asyncio.Event = field(default_factory=asyncio.Event)
    # Input handed to the backend whose turn has not ended.
    in_flight: QueuedInput | None = None
    echo_seen: bool = False


def _short(session_id: str | None) -> str:
    return session_id[:8] if session_id else "<new>"


class Session:
    """A conversation: state, history, input bridge and fan-out."""

    def __init__(
        self,
        client: AgentClient,
        options: SessionOptions | None = None,
        *,
        session_id: str | None = None,
        on_session_id: SessionIdCallback | None = None,
        on_idle: IdleCallback | None = None,
    ) -> None:
        self._client = client
        self.options = options or SessionOptions()
        self.session_id = session_id
        self.state = SessionState.IDLE
        self.history: History = []
        # Membership is managed by SessionManager; the session only reads it.
        self.subscribers: list[Listener] = []
        self.summary: str | None = None
        self.usage: dict[str, Any] | None = None
        self.last_error: str | None = None
        self.init_info: SystemInit | None = None

        self._on_session_id = on_session_id
        self._on_idle = on_idle
        self._lock = asyncio.Lock()
        self._active: ActiveStream | None = None
        # Undelivered inputs of an aborted stream, pushed first on the next one.
        self._held: list[QueuedInput] = []
        self._generation = 0
        self._closed = False

    def __repr__(self) -> str:
        return f"Session({_short(self.session_id)}, {self.state.value})"

    # ── Read-only views ──

    @property
    def is_busy(self) -> bool:
        return self.state == SessionState.BUSY

    @property
    def is_loading(self) -> bool:
        return self.state == SessionState.LOADING

    @property
    def in_turn(self) -> bool:
        return self.state in (SessionState.LOADING, SessionState.BUSY)

    @property
    def active_stream(self) -> ActiveStream | None:
        return self._active

    @property
    def pending_inputs(self) -> list[UserInput]:
        queued = list(self._held)
        if self._active is not None:
            queued.extend(self._active.channel.pending())
        return [q.user_input for q in queued]

    @property
    def closed(self) -> bool:
        return self._closed

    def state_payload(self) -> dict[str, Any]:
        return protocol.session_state_changed(
            self.session_id,
            state=self.state.value,
            is_busy=self.is_busy,
            is_loading=self.is_loading,
            options=self.options.to_dict(),
            summary=self.summary,
            usage=self.usage,
            error=self.last_error if self.state == SessionState.ERROR else None,
        )

    def snapshot_payload(self) -> dict[str, Any]:
        return protocol.messages_updated(self.session_id, self.history)

    # ── Entry points ──

    async def send(self, user_input: UserInput) -> CoalescedMessage:
        """Queue one user input; open a stream if none is live.

        Validation happens before any state is touched. Returns the user
        entry appended to the history.
        """
        if user_input.is_empty():
            raise EmptyMessageError()
        content = compose_user_content(user_input.content, user_input.attachments)
        composed = UserInput(content=content)

        async with self._lock:
            if self._closed:
                raise SessionClosedError(self.session_id)
            if self.state in (SessionState.IDLE, SessionState.ERROR):
                self.last_error = None
                self._transition(SessionState.LOADING)
                self._broadcast(self.state_payload())

            entry = user_entry(self.history, content)
            self._apply_history(append_user(self.history, entry))

            stream = self._active
            if stream is None:
                stream = self._start_stream()
            stream.channel.push(QueuedInput(entry_id=entry.id, user_input=composed))
            logger.info(
                "Session %s queued input %s (pending=%d)",
                _short(self.session_id), entry.id, len(stream.channel),
            )
            return entry

    async def interrupt(self) -> None:
        """Cancel the current turn. No-op unless a turn is in progress.

        Inputs queued behind the cancelled turn stay pending in the
        history and are delivered first on the next stream.
        """
        async with self._lock:
            if not self.in_turn:
                return
            if self._active is not None:
                self._abort(self._active, "interrupted")
            self._transition(SessionState.IDLE)
            self._broadcast(self.state_payload())
        self._notify_idle()

    async def resume(self, target_session_id: str) -> None:
        """Replace the history with the stored transcript of ``target_session_id``.

        Never raises on a missing or unreadable transcript: the history
        becomes empty and a warning is logged.
        """
        target = normalize_session_id(target_session_id)
        async with self._lock:
            if self._closed:
                raise SessionClosedError(self.session_id)
            if self._active is not None:
                self._abort(self._active, "resume")
            # Held inputs go; their entries leave with the replaced history.
            self._discard_held("resume")

            events: list[AgentEvent] | None = None
            try:
                events = await self._client.load_history(target)
            except Exception as exc:
                logger.warning(
                    "Session %s: failed to load transcript %s: %s",
                    _short(self.session_id), _short(target), exc,
                )
            if events is None:
                logger.warning(
                    "Session %s: no transcript for %s, starting empty",
                    _short(self.session_id), _short(target),
                )
                events = []

            old_id = self.session_id
            self.session_id = target
            self.history = build_history(events)
            self.summary = None
            self.usage = None
            self.last_error = None
            if self.state != SessionState.IDLE:
                self._transition(SessionState.IDLE)
            logger.info(
                "Session %s resumed %s (%d events, %d messages)",
                _short(old_id), _short(target), len(events), len(self.history),
            )
            self._broadcast(self.snapshot_payload())
            self._broadcast(self.state_payload())
        if old_id != target and self._on_session_id is not None:
            self._on_session_id(self, old_id)

    async def set_options(self, partial: dict[str, Any]) -> SessionOptions:
        """Merge ``partial`` into the options used by the next stream."""
        merged = self.options.merge(partial)
        async with self._lock:
            self.options = merged
            self._broadcast(self.state_payload())
        return merged

    async def close(self) -> None:
        """Abort the stream and refuse further input."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._active is not None:
                self._abort(self._active, "closed")
            self._drop_entries(self._discard_held("close"))
            logger.info("Session %s closed", _short(self.session_id))

    # ── Stream lifecycle ──

    def _start_stream(self) -> ActiveStream:
        self._generation += 1
        stream = ActiveStream(generation=self._generation)
        kwargs = self.options.to_client_kwargs()
        if self.session_id:
            kwargs["resume"] = self.session_id
        for queued in self._held:
            stream.channel.push(queued)
        self._held.clear()
        self._active = stream
        stream.task = asyncio.create_task(
            self._consume(stream, kwargs),
            name=f"session-stream-{stream.generation}",
        )
        logger.info(
            "Session %s opened stream #%d resume=%s pending=%d",
            _short(self.session_id), stream.generation, "resume" in kwargs,
            len(stream.channel),
        )
        return stream

    def _abort(self, stream: ActiveStream, reason: str) -> None:
        """Cancel ``stream``; its undelivered inputs are held. Lock held."""
        stream.cancelled = True
        undelivered = stream.channel.drain()
        stream.channel.close(reason)
        stream.turn_done.set()
        task = stream.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        if self._active is stream:
            self._active = None
        if undelivered:
            self._held.extend(undelivered)
            logger.info(
                "Session %s: %s, holding %d queued input(s) for the next stream",
                _short(self.session_id), reason, len(undelivered),
            )
        logger.info(
            "Session %s stream #%d aborted (%s)",
            _short(self.session_id), stream.generation, reason,
        )

    def _discard_held(self, reason: str) -> set[str]:
        """Forget held inputs. Returns their history entry ids."""
        if not self._held:
            return set()
        entry_ids = {queued.entry_id for queued in self._held}
        self._held.clear()
        logger.warning(
            "Session %s: %s discarded %d queued input(s)",
            _short(self.session_id), reason, len(entry_ids),
        )
        return entry_ids

    async def _produce(self, stream: ActiveStream) -> AsyncIterator[UserInput]:
        """Live input producer handed to the backend.

        Pulls one input, hands it over, then waits for that turn's result
        before pulling the next. Ends only when the channel is closed.
        """
        while True:
            queued = await stream.channel.pull()
            if queued is None:
                return
            async with self._lock:
                if stream.cancelled:
                    return
                stream.turn_done.clear()
                stream.in_flight = queued
                stream.echo_seen = False
                if self.state in (SessionState.IDLE, SessionState.ERROR):
                    self._transition(SessionState.LOADING)
                    self._broadcast(self.state_payload())
                self._apply_history(fold(self.history, UserEcho(
                    text=queued.user_input.text,
                    local_id=queued.entry_id,
                )))
            logger.debug(
                "Session %s delivering input %s",
                _short(self.session_id), queued.entry_id,
            )
            yield queued.user_input
            await stream.turn_done.wait()

    async def _consume(self, stream: ActiveStream, kwargs: dict[str, Any]) -> None:
        events = self._client.stream(self._produce(stream), **kwargs)
        detached = False
        try:
            async for event in events:
                async with self._lock:
                    if stream.cancelled or self._active is not stream:
                        break
                    logger.debug(
                        "Session %s event %s",
                        _short(self.session_id), event_to_dict(event),
                    )
                    idle = self._handle_event(stream, event)
                if idle:
                    self._notify_idle()
            else:
                # Detach before closing the backend so a send() arriving
                # meanwhile opens a new stream.
                async with self._lock:
                    if not stream.cancelled and self._active is stream:
                        self._finish(stream)
                        detached = True
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            async with self._lock:
                if not stream.cancelled and self._active is stream:
                    self._fail(stream, exc)
                    detached = True
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
        if detached:
            self._notify_idle()

    def _handle_event(self, stream: ActiveStream, event: AgentEvent) -> bool:
        """Apply one backend event. Lock held. Returns True when a turn ended."""
        if isinstance(event, SystemInit):
            self.init_info = event
            self._assign_session_id(event.session_id)
            return False

        if is_terminal(event):
            if isinstance(event, ResultSuccess):
                self.summary = event.result or self.summary
                self.last_error = None
            elif isinstance(event, ResultError):
                self.last_error = event.error or event.subtype
                logger.warning(
                    "Session %s turn ended with %s: %s",
                    _short(self.session_id), event.subtype, self.last_error,
                )
            self.usage = event.usage or self.usage
            if event.session_id and self.session_id is None:
                self._assign_session_id(event.session_id)
            stream.in_flight = None
            if self.in_turn:
                self._transition(SessionState.IDLE)
            if len(stream.channel):
                # The next queued input starts its turn straight away.
                self._transition(SessionState.LOADING)
            self._broadcast(self.state_payload())
            stream.turn_done.set()
            return True

        if isinstance(event, UserEcho) and not event.local_id:
            delivered = stream.in_flight
            if (
                delivered is not None
                and not stream.echo_seen
                and event.text == delivered.user_input.text
            ):
                # Backend copy of the input this stream just delivered.
                stream.echo_seen = True
                return False

        if self.state == SessionState.LOADING and not isinstance(event, UserEcho):
            self._transition(SessionState.BUSY)
            self._broadcast(self.state_payload())
        new_history = fold(self.history, event)
        if isinstance(event, AssistantDelta) and event.partial:
            if self._apply_partial(new_history, event):
                return False
        self._apply_history(new_history)
        return False

    def _fail(self, stream: ActiveStream, exc: BaseException) -> None:
        error = StreamError(self.session_id, str(exc) or type(exc).__name__)
        logger.error("%s", error, exc_info=exc)
        self._abort(stream, "stream failed")
        self.last_error = error.reason
        if self.state != SessionState.ERROR:
            self._transition(SessionState.ERROR)
        self._broadcast(protocol.error_payload("stream_failed", str(error)))
        self._broadcast(self.state_payload())

    def _finish(self, stream: ActiveStream) -> None:
        """The backend ended the stream on its own.

        Inputs it never read are carried over to a fresh stream.
        """
        logger.info(
            "Session %s stream #%d ended",
            _short(self.session_id), stream.generation,
        )
        turn_cut = stream.in_flight is not None
        self._abort(stream, "stream ended")
        carry = bool(self._held)
        if self.in_turn and (turn_cut or not carry or self.state != SessionState.LOADING):
            self._transition(SessionState.IDLE)
            self._broadcast(self.state_payload())
        if carry:
            self._start_stream()

    def _assign_session_id(self, session_id: str) -> None:
        if self.session_id is None:
            self.session_id = session_id
            logger.info("Session assigned id %s", _short(session_id))
            if self._on_session_id is not None:
                self._on_session_id(self, None)
        elif self.session_id != session_id:
            logger.warning(
                "Session %s: ignoring backend session id %s",
                _short(self.session_id), _short(session_id),
            )

    # ── State and history ──

    def _transition(self, new_state: SessionState) -> None:
        """Transition to a new state with validation."""
        validate_transition(self.state, new_state)
        old = self.state
        self.state = new_state
        logger.info(
            "Session %s: %s -> %s",
            _short(self.session_id), old.value, new_state.value,
        )

    def _apply_history(self, new_history: History) -> None:
        if new_history is self.history:
            return
        added, updated = diff(self.history, new_history)
        self.history = new_history
        for index, message in added:
            self._broadcast(protocol.message_added(self.session_id, message, index))
        for message in updated:
            self._broadcast(protocol.message_updated(self.session_id, message))

    def _apply_partial(self, new_history: History, event: AssistantDelta) -> bool:
        """Broadcast only the new text when a partial extends a streamed part.

        Returns False (nothing applied) when the delta opened a new entry
        or part; the caller then sends the usual add/update payloads.
        """
        added, updated = diff(self.history, new_history)
        if added or len(updated) != 1:
            return False
        message = updated[0]
        key = part_key(event)
        previous = next((m for m in self.history if m.id == message.id), None)
        if previous is None or not any(p.source_id == key for p in previous.parts):
            return False
        index = next(i for i, p in enumerate(message.parts) if p.source_id == key)
        self.history = new_history
        self._broadcast(protocol.message_delta(
            self.session_id, message.id, index, event.kind, event.text,
        ))
        return True

    def _drop_entries(self, entry_ids: set[str]) -> None:
        """Remove never-delivered user entries and resend the snapshot."""
        kept = [
            m for m in self.history
            if not (m.role == MessageRole.USER and not m.confirmed and m.id in entry_ids)
        ]
        if len(kept) != len(self.history):
            self.history = kept
            self._broadcast(self.snapshot_payload())

    def _broadcast(self, payload: dict[str, Any]) -> None:
        deliver(list(self.subscribers), payload)

    def _notify_idle(self) -> None:
        if self._on_idle is not None and not self.in_turn:
            self._on_idle(self)
