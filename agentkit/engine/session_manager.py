"""Session registry: connections, session ids and subscriptions.

Owns every live Session and is the only place subscriber membership
changes. Each connection is subscribed to at most one session; a
session can have many connections. Subscribing delivers a full
snapshot to the new listener before any later live event.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from agentkit.adapters import protocol
from agentkit.adapters.protocol import (
    ChatRequest,
    InterruptRequest,
    ResumeRequest,
    SetOptionsRequest,
)
from agentkit.adapters.subscribers import Listener, deliver
from agentkit.shared.attachments import compose_user_content
from agentkit.shared.models.message import UserInput
from agentkit.shared.services.transcript_store import TranscriptStore, normalize_session_id

from .config import ServerConfig
from .errors import EmptyMessageError, InvalidMessageError, ValidationError
from .providers.base import AgentClient
from .session import Session

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """One transport connection and the listener that feeds it."""
    connection_id: str
    listener: Listener


class SessionManager:
    """Maps connections and session ids to live Session instances."""

    def __init__(
        self,
        config: ServerConfig,
        client: AgentClient,
        store: TranscriptStore | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self.store = store or TranscriptStore(config.projects_root)
        self._sessions: list[Session] = []
        self._by_id: dict[str, Session] = {}
        self._by_connection: dict[str, Session] = {}
        self._connections: dict[str, Connection] = {}
        self._closing: set[asyncio.Task] = set()

    # ── Lookup ──

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def get(self, session_id: str) -> Session | None:
        return self._by_id.get(normalize_session_id(session_id))

    def session_for(self, connection: Connection) -> Session | None:
        return self._by_connection.get(connection.connection_id)

    # ── Connections ──

    def connect(self, listener: Listener, connection_id: str | None = None) -> Connection:
        connection = Connection(
            connection_id=connection_id or uuid.uuid4().hex[:12],
            listener=listener,
        )
        self._connections[connection.connection_id] = connection
        deliver([listener], protocol.connected(connection.connection_id))
        logger.info("Connection %s opened", connection.connection_id)
        return connection

    def disconnect(self, connection: Connection) -> None:
        self._connections.pop(connection.connection_id, None)
        session = self._by_connection.get(connection.connection_id)
        if session is not None:
            self.unsubscribe(session, connection)
            self.collect(session)
        logger.info("Connection %s closed", connection.connection_id)

    # ── Sessions and subscriptions ──

    async def get_or_create(self, connection: Connection, session_id: str | None = None) -> Session:
        """Session a request from ``connection`` addressed to ``session_id`` runs on.

        Without an id that is the connection's current session (or a new
        one). An id already live resolves to that session; an unknown id
        gets a new session resumed from the stored transcript.
        """
        current = self.session_for(connection)
        if not session_id:
            return current if current is not None else self._create_session()

        target = normalize_session_id(session_id)
        if current is not None and current.session_id == target:
            return current
        live = self.get(target)
        if live is not None:
            return live
        session = self._create_session()
        await session.resume(target)
        return session

    def subscribe(self, session: Session, connection: Connection) -> None:
        """Attach ``connection`` to ``session``, leaving its previous session."""
        current = self.session_for(connection)
        if current is session:
            return
        if current is not None:
            self.unsubscribe(current, connection)
            self.collect(current)
        if connection.listener not in session.subscribers:
            session.subscribers.append(connection.listener)
        self._by_connection[connection.connection_id] = session
        deliver([connection.listener], session.snapshot_payload())
        deliver([connection.listener], session.state_payload())
        logger.info(
            "Connection %s subscribed to %r (%d subscriber(s))",
            connection.connection_id, session, len(session.subscribers),
        )

    def unsubscribe(self, session: Session, connection: Connection) -> None:
        if connection.listener in session.subscribers:
            session.subscribers.remove(connection.listener)
        if self._by_connection.get(connection.connection_id) is session:
            del self._by_connection[connection.connection_id]

    def collect(self, session: Session) -> bool:
        """Destroy ``session`` if nothing needs it any more."""
        if session.closed or session.subscribers or session.pending_inputs or session.in_turn:
            return False
        self._forget(session)
        self._spawn_close(session)
        logger.info("Collected idle %r", session)
        return True

    async def delete_session(self, session_id: str) -> bool:
        """Close and remove a session regardless of subscribers."""
        session = self.get(session_id)
        if session is None:
            return False
        deliver(
            list(session.subscribers),
            protocol.error_payload("session_deleted", f"Session {session_id} was deleted"),
        )
        for connection_id, owned in list(self._by_connection.items()):
            if owned is session:
                del self._by_connection[connection_id]
        session.subscribers.clear()
        self._forget(session)
        await session.close()
        logger.info("Deleted session %s", session_id[:8])
        return True

    async def shutdown(self) -> None:
        sessions = list(self._sessions)
        for session in sessions:
            self._forget(session)
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        self._by_connection.clear()
        logger.info("SessionManager shut down (%d session(s))", len(sessions))

    # ── Inbound routing ──

    async def route_inbound(self, connection: Connection, raw: str | bytes | dict[str, Any]) -> None:
        """Dispatch one inbound message. Errors go to ``connection`` only."""
        try:
            message = protocol.parse_inbound(raw)
            if isinstance(message, ChatRequest):
                await self._handle_chat(connection, message)
            elif isinstance(message, SetOptionsRequest):
                await self._handle_set_options(connection, message)
            elif isinstance(message, ResumeRequest):
                await self._handle_resume(connection, message)
            elif isinstance(message, InterruptRequest):
                session = self.session_for(connection)
                if session is not None:
                    await session.interrupt()
        except ValidationError as exc:
            logger.info(
                "Connection %s request rejected: %s (%s)",
                connection.connection_id, exc.code, exc.message,
            )
            deliver([connection.listener], protocol.error_payload(exc.code, exc.message))

    async def _handle_chat(self, connection: Connection, request: ChatRequest) -> None:
        user_input = UserInput(content=request.content, attachments=request.attachments)
        if user_input.is_empty():
            raise EmptyMessageError()
        # Reject bad attachments before any session is created or switched.
        compose_user_content(user_input.content, user_input.attachments)

        session = await self.get_or_create(connection, request.session_id)
        self.subscribe(session, connection)
        await session.send(user_input)

    async def _handle_set_options(self, connection: Connection, request: SetOptionsRequest) -> None:
        session = await self.get_or_create(connection)
        self.subscribe(session, connection)
        try:
            await session.set_options(request.options)
        except (TypeError, ValueError) as exc:
            raise InvalidMessageError(f"Invalid options: {exc}") from exc

    async def _handle_resume(self, connection: Connection, request: ResumeRequest) -> None:
        target = normalize_session_id(request.session_id)
        if not target:
            raise InvalidMessageError("'sessionId' is required")
        current = self.session_for(connection)
        live = self.get(target)
        if live is not None and live is not current:
            self.subscribe(live, connection)
            return
        if current is not None and (
            live is current or current.subscribers == [connection.listener]
        ):
            await current.resume(target)
            return
        session = self._create_session()
        self.subscribe(session, connection)
        await session.resume(target)

    # ── Internals ──

    def _create_session(self) -> Session:
        session = Session(
            self._client,
            self._config.default_options(),
            on_session_id=self._on_session_id,
            on_idle=self.collect,
        )
        self._sessions.append(session)
        logger.debug("Created %r (%d live)", session, len(self._sessions))
        return session

    def _on_session_id(self, session: Session, old_id: str | None) -> None:
        if old_id and self._by_id.get(old_id) is session:
            del self._by_id[old_id]
        new_id = session.session_id
        if not new_id:
            return
        other = self._by_id.get(new_id)
        if other is not None and other is not session:
            logger.warning(
                "Session id %s re-bound from %r to %r", new_id[:8], other, session,
            )
        self._by_id[new_id] = session

    def _forget(self, session: Session) -> None:
        if session in self._sessions:
            self._sessions.remove(session)
        for key, owned in list(self._by_id.items()):
            if owned is session:
                del self._by_id[key]

    def _spawn_close(self, session: Session) -> None:
        task = asyncio.get_running_loop().create_task(session.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
