"""aiohttp server: WebSocket transport plus a small JSON API.

Routes:
    GET    /ws                              WebSocket chat transport
    GET    /api/ping                        liveness
    GET    /api/projects                    stored projects
    GET    /api/projects/{project_id}/sessions
    GET    /api/capabilities                backend capability probe
    DELETE /api/sessions/{session_id}       close a live session

Each WebSocket connection gets a QueueListener; a writer task drains it
onto the socket so session broadcasts never wait on the network.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path

from aiohttp import WSCloseCode, WSMsgType, web

from agentkit.adapters.subscribers import QueueListener
from agentkit.engine.config import ServerConfig
from agentkit.engine.errors import StreamError
from agentkit.engine.providers.base import AgentClient
from agentkit.engine.providers.claude_provider import ClaudeAgentClient
from agentkit.engine.session_manager import Connection, SessionManager
from agentkit.shared.services.capabilities import collect_capability_summary
from agentkit.shared.services.projects import list_projects, list_sessions

logger = logging.getLogger(__name__)


class AgentKitServer:
    """HTTP + WebSocket front end for a SessionManager.

    Thin adapter: all conversation state lives in SessionManager and
    Session. This class only handles routing and socket plumbing.
    """

    def __init__(
        self,
        config: ServerConfig,
        client: AgentClient | None = None,
        manager: SessionManager | None = None,
    ) -> None:
        self._config = config
        self._client = client or ClaudeAgentClient(config.client_config())
        self._manager = manager or SessionManager(config, self._client)
        self._host = config.host
        self._port = config.port
        self._started_at = time.time()
        self._websockets: set[web.WebSocketResponse] = set()
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_shutdown.append(self._on_shutdown)
        self._setup_routes()
        logger.info(
            "AgentKitServer init host=%s port=%s cwd=%s client=%s pid=%s",
            self._host, self._port, config.cwd or "<cwd>", self._client.name, os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def manager(self) -> SessionManager:
        return self._manager

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-agentkit-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/ws", self._handle_ws)
        r.add_get("/api/ping", self._handle_ping)
        r.add_get("/api/projects", self._handle_list_projects)
        r.add_get("/api/projects/{project_id}/sessions", self._handle_list_sessions)
        r.add_get("/api/capabilities", self._handle_capabilities)
        r.add_delete("/api/sessions/{session_id}", self._handle_delete_session)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Serve until cancelled."""
        if isinstance(self._client, ClaudeAgentClient) and not self._client.is_available():
            logger.warning("claude CLI not found on PATH; agent streams will fail to start")
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        logger.info("agentkit server listening on %s:%d", self._host, self._port)
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _on_shutdown(self, app: web.Application) -> None:
        for ws in list(self._websockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")
        await self._manager.shutdown()

    # ── WebSocket transport ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        self._websockets.add(ws)

        listener = QueueListener(
            name=request.get("req_id", ""),
            maxsize=self._config.subscriber_queue_size,
        )
        connection = self._manager.connect(listener)
        writer = asyncio.create_task(self._write_loop(ws, listener, connection))
        logger.info(
            "WebSocket connected conn=%s active_clients=%d",
            connection.connection_id, len(self._websockets),
        )
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._manager.route_inbound(connection, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "WebSocket conn=%s error: %s",
                        connection.connection_id, ws.exception(),
                    )
        finally:
            self._manager.disconnect(connection)
            listener.close()
            await writer
            self._websockets.discard(ws)
            logger.info(
                "WebSocket disconnected conn=%s active_clients=%d",
                connection.connection_id, len(self._websockets),
            )
        return ws

    @staticmethod
    async def _write_loop(
        ws: web.WebSocketResponse,
        listener: QueueListener,
        connection: Connection,
    ) -> None:
        async for payload in listener.consume():
            if ws.closed or listener.overflowed:
                break
            try:
                await ws.send_str(json.dumps(payload))
            except ConnectionResetError:
                logger.info("WebSocket conn=%s reset while sending", connection.connection_id)
                break
        if listener.overflowed and not ws.closed:
            await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"Client too slow")

    # ── HTTP handlers ──

    async def _handle_ping(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "sessions": len(self._manager.sessions),
            "connections": len(self._manager.connections),
        })

    async def _handle_list_projects(self, request: web.Request) -> web.Response:
        projects = await asyncio.to_thread(list_projects, self._manager.store)
        return web.json_response({"projects": [p.to_dict() for p in projects]})

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        project_id = request.match_info["project_id"]
        sessions = await asyncio.to_thread(list_sessions, self._manager.store, project_id)
        return web.json_response({
            "projectId": project_id,
            "sessions": [s.to_dict() for s in sessions],
        })

    async def _handle_capabilities(self, request: web.Request) -> web.Response:
        options = self._config.default_options()
        cwd = request.query.get("cwd") or options.cwd
        if cwd:
            options.cwd = cwd
        try:
            summary = await collect_capability_summary(
                self._client, options, workspace_dir=cwd or str(Path.cwd()),
            )
        except StreamError as exc:
            logger.warning("Capability probe failed: %s", exc)
            return web.json_response({"error": str(exc)}, status=502)
        except Exception as exc:
            logger.exception("Capability probe failed")
            return web.json_response(
                {"error": "Failed to collect capabilities", "details": str(exc)},
                status=502,
            )
        return web.json_response(summary.to_dict())

    async def _handle_delete_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        deleted = await self._manager.delete_session(session_id)
        if not deleted:
            return web.json_response({"error": f"Session {session_id} not found"}, status=404)
        return web.json_response({"status": "deleted", "sessionId": session_id})
