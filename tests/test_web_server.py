"""HTTP routes and the WebSocket transport of AgentKitServer."""
from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path

from aiohttp.test_utils import AioHTTPTestCase

from agentkit.adapters.events import AssistantDelta, ResultSuccess, SystemInit
from agentkit.engine.config import ServerConfig
from agentkit.shared.services.transcript_store import TranscriptStore
from agentkit.web.server import AgentKitServer
from conftest import FakeAgentClient


FIXTURES_DIR = Path(__file__).parent / "fixtures"
SESSION_ID = "5f0c2a8e-1b7d-4c7e-9a55-0d5b8f9e2c11"


class TestAgentKitServer(AioHTTPTestCase):
    """Routes and socket flow against an in-memory backend."""

    async def get_application(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.tmpdir, True)
        project_dir = self.tmpdir / ".claude" / "projects" / "-home-dev-demo"
        project_dir.mkdir(parents=True)
        (project_dir / f"{SESSION_ID}.jsonl").write_text(
            (FIXTURES_DIR / "claude_session.jsonl").read_text(encoding="utf-8"),
            encoding="utf-8",
        )

        self.fake = FakeAgentClient()
        config = ServerConfig(claude_home=self.tmpdir, cwd=str(self.tmpdir))
        self.agent_server = AgentKitServer(config, client=self.fake)
        return self.agent_server.app

    async def _receive_until(self, ws, predicate, limit: int = 50) -> list[dict]:
        received = []
        for _ in range(limit):
            payload = await ws.receive_json(timeout=2.0)
            received.append(payload)
            if predicate(payload):
                return received
        raise AssertionError(f"no matching payload in {received}")

    async def test_ping(self):
        resp = await self.client.get("/api/ping")
        assert resp.status == 200

        data = await resp.json()
        assert data["status"] == "ok"
        assert data["sessions"] == 0
        assert data["connections"] == 0

    async def test_request_id_header_is_accepted(self):
        resp = await self.client.get("/api/ping", headers={"x-agentkit-request-id": "req-1"})
        assert resp.status == 200

    async def test_list_projects_and_sessions(self):
        resp = await self.client.get("/api/projects")
        assert resp.status == 200
        data = await resp.json()
        assert data["projects"] == [
            {"id": "-home-dev-demo", "name": "demo", "path": "/home/dev/demo"},
        ]

        resp = await self.client.get("/api/projects/-home-dev-demo/sessions")
        data = await resp.json()
        assert data["projectId"] == "-home-dev-demo"
        [summary] = data["sessions"]
        assert summary["sessionId"] == SESSION_ID
        assert summary["title"] == "List the files here"
        assert summary["messageCount"] == 3

    async def test_unknown_project_has_no_sessions(self):
        resp = await self.client.get("/api/projects/nope/sessions")
        assert resp.status == 200
        assert (await resp.json())["sessions"] == []

    async def test_capabilities(self):
        self.fake.scripted = [SystemInit(session_id="caps", tools=["Bash"], model="claude-test")]

        resp = await self.client.get("/api/capabilities")
        assert resp.status == 200
        data = await resp.json()
        assert data["tools"] == ["Bash"]
        assert data["localSkills"] == []
        assert self.fake.last.options["permission_mode"] == "plan"
        assert self.fake.last.options["cwd"] == str(self.tmpdir)

    async def test_capabilities_failure_is_502(self):
        resp = await self.client.get("/api/capabilities")
        assert resp.status == 502
        assert "error" in await resp.json()

    async def test_delete_unknown_session_is_404(self):
        resp = await self.client.delete("/api/sessions/missing")
        assert resp.status == 404
        data = await resp.json()
        assert "not found" in data["error"]

    async def test_websocket_chat_turn(self):
        ws = await self.client.ws_connect("/ws")
        hello = await ws.receive_json(timeout=2.0)
        assert hello["type"] == "connected"

        await ws.send_json({"type": "chat", "content": "Hello"})
        await self.fake.next_input()
        self.fake.last.emit(
            SystemInit(session_id="ws-1"),
            AssistantDelta(message_id="m1", text="Hi there"),
            ResultSuccess(result="Hi there", session_id="ws-1"),
        )
        payloads = await self._receive_until(
            ws,
            lambda p: p["type"] == "session_state_changed" and p.get("summary") == "Hi there",
        )

        types = [p["type"] for p in payloads]
        assert types[:2] == ["messages_updated", "session_state_changed"]
        added = [p["message"]["role"] for p in payloads if p["type"] == "message_added"]
        assert added == ["user", "assistant"]
        final = payloads[-1]
        assert final["isBusy"] is False and final["isLoading"] is False
        assert final["sessionId"] == "ws-1"

        resp = await self.client.get("/api/ping")
        assert (await resp.json())["sessions"] == 1

        resp = await self.client.delete("/api/sessions/ws-1")
        assert resp.status == 200
        assert await resp.json() == {"status": "deleted", "sessionId": "ws-1"}
        deleted = await self._receive_until(ws, lambda p: p["type"] == "error")
        assert deleted[-1]["code"] == "session_deleted"

        await ws.close()

    async def test_websocket_rejects_bad_payload_to_sender_only(self):
        ws = await self.client.ws_connect("/ws")
        await ws.receive_json(timeout=2.0)

        await ws.send_str("{broken")
        error = await ws.receive_json(timeout=2.0)

        assert error["type"] == "error"
        assert error["code"] == "invalid_message"
        assert self.agent_server.manager.sessions == []
        await ws.close()

    async def test_websocket_resume_stored_session(self):
        store = TranscriptStore(self.tmpdir / ".claude" / "projects")
        self.fake.histories[SESSION_ID] = store.load(SESSION_ID)
        ws = await self.client.ws_connect("/ws")
        await ws.receive_json(timeout=2.0)

        await ws.send_json({"type": "resume", "sessionId": SESSION_ID})
        payloads = await self._receive_until(
            ws, lambda p: p["type"] == "messages_updated" and p["messages"],
        )

        assert [m["role"] for m in payloads[-1]["messages"]] == ["user", "assistant", "tool", "assistant"]
        assert payloads[-1]["sessionId"] == SESSION_ID
        await ws.close()

    async def test_disconnect_collects_session(self):
        ws = await self.client.ws_connect("/ws")
        await ws.receive_json(timeout=2.0)
        await ws.send_json({"type": "setSDKOptions", "options": {"model": "claude-x"}})
        await self._receive_until(ws, lambda p: p["type"] == "session_state_changed"
                                  and p["sessionState"]["options"]["model"] == "claude-x")
        assert len(self.agent_server.manager.sessions) == 1

        await ws.close()
        for _ in range(100):
            if not self.agent_server.manager.sessions:
                break
            await asyncio.sleep(0.01)
        assert self.agent_server.manager.sessions == []
        assert ws.closed
