"""ClaudeAgentClient against a stand-in claude_agent_sdk module."""
from __future__ import annotations

import dataclasses
import sys
import types
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

import pytest

from agentkit.adapters.events import (
    AssistantDelta,
    ResultSuccess,
    SystemInit,
    ToolResult,
    ToolUse,
    UserEcho,
)
from agentkit.engine.providers.claude_provider import (
    ClaudeAgentClient,
    ClientConfig,
    sdk_message_to_record,
)
from agentkit.shared.models.message import UserInput


FIXTURES_DIR = Path(__file__).parent / "fixtures"


@dataclasses.dataclass
class _Options:
    model: str | None = None
    cwd: str | None = None
    permission_mode: str | None = None
    allowed_tools: list = dataclasses.field(default_factory=list)
    system_prompt: Any = None
    setting_sources: list | None = None
    include_partial_messages: bool = False
    env: dict = dataclasses.field(default_factory=dict)
    resume: str | None = None
    max_turns: int | None = None


class SystemMessage:
    def __init__(self, subtype, data):
        self.subtype = subtype
        self.data = data


class AssistantMessage:
    def __init__(self, content, model="claude-test", parent_tool_use_id=None):
        self.content = content
        self.model = model
        self.parent_tool_use_id = parent_tool_use_id


class UserMessage:
    def __init__(self, content, uuid=None, parent_tool_use_id=None):
        self.content = content
        self.uuid = uuid
        self.parent_tool_use_id = parent_tool_use_id


class ResultMessage:
    def __init__(self, subtype="success", result="", session_id=None, is_error=False):
        self.subtype = subtype
        self.result = result
        self.session_id = session_id
        self.is_error = is_error
        self.usage = {"output_tokens": 1}
        self.total_cost_usd = 0.01
        self.duration_ms = 10
        self.num_turns = 1


class StreamEvent:
    def __init__(self, event, parent_tool_use_id=None):
        self.event = event
        self.parent_tool_use_id = parent_tool_use_id


def _mock_sdk(messages: list, captured: dict) -> types.ModuleType:
    module = types.ModuleType("claude_agent_sdk")

    async def query(*, prompt, options):
        captured["options"] = options
        if isinstance(prompt, str):
            captured["prompt"] = prompt
        else:
            captured["prompt"] = [item async for item in prompt]
        for message in messages:
            yield message

    module.query = query
    module.ClaudeAgentOptions = _Options
    return module


def test_sdk_message_to_record_shapes() -> None:
    init = sdk_message_to_record(SystemMessage("init", {"session_id": "s1", "tools": ["Bash"]}))
    assistant = sdk_message_to_record(AssistantMessage([
        SimpleNamespace(thinking="hmm", signature="x"),
        SimpleNamespace(text="hello"),
        SimpleNamespace(id="toolu_1", name="Bash", input={"command": "ls"}),
    ]))
    user = sdk_message_to_record(UserMessage([
        SimpleNamespace(tool_use_id="toolu_1", content="out", is_error=True),
    ]))

    assert init == {"type": "system", "subtype": "init", "session_id": "s1", "tools": ["Bash"]}
    assert [b["type"] for b in assistant["message"]["content"]] == ["thinking", "text", "tool_use"]
    assert user["message"]["content"][0] == {
        "type": "tool_result", "tool_use_id": "toolu_1", "content": "out", "is_error": True,
    }
    assert sdk_message_to_record({"type": "result", "subtype": "success"})["type"] == "result"
    assert sdk_message_to_record(object()) is None


@pytest.mark.asyncio
async def test_stream_translates_sdk_messages(tmp_path: Path) -> None:
    captured: dict = {}
    messages = [
        SystemMessage("init", {"session_id": "sess-9", "model": "claude-test"}),
        StreamEvent({"type": "message_start", "message": {"id": "msg_1"}}),
        StreamEvent({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Li"}}),
        AssistantMessage([SimpleNamespace(text="Listing"), SimpleNamespace(id="t1", name="Bash", input={})]),
        AssistantMessage([SimpleNamespace(text="side")], parent_tool_use_id="t1"),
        UserMessage([SimpleNamespace(tool_use_id="t1", content="a.txt", is_error=False)]),
        ResultMessage(result="Listing", session_id="sess-9"),
    ]
    client = ClaudeAgentClient(ClientConfig(api_key="sk-test", claude_home=tmp_path))

    async def inputs():
        yield UserInput(content="list files")

    with patch.dict(sys.modules, {"claude_agent_sdk": _mock_sdk(messages, captured)}):
        events = [e async for e in client.stream(
            inputs(), model="claude-test", cwd=str(tmp_path), resume="sess-9",
            append_system_prompt="Be brief.", unknown_flag=True,
        )]

    assert [type(e) for e in events] == [
        SystemInit, AssistantDelta, AssistantDelta, ToolUse, ToolResult, ResultSuccess,
    ]
    assert events[1] == AssistantDelta(message_id="msg_1", text="Li", partial=True)
    assert events[2].message_id == "msg_1"

    options = captured["options"]
    assert options.resume == "sess-9"
    assert options.include_partial_messages is True
    assert options.setting_sources == ["user", "project", "local"]
    assert options.system_prompt == {"type": "preset", "preset": "claude_code", "append": "Be brief."}
    assert options.env["ANTHROPIC_API_KEY"] == "sk-test"
    assert options.env["HOME"] == str(tmp_path)
    assert (tmp_path / ".claude").is_dir()
    assert captured["prompt"] == [{
        "type": "user",
        "message": {"role": "user", "content": "list files"},
        "parent_tool_use_id": None,
        "session_id": "sess-9",
    }]


@pytest.mark.asyncio
async def test_stream_with_string_prompt_uses_configured_model() -> None:
    captured: dict = {}
    client = ClaudeAgentClient(ClientConfig(model="claude-env", base_url="http://proxy"))

    with patch.dict(sys.modules, {"claude_agent_sdk": _mock_sdk([], captured)}):
        events = [e async for e in client.stream("list capabilities", permission_mode="plan")]

    assert events == []
    assert captured["prompt"] == "list capabilities"
    assert captured["options"].model == "claude-env"
    assert captured["options"].env["ANTHROPIC_BASE_URL"] == "http://proxy"


@pytest.mark.asyncio
async def test_load_history_reads_transcript(tmp_path: Path) -> None:
    session_id = "5f0c2a8e-1b7d-4c7e-9a55-0d5b8f9e2c11"
    dst = tmp_path / ".claude" / "projects" / "-home-dev-demo" / f"{session_id}.jsonl"
    dst.parent.mkdir(parents=True)
    dst.write_text((FIXTURES_DIR / "claude_session.jsonl").read_text(encoding="utf-8"), encoding="utf-8")
    client = ClaudeAgentClient(ClientConfig(claude_home=tmp_path))

    events = await client.load_history(session_id)

    assert isinstance(events[0], UserEcho)
    assert events[0].text == "List the files here\nplease"
    assert await client.load_history("unknown") is None
    assert await ClaudeAgentClient().load_history(session_id) is None
