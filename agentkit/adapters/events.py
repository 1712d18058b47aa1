"""Event types emitted by the agent backend.

Each backend record (live SDK message or stored transcript line) is
parsed into one or more typed dataclasses at the boundary, so the
session and coalescer never see dynamically shaped dicts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agentkit.engine.errors import EventParseError

logger = logging.getLogger(__name__)


@dataclass
class AgentEvent:
    """Base event from the agent backend."""
    event_type: str = ""


@dataclass
class SystemInit(AgentEvent):
    event_type: str = "system_init"
    session_id: str = ""
    model: str | None = None
    cwd: str | None = None
    permission_mode: str | None = None
    tools: list = field(default_factory=list)
    slash_commands: list = field(default_factory=list)
    mcp_servers: list = field(default_factory=list)
    skills: list = field(default_factory=list)
    plugins: list = field(default_factory=list)
    api_key_source: str | None = None


@dataclass
class UserEcho(AgentEvent):
    event_type: str = "user_echo"
    text: str = ""
    # Raw content blocks when the user message was structured.
    content: list = field(default_factory=list)
    message_id: str | None = None
    # Set only when the session itself records handing an input over.
    local_id: str | None = None


@dataclass
class AssistantDelta(AgentEvent):
    event_type: str = "assistant_delta"
    message_id: str = ""
    text: str = ""
    kind: str = "text"  # "text" or "thinking"
    partial: bool = False


@dataclass
class ToolUse(AgentEvent):
    event_type: str = "tool_use"
    tool_use_id: str = ""
    name: str = ""
    input: Any = None
    message_id: str | None = None


@dataclass
class ToolResult(AgentEvent):
    event_type: str = "tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool = False


@dataclass
class ResultSuccess(AgentEvent):
    event_type: str = "result_success"
    result: str = ""
    session_id: str | None = None
    usage: dict | None = None
    total_cost_usd: float | None = None
    duration_ms: int | None = None
    num_turns: int | None = None


@dataclass
class ResultError(AgentEvent):
    event_type: str = "result_error"
    subtype: str = "error"
    error: str = ""
    session_id: str | None = None
    usage: dict | None = None
    total_cost_usd: float | None = None
    duration_ms: int | None = None


def is_terminal(event: AgentEvent) -> bool:
    """True for the result events that end a turn."""
    return isinstance(event, (ResultSuccess, ResultError))


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


# ── Wire record parsing ──


_NO_CONTENT = "(no content)"


class WireEventParser:
    """Parse Claude stream/transcript records into typed events.

    Records are dicts shaped like the CLI's stream-json output (which is
    also what the per-session JSONL transcript stores). Partial
    ``stream_event`` records need the id of the enclosing message, so
    the parser remembers the last ``message_start`` it saw; use one
    parser per stream.
    """

    def __init__(self) -> None:
        self._current_message_id: str | None = None
        self._anonymous_count = 0

    def _anonymous_id(self) -> str:
        self._anonymous_count += 1
        return f"anon-{self._anonymous_count}"

    def parse(self, record: dict[str, Any]) -> list[AgentEvent]:
        if not isinstance(record, dict):
            raise EventParseError("<non-dict>", f"expected object, got {type(record).__name__}")
        record_type = str(record.get("type") or "").lower()
        if record.get("isSidechain") or record.get("parent_tool_use_id"):
            return []
        if record_type == "system":
            return self._parse_system(record)
        if record_type == "user":
            return self._parse_user(record)
        if record_type == "assistant":
            return self._parse_assistant(record)
        if record_type == "result":
            return self._parse_result(record)
        if record_type == "stream_event":
            return self._parse_stream_event(record)
        # summary, file-history-snapshot and friends carry no chat content.
        return []

    def _parse_system(self, record: dict[str, Any]) -> list[AgentEvent]:
        if record.get("subtype") != "init":
            return []
        session_id = record.get("session_id") or record.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise EventParseError("system", "init record without session_id")
        return [SystemInit(
            session_id=session_id,
            model=record.get("model"),
            cwd=record.get("cwd"),
            permission_mode=record.get("permissionMode"),
            tools=list(record.get("tools") or []),
            slash_commands=list(record.get("slash_commands") or []),
            mcp_servers=list(record.get("mcp_servers") or []),
            skills=list(record.get("skills") or []),
            plugins=list(record.get("plugins") or []),
            api_key_source=record.get("apiKeySource"),
        )]

    def _parse_user(self, record: dict[str, Any]) -> list[AgentEvent]:
        if record.get("isMeta"):
            return []
        message = record.get("message")
        if not isinstance(message, dict):
            raise EventParseError("user", "missing message object")
        message_id = record.get("uuid")
        content = message.get("content")
        if isinstance(content, str):
            if not content.strip():
                return []
            return [UserEcho(text=content, message_id=message_id)]
        if not isinstance(content, list):
            raise EventParseError("user", "content must be a string or list")

        events: list[AgentEvent] = []
        echo_blocks: list[dict[str, Any]] = []
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = str(block.get("type") or "").lower()
            if block_type == "tool_result":
                events.append(ToolResult(
                    tool_use_id=str(block.get("tool_use_id") or ""),
                    content=block.get("content"),
                    is_error=bool(block.get("is_error", False)),
                ))
            elif block_type in {"text", "image", "document"}:
                echo_blocks.append(block)
        if echo_blocks:
            text = "".join(
                str(b.get("text") or "") for b in echo_blocks if b.get("type") == "text"
            )
            events.append(UserEcho(
                text=text,
                content=echo_blocks,
                message_id=message_id,
            ))
        return events

    def _parse_assistant(self, record: dict[str, Any]) -> list[AgentEvent]:
        message = record.get("message")
        if not isinstance(message, dict):
            raise EventParseError("assistant", "missing message object")
        # SDK objects carry no message id; the last message_start does.
        message_id = str(
            message.get("id")
            or self._current_message_id
            or record.get("uuid")
            or self._anonymous_id()
        )
        content = message.get("content")
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        if not isinstance(content, list):
            raise EventParseError("assistant", "content must be a list")

        events: list[AgentEvent] = []
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = str(block.get("type") or "").lower()
            if block_type == "text":
                text = str(block.get("text") or "")
                if not text or text.strip() == _NO_CONTENT:
                    continue
                events.append(AssistantDelta(message_id=message_id, text=text))
            elif block_type == "thinking":
                thinking = str(block.get("thinking") or "")
                if thinking:
                    events.append(AssistantDelta(
                        message_id=message_id, text=thinking, kind="thinking",
                    ))
            elif block_type == "tool_use":
                events.append(ToolUse(
                    tool_use_id=str(block.get("id") or ""),
                    name=str(block.get("name") or "tool"),
                    input=block.get("input"),
                    message_id=message_id,
                ))
        return events

    def _parse_result(self, record: dict[str, Any]) -> list[AgentEvent]:
        subtype = str(record.get("subtype") or "")
        if not subtype:
            raise EventParseError("result", "missing subtype")
        common = dict(
            session_id=record.get("session_id"),
            usage=record.get("usage"),
            total_cost_usd=record.get("total_cost_usd"),
            duration_ms=record.get("duration_ms"),
        )
        if subtype == "success" and not record.get("is_error"):
            return [ResultSuccess(
                result=str(record.get("result") or ""),
                num_turns=record.get("num_turns"),
                **common,
            )]
        return [ResultError(
            subtype=subtype,
            error=str(record.get("result") or subtype),
            **common,
        )]

    def _parse_stream_event(self, record: dict[str, Any]) -> list[AgentEvent]:
        event = record.get("event")
        if not isinstance(event, dict):
            raise EventParseError("stream_event", "missing event object")
        event_type = event.get("type")
        if event_type == "message_start":
            message = event.get("message") or {}
            self._current_message_id = message.get("id") or None
            return []
        if event_type != "content_block_delta" or not self._current_message_id:
            return []
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return [AssistantDelta(
                message_id=self._current_message_id,
                text=str(delta["text"]),
                partial=True,
            )]
        if delta.get("type") == "thinking_delta" and delta.get("thinking"):
            return [AssistantDelta(
                message_id=self._current_message_id,
                text=str(delta["thinking"]),
                kind="thinking",
                partial=True,
            )]
        return []


def parse_wire_record(record: dict[str, Any]) -> list[AgentEvent]:
    """Parse a single self-contained record (no partial stream state)."""
    return WireEventParser().parse(record)
