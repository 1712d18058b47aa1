from __future__ import annotations

import pytest

from agentkit.adapters.events import (
    AssistantDelta,
    ResultError,
    ResultSuccess,
    SystemInit,
    ToolResult,
    ToolUse,
    UserEcho,
    WireEventParser,
    event_to_dict,
    is_terminal,
    parse_wire_record,
)
from agentkit.engine.errors import EventParseError


def test_system_init_record() -> None:
    [event] = parse_wire_record({
        "type": "system",
        "subtype": "init",
        "session_id": "sess-1",
        "model": "claude-sonnet-4-5",
        "cwd": "/work",
        "permissionMode": "default",
        "tools": ["Bash", "Read"],
        "slash_commands": ["compact"],
        "skills": ["pdf"],
        "apiKeySource": "none",
    })

    assert isinstance(event, SystemInit)
    assert event.session_id == "sess-1"
    assert event.tools == ["Bash", "Read"]
    assert event.skills == ["pdf"]
    assert event.api_key_source == "none"


def test_system_records_other_than_init_are_ignored() -> None:
    assert parse_wire_record({"type": "system", "subtype": "compact_boundary"}) == []


def test_system_init_without_session_id_is_rejected() -> None:
    with pytest.raises(EventParseError):
        parse_wire_record({"type": "system", "subtype": "init"})


def test_assistant_record_yields_text_thinking_and_tool_use() -> None:
    events = parse_wire_record({
        "type": "assistant",
        "message": {
            "id": "msg_1",
            "content": [
                {"type": "thinking", "thinking": "hmm"},
                {"type": "text", "text": "Running it"},
                {"type": "text", "text": "(no content)"},
                {"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {"command": "ls"}},
            ],
        },
    })

    assert events == [
        AssistantDelta(message_id="msg_1", text="hmm", kind="thinking"),
        AssistantDelta(message_id="msg_1", text="Running it"),
        ToolUse(tool_use_id="toolu_1", name="Bash", input={"command": "ls"}, message_id="msg_1"),
    ]


def test_user_record_with_tool_results_and_text() -> None:
    events = parse_wire_record({
        "type": "user",
        "uuid": "u-1",
        "message": {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": "ok", "is_error": False},
                {"type": "text", "text": "and now?"},
            ],
        },
    })

    assert events[0] == ToolResult(tool_use_id="toolu_1", content="ok")
    assert isinstance(events[1], UserEcho)
    assert events[1].text == "and now?"
    assert events[1].message_id == "u-1"


def test_meta_sidechain_and_unknown_records_are_skipped() -> None:
    parser = WireEventParser()
    assert parser.parse({"type": "user", "isMeta": True, "message": {"content": "x"}}) == []
    assert parser.parse({"type": "assistant", "isSidechain": True, "message": {"content": []}}) == []
    assert parser.parse({"type": "assistant", "parent_tool_use_id": "t", "message": {"content": []}}) == []
    assert parser.parse({"type": "summary", "summary": "Old chat"}) == []


def test_malformed_records_raise() -> None:
    parser = WireEventParser()
    with pytest.raises(EventParseError):
        parser.parse({"type": "assistant"})
    with pytest.raises(EventParseError):
        parser.parse({"type": "user", "message": {"content": 42}})
    with pytest.raises(EventParseError):
        parser.parse(["not", "a", "dict"])


def test_result_records() -> None:
    [ok] = parse_wire_record({
        "type": "result", "subtype": "success", "result": "done",
        "session_id": "s", "usage": {"input_tokens": 1}, "num_turns": 2,
    })
    [bad] = parse_wire_record({"type": "result", "subtype": "error_during_execution"})
    [flagged] = parse_wire_record({
        "type": "result", "subtype": "success", "is_error": True, "result": "API error",
    })

    assert isinstance(ok, ResultSuccess) and ok.result == "done" and ok.num_turns == 2
    assert isinstance(bad, ResultError) and bad.error == "error_during_execution"
    assert isinstance(flagged, ResultError) and flagged.error == "API error"
    assert all(is_terminal(e) for e in (ok, bad, flagged))


def test_stream_event_deltas_use_enclosing_message_id() -> None:
    parser = WireEventParser()
    assert parser.parse({
        "type": "stream_event",
        "event": {"type": "message_start", "message": {"id": "msg_9"}},
    }) == []

    [delta] = parser.parse({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
    })
    [thought] = parser.parse({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "x"}},
    })

    assert delta == AssistantDelta(message_id="msg_9", text="Hi", partial=True)
    assert thought.kind == "thinking" and thought.partial


def test_stream_delta_before_message_start_is_dropped() -> None:
    parser = WireEventParser()
    assert parser.parse({
        "type": "stream_event",
        "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
    }) == []


def test_assistant_without_id_falls_back_to_stream_message_id() -> None:
    parser = WireEventParser()
    parser.parse({"type": "stream_event", "event": {"type": "message_start", "message": {"id": "msg_2"}}})

    [event] = parser.parse({"type": "assistant", "message": {"content": [{"type": "text", "text": "full"}]}})

    assert event.message_id == "msg_2"


def test_event_to_dict_drops_unset_fields() -> None:
    event = ToolUse(tool_use_id="t1", name="Read", input={"file_path": "a"})

    data = event_to_dict(event)

    assert data["event"] == "tool_use"
    assert "message_id" not in data
    assert data["input"] == {"file_path": "a"}
