"""Fold raw backend events into a stable, appendable chat history.

``fold`` is pure: it never mutates the history or the messages it is
given, it returns a new list (or the same list when nothing changed).
Live sessions and transcript replay both go through it, so replaying a
stored event sequence rebuilds exactly the history a live session
built from the same events.

Rules:
    - turn ids are ``turn-<n>``; n is the ordinal of the user entry
      that opened the turn. The current turn is the turn of the latest
      confirmed user entry.
    - user entries submitted locally stay unconfirmed at the tail of the
      history until the backend receives them; backend output for the
      current turn is inserted before that pending tail.
    - consecutive assistant output of one turn merges into one entry.
    - a tool_use entry stays pending until its tool_result arrives in the
      same turn; after that turn it is never paired.
    - system init and result events are metadata only.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable

from agentkit.adapters.events import (
    AgentEvent,
    AssistantDelta,
    ToolResult,
    ToolUse,
    UserEcho,
)
from agentkit.shared.models.message import (
    CoalescedMessage,
    ContentPart,
    MessageRole,
    ToolStatus,
    _gen_id,
)

History = list[CoalescedMessage]


def fold(history: History, event: AgentEvent) -> History:
    """Apply one event to ``history`` and return the resulting history."""
    if isinstance(event, UserEcho):
        return _fold_user_echo(history, event)
    if isinstance(event, AssistantDelta):
        return _fold_assistant(history, event)
    if isinstance(event, ToolUse):
        return _fold_tool_use(history, event)
    if isinstance(event, ToolResult):
        return _fold_tool_result(history, event)
    return history


def build_history(events: Iterable[AgentEvent]) -> History:
    """Left fold of a full event sequence from an empty history."""
    history: History = []
    for event in events:
        history = fold(history, event)
    return history


def current_turn(history: History) -> str:
    for message in reversed(history):
        if message.role == MessageRole.USER and message.confirmed:
            return message.turn_id
    return "turn-0"


def next_turn_id(history: History) -> str:
    count = sum(1 for m in history if m.role == MessageRole.USER)
    return f"turn-{count + 1}"


def user_entry(
    history: History,
    content: str | list[dict[str, Any]],
    *,
    confirmed: bool = False,
    message_id: str | None = None,
) -> CoalescedMessage:
    """Build the user entry a local submission appends to the history."""
    return CoalescedMessage(
        role=MessageRole.USER,
        parts=content_to_parts(content),
        turn_id=next_turn_id(history),
        id=message_id or _gen_id(),
        confirmed=confirmed,
    )


def append_user(history: History, message: CoalescedMessage) -> History:
    return [*history, message]


def content_to_parts(content: str | list[dict[str, Any]]) -> list[ContentPart]:
    if isinstance(content, str):
        return [ContentPart(type="text", text=content)]
    parts: list[ContentPart] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = str(block.get("type") or "")
        if block_type == "text":
            parts.append(ContentPart(type="text", text=str(block.get("text") or "")))
        elif block_type in {"image", "document"}:
            source = block.get("source") or {}
            parts.append(ContentPart(
                type=block_type,
                media_type=source.get("media_type"),
                data=source.get("data"),
                text=str(block.get("title") or ""),
            ))
    return parts


def part_key(event: AssistantDelta) -> str:
    """Merge key of the content part an assistant delta streams into."""
    return f"{event.message_id}:{event.kind}"


def diff(old: History, new: History) -> tuple[list[tuple[int, CoalescedMessage]], list[CoalescedMessage]]:
    """Return (added with index, updated) between two histories."""
    previous = {m.id: m for m in old}
    added: list[tuple[int, CoalescedMessage]] = []
    updated: list[CoalescedMessage] = []
    for index, message in enumerate(new):
        before = previous.get(message.id)
        if before is None:
            added.append((index, message))
        elif before is not message and before != message:
            updated.append(message)
    return added, updated


# ── Internals ──


def _split_pending(history: History) -> tuple[History, History]:
    """Split off the suffix of unconfirmed user entries."""
    cut = len(history)
    while cut > 0:
        message = history[cut - 1]
        if message.role == MessageRole.USER and not message.confirmed:
            cut -= 1
        else:
            break
    return history[:cut], history[cut:]


def _unique_id(history: History, preferred: str | None) -> str:
    if preferred and all(m.id != preferred for m in history):
        return preferred
    return _gen_id()


def _fold_user_echo(history: History, event: UserEcho) -> History:
    if event.local_id:
        for index, message in enumerate(history):
            if message.id == event.local_id and message.role == MessageRole.USER:
                if message.confirmed:
                    return history
                result = list(history)
                result[index] = replace(message, confirmed=True)
                return result
        return history

    # Every echo without a local id is its own entry. The session drops the
    # backend copy of an input it delivered itself before it gets here.
    body, pending = _split_pending(history)
    content: str | list[dict[str, Any]] = event.content or event.text
    message = CoalescedMessage(
        role=MessageRole.USER,
        parts=content_to_parts(content),
        turn_id=next_turn_id(body),
        id=_unique_id(history, event.message_id),
        confirmed=True,
    )
    result = [*body, message]
    for entry in pending:
        result.append(replace(entry, turn_id=next_turn_id(result)))
    return result


def _fold_assistant(history: History, event: AssistantDelta) -> History:
    body, pending = _split_pending(history)
    turn = current_turn(history)
    key = part_key(event)

    if body and body[-1].role == MessageRole.ASSISTANT and body[-1].turn_id == turn:
        last = body[-1]
        parts = list(last.parts)
        for index, part in enumerate(parts):
            if part.source_id == key:
                text = part.text + event.text if event.partial else event.text
                parts[index] = replace(part, text=text)
                break
        else:
            parts.append(ContentPart(type=event.kind, text=event.text, source_id=key))
        return [*body[:-1], replace(last, parts=parts), *pending]

    message = CoalescedMessage(
        role=MessageRole.ASSISTANT,
        parts=[ContentPart(type=event.kind, text=event.text, source_id=key)],
        turn_id=turn,
        id=_unique_id(history, event.message_id),
    )
    return [*body, message, *pending]


def _fold_tool_use(history: History, event: ToolUse) -> History:
    body, pending = _split_pending(history)
    message = CoalescedMessage(
        role=MessageRole.TOOL,
        parts=[ContentPart(
            type="tool_use",
            tool_use_id=event.tool_use_id,
            name=event.name,
            input=event.input,
            status=ToolStatus.PENDING,
        )],
        turn_id=current_turn(history),
        id=_unique_id(history, event.tool_use_id),
    )
    return [*body, message, *pending]


def _fold_tool_result(history: History, event: ToolResult) -> History:
    body, pending = _split_pending(history)
    turn = current_turn(history)
    status = ToolStatus.ERROR if event.is_error else ToolStatus.COMPLETE

    for index in range(len(body) - 1, -1, -1):
        message = body[index]
        if message.turn_id != turn:
            break
        if message.role != MessageRole.TOOL:
            continue
        parts = list(message.parts)
        for part_index, part in enumerate(parts):
            if (
                part.type == "tool_use"
                and part.tool_use_id == event.tool_use_id
                and part.status == ToolStatus.PENDING
            ):
                parts[part_index] = replace(part, result=event.content, status=status)
                result = list(history)
                result[index] = replace(message, parts=parts)
                return result

    orphan = CoalescedMessage(
        role=MessageRole.TOOL,
        parts=[ContentPart(
            type="tool_use",
            tool_use_id=event.tool_use_id,
            result=event.content,
            status=status,
        )],
        turn_id=turn,
        id=_unique_id(history, f"{event.tool_use_id}-result" if event.tool_use_id else None),
    )
    return [*body, orphan, *pending]
