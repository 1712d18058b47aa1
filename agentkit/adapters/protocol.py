"""Inbound request parsing and outbound payload builders.

Inbound (from a transport connection):
    chat          {content, sessionId?, attachments?}
    setSDKOptions {options | ...partial options}
    resume        {sessionId}
    interrupt     {}

Outbound (to subscribers):
    message_added, message_updated, message_delta, messages_updated,
    session_state_changed, error, connected
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from agentkit.engine.errors import InvalidMessageError, UnknownMessageTypeError
from agentkit.shared.models.message import Attachment, CoalescedMessage


@dataclass
class ChatRequest:
    content: str
    session_id: str | None = None
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class SetOptionsRequest:
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResumeRequest:
    session_id: str = ""


@dataclass
class InterruptRequest:
    pass


InboundMessage = ChatRequest | SetOptionsRequest | ResumeRequest | InterruptRequest


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidMessageError(f"'{key}' must be a string")
    return value


def parse_inbound(raw: str | bytes | dict[str, Any]) -> InboundMessage:
    """Parse a transport payload. Raises a ValidationError subclass."""
    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidMessageError(f"Invalid JSON: {exc.msg}") from exc
    else:
        payload = raw
    if not isinstance(payload, dict):
        raise InvalidMessageError("Message must be a JSON object")

    message_type = payload.get("type")
    if message_type == "chat":
        content = payload.get("content")
        if not isinstance(content, str):
            raise InvalidMessageError("'content' must be a string")
        raw_attachments = payload.get("attachments") or []
        if not isinstance(raw_attachments, list) or not all(
            isinstance(a, dict) for a in raw_attachments
        ):
            raise InvalidMessageError("'attachments' must be a list of objects")
        return ChatRequest(
            content=content,
            session_id=_optional_str(payload, "sessionId"),
            attachments=[Attachment.from_dict(a) for a in raw_attachments],
        )
    if message_type == "setSDKOptions":
        options = payload.get("options")
        if options is None:
            options = {k: v for k, v in payload.items() if k != "type"}
        if not isinstance(options, dict):
            raise InvalidMessageError("'options' must be an object")
        return SetOptionsRequest(options=options)
    if message_type == "resume":
        session_id = _optional_str(payload, "sessionId")
        if not session_id:
            raise InvalidMessageError("'sessionId' is required")
        return ResumeRequest(session_id=session_id)
    if message_type == "interrupt":
        return InterruptRequest()
    raise UnknownMessageTypeError(str(message_type))


# ── Outbound ──


def message_added(session_id: str | None, message: CoalescedMessage, index: int) -> dict[str, Any]:
    return {
        "type": "message_added",
        "sessionId": session_id,
        "index": index,
        "message": message.to_dict(),
    }


def message_updated(session_id: str | None, message: CoalescedMessage) -> dict[str, Any]:
    return {
        "type": "message_updated",
        "sessionId": session_id,
        "message": message.to_dict(),
    }


def message_delta(
    session_id: str | None,
    message_id: str,
    part_index: int,
    kind: str,
    text: str,
) -> dict[str, Any]:
    """Streamed text appended to part ``part_index`` of an existing entry."""
    return {
        "type": "message_delta",
        "sessionId": session_id,
        "messageId": message_id,
        "partIndex": part_index,
        "kind": kind,
        "text": text,
    }


def messages_updated(session_id: str | None, messages: list[CoalescedMessage]) -> dict[str, Any]:
    return {
        "type": "messages_updated",
        "sessionId": session_id,
        "messages": [m.to_dict() for m in messages],
    }


def session_state_changed(
    session_id: str | None,
    *,
    state: str,
    is_busy: bool,
    is_loading: bool,
    options: dict[str, Any] | None = None,
    summary: str | None = None,
    usage: dict[str, Any] | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "session_state_changed",
        "sessionId": session_id,
        "isBusy": is_busy,
        "isLoading": is_loading,
        "sessionState": {
            "state": state,
            "isBusy": is_busy,
            "isLoading": is_loading,
            "options": options or {},
        },
    }
    if summary is not None:
        payload["summary"] = summary
    if usage is not None:
        payload["usage"] = usage
    if error is not None:
        payload["error"] = error
    return payload


def error_payload(code: str, message: str) -> dict[str, Any]:
    return {"type": "error", "code": code, "message": message}


def connected(connection_id: str) -> dict[str, Any]:
    return {"type": "connected", "connectionId": connection_id}
