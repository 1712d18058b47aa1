"""Chat history and user input models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import uuid


def _gen_id() -> str:
    return str(uuid.uuid4())[:8]


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolStatus(Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ContentPart:
    """One displayable block of a coalesced message.

    ``type`` is one of text, thinking, image, document, tool_use.
    A tool_use part also carries its paired result once it arrives.
    """
    type: str
    text: str = ""
    # (message_id, kind) merge key for streamed assistant text.
    source_id: str | None = field(default=None, compare=False)
    tool_use_id: str | None = None
    name: str | None = None
    input: Any = None
    result: Any = None
    status: ToolStatus | None = None
    media_type: str | None = None
    data: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type}
        if self.type in ("text", "thinking"):
            d["text"] = self.text
        elif self.type == "tool_use":
            d["toolUseId"] = self.tool_use_id
            d["name"] = self.name
            d["input"] = self.input
            d["status"] = self.status.value if self.status else None
            if self.result is not None:
                d["result"] = self.result
        else:
            d["mediaType"] = self.media_type
            d["data"] = self.data
            if self.text:
                d["text"] = self.text
        return d


@dataclass
class CoalescedMessage:
    role: MessageRole
    parts: list[ContentPart] = field(default_factory=list)
    turn_id: str = "turn-0"
    # Live and replayed histories assign different ids to the same entry.
    id: str = field(default_factory=_gen_id, compare=False)
    # User entries only: False until the backend has received the input.
    confirmed: bool = True

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.type == "text")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "turnId": self.turn_id,
            "parts": [p.to_dict() for p in self.parts],
        }
        if self.role == MessageRole.USER:
            d["pending"] = not self.confirmed
        return d


@dataclass
class Attachment:
    name: str
    media_type: str
    # Base64 payload, as received from the client.
    data: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            name=str(data.get("name") or ""),
            media_type=str(data.get("mediaType") or data.get("media_type") or ""),
            data=str(data.get("data") or ""),
        )


@dataclass
class UserInput:
    """A user submission: plain text or structured content blocks."""
    content: str | list[dict[str, Any]]
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.get("text", "")
            for block in self.content
            if isinstance(block, dict) and block.get("type") == "text"
        )

    def is_empty(self) -> bool:
        if isinstance(self.content, str):
            return not self.content.strip()
        if not self.content:
            return True
        for block in self.content:
            if not isinstance(block, dict):
                continue
            if block.get("type") != "text":
                return False
            if str(block.get("text") or "").strip():
                return False
        return True
