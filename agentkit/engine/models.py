"""Core data models for the session layer.

Enums and the per-session options record. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class SessionState(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    IDLE = "idle"
    LOADING = "loading"
    BUSY = "busy"
    ERROR = "error"


class PermissionMode(str, Enum):
    """Maps to claude_agent_sdk permission modes."""
    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS = "bypassPermissions"
    PLAN = "plan"


class ThinkingLevel(str, Enum):
    """How much extended thinking the backend may use."""
    OFF = "off"
    DEFAULT_ON = "default_on"


# Token budget handed to the backend when thinking is enabled.
DEFAULT_THINKING_TOKENS = 8192

DEFAULT_ALLOWED_TOOLS = [
    "Task", "Bash", "Glob", "Grep", "LS", "ExitPlanMode", "Read", "Edit",
    "MultiEdit", "Write", "NotebookEdit", "WebFetch", "TodoWrite",
    "WebSearch", "BashOutput", "KillBash",
]

# Wire (camelCase) option names accepted from clients.
_WIRE_ALIASES = {
    "permissionMode": "permission_mode",
    "allowedTools": "allowed_tools",
    "thinkingLevel": "thinking_level",
    "appendSystemPrompt": "append_system_prompt",
    "maxTurns": "max_turns",
}


@dataclass
class SessionOptions:
    """Backend options merged with session-specific overrides.

    Replacing a session's options never touches a running stream; the
    values are read once when a stream is opened.
    """
    cwd: str | None = None
    model: str | None = None
    permission_mode: PermissionMode = PermissionMode.DEFAULT
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    thinking_level: ThinkingLevel = ThinkingLevel.OFF
    append_system_prompt: str | None = None
    max_turns: int | None = None
    # Passed through to the client untouched (e.g. "resume").
    extra: dict[str, Any] = field(default_factory=dict)

    def merge(self, partial: dict[str, Any]) -> SessionOptions:
        """Return a copy with ``partial`` applied.

        Accepts snake_case or camelCase keys. Unknown keys land in
        ``extra``. Invalid enum values raise ValueError.
        """
        merged = copy.deepcopy(self)
        known = {f.name for f in fields(self)} - {"extra"}
        for raw_key, value in partial.items():
            key = _WIRE_ALIASES.get(raw_key, raw_key)
            if key == "permission_mode":
                merged.permission_mode = PermissionMode(value)
            elif key == "thinking_level":
                merged.thinking_level = ThinkingLevel(value)
            elif key == "allowed_tools":
                if not isinstance(value, list):
                    raise ValueError("allowedTools must be a list")
                merged.allowed_tools = [str(v) for v in value]
            elif key == "max_turns":
                merged.max_turns = int(value) if value is not None else None
            elif key in known:
                setattr(merged, key, value)
            else:
                merged.extra[raw_key] = value
        return merged

    def to_client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments understood by AgentClient.stream()."""
        kwargs: dict[str, Any] = {
            "permission_mode": self.permission_mode.value,
            "allowed_tools": list(self.allowed_tools),
        }
        if self.cwd:
            kwargs["cwd"] = self.cwd
        if self.model:
            kwargs["model"] = self.model
        if self.append_system_prompt:
            kwargs["append_system_prompt"] = self.append_system_prompt
        if self.max_turns is not None:
            kwargs["max_turns"] = self.max_turns
        if self.thinking_level == ThinkingLevel.DEFAULT_ON:
            kwargs["max_thinking_tokens"] = DEFAULT_THINKING_TOKENS
        kwargs.update(self.extra)
        return kwargs

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase)."""
        return {
            "cwd": self.cwd,
            "model": self.model,
            "permissionMode": self.permission_mode.value,
            "allowedTools": list(self.allowed_tools),
            "thinkingLevel": self.thinking_level.value,
            "maxTurns": self.max_turns,
        }
