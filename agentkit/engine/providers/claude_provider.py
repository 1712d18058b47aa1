"""Claude Agent SDK backend.

Wraps claude_agent_sdk.query() for long-lived streaming sessions and
reads the CLI's JSONL transcripts for resume.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import shutil
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator

from agentkit.adapters.events import AgentEvent, WireEventParser
from agentkit.shared.models.message import UserInput
from agentkit.shared.services.transcript_store import TranscriptStore

from .base import AgentClient

logger = logging.getLogger(__name__)

_DEFAULT_SETTING_SOURCES = ["user", "project", "local"]


@dataclasses.dataclass
class ClientConfig:
    """Credentials and endpoint overrides injected into the backend env."""
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    # Directory that holds (or will hold) the backend's .claude folder.
    claude_home: Path | None = None


class ClaudeAgentClient(AgentClient):
    """Backend driven by the Claude Agent SDK.

    Every SDK message is converted to the CLI's stream-json record
    shape and parsed with the same parser the transcript store uses,
    so live and replayed sessions coalesce identically.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        store: TranscriptStore | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        if store is None and self._config.claude_home is not None:
            store = TranscriptStore(self._config.claude_home / ".claude" / "projects")
        self._store = store

    @property
    def name(self) -> str:
        return "claude"

    @property
    def store(self) -> TranscriptStore | None:
        return self._store

    async def stream(
        self,
        prompt: str | AsyncIterable[UserInput],
        **options: Any,
    ) -> AsyncIterator[AgentEvent]:
        # Import SDK lazily to avoid import errors when SDK
        # is not installed (e.g., during unit testing)
        from claude_agent_sdk import query, ClaudeAgentOptions

        sdk_options = ClaudeAgentOptions(**self._build_options_kwargs(
            options, ClaudeAgentOptions,
        ))
        if isinstance(prompt, str):
            source: Any = prompt
        else:
            source = self._sdk_inputs(prompt, options.get("resume"))

        logger.info(
            "Claude stream starting model=%s mode=%s cwd=%s resume=%s",
            options.get("model") or self._config.model or "<default>",
            options.get("permission_mode", "default"),
            options.get("cwd") or "<cwd>",
            (options.get("resume") or "-")[:8],
        )
        parser = WireEventParser()
        messages = query(prompt=source, options=sdk_options)
        try:
            async for message in messages:
                record = sdk_message_to_record(message)
                if record is None:
                    continue
                for event in parser.parse(record):
                    yield event
        finally:
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                await aclose()

    async def load_history(self, session_id: str) -> list[AgentEvent] | None:
        if self._store is None:
            return None
        path = await asyncio.to_thread(self._store.locate, session_id)
        if path is None:
            return None
        return await asyncio.to_thread(self._store.read, path)

    def is_available(self) -> bool:
        """Check if claude CLI is installed."""
        return shutil.which("claude") is not None

    # ── Helpers ──

    def _build_options_kwargs(self, options: dict[str, Any], options_cls: Any) -> dict[str, Any]:
        kwargs: dict[str, Any] = dict(options)
        append = kwargs.pop("append_system_prompt", None)
        if append:
            kwargs["system_prompt"] = {
                "type": "preset",
                "preset": "claude_code",
                "append": append,
            }
        if not kwargs.get("model") and self._config.model:
            kwargs["model"] = self._config.model
        kwargs.setdefault("setting_sources", list(_DEFAULT_SETTING_SOURCES))
        # Token-level deltas arrive as stream_event records.
        kwargs.setdefault("include_partial_messages", True)

        env = dict(kwargs.get("env") or {})
        env.update(self._custom_env(kwargs.get("cwd")))
        if env:
            kwargs["env"] = env

        if dataclasses.is_dataclass(options_cls):
            accepted = {f.name for f in dataclasses.fields(options_cls)}
            dropped = sorted(set(kwargs) - accepted)
            if dropped:
                logger.debug("Ignoring unsupported SDK options: %s", ", ".join(dropped))
            kwargs = {k: v for k, v in kwargs.items() if k in accepted}
        return kwargs

    def _custom_env(self, cwd: str | None) -> dict[str, str]:
        env: dict[str, str] = {}
        if self._config.api_key:
            env["ANTHROPIC_API_KEY"] = self._config.api_key
        if self._config.base_url:
            env["ANTHROPIC_BASE_URL"] = self._config.base_url
            env["ANTHROPIC_API_URL"] = self._config.base_url
        if self._config.model:
            env["ANTHROPIC_MODEL"] = self._config.model

        home = self._config.claude_home
        if home is not None:
            try:
                (home / ".claude").mkdir(parents=True, exist_ok=True)
                env["HOME"] = str(home)
                if os.name == "nt":
                    env["USERPROFILE"] = str(home)
            except OSError as exc:
                logger.warning("Failed to prepare Claude home at %s: %s", home, exc)
        return env

    @staticmethod
    async def _sdk_inputs(
        inputs: AsyncIterable[UserInput],
        session_id: str | None,
    ) -> AsyncIterator[dict[str, Any]]:
        async for user_input in inputs:
            yield {
                "type": "user",
                "message": {"role": "user", "content": user_input.content},
                "parent_tool_use_id": None,
                "session_id": session_id or "",
            }


# ── SDK message conversion ──


def _block_to_dict(block: Any) -> dict[str, Any] | None:
    if isinstance(block, dict):
        return block
    if hasattr(block, "thinking"):
        return {"type": "thinking", "thinking": block.thinking or ""}
    if hasattr(block, "tool_use_id"):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": getattr(block, "content", None),
            "is_error": bool(getattr(block, "is_error", False)),
        }
    if hasattr(block, "name") and hasattr(block, "input"):
        return {
            "type": "tool_use",
            "id": getattr(block, "id", ""),
            "name": block.name,
            "input": block.input,
        }
    if hasattr(block, "text"):
        return {"type": "text", "text": block.text or ""}
    return None


def _blocks(content: Any) -> Any:
    if isinstance(content, str):
        return content
    return [d for d in (_block_to_dict(b) for b in content or []) if d is not None]


def sdk_message_to_record(message: Any) -> dict[str, Any] | None:
    """Convert an SDK message object to a stream-json record dict."""
    if isinstance(message, dict):
        return message
    kind = type(message).__name__
    parent = getattr(message, "parent_tool_use_id", None)
    if kind == "SystemMessage":
        data = dict(getattr(message, "data", None) or {})
        data["type"] = "system"
        data["subtype"] = getattr(message, "subtype", data.get("subtype"))
        return data
    if kind == "AssistantMessage":
        return {
            "type": "assistant",
            "parent_tool_use_id": parent,
            "message": {
                "id": getattr(message, "id", None),
                "role": "assistant",
                "model": getattr(message, "model", None),
                "content": _blocks(message.content),
            },
        }
    if kind == "UserMessage":
        return {
            "type": "user",
            "parent_tool_use_id": parent,
            "uuid": getattr(message, "uuid", None),
            "message": {"role": "user", "content": _blocks(message.content)},
        }
    if kind == "ResultMessage":
        return {
            "type": "result",
            "subtype": message.subtype,
            "is_error": bool(getattr(message, "is_error", False)),
            "result": getattr(message, "result", None),
            "session_id": getattr(message, "session_id", None),
            "usage": getattr(message, "usage", None),
            "total_cost_usd": getattr(message, "total_cost_usd", None),
            "duration_ms": getattr(message, "duration_ms", None),
            "num_turns": getattr(message, "num_turns", None),
        }
    if kind == "StreamEvent":
        return {
            "type": "stream_event",
            "parent_tool_use_id": parent,
            "event": getattr(message, "event", None),
        }
    logger.debug("Skipping unknown SDK message type %s", kind)
    return None
