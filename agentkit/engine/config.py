"""Server configuration loaded from environment variables.

All settings have sensible defaults. Override via AGENTKIT_* env vars,
or a YAML file (see yaml_config.py). Resolved once at startup and
passed into SessionManager; nothing below reads the environment later.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .models import (
    DEFAULT_ALLOWED_TOOLS,
    PermissionMode,
    SessionOptions,
    ThinkingLevel,
)
from .providers.claude_provider import ClientConfig

logger = logging.getLogger(__name__)


def _dir_path(value: str | None) -> Path | None:
    text = (value or "").strip()
    if not text:
        return None
    return Path(text).expanduser().resolve()


def resolve_claude_home(
    env: Mapping[str, str] | None = None,
    cwd_hint: str | None = None,
) -> Path | None:
    """Directory that holds the backend's ``.claude`` folder.

    Precedence: CLAUDE_HOME, CLAUDE_AGENT_HOME, the cwd hint,
    WORKSPACE_DIR, then the OS home directory.
    """
    env = os.environ if env is None else env
    for candidate in (
        env.get("CLAUDE_HOME"),
        env.get("CLAUDE_AGENT_HOME"),
        cwd_hint,
        env.get("WORKSPACE_DIR"),
    ):
        path = _dir_path(candidate)
        if path is not None:
            return path
    return _dir_path(env.get("HOME") or env.get("USERPROFILE") or str(Path.home()))


def _split_list(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """Process-wide configuration for the agentkit server."""

    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    # Session defaults
    cwd: str | None = None
    model: str | None = None
    permission_mode: PermissionMode = PermissionMode.DEFAULT
    thinking_level: ThinkingLevel = ThinkingLevel.OFF
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    append_system_prompt: str | None = None
    max_turns: int | None = None

    # Per-connection outbound queue bound
    subscriber_queue_size: int = 5000

    # Backend client
    api_key: str | None = field(default=None, repr=False)
    base_url: str | None = None
    client_model: str | None = None
    claude_home: Path | None = None

    @property
    def projects_root(self) -> Path | None:
        if self.claude_home is None:
            return None
        return self.claude_home / ".claude" / "projects"

    def default_options(self) -> SessionOptions:
        """Options every new session starts from."""
        return SessionOptions(
            cwd=self.cwd,
            model=self.model,
            permission_mode=self.permission_mode,
            allowed_tools=list(self.allowed_tools),
            thinking_level=self.thinking_level,
            append_system_prompt=self.append_system_prompt,
            max_turns=self.max_turns,
        )

    def client_config(self) -> ClientConfig:
        return ClientConfig(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.client_model,
            claude_home=self.claude_home,
        )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ServerConfig:
        """Load configuration from AGENTKIT_* and ANTHROPIC_* variables."""
        env = os.environ if env is None else env
        agentkit_vars = {k: v for k, v in env.items() if k.startswith("AGENTKIT_")}
        if agentkit_vars:
            logger.info(
                "ServerConfig.from_env: AGENTKIT_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(agentkit_vars.items())),
            )
        else:
            logger.debug("ServerConfig.from_env: no AGENTKIT_* env vars set, using defaults")

        cwd = env.get("AGENTKIT_CWD") or None
        max_turns = env.get("AGENTKIT_MAX_TURNS")
        config = cls(
            host=env.get("AGENTKIT_HOST", cls.host),
            port=int(env.get("AGENTKIT_PORT", str(cls.port))),
            log_level=env.get("AGENTKIT_LOG_LEVEL", cls.log_level).upper(),
            cwd=cwd,
            model=env.get("AGENTKIT_MODEL") or None,
            permission_mode=PermissionMode(
                env.get("AGENTKIT_PERMISSION_MODE", cls.permission_mode.value)
            ),
            thinking_level=ThinkingLevel(
                env.get("AGENTKIT_THINKING_LEVEL", cls.thinking_level.value)
            ),
            allowed_tools=(
                _split_list(env.get("AGENTKIT_ALLOWED_TOOLS"))
                or list(DEFAULT_ALLOWED_TOOLS)
            ),
            max_turns=int(max_turns) if max_turns else None,
            subscriber_queue_size=int(env.get(
                "AGENTKIT_QUEUE_SIZE", str(cls.subscriber_queue_size)
            )),
            api_key=env.get("ANTHROPIC_API_KEY") or None,
            base_url=env.get("ANTHROPIC_BASE_URL") or None,
            client_model=env.get("ANTHROPIC_MODEL") or None,
            claude_home=resolve_claude_home(env, cwd),
        )
        logger.info(
            "ServerConfig.from_env: host=%s port=%d cwd=%s claude_home=%s",
            config.host, config.port, config.cwd or "<cwd>", config.claude_home,
        )
        return config
