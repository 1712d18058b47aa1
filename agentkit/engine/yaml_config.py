"""YAML configuration loader.

Overlays a YAML file on top of the env-derived ServerConfig. Keys that
are absent keep their env (or default) value.

Example YAML:
    server:
      host: 0.0.0.0
      port: 3000
      log_level: DEBUG
      subscriber_queue_size: 2000
      claude_home: /srv/agent-home

    defaults:
      cwd: ./agent
      model: claude-sonnet-4-5
      permission_mode: acceptEdits
      thinking_level: default_on
      allowed_tools: [Read, Grep, Glob, Bash]
      max_turns: 40
      append_system_prompt_file: agent/CLAUDE.md
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import ServerConfig
from .models import PermissionMode, ThinkingLevel

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES = (
    Path(".agentkit") / "agentkit.yaml",
    Path("agentkit.yaml"),
)


def discover_config_path(cwd: str | Path | None = None) -> Path | None:
    """First existing config candidate under ``cwd``."""
    base = Path(cwd) if cwd else Path.cwd()
    for candidate in CONFIG_CANDIDATES:
        path = base / candidate
        if path.is_file():
            logger.info("discover_config_path: found %s", path)
            return path
    return None


def _read_prompt_file(path: Path) -> str | None:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to read system prompt file %s: %s", path, exc)
        return None
    return text if text.strip() else None


def load_yaml_config(path: str | Path, base: ServerConfig | None = None) -> ServerConfig:
    """Load ``path`` and return ``base`` with its values applied.

    Relative paths in the file (defaults.cwd, prompt file, claude_home)
    are resolved against the file's directory.
    """
    path = Path(path)
    base = base or ServerConfig()
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )
    root = path.parent.resolve()

    def _resolve(value: str) -> str:
        p = Path(value).expanduser()
        return str(p if p.is_absolute() else (root / p).resolve())

    updates: dict[str, Any] = {}

    # ── server ──
    server_raw = raw.get("server") or {}
    if "host" in server_raw:
        updates["host"] = str(server_raw["host"])
    if "port" in server_raw:
        updates["port"] = int(server_raw["port"])
    if "log_level" in server_raw:
        updates["log_level"] = str(server_raw["log_level"]).upper()
    if "subscriber_queue_size" in server_raw:
        updates["subscriber_queue_size"] = int(server_raw["subscriber_queue_size"])
    if server_raw.get("claude_home"):
        updates["claude_home"] = Path(_resolve(str(server_raw["claude_home"])))

    # ── defaults ──
    defaults_raw = raw.get("defaults") or {}
    if defaults_raw.get("cwd"):
        updates["cwd"] = _resolve(str(defaults_raw["cwd"]))
    if "model" in defaults_raw:
        updates["model"] = defaults_raw["model"] or None
    if "permission_mode" in defaults_raw:
        updates["permission_mode"] = PermissionMode(defaults_raw["permission_mode"])
    if "thinking_level" in defaults_raw:
        updates["thinking_level"] = ThinkingLevel(defaults_raw["thinking_level"])
    if "allowed_tools" in defaults_raw:
        updates["allowed_tools"] = [str(t) for t in defaults_raw["allowed_tools"] or []]
    if "max_turns" in defaults_raw:
        value = defaults_raw["max_turns"]
        updates["max_turns"] = int(value) if value is not None else None
    if defaults_raw.get("append_system_prompt"):
        updates["append_system_prompt"] = str(defaults_raw["append_system_prompt"])
    prompt_file = defaults_raw.get("append_system_prompt_file")
    if prompt_file:
        prompt = _read_prompt_file(Path(_resolve(str(prompt_file))))
        if prompt is not None:
            updates["append_system_prompt"] = prompt

    config = dataclasses.replace(base, **updates)
    logger.info(
        "load_yaml_config: applied %d override(s) from %s",
        len(updates), path,
    )
    return config
