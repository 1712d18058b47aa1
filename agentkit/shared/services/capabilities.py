"""Capability probe: what the backend offers in a given workspace.

Opens a throwaway one-turn stream in plan mode, keeps the first
system init record and stops. Local skills are read from
``<workspace>/.claude/skills/*/SKILL.md``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentkit.adapters.events import SystemInit
from agentkit.engine.errors import StreamError
from agentkit.engine.models import PermissionMode, SessionOptions
from agentkit.engine.providers.base import AgentClient

logger = logging.getLogger(__name__)

CAPABILITY_PROMPT = "agentkit-capability-probe"

_HEADING = re.compile(r"^#\s+")


@dataclass
class LocalSkill:
    slug: str
    name: str
    description: str | None
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "path": self.path,
        }


@dataclass
class CapabilitySummary:
    tools: list[str] = field(default_factory=list)
    mcp_servers: list[Any] = field(default_factory=list)
    slash_commands: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    plugins: list[Any] = field(default_factory=list)
    model: str | None = None
    cwd: str | None = None
    permission_mode: str | None = None
    api_key_source: str | None = None
    local_skills: list[LocalSkill] = field(default_factory=list)

    @classmethod
    def from_init(cls, init: SystemInit, local_skills: list[LocalSkill]) -> CapabilitySummary:
        return cls(
            tools=list(init.tools),
            mcp_servers=list(init.mcp_servers),
            slash_commands=list(init.slash_commands),
            skills=list(init.skills),
            plugins=list(init.plugins),
            model=init.model,
            cwd=init.cwd,
            permission_mode=init.permission_mode,
            api_key_source=init.api_key_source,
            local_skills=local_skills,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools": self.tools,
            "mcpServers": self.mcp_servers,
            "slashCommands": self.slash_commands,
            "skills": self.skills,
            "plugins": self.plugins,
            "model": self.model,
            "cwd": self.cwd,
            "permissionMode": self.permission_mode,
            "apiKeySource": self.api_key_source,
            "localSkills": [s.to_dict() for s in self.local_skills],
        }


def parse_skill_metadata(content: str, fallback_name: str) -> tuple[str, str | None]:
    """Name from the first ``# `` heading, description from the next text line."""
    lines = content.splitlines()
    heading_index = next(
        (i for i, line in enumerate(lines) if _HEADING.match(line.strip())), -1,
    )
    name = fallback_name
    if heading_index >= 0:
        name = _HEADING.sub("", lines[heading_index].strip()).strip() or fallback_name

    description = None
    for line in lines[heading_index + 1:]:
        text = line.strip()
        if not text:
            continue
        if text.startswith("#"):
            break
        description = text
        break
    return name, description


def collect_local_skills(workspace_dir: str | Path | None) -> list[LocalSkill]:
    if not workspace_dir:
        return []
    skill_root = Path(workspace_dir) / ".claude" / "skills"
    if not skill_root.is_dir():
        return []
    skills: list[LocalSkill] = []
    for entry in sorted(skill_root.iterdir()):
        manifest = entry / "SKILL.md"
        if not entry.is_dir() or not manifest.is_file():
            continue
        try:
            content = manifest.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to read %s: %s", manifest, exc)
            continue
        name, description = parse_skill_metadata(content, entry.name)
        skills.append(LocalSkill(
            slug=entry.name, name=name, description=description, path=str(entry),
        ))
    return skills


async def collect_capability_summary(
    client: AgentClient,
    options: SessionOptions | None = None,
    workspace_dir: str | Path | None = None,
) -> CapabilitySummary:
    """Probe the backend. Raises StreamError if no init record arrives."""
    kwargs = (options or SessionOptions()).to_client_kwargs()
    kwargs.pop("max_thinking_tokens", None)
    kwargs["permission_mode"] = PermissionMode.PLAN.value
    kwargs["max_turns"] = 1

    init: SystemInit | None = None
    stream = client.stream(CAPABILITY_PROMPT, **kwargs)
    try:
        async for event in stream:
            if isinstance(event, SystemInit):
                init = event
                break
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    if init is None:
        raise StreamError(None, "backend did not emit an init message")
    local_skills = await asyncio.to_thread(collect_local_skills, workspace_dir)
    logger.info(
        "Capability probe: %d tools, %d mcp servers, %d local skills",
        len(init.tools), len(init.mcp_servers), len(local_skills),
    )
    return CapabilitySummary.from_init(init, local_skills)
