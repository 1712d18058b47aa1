"""Read the backend's per-session JSONL transcripts.

Layout (written by the Claude CLI, never by us):
    <claude home>/.claude/projects/<project slug>/<session id>.jsonl

Reads are tolerant: blank lines, invalid JSON (typically a truncated
trailing record) and unparseable records are skipped and logged.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agentkit.adapters.events import AgentEvent, WireEventParser
from agentkit.engine.errors import EventParseError

logger = logging.getLogger(__name__)

_PROJECT_GLOB = "*/*.jsonl"


def normalize_session_id(session_id: str) -> str:
    """Strip whitespace and a trailing .jsonl from a session id."""
    value = session_id.strip()
    if value.lower().endswith(".jsonl"):
        value = value[: -len(".jsonl")]
    return value


class TranscriptStore:
    """Locate and parse stored session transcripts under a projects root."""

    def __init__(self, projects_root: Path | None) -> None:
        self.root = Path(projects_root) if projects_root is not None else None

    def iter_session_files(self) -> list[Path]:
        if self.root is None or not self.root.exists():
            return []
        files = sorted(self.root.glob(_PROJECT_GLOB))
        return [path for path in files if "subagents" not in path.parts]

    def locate(self, session_id: str) -> Path | None:
        """Newest transcript file named after ``session_id``, or None."""
        normalized = normalize_session_id(session_id)
        if not normalized or "/" in normalized or "\\" in normalized:
            return None
        if self.root is None or not self.root.exists():
            return None
        candidates = [p for p in self.root.glob(f"*/{normalized}.jsonl") if p.is_file()]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.stat().st_mtime)

    def read_records(self, path: Path) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        text = path.read_text(encoding="utf-8", errors="replace")
        for line_no, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip().lstrip("\ufeff")
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("%s:%d: skipping invalid json", path.name, line_no)
                continue
            if isinstance(row, dict):
                records.append(row)
        return records

    def read(self, path: Path) -> list[AgentEvent]:
        """Ordered events stored in ``path``."""
        parser = WireEventParser()
        events: list[AgentEvent] = []
        for record in self.read_records(path):
            try:
                events.extend(parser.parse(record))
            except EventParseError as exc:
                logger.warning("%s: skipping record: %s", path.name, exc)
        return events

    def load(self, session_id: str) -> list[AgentEvent] | None:
        path = self.locate(session_id)
        if path is None:
            return None
        return self.read(path)
