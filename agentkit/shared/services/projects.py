"""Project and session discovery under the backend's projects root.

Each project directory holds one ``<session id>.jsonl`` per session.
A project is named after the basename of the ``cwd`` recorded in its
most recently modified log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .transcript_store import TranscriptStore

logger = logging.getLogger(__name__)


@dataclass
class ProjectInfo:
    id: str
    name: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "path": self.path}


@dataclass
class SessionSummary:
    """Metadata for one stored session."""

    session_id: str
    title: str
    updated_at: datetime | None = None
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "title": self.title,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "messageCount": self.message_count,
        }


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO timestamps (with a trailing Z) into aware UTC datetimes."""
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _jsonl_files(directory: Path) -> list[Path]:
    try:
        return [p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == ".jsonl"]
    except OSError as exc:
        logger.warning("Cannot list %s: %s", directory, exc)
        return []


def _recorded_cwd(store: TranscriptStore, path: Path) -> str | None:
    try:
        records = store.read_records(path)
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return None
    for record in records:
        cwd = record.get("cwd")
        if isinstance(cwd, str) and cwd.strip():
            return cwd.strip()
    return None


def list_projects(store: TranscriptStore) -> list[ProjectInfo]:
    """Projects that have at least one session log with a recorded cwd."""
    root = store.root
    if root is None or not root.is_dir():
        return []
    projects: list[ProjectInfo] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        files = _jsonl_files(entry)
        if not files:
            continue
        latest = max(files, key=lambda p: p.stat().st_mtime)
        cwd = _recorded_cwd(store, latest)
        if cwd is None:
            continue
        projects.append(ProjectInfo(id=entry.name, name=Path(cwd).name or cwd, path=cwd))
    return projects


def _user_text(message: Any) -> str:
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(
        str(block.get("text") or "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def summarize_session(store: TranscriptStore, path: Path) -> SessionSummary:
    session_id = path.stem
    title: str | None = None
    updated_at: datetime | None = None
    count = 0
    for record in store.read_records(path):
        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp and (updated_at is None or timestamp > updated_at):
            updated_at = timestamp
        if record.get("isSidechain") or record.get("isMeta"):
            continue
        record_type = str(record.get("type") or "").lower()
        if record_type == "user":
            text = _user_text(record.get("message")).strip()
            if not text:
                continue
            count += 1
            if title is None:
                title = text.splitlines()[0][:120]
        elif record_type == "assistant":
            count += 1
    if updated_at is None:
        updated_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return SessionSummary(
        session_id=session_id,
        title=title or f"Session {session_id[:8]}",
        updated_at=updated_at,
        message_count=count,
    )


def list_sessions(store: TranscriptStore, project_id: str) -> list[SessionSummary]:
    """Sessions of one project, newest first. Unknown projects yield []."""
    root = store.root
    if root is None or not project_id or "/" in project_id or "\\" in project_id:
        return []
    project_dir = root / project_id
    if project_id in {".", ".."} or not project_dir.is_dir():
        return []
    summaries = [summarize_session(store, path) for path in _jsonl_files(project_dir)]
    summaries.sort(
        key=lambda s: s.updated_at or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )
    return summaries
