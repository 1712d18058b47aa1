from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from agentkit.shared.services.projects import (
    list_projects,
    list_sessions,
    parse_timestamp,
    summarize_session,
)
from agentkit.shared.services.transcript_store import TranscriptStore


FIXTURES_DIR = Path(__file__).parent / "fixtures"
SESSION_ID = "5f0c2a8e-1b7d-4c7e-9a55-0d5b8f9e2c11"


def _write_jsonl(path: Path, records: list[dict]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n", encoding="utf-8")
    return path


def _copy_fixture(dst: Path) -> Path:
    dst.parent.mkdir(parents=True, exist_ok=True)
    dst.write_text((FIXTURES_DIR / "claude_session.jsonl").read_text(encoding="utf-8"), encoding="utf-8")
    return dst


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2026-10-01T09:00:00.000Z") == datetime(2026, 10, 1, 9, tzinfo=timezone.utc)
    assert parse_timestamp("2026-10-01T09:00:00").tzinfo == timezone.utc
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_list_projects_names_from_recorded_cwd(tmp_path: Path) -> None:
    _copy_fixture(tmp_path / "-home-dev-demo" / f"{SESSION_ID}.jsonl")
    _write_jsonl(tmp_path / "-no-cwd" / "s.jsonl", [{"type": "summary", "summary": "x"}])
    (tmp_path / "-empty").mkdir()

    projects = list_projects(TranscriptStore(tmp_path))

    assert [p.to_dict() for p in projects] == [
        {"id": "-home-dev-demo", "name": "demo", "path": "/home/dev/demo"},
    ]


def test_list_projects_uses_newest_log(tmp_path: Path) -> None:
    old = _write_jsonl(tmp_path / "p" / "a.jsonl", [{"type": "user", "cwd": "/work/old"}])
    new = _write_jsonl(tmp_path / "p" / "b.jsonl", [{"type": "user", "cwd": "/work/renamed"}])
    os.utime(old, (1_000_000, 1_000_000))
    os.utime(new, (2_000_000, 2_000_000))

    [project] = list_projects(TranscriptStore(tmp_path))

    assert project.name == "renamed"


def test_list_projects_without_root() -> None:
    assert list_projects(TranscriptStore(None)) == []


def test_summarize_session_from_fixture(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path / "proj" / f"{SESSION_ID}.jsonl")

    summary = summarize_session(TranscriptStore(tmp_path), path)

    assert summary.session_id == SESSION_ID
    assert summary.title == "List the files here"
    assert summary.message_count == 3
    assert summary.updated_at == datetime(2026, 10, 1, 9, 0, 5, tzinfo=timezone.utc)
    assert summary.to_dict()["updatedAt"] == "2026-10-01T09:00:05+00:00"


def test_summarize_session_fallback_title(tmp_path: Path) -> None:
    path = _write_jsonl(tmp_path / "proj" / "0123456789abcdef.jsonl", [
        {"type": "assistant", "message": {"content": [{"type": "text", "text": "hello"}]}},
    ])

    summary = summarize_session(TranscriptStore(tmp_path), path)

    assert summary.title == "Session 01234567"
    assert summary.message_count == 1
    assert summary.updated_at is not None


def test_list_sessions_newest_first(tmp_path: Path) -> None:
    _write_jsonl(tmp_path / "proj" / "older.jsonl", [
        {"type": "user", "timestamp": "2026-01-01T00:00:00Z", "message": {"content": "old"}},
    ])
    _write_jsonl(tmp_path / "proj" / "newer.jsonl", [
        {"type": "user", "timestamp": "2026-06-01T00:00:00Z", "message": {"content": "new"}},
    ])

    sessions = list_sessions(TranscriptStore(tmp_path), "proj")

    assert [s.session_id for s in sessions] == ["newer", "older"]
    assert [s.title for s in sessions] == ["new", "old"]


def test_list_sessions_rejects_unknown_or_unsafe_project(tmp_path: Path) -> None:
    store = TranscriptStore(tmp_path)
    assert list_sessions(store, "missing") == []
    assert list_sessions(store, "..") == []
    assert list_sessions(store, "a/b") == []
