# ABOUTME: Pytest configuration and shared fixtures.
# ABOUTME: Builds temporary session stores and trees, sample transcripts and a scripted terminal.

import io
import json
import os
import sqlite3
from contextlib import closing, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest
from rich.console import Console

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeTerminal:
    """Scripted stand-in for the real terminal; quits once the keys run out."""

    def __init__(self, keys: Iterable[str] = (), size: tuple[int, int] = (100, 30)) -> None:
        self.keys = list(keys)
        self.size = size
        self.frames: list[Any] = []
        self.reads = 0
        self.suspended = 0

    def read_key(self, timeout: float) -> str | None:
        self.reads += 1
        if self.keys:
            key = self.keys.pop(0)
            return key
        return "q"

    def draw(self, renderable: Any) -> None:
        self.frames.append(renderable)

    def suspend(self):
        self.suspended += 1
        return nullcontext()

    def frame_text(self, index: int = -1) -> str:
        console = Console(record=True, width=self.size[0], file=io.StringIO())
        console.print(self.frames[index])
        return console.export_text()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep logs and default session locations inside the test's tmp dir."""
    monkeypatch.setenv("SESSION_REPLAY_LOG_FILE", str(tmp_path / "logs" / "replay.log"))
    monkeypatch.setenv("COPILOT_SESSION_STATE_DIR", str(tmp_path / "copilot" / "session-state"))
    monkeypatch.setenv("CLAUDE_CODE_PROJECTS_DIR", str(tmp_path / "claude" / "projects"))
    monkeypatch.delenv("SESSION_REPLAY_POLL_INTERVAL", raising=False)
    monkeypatch.delenv("SESSION_REPLAY_LOG_LEVEL", raising=False)


@pytest.fixture
def fake_terminal() -> Callable[..., FakeTerminal]:
    return FakeTerminal


@pytest.fixture
def session_state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "copilot" / "session-state"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def claude_projects_dir(tmp_path: Path) -> Path:
    path = tmp_path / "claude" / "projects"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_store() -> Callable[..., Path]:
    """Factory for a Copilot CLI store with the given session rows."""

    def _make(
        db_path: Path,
        rows: Iterable[dict[str, Any]] = (),
        version: int = 1,
        extra_columns: Iterable[str] = (),
        drop_columns: Iterable[str] = (),
    ) -> Path:
        columns = [c for c in ("id", "cwd", "summary", "updated_at", "branch", "repository") if c not in set(drop_columns)]
        columns.extend(extra_columns)
        with closing(sqlite3.connect(db_path)) as conn:
            conn.execute("CREATE TABLE schema_version (version INTEGER)")
            conn.execute("INSERT INTO schema_version VALUES (?)", (version,))
            conn.execute(f"CREATE TABLE sessions ({', '.join(columns)})")
            for row in rows:
                names = [c for c in columns if c in row]
                placeholders = ", ".join("?" for _ in names)
                conn.execute(
                    f"INSERT INTO sessions ({', '.join(names)}) VALUES ({placeholders})",
                    [row[c] for c in names],
                )
            conn.commit()
        return db_path

    return _make


@pytest.fixture
def add_store_row() -> Callable[..., None]:
    def _add(db_path: Path, row: dict[str, Any]) -> None:
        with closing(sqlite3.connect(db_path)) as conn:
            names = list(row)
            placeholders = ", ".join("?" for _ in names)
            conn.execute(
                f"INSERT INTO sessions ({', '.join(names)}) VALUES ({placeholders})",
                [row[c] for c in names],
            )
            conn.commit()

    return _add


@pytest.fixture
def make_copilot_session() -> Callable[..., Path]:
    """Factory for a session-state/<id>/ directory with workspace.yaml and events.jsonl."""

    def _make(
        root: Path,
        session_id: str,
        summary: str = "",
        updated_at: str | None = None,
        events: Iterable[dict[str, Any]] | None = None,
        workspace: str | None = None,
    ) -> Path:
        session_dir = root / session_id
        session_dir.mkdir(parents=True, exist_ok=True)
        if workspace is None:
            lines = [f"id: {session_id}", f"summary: {summary}", "cwd: /work/project"]
            if updated_at:
                lines.append(f"updated_at: '{updated_at}'")
            workspace = "\n".join(lines) + "\n"
        (session_dir / "workspace.yaml").write_text(workspace)
        if events is None:
            events = [
                {
                    "type": "user.message",
                    "id": f"{session_id}.1",
                    "timestamp": "2025-01-01T10:00:00Z",
                    "data": {"content": summary or "hello"},
                }
            ]
        events_path = session_dir / "events.jsonl"
        events_path.write_text("".join(json.dumps(e) + "\n" for e in events))
        return events_path

    return _make


@pytest.fixture
def make_claude_session() -> Callable[..., Path]:
    """Factory for a Claude Code projects/<project>/<uuid>.jsonl transcript."""

    def _make(
        projects: Path,
        project: str,
        session_id: str,
        content: str = "Fix the tests",
        mtime: datetime | None = None,
        lines: Iterable[str] | None = None,
    ) -> Path:
        project_dir = projects / project
        project_dir.mkdir(parents=True, exist_ok=True)
        path = project_dir / f"{session_id}.jsonl"
        if lines is None:
            lines = [
                json.dumps(
                    {
                        "type": "user",
                        "sessionId": session_id,
                        "cwd": "/work/claude",
                        "gitBranch": "main",
                        "timestamp": "2025-01-01T09:00:00Z",
                        "message": {"role": "user", "content": content},
                    }
                )
            ]
        path.write_text("\n".join(lines) + "\n")
        if mtime is not None:
            stamp = mtime.timestamp()
            os.utime(path, (stamp, stamp))
        return path

    return _make


@pytest.fixture
def copilot_events_path(tmp_path: Path) -> Path:
    """A Copilot CLI events.jsonl inside a UUID-named session directory."""
    session_dir = tmp_path / "3f2504e0-4f89-11d3-9a0c-0305e82c3301"
    session_dir.mkdir()
    path = session_dir / "events.jsonl"
    path.write_text((FIXTURES_DIR / "copilot_events.jsonl").read_text())
    return path


@pytest.fixture
def claude_transcript_path(tmp_path: Path) -> Path:
    path = tmp_path / "9b2c6f1e-5a3d-4c8e-8f1a-2b3c4d5e6f70.jsonl"
    path.write_text((FIXTURES_DIR / "claude_session.jsonl").read_text())
    return path


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def at() -> Callable[..., datetime]:
    return utc
