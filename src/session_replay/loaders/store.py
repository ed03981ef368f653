# ABOUTME: Reader for the embedded SQLite session store.
# ABOUTME: Supports the Copilot CLI schema and skill-validator result databases.

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from enum import Enum
from pathlib import Path

from ..errors import SourceUnavailable
from ..models import EPOCH, EvalDetails, ScanResult, SessionDescriptor, SourceKind, parse_timestamp
from .base import Discovery, SessionSource

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMA_VERSION = 1
EXPECTED_COLUMNS = frozenset({"id", "cwd", "summary", "updated_at", "branch", "repository"})

COPILOT_QUERY = (
    "SELECT id, cwd, summary, updated_at, branch, repository FROM sessions"
)
SKILL_VALIDATOR_QUERY = """
    SELECT s.id, s.skill_name, s.skill_path, s.scenario_name, s.run_index, s.role, s.model,
           s.config_dir, s.work_dir, s.prompt, s.status, s.started_at, s.completed_at,
           r.metrics_json, r.judge_json, r.pairwise_json
    FROM sessions s
    LEFT JOIN run_results r ON s.id = r.session_id
    ORDER BY s.skill_name, s.scenario_name, s.run_index, s.role
"""


class DbType(Enum):
    COPILOT_CLI = "copilot-cli"
    SKILL_VALIDATOR = "skill-validator"
    UNKNOWN = "unknown"


def connect_readonly(db_path: Path) -> sqlite3.Connection:
    """Open the store read-only; callers close the connection after one query."""
    uri = f"{db_path.resolve().as_uri()}?mode=ro"
    conn = sqlite3.connect(uri, uri=True)
    conn.row_factory = sqlite3.Row
    return conn


def detect_db_type(db_path: Path) -> DbType:
    """Inspect schema tables to tell the two store layouts apart."""
    if not db_path.is_file():
        return DbType.UNKNOWN
    try:
        with closing(connect_readonly(db_path)) as conn:
            try:
                row = conn.execute("SELECT value FROM schema_info WHERE key='type' LIMIT 1").fetchone()
            except sqlite3.OperationalError:
                row = None
            if row is not None and row[0] == "skill-validator":
                return DbType.SKILL_VALIDATOR
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            ).fetchone()
            if row is not None:
                return DbType.COPILOT_CLI
    except sqlite3.Error as exc:
        logger.debug("Could not inspect %s: %s", db_path, exc)
    return DbType.UNKNOWN


class StoreReader(SessionSource):
    """Reads session rows from the store database.

    A fresh read-only connection is opened for every query, so the reader holds
    no state between calls other than its paths.
    """

    kind = SourceKind.STORE

    def __init__(self, db_path: Path, session_state_dir: Path, name: str = "session store") -> None:
        self.db_path = db_path
        self.session_state_dir = session_state_dir
        self.name = name

    def query_all_sessions(self) -> list[sqlite3.Row]:
        """Return every row of the store, newest first."""
        return self._query(None)

    def query_sessions_since(self, cursor: str) -> list[sqlite3.Row]:
        """Return rows whose raw updated_at sorts after the cursor."""
        return self._query(cursor)

    def scan_since(self, cursor: str | None) -> ScanResult:
        """Incremental scan used by the poller; falls back to a full scan without a cursor."""
        return self._collect(lambda: self._discover_rows(cursor))

    def _discover(self) -> Discovery:
        return self._discover_rows(None)

    def _discover_rows(self, cursor: str | None) -> Discovery:
        db_type = self._db_type()
        if db_type is DbType.SKILL_VALIDATOR:
            return self._skill_validator_sessions()
        rows = self._query(cursor)
        discovery = Discovery(cursor=cursor)
        for row in rows:
            descriptor = self._copilot_descriptor(row)
            if descriptor is None:
                discovery.skipped += 1
                continue
            discovery.descriptors.append(descriptor)
            raw = row["updated_at"]
            if raw and (discovery.cursor is None or str(raw) > discovery.cursor):
                discovery.cursor = str(raw)
        return discovery

    def _db_type(self) -> DbType:
        if not self.db_path.is_file():
            raise SourceUnavailable(self.name, f"{self.db_path} not found")
        db_type = detect_db_type(self.db_path)
        if db_type is DbType.UNKNOWN:
            raise SourceUnavailable(self.name, f"{self.db_path} is not a recognised session store")
        return db_type

    def _query(self, cursor: str | None) -> list[sqlite3.Row]:
        with closing(connect_readonly(self.db_path)) as conn:
            self._validate_schema(conn)
            if cursor is None:
                sql = f"{COPILOT_QUERY} ORDER BY updated_at DESC"
                return conn.execute(sql).fetchall()
            sql = f"{COPILOT_QUERY} WHERE updated_at > ? ORDER BY updated_at DESC"
            return conn.execute(sql, (cursor,)).fetchall()

    def _validate_schema(self, conn: sqlite3.Connection) -> None:
        try:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        except sqlite3.OperationalError as exc:
            raise SourceUnavailable(self.name, f"missing schema_version: {exc}") from exc
        try:
            version = int(row[0]) if row is not None else None
        except (TypeError, ValueError):
            version = None
        if version != SUPPORTED_SCHEMA_VERSION:
            raise SourceUnavailable(self.name, f"unsupported schema version {row[0] if row else None}")
        columns = {info[1] for info in conn.execute("PRAGMA table_info(sessions)").fetchall()}
        missing = EXPECTED_COLUMNS - columns
        if missing:
            raise SourceUnavailable(self.name, f"sessions table lacks {', '.join(sorted(missing))}")

    def _copilot_descriptor(self, row: sqlite3.Row) -> SessionDescriptor | None:
        session_id = row["id"]
        if not session_id:
            return None
        events_path = self.session_state_dir / str(session_id) / "events.jsonl"
        try:
            file_size = events_path.stat().st_size
        except OSError:
            return None
        return SessionDescriptor(
            id=str(session_id),
            source=SourceKind.STORE,
            updated_at=parse_timestamp(row["updated_at"]) or EPOCH,
            path=str(events_path),
            title=row["summary"] or "",
            cwd=row["cwd"] or "",
            branch=row["branch"] or "",
            repository=row["repository"] or "",
            file_size=file_size,
        )

    def _skill_validator_sessions(self) -> Discovery:
        db_dir = self.db_path.resolve().parent
        with closing(connect_readonly(self.db_path)) as conn:
            rows = conn.execute(SKILL_VALIDATOR_QUERY).fetchall()
        discovery = Discovery()
        for row in rows:
            if not row["id"]:
                discovery.skipped += 1
                continue
            discovery.descriptors.append(_skill_validator_descriptor(row, db_dir))
        return discovery


def resolve_eval_events(db_dir: Path, config_dir: str | None) -> Path | None:
    """Locate the transcript of a skill-validator run relative to the DB directory."""
    if not config_dir:
        return None
    config_path = db_dir / config_dir.replace("\\", "/")
    direct = config_path / "events.jsonl"
    if direct.is_file():
        return direct
    nested_root = config_path / "session-state"
    if nested_root.is_dir():
        for candidate in sorted(nested_root.glob("*/events.jsonl")):
            if candidate.is_file():
                return candidate
    return None


def _skill_validator_descriptor(row: sqlite3.Row, db_dir: Path) -> SessionDescriptor:
    events_path = resolve_eval_events(db_dir, row["config_dir"])
    file_size = 0
    if events_path is not None:
        try:
            file_size = events_path.stat().st_size
        except OSError:
            events_path = None

    run_index = row["run_index"] or 0
    title = f"{row['scenario_name']} ({row['role']})"
    if run_index > 0:
        title += f" #{run_index}"
    model = row["model"] or ""
    skill_name = row["skill_name"] or ""

    return SessionDescriptor(
        id=str(row["id"]),
        source=SourceKind.STORE,
        updated_at=parse_timestamp(row["completed_at"] or row["started_at"]) or EPOCH,
        path=str(events_path) if events_path is not None else "",
        title=title,
        cwd=row["work_dir"] or row["skill_path"] or "",
        branch=model,
        repository=skill_name,
        file_size=file_size,
        eval=EvalDetails(
            skill_name=skill_name,
            scenario_name=row["scenario_name"] or "",
            role=row["role"] or "",
            model=model,
            status=row["status"] or "",
            prompt=row["prompt"],
            metrics_json=row["metrics_json"],
            judge_json=row["judge_json"],
            pairwise_json=row["pairwise_json"],
        ),
    )
