# ABOUTME: Core value types for discovered sessions and registry snapshots.
# ABOUTME: Defines SessionDescriptor, Snapshot and ScanResult plus timestamp helpers.

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from .errors import SourceUnavailable

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class SourceKind(Enum):
    """Where a session descriptor was discovered."""

    STORE = "store"
    PRIMARY_TREE = "copilot-tree"
    SECONDARY_TREE = "claude-tree"

    @property
    def agent(self) -> str:
        if self is SourceKind.SECONDARY_TREE:
            return "claude"
        return "copilot"

    @property
    def label(self) -> str:
        return {
            SourceKind.STORE: "store",
            SourceKind.PRIMARY_TREE: "copilot",
            SourceKind.SECONDARY_TREE: "claude",
        }[self]


@dataclass(frozen=True)
class EvalDetails:
    """Extra metadata carried by skill-validator store rows."""

    skill_name: str
    scenario_name: str
    role: str
    model: str
    status: str
    prompt: str | None = None
    metrics_json: str | None = None
    judge_json: str | None = None
    pairwise_json: str | None = None


@dataclass(frozen=True)
class SessionDescriptor:
    """Lightweight metadata for one discoverable session."""

    id: str
    source: SourceKind
    updated_at: datetime
    path: str
    title: str = ""
    cwd: str = ""
    branch: str = ""
    repository: str = ""
    file_size: int = 0
    turn_count: int | None = None
    duration: timedelta | None = None
    eval: EvalDetails | None = None

    @property
    def agent(self) -> str:
        if self.path and "/.claude/" in self.path.replace("\\", "/"):
            return "claude"
        return self.source.agent

    @property
    def has_transcript(self) -> bool:
        return bool(self.path)

    @property
    def display_title(self) -> str:
        if self.eval is not None and self.title:
            return f"{self.repository}: {self.title}"
        title = " ".join(self.title.split())
        return title or self.cwd

    @property
    def search_text(self) -> str:
        parts = [self.title, self.cwd, self.id, self.branch, self.repository]
        if self.eval is not None:
            parts.extend(
                [self.eval.skill_name, self.eval.scenario_name, self.eval.role, self.eval.model]
            )
        return " ".join(part for part in parts if part).lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "agent": self.agent,
            "updated_at": self.updated_at.isoformat(),
            "path": self.path,
            "title": self.title,
            "cwd": self.cwd,
            "branch": self.branch,
            "repository": self.repository,
            "file_size": self.file_size,
            "turn_count": self.turn_count,
            "duration_seconds": self.duration.total_seconds() if self.duration else None,
        }


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time copy of the registry's sorted sessions."""

    sessions: tuple[SessionDescriptor, ...] = ()
    generation: int = 0
    notices: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.sessions)


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one reader scan; failures are carried as values."""

    source: str
    descriptors: tuple[SessionDescriptor, ...] = ()
    error: SourceUnavailable | None = None
    skipped: int = 0
    cursor: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings or unix milliseconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def mtime_utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
