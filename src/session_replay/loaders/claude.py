# ABOUTME: Scanner for the Claude Code projects tree.
# ABOUTME: Reads only the head of each <uuid>.jsonl transcript to build a descriptor.

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

from ..errors import CorruptRecord, SourceUnavailable
from ..models import SessionDescriptor, SourceKind, mtime_utc, parse_timestamp
from .base import Discovery, SessionSource

logger = logging.getLogger(__name__)

HEAD_LINES = 5
TITLE_LIMIT = 80


class ClaudeTreeScanner(SessionSource):
    kind = SourceKind.SECONDARY_TREE

    def __init__(self, projects_dir: Path, name: str = "claude projects") -> None:
        self.projects_dir = projects_dir
        self.name = name

    def _discover(self) -> Discovery:
        if not self.projects_dir.is_dir():
            raise SourceUnavailable(self.name, f"{self.projects_dir} not found")
        discovery = Discovery()
        for project_dir in sorted(self.projects_dir.iterdir()):
            if not project_dir.is_dir():
                continue
            for transcript in sorted(project_dir.glob("*.jsonl")):
                if not is_session_file(transcript):
                    continue
                try:
                    discovery.descriptors.append(_read_session(project_dir, transcript))
                except (CorruptRecord, OSError) as exc:
                    logger.debug("Skipping %s: %s", transcript, exc)
                    discovery.skipped += 1
        return discovery


def is_session_file(path: Path) -> bool:
    try:
        uuid.UUID(path.stem)
    except ValueError:
        return False
    return path.suffix == ".jsonl"


def truncate_title(text: str, limit: int = TITLE_LIMIT) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def read_head(path: Path, limit: int = HEAD_LINES) -> list[dict[str, Any]]:
    """Parse up to ``limit`` non-blank JSON lines from the top of a transcript."""
    entries: list[dict[str, Any]] = []
    with path.open(encoding="utf-8", errors="replace") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                raise CorruptRecord(str(path), f"invalid JSON: {exc.msg}") from exc
            if isinstance(raw, dict):
                entries.append(raw)
            if len(entries) >= limit:
                break
    return entries


def _read_session(project_dir: Path, transcript: Path) -> SessionDescriptor:
    stat = transcript.stat()
    cwd = ""
    branch = ""
    title = ""
    started_at = None
    for raw in read_head(transcript):
        cwd = cwd or _string(raw.get("cwd"))
        branch = branch or _string(raw.get("gitBranch"))
        if not title:
            message = raw.get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                title = truncate_title(message["content"].strip())
        if started_at is None:
            started_at = parse_timestamp(raw.get("timestamp"))

    updated_at = mtime_utc(stat.st_mtime)
    duration = None
    if started_at is not None and updated_at >= started_at:
        duration = updated_at - started_at
    return SessionDescriptor(
        id=transcript.stem,
        source=SourceKind.SECONDARY_TREE,
        updated_at=updated_at,
        path=str(transcript),
        title=title or project_dir.name,
        cwd=cwd,
        branch=branch,
        file_size=stat.st_size,
        duration=duration,
    )


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""
