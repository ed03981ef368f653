# ABOUTME: Scanner for the Copilot CLI session-state directory tree.
# ABOUTME: Each session directory holds workspace.yaml metadata next to events.jsonl.

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import CorruptRecord, SourceUnavailable
from ..models import SessionDescriptor, SourceKind, mtime_utc, parse_timestamp
from .base import Discovery, SessionSource

logger = logging.getLogger(__name__)

WORKSPACE_FILE = "workspace.yaml"
EVENTS_FILE = "events.jsonl"


class CopilotTreeScanner(SessionSource):
    kind = SourceKind.PRIMARY_TREE

    def __init__(self, session_state_dir: Path, name: str = "copilot sessions") -> None:
        self.session_state_dir = session_state_dir
        self.name = name

    def _discover(self) -> Discovery:
        if not self.session_state_dir.is_dir():
            raise SourceUnavailable(self.name, f"{self.session_state_dir} not found")
        discovery = Discovery()
        for session_dir in sorted(self.session_state_dir.iterdir()):
            if not session_dir.is_dir():
                continue
            yaml_path = session_dir / WORKSPACE_FILE
            events_path = session_dir / EVENTS_FILE
            if not yaml_path.is_file() or not events_path.is_file():
                continue
            try:
                discovery.descriptors.append(_read_session(session_dir, yaml_path, events_path))
            except (CorruptRecord, OSError) as exc:
                logger.debug("Skipping %s: %s", session_dir, exc)
                discovery.skipped += 1
        return discovery


def load_workspace(yaml_path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(yaml_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise CorruptRecord(str(yaml_path), f"invalid YAML: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise CorruptRecord(str(yaml_path), "not UTF-8 text") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CorruptRecord(str(yaml_path), "expected a mapping")
    return data


def _read_session(session_dir: Path, yaml_path: Path, events_path: Path) -> SessionDescriptor:
    props = load_workspace(yaml_path)
    stat = events_path.stat()
    created_at = parse_timestamp(props.get("created_at"))
    updated_at = parse_timestamp(props.get("updated_at")) or mtime_utc(stat.st_mtime)
    duration = None
    if created_at is not None and updated_at >= created_at:
        duration = updated_at - created_at
    return SessionDescriptor(
        id=_text(props.get("id")) or session_dir.name,
        source=SourceKind.PRIMARY_TREE,
        updated_at=updated_at,
        path=str(events_path),
        title=_text(props.get("summary")),
        cwd=_text(props.get("cwd")),
        branch=_text(props.get("branch")),
        repository=_text(props.get("repository")),
        file_size=stat.st_size,
        duration=duration,
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
