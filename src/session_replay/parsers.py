# ABOUTME: Transcript parsing for Copilot CLI events.jsonl and Claude Code session files.
# ABOUTME: Normalises both formats into a Transcript of Turn records for rendering.

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .errors import TranscriptError
from .models import parse_timestamp

USER = "user"
ASSISTANT = "assistant"
THINKING = "thinking"
TOOL_START = "tool_start"
TOOL_RESULT = "tool_result"

COPILOT_TURN_EVENTS = {
    "user.message": USER,
    "assistant.message": ASSISTANT,
    "tool.execution_start": TOOL_START,
    "tool.result": TOOL_RESULT,
}


@dataclass
class Turn:
    """One renderable step of a conversation."""

    kind: str
    text: str = ""
    timestamp: datetime | None = None
    tool_name: str = ""
    tool_id: str = ""
    arguments: Any = None
    status: str = ""
    queued: bool = False
    tool_requests: list[str] = field(default_factory=list)
    reasoning: str = ""

    @property
    def is_error(self) -> bool:
        return self.kind == TOOL_RESULT and self.status == "error"


@dataclass
class Transcript:
    """A parsed session transcript plus the metadata shown in its header."""

    path: str
    agent: str
    session_id: str = ""
    branch: str = ""
    version: str = ""
    cwd: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    event_count: int = 0
    turns: list[Turn] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        if self.start_time is None or self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time


def read_events(path: Path, max_bytes: int | None = None) -> list[dict[str, Any]]:
    """Read JSONL events, skipping blank and malformed lines.

    With `max_bytes`, only the last `max_bytes` of the file are read and the
    partial line at the cut is dropped.
    """
    try:
        handle = path.open("rb")
    except OSError as exc:
        raise TranscriptError(f"Cannot read {path}: {exc}") from exc
    events: list[dict[str, Any]] = []
    with handle:
        if max_bytes is not None:
            size = os.fstat(handle.fileno()).st_size
            if size > max_bytes:
                handle.seek(size - max_bytes)
                handle.readline()
        for raw_line in handle:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(raw, dict):
                events.append(raw)
    if not events:
        raise TranscriptError(f"No events found in {path}")
    return events


def is_claude_format(path: Path) -> bool:
    """True when one of the first lines looks like a Claude Code message event."""
    try:
        with path.open(encoding="utf-8", errors="replace") as handle:
            for index, line in enumerate(handle):
                if index >= 10:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    raw = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(raw, dict) or raw.get("type") not in {"user", "assistant"}:
                    continue
                message = raw.get("message")
                if isinstance(message, dict) and "role" in message:
                    return True
    except OSError:
        return False
    return False


def load_transcript(
    path: Path | str, tail: int | None = None, max_bytes: int | None = None
) -> Transcript:
    path = Path(path)
    if not path.is_file():
        raise TranscriptError(f"Transcript not found: {path}")
    if is_claude_format(path):
        return parse_claude_transcript(path, tail=tail, max_bytes=max_bytes)
    return parse_copilot_events(path, tail=tail, max_bytes=max_bytes)


def parse_copilot_events(
    path: Path, tail: int | None = None, max_bytes: int | None = None
) -> Transcript:
    events = read_events(path, max_bytes=max_bytes)
    transcript = Transcript(path=str(path), agent="copilot", event_count=len(events))
    if _is_uuid(path.parent.name):
        transcript.session_id = path.parent.name

    for event in events:
        event_type = event.get("type")
        data = event.get("data") if isinstance(event.get("data"), dict) else {}
        if event_type == "session.start":
            context = data.get("context") if isinstance(data.get("context"), dict) else {}
            transcript.cwd = _string(context.get("cwd"))
            transcript.branch = _string(context.get("branch"))
            transcript.version = _string(data.get("copilotVersion"))
        event_id = _string(event.get("id"))
        if event_id and not transcript.session_id:
            transcript.session_id = event_id.split(".")[0]
        timestamp = parse_timestamp(event.get("timestamp"))
        if timestamp is not None:
            transcript.start_time = transcript.start_time or timestamp
            transcript.end_time = timestamp

        kind = COPILOT_TURN_EVENTS.get(event_type or "")
        if kind is not None:
            transcript.turns.append(_copilot_turn(kind, data, timestamp))

    transcript.turns = _apply_tail(transcript.turns, tail)
    return transcript


def parse_claude_transcript(
    path: Path, tail: int | None = None, max_bytes: int | None = None
) -> Transcript:
    events = read_events(path, max_bytes=max_bytes)
    transcript = Transcript(path=str(path), agent="claude", event_count=len(events))

    for event in events:
        transcript.session_id = transcript.session_id or _string(event.get("sessionId"))
        transcript.branch = transcript.branch or _string(event.get("gitBranch"))
        transcript.cwd = transcript.cwd or _string(event.get("cwd"))
        transcript.version = transcript.version or _string(event.get("version"))
        timestamp = parse_timestamp(event.get("timestamp"))
        if timestamp is not None:
            transcript.start_time = transcript.start_time or timestamp
            transcript.end_time = timestamp

        event_type = event.get("type")
        message = event.get("message")
        if event_type == "user" and isinstance(message, dict):
            transcript.turns.extend(_claude_user_turns(event, message, timestamp))
        elif event_type == "assistant" and isinstance(message, dict):
            transcript.turns.extend(_claude_assistant_turns(message, timestamp))
        elif event_type == "queue-operation" and event.get("operation") == "enqueue":
            text = _text_content(message.get("content") if isinstance(message, dict) else None)
            if text:
                transcript.turns.append(Turn(kind=USER, text=text, timestamp=timestamp, queued=True))

    if not transcript.session_id:
        transcript.session_id = path.stem
    transcript.turns = _apply_tail(transcript.turns, tail)
    return transcript


def extract_content(value: Any) -> str:
    """Flatten a tool result payload into display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("content"), str):
        return value["content"]
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        if parts:
            return "\n".join(parts)
    return json.dumps(value, ensure_ascii=False)


def _copilot_turn(kind: str, data: dict[str, Any], timestamp: datetime | None) -> Turn:
    if kind == USER:
        return Turn(kind=USER, text=_string(data.get("content")), timestamp=timestamp)
    if kind == ASSISTANT:
        requests = []
        for request in data.get("toolRequests") or []:
            if not isinstance(request, dict):
                continue
            name = _string(request.get("toolName") or request.get("name"))
            function = request.get("function")
            if not name and isinstance(function, dict):
                name = _string(function.get("name"))
            requests.append(name)
        return Turn(
            kind=ASSISTANT,
            text=_string(data.get("content")),
            timestamp=timestamp,
            tool_requests=requests,
            reasoning=_string(data.get("reasoningText")),
        )
    if kind == TOOL_START:
        return Turn(
            kind=TOOL_START,
            timestamp=timestamp,
            tool_name=_string(data.get("toolName")),
            tool_id=_string(data.get("toolCallId") or data.get("toolUseId")),
            arguments=data.get("arguments"),
        )
    result = data.get("result") if isinstance(data.get("result"), dict) else {}
    return Turn(
        kind=TOOL_RESULT,
        text=extract_content(result.get("content")),
        timestamp=timestamp,
        tool_id=_string(data.get("toolCallId") or data.get("toolUseId")),
        status=_string(result.get("status")),
    )


def _claude_user_turns(
    event: dict[str, Any], message: dict[str, Any], timestamp: datetime | None
) -> list[Turn]:
    content = message.get("content")
    turns: list[Turn] = []
    if "toolUseResult" in event and isinstance(content, list):
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            turns.append(
                Turn(
                    kind=TOOL_RESULT,
                    text=extract_content(block.get("content")),
                    timestamp=timestamp,
                    tool_id=_string(block.get("tool_use_id")),
                    status="error" if block.get("is_error") is True else "success",
                )
            )
    if turns:
        return turns
    return [Turn(kind=USER, text=_text_content(content, separator=""), timestamp=timestamp)]


def _claude_assistant_turns(message: dict[str, Any], timestamp: datetime | None) -> list[Turn]:
    content = message.get("content")
    if isinstance(content, str):
        return [Turn(kind=ASSISTANT, text=content, timestamp=timestamp)] if content.strip() else []
    turns: list[Turn] = []
    for block in content if isinstance(content, list) else []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = _string(block.get("text"))
            if text.strip():
                turns.append(Turn(kind=ASSISTANT, text=text, timestamp=timestamp))
        elif block_type == "tool_use":
            turns.append(
                Turn(
                    kind=TOOL_START,
                    timestamp=timestamp,
                    tool_name=_string(block.get("name")),
                    tool_id=_string(block.get("id")),
                    arguments=block.get("input", {}),
                )
            )
        elif block_type == "thinking":
            text = _string(block.get("thinking"))
            if text.strip():
                turns.append(Turn(kind=THINKING, text=text, timestamp=timestamp))
    return turns


def _text_content(content: Any, separator: str = "") -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            _string(block.get("text"))
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return separator.join(parts)
    return ""


def _apply_tail(turns: list[Turn], tail: int | None) -> list[Turn]:
    if tail is not None and 0 <= tail < len(turns):
        return turns[len(turns) - tail :]
    return turns


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""
