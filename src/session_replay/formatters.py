from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import SessionDescriptor
from .parsers import ASSISTANT, THINKING, TOOL_RESULT, TOOL_START, USER, Transcript, Turn

ROLE_FILTERS = ("all", "user", "assistant", "tool", "error")
MAX_VALUE_LENGTH = 500
MAX_RESULT_LINES = 20
SEPARATOR = Text("─" * 60, style="dim")
REJECTION_MARKERS = (
    "The user doesn't want to proceed",
    "Request interrupted by user",
    "[Request interrupted by user for tool use]",
)
EVAL_STATUS_ICONS = {"completed": "✅", "timed_out": "⏱️", "running": "🔄"}


def format_age(age: timedelta) -> str:
    seconds = age.total_seconds()
    if seconds < 60:
        return "now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h"
    days = int(seconds // 86400)
    if days < 30:
        return f"{days}d"
    return f"{days // 30}mo"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size // 1024}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def format_duration(duration: timedelta) -> str:
    total = int(duration.total_seconds())
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m {total % 60}s"
    return f"{total // 3600}h {(total % 3600) // 60}m"


def format_relative_time(offset: timedelta) -> str:
    seconds = offset.total_seconds()
    if seconds < 0.1:
        return "+0.0s"
    if seconds < 60:
        return f"+{seconds:.1f}s"
    total = int(seconds)
    if total < 3600:
        return f"+{total // 60}m {total % 60}s"
    return f"+{total // 3600}h {(total % 3600) // 60}m"


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + "..."


def build_info_bar(transcript: Transcript) -> str:
    parts = []
    if transcript.session_id:
        parts.append(f"session {transcript.session_id}")
    if transcript.version:
        parts.append(transcript.version)
    parts.append(f"{transcript.event_count} events")
    return f"[{' | '.join(parts)}]"


def render_transcript_header(transcript: Transcript, width: int = 80) -> list[Text]:
    inner = max(40, width) - 2
    title = "Claude Code Session Log" if transcript.agent == "claude" else "Copilot CLI Session Log"
    rows: list[tuple[str, str]] = []
    if transcript.session_id:
        rows.append(("Session", transcript.session_id))
    if transcript.start_time is not None:
        rows.append(("Started", transcript.start_time.strftime("%Y-%m-%d %H:%M:%S")))
    if transcript.branch:
        rows.append(("Branch", transcript.branch))
    if transcript.cwd:
        rows.append(("Cwd", transcript.cwd))
    if transcript.version:
        rows.append(("Version", transcript.version))
    rows.append(("Events", str(transcript.event_count)))
    rows.append(("Duration", format_relative_time(transcript.duration)))

    border = "bold cyan"
    lines = [Text(""), Text("╭" + "─" * inner + "╮", style=border)]
    lines.append(_box_row(Text(f"  📋 {title}", style="bold"), inner, border))
    lines.append(Text("├" + "─" * inner + "┤", style=border))
    for label, value in rows:
        content = Text(f"  {label + ':':<10}")
        content.append(value, style="dim")
        lines.append(_box_row(content, inner, border))
    lines.append(Text("╰" + "─" * inner + "╯", style=border))
    lines.append(Text(""))
    return lines


def turn_matches(turn: Turn, role_filter: str | None) -> bool:
    if role_filter in (None, "all"):
        return True
    if role_filter == "user":
        return turn.kind == USER
    if role_filter == "assistant":
        return turn.kind in (ASSISTANT, THINKING)
    if role_filter == "tool":
        return turn.kind in (TOOL_START, TOOL_RESULT)
    if role_filter == "error":
        return turn.is_error
    return True


def render_transcript_lines(
    transcript: Transcript,
    role_filter: str | None = None,
    expand_tools: bool = False,
) -> list[Text]:
    turns = [turn for turn in transcript.turns if turn_matches(turn, role_filter)]
    if not turns:
        return [Text("  No matching events.", style="dim")]

    lines: list[Text] = []
    for turn in turns:
        relative = ""
        if turn.timestamp is not None and transcript.start_time is not None:
            relative = format_relative_time(turn.timestamp - transcript.start_time)
        margin = f"  {relative:>10}  "
        lines.extend(_render_turn(turn, margin, expand_tools))
    lines.append(Text(""))
    return lines


def tool_context(turn: Turn) -> str:
    arguments = turn.arguments if isinstance(turn.arguments, dict) else {}
    name = turn.tool_name
    if name in ("Read", "Write", "Edit", "MultiEdit"):
        file_path = arguments.get("file_path")
        return str(file_path).replace("\\", "/").rsplit("/", 1)[-1] if file_path else ""
    if name == "Bash":
        if arguments.get("description"):
            return str(arguments["description"])
        if arguments.get("command"):
            return truncate(str(arguments["command"]), 60)
        return ""
    if name in ("Glob", "Grep"):
        return str(arguments.get("pattern") or "")
    if name == "Task":
        return str(arguments.get("description") or "")
    return ""


def format_arguments(arguments: Any, prefix: str, limit: int = MAX_VALUE_LENGTH) -> list[str]:
    lines = []
    if isinstance(arguments, dict):
        for key, value in arguments.items():
            rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
            for segment in truncate(rendered, limit).splitlines() or [""]:
                lines.append(f"{prefix}{key}: {segment}")
    elif isinstance(arguments, str):
        for segment in truncate(arguments, limit).splitlines() or [""]:
            lines.append(f"{prefix}{segment}")
    elif arguments is not None:
        lines.append(f"{prefix}{truncate(json.dumps(arguments, ensure_ascii=False), limit)}")
    return lines


def render_session_row(descriptor: SessionDescriptor, now: datetime, width: int = 80) -> Text:
    age = format_age(now - descriptor.updated_at)
    size = format_file_size(descriptor.file_size)
    branch = f" [{descriptor.branch}]" if descriptor.branch else ""
    title = descriptor.display_title
    max_title = max(10, width - 19 - len(branch))
    if len(title) > max_title:
        title = title[: max_title - 3] + "..."
    row = Text(f"  {session_icon(descriptor)} {age:>6} {size:>6} ")
    row.append(title)
    row.append(branch, style="dim")
    row.truncate(width, overflow="ellipsis")
    return row


def session_icon(descriptor: SessionDescriptor) -> str:
    if descriptor.eval is not None:
        return EVAL_STATUS_ICONS.get(descriptor.eval.status, "🧪")
    return "🔴" if descriptor.agent == "claude" else "🤖"


def render_eval_preview(descriptor: SessionDescriptor) -> list[Text]:
    details = descriptor.eval
    if details is None:
        return []
    lines = [Text("")]
    for label, value in (
        ("Skill", details.skill_name),
        ("Scenario", details.scenario_name),
        ("Role", details.role),
        ("Model", details.model),
        ("Status", details.status),
    ):
        line = Text(f"  {label}: ", style="bold")
        line.append(value, style="")
        lines.append(line)
    lines.append(Text(""))

    if details.prompt:
        lines.append(Text("  Prompt:", style="bold"))
        prompt_lines = details.prompt.split("\n")
        lines.extend(Text(f"    {line.rstrip()}") for line in prompt_lines[:10])
        if len(prompt_lines) > 10:
            lines.append(Text(f"    ... ({len(prompt_lines) - 10} more lines)", style="dim"))
        lines.append(Text(""))

    for label, payload in (
        ("Metrics", details.metrics_json),
        ("Judge Result", details.judge_json),
        ("Pairwise", details.pairwise_json),
    ):
        if payload:
            lines.append(Text(f"  {label}:", style="bold"))
            lines.extend(_json_summary(payload))
            lines.append(Text(""))

    if descriptor.has_transcript:
        lines.append(Text(f"  Events: {descriptor.path}", style="dim"))
        lines.append(Text("  Press Enter to view transcript", style="dim"))
    else:
        lines.append(Text("  No events.jsonl available", style="dim"))
    return lines


def format_sessions(sessions: Sequence[SessionDescriptor], output_format: str) -> str | None:
    rows = [session.to_dict() for session in sessions]
    if output_format == "json":
        return json.dumps(rows, ensure_ascii=True, default=str)
    if output_format == "csv":
        return _rows_to_csv(rows)
    return None


def render_sessions_table(sessions: Iterable[SessionDescriptor], console: Console | None = None) -> None:
    console = console or Console()
    now = datetime.now(timezone.utc)
    table = Table(title="Sessions")
    table.add_column("Age", style="green", justify="right")
    table.add_column("Agent", style="magenta")
    table.add_column("Session", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Branch", style="dim")
    table.add_column("Size", justify="right")

    for session in sessions:
        table.add_row(
            format_age(now - session.updated_at),
            session.agent,
            session.id[:8],
            session.display_title[:80],
            session.branch,
            format_file_size(session.file_size),
        )
    console.print(table)


def _render_turn(turn: Turn, margin: str, expand_tools: bool) -> list[Text]:
    if turn.kind == USER:
        label = "┃ USER (queued)" if turn.queued else "┃ USER"
        lines = [SEPARATOR.copy(), _line(margin, label, "blue")]
        lines.extend(_line(margin, f"┃ {line}", "blue") for line in turn.text.splitlines())
        return lines

    if turn.kind == ASSISTANT:
        lines = [SEPARATOR.copy(), _line(margin, "┃ ASSISTANT", "green")]
        lines.extend(_line(margin, f"┃ {line}", "green") for line in turn.text.splitlines())
        for name in turn.tool_requests:
            lines.append(_line(margin, f"┃ 🔧 Tool request: {name}", "yellow"))
        if expand_tools and turn.reasoning:
            lines.append(_line(margin, "┃ 💭 Thinking:", "dim"))
            lines.extend(_line(margin, f"┃   {line}", "dim") for line in turn.reasoning.splitlines())
        return lines

    if turn.kind == THINKING:
        if not expand_tools or not turn.text:
            return []
        lines = [_line(margin, "┃ 💭 THINKING", "dim")]
        lines.extend(_line(margin, f"┃   {line}", "dim") for line in turn.text.splitlines())
        return lines

    if turn.kind == TOOL_START:
        context = tool_context(turn)
        label = f"TOOL: {turn.tool_name} — {context}" if context else f"TOOL: {turn.tool_name}"
        lines = [_line(margin, f"┃ {label}", "yellow")]
        if expand_tools and turn.arguments is not None:
            lines.append(_line(margin, "┃   Args:", "dim"))
            lines.extend(_line(margin, line, "dim") for line in format_arguments(turn.arguments, "┃     "))
        return lines

    return _render_result(turn, margin, expand_tools)


def _render_result(turn: Turn, margin: str, expand_tools: bool) -> list[Text]:
    content = turn.text
    is_error = turn.status == "error"
    rejected = is_error and any(marker in content for marker in REJECTION_MARKERS)
    if rejected:
        style, label = "yellow", "┃ ⚠️ Rejected:"
    elif is_error:
        style, label = "red", "┃ ❌ ERROR:"
    else:
        style, label = "dim", "┃ ✅ Result"
    if not expand_tools and content:
        label += f" ({len(content):,} chars)"
    lines = [_line(margin, label, style)]
    if expand_tools and content:
        if any(ord(char) < 32 and char not in "\n\r\t" for char in content):
            lines.append(_line(margin, f"┃   [binary content, {len(content)} bytes]", style))
        else:
            lines.append(_line(margin, "┃", style))
            body = truncate(content, MAX_VALUE_LENGTH).splitlines()[:MAX_RESULT_LINES]
            lines.extend(_line(margin, f"┃   {line}", style) for line in body)
    return lines


def _line(margin: str, content: str, style: str) -> Text:
    line = Text(margin, style="dim")
    line.append(content, style=style)
    return line


def _box_row(content: Text, inner: int, border: str) -> Text:
    row = Text("│", style=border)
    body = content.copy()
    body.truncate(inner, overflow="ellipsis", pad=True)
    row.append_text(body)
    row.append("│", style=border)
    return row


def _json_summary(payload: str) -> list[Text]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return [Text(f"    {payload[:200]}")]
    if not isinstance(data, dict):
        return [Text(f"    {truncate(json.dumps(data), 200)}")]
    return [Text(f"    {key}: {value}") for key, value in list(data.items())[:10]]


def _rows_to_csv(rows: list[dict[str, Any]]) -> str:
    if not rows:
        return ""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=rows[0].keys())
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()


def fit_line(text: Text, width: int, style: str = "") -> Text:
    fitted = text.copy()
    fitted.truncate(max(0, width), overflow="ellipsis", pad=True)
    if style:
        fitted.stylize(style)
    return fitted
