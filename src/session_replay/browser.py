# ABOUTME: Interactive session list driven by the live registry.
# ABOUTME: Single-threaded tick loop: bounded key read, snapshot refresh, redraw when dirty.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol, Sequence

from rich.console import Group, RenderableType
from rich.text import Text

from .config import BrowserOptions
from .errors import TranscriptError
from .formatters import (
    fit_line,
    render_eval_preview,
    render_session_row,
    render_transcript_lines,
)
from .models import SessionDescriptor, Snapshot
from .parsers import load_transcript
from .registry import SessionRegistry
from .terminal import KeyTerminal

logger = logging.getLogger(__name__)

SOURCE_FILTERS = ("all", "copilot", "claude")
PREVIEW_TURNS = 50
PREVIEW_BYTES = 512 * 1024
SNAPSHOT_TIMEOUT = 0.01

RowRenderer = Callable[[SessionDescriptor, datetime, int], Text]


class ScanStatus(Protocol):
    scan_complete: bool


class BrowserAction(Enum):
    OPEN = "open"
    RESUME = "resume"
    QUIT = "quit"


@dataclass(frozen=True)
class BrowserResult:
    action: BrowserAction
    descriptor: SessionDescriptor | None = None


@dataclass
class BrowserState:
    """View state of the session list; never shared with the aggregation thread."""

    source_filter: str = "all"
    search_term: str = ""
    search_buffer: str = ""
    searching: bool = False
    match_index: int = -1
    cursor: int = 0
    scroll: int = 0
    show_preview: bool = False
    preview_scroll: int = 0
    visible: tuple[SessionDescriptor, ...] = ()
    matches: list[int] = field(default_factory=list)

    @property
    def current(self) -> SessionDescriptor | None:
        if 0 <= self.cursor < len(self.visible):
            return self.visible[self.cursor]
        return None

    @property
    def active_term(self) -> str:
        return self.search_buffer if self.searching else self.search_term

    def apply_snapshot(self, sessions: Sequence[SessionDescriptor], view_height: int) -> None:
        """Re-filter a fresh snapshot, keeping the cursor on the same session when it survives."""
        selected = self.current.id if self.current is not None else None
        self.visible = tuple(s for s in sessions if _source_matches(s, self.source_filter))
        if selected is not None:
            for position, descriptor in enumerate(self.visible):
                if descriptor.id == selected:
                    self.cursor = position
                    break
        self._recompute_matches(jump=False)
        self.clamp(view_height)

    def cycle_source_filter(self, sessions: Sequence[SessionDescriptor], view_height: int) -> None:
        index = SOURCE_FILTERS.index(self.source_filter)
        self.source_filter = SOURCE_FILTERS[(index + 1) % len(SOURCE_FILTERS)]
        self.cursor = 0
        self.scroll = 0
        self.apply_snapshot(sessions, view_height)

    def move(self, delta: int, view_height: int) -> None:
        self.cursor += delta
        self.clamp(view_height)

    def move_to(self, position: int, view_height: int) -> None:
        self.cursor = position
        self.clamp(view_height)

    def clamp(self, view_height: int) -> None:
        if not self.visible:
            self.cursor = 0
            self.scroll = 0
            return
        self.cursor = max(0, min(self.cursor, len(self.visible) - 1))
        if self.cursor < self.scroll:
            self.scroll = self.cursor
        if self.cursor >= self.scroll + view_height:
            self.scroll = self.cursor - view_height + 1
        self.scroll = max(0, self.scroll)

    def begin_search(self) -> None:
        self.searching = True
        self.search_buffer = ""

    def type_search(self, text: str, view_height: int) -> None:
        self.search_buffer = text
        self._recompute_matches(jump=True)
        self.clamp(view_height)

    def accept_search(self, view_height: int) -> None:
        self.searching = False
        self.search_term = self.search_buffer
        self.search_buffer = ""
        self._recompute_matches(jump=True)
        self.clamp(view_height)

    def cancel_search(self) -> None:
        self.searching = False
        self.search_buffer = ""
        self._recompute_matches(jump=False)

    def clear_search(self) -> None:
        self.search_term = ""
        self._recompute_matches(jump=False)

    def next_match(self, step: int, view_height: int) -> None:
        """Move to the next (step=1) or previous (step=-1) match, wrapping around."""
        if not self.matches:
            return
        if self.match_index < 0:
            self.match_index = 0 if step > 0 else len(self.matches) - 1
        else:
            self.match_index = (self.match_index + step) % len(self.matches)
        self.cursor = self.matches[self.match_index]
        self.clamp(view_height)

    def _recompute_matches(self, jump: bool) -> None:
        term = self.active_term.lower()
        if not term:
            self.matches = []
            self.match_index = -1
            return
        self.matches = [i for i, s in enumerate(self.visible) if term in s.search_text]
        if not self.matches:
            self.match_index = -1
        elif jump:
            self.match_index = 0
            self.cursor = self.matches[0]
        elif self.cursor in self.matches:
            self.match_index = self.matches.index(self.cursor)
        else:
            self.match_index = -1


class SessionBrowser:
    """Renders the registry's sessions and handles list keys until a selection or quit."""

    def __init__(
        self,
        registry: SessionRegistry,
        terminal: KeyTerminal,
        options: BrowserOptions,
        scan_status: ScanStatus | None = None,
        row_renderer: RowRenderer = render_session_row,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry
        self.terminal = terminal
        self.options = options
        self.scan_status = scan_status
        self.row_renderer = row_renderer
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = BrowserState()
        self.snapshot = Snapshot()
        self._seen_generation = -1
        self._preview_id: str | None = None
        self._preview_lines: list[Text] = []

    @property
    def scan_complete(self) -> bool:
        return self.scan_status is None or self.scan_status.scan_complete

    def view_height(self) -> int:
        _, height = self.terminal.size
        return max(3, height - 2 - len(self.snapshot.notices))

    def run(self) -> BrowserResult:
        dirty = True
        last_size: tuple[int, int] | None = None
        last_scan_state: bool | None = None
        while True:
            if self.refresh():
                dirty = True
            size = self.terminal.size
            if size != last_size:
                last_size = size
                self.state.clamp(self.view_height())
                dirty = True
            if self.scan_complete != last_scan_state:
                last_scan_state = self.scan_complete
                dirty = True
            if dirty:
                self.terminal.draw(self.render())
                dirty = False

            key = self.terminal.read_key(self.options.tick)
            if key is None:
                continue
            result = self.handle_key(key)
            if result is not None:
                return result
            dirty = True

    def refresh(self) -> bool:
        """Pick up a new registry generation; False when nothing changed or the lock was busy."""
        generation = self.registry.generation
        if generation == self._seen_generation:
            return False
        snapshot = self.registry.try_snapshot(SNAPSHOT_TIMEOUT)
        if snapshot is None:
            return False
        self.snapshot = snapshot
        self._seen_generation = snapshot.generation
        self.state.apply_snapshot(snapshot.sessions, self.view_height())
        return True

    def handle_key(self, key: str) -> BrowserResult | None:
        state = self.state
        height = self.view_height()
        if state.searching:
            self._handle_search_key(key, height)
            return None

        if key == "q":
            return BrowserResult(BrowserAction.QUIT)
        if key == "escape":
            if state.search_term:
                state.clear_search()
                return None
            return BrowserResult(BrowserAction.QUIT)

        if key in ("up", "k"):
            state.move(-1, height)
        elif key in ("down", "j"):
            state.move(1, height)
        elif key == "pageup":
            state.move(-height, height)
        elif key == "pagedown":
            state.move(height, height)
        elif key in ("home", "g"):
            state.move_to(0, height)
        elif key in ("end", "G"):
            state.move_to(len(state.visible) - 1, height)
        elif key == "enter":
            current = state.current
            if current is None:
                return None
            if not current.has_transcript:
                state.show_preview = True
                return None
            return BrowserResult(BrowserAction.OPEN, current)
        elif key == "r":
            current = state.current
            if current is not None and current.has_transcript:
                return BrowserResult(BrowserAction.RESUME, current)
        elif key == "/":
            state.begin_search()
        elif key == "n":
            state.next_match(1, height)
        elif key == "N":
            state.next_match(-1, height)
        elif key == "f":
            state.cycle_source_filter(self.snapshot.sessions, height)
        elif key == "i":
            state.show_preview = not state.show_preview
            self._preview_id = None
        elif key == "{" and state.show_preview:
            state.preview_scroll = max(0, state.preview_scroll - height // 2)
        elif key == "}" and state.show_preview:
            limit = max(0, len(self._preview_lines) - height)
            state.preview_scroll = min(limit, state.preview_scroll + height // 2)
        return None

    def _handle_search_key(self, key: str, height: int) -> None:
        state = self.state
        if key == "escape":
            state.cancel_search()
        elif key == "enter":
            state.accept_search(height)
        elif key == "backspace":
            state.type_search(state.search_buffer[:-1], height)
        elif len(key) == 1 and key.isprintable():
            state.type_search(state.search_buffer + key, height)

    def render(self) -> RenderableType:
        width, _ = self.terminal.size
        height = self.view_height()
        list_width = max(30, width * 2 // 5) if self.state.show_preview else width
        preview_width = max(0, width - list_width)
        preview = self._load_preview(height) if self.state.show_preview else []

        lines = [self._header(width)]
        for notice in self.snapshot.notices:
            lines.append(fit_line(Text(f" ⚠ {notice}", style="yellow"), width))

        rows = self._rows(list_width, height)
        for offset in range(height):
            line = rows[offset] if offset < len(rows) else Text("")
            line = fit_line(line, list_width)
            if self.state.show_preview:
                index = self.state.preview_scroll + offset
                if 0 <= index < len(preview):
                    line.append_text(fit_line(preview[index], preview_width))
            lines.append(line)
        lines.append(self._status_bar(width))
        return Group(*lines)

    def _rows(self, width: int, height: int) -> list[Text]:
        state = self.state
        if not state.visible:
            message = "  No sessions found" if self.scan_complete else "  Loading..."
            return [Text(message, style="dim")]
        now = self.clock()
        rows = []
        term = state.active_term
        for position in range(state.scroll, min(state.scroll + height, len(state.visible))):
            descriptor = state.visible[position]
            try:
                row = self.row_renderer(descriptor, now, width)
            except Exception:
                logger.debug("Row render failed for %s", descriptor.id, exc_info=True)
                row = Text(f"  (unreadable session {descriptor.id})", style="dim")
            else:
                if term:
                    row.highlight_words([term], style="bold yellow", case_sensitive=False)
            row = fit_line(row, width)
            if position == state.cursor:
                row.stylize("reverse")
            rows.append(row)
        return rows

    def _header(self, width: int) -> Text:
        state = self.state
        label = "🧪 Skill Eval" if any(s.eval is not None for s in self.snapshot.sessions) else "📋 Sessions"
        header = Text(f" {label} — {len(self.snapshot)} sessions", style="bold reverse")
        if not self.scan_complete:
            header.append(" Loading...", style="bold reverse")
        if state.source_filter != "all":
            header.append(f" [{state.source_filter}]", style="bold reverse")
        if state.search_term:
            header.append(
                f' search: "{state.search_term}" ({len(state.matches)} matches)', style="bold reverse"
            )
        current = state.current
        if current is not None:
            updated = current.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
            header.append(f" | {current.id} {updated}", style="bold underline reverse")
        return fit_line(header, width, style="reverse")

    def _status_bar(self, width: int) -> Text:
        if self.state.searching:
            text = f" Search: {self.state.search_buffer}_"
        else:
            preview_hint = "i close preview" if self.state.show_preview else "i preview"
            text = (
                f" ↑↓ navigate | Enter open | r resume | / search | n/N match"
                f" | f {self.state.source_filter} | {preview_hint} | q quit"
            )
        return fit_line(Text(text, style="reverse"), width, style="reverse")

    def _load_preview(self, height: int) -> list[Text]:
        current = self.state.current
        if current is None:
            self._preview_id = None
            self._preview_lines = []
            return []
        if current.id == self._preview_id:
            return self._preview_lines
        self._preview_id = current.id
        self._preview_lines = preview_lines(current)
        self.state.preview_scroll = 0
        if current.eval is None:
            self.state.preview_scroll = max(0, len(self._preview_lines) - height)
        return self._preview_lines


def preview_lines(descriptor: SessionDescriptor) -> list[Text]:
    if descriptor.eval is not None:
        return render_eval_preview(descriptor)
    try:
        transcript = load_transcript(descriptor.path, tail=PREVIEW_TURNS, max_bytes=PREVIEW_BYTES)
        return render_transcript_lines(transcript)
    except (TranscriptError, OSError) as exc:
        logger.debug("Preview failed for %s: %s", descriptor.id, exc)
        return [Text(""), Text("  (unable to load preview)", style="dim")]


def _source_matches(descriptor: SessionDescriptor, source_filter: str) -> bool:
    if source_filter == "all":
        return True
    return descriptor.agent == source_filter

