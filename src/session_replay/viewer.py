# ABOUTME: Scrolling pager for one rendered transcript.
# ABOUTME: Supports search, role filtering, tool expansion and follow mode for growing files.

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.console import Group, RenderableType
from rich.text import Text

from .config import BrowserOptions
from .errors import TranscriptError
from .formatters import (
    ROLE_FILTERS,
    build_info_bar,
    fit_line,
    render_transcript_header,
    render_transcript_lines,
)
from .parsers import Transcript, load_transcript
from .terminal import KeyTerminal

logger = logging.getLogger(__name__)

HORIZONTAL_STEP = 8
MATCH_STYLE = "black on cyan"


class PagerAction(Enum):
    QUIT = "quit"
    BROWSE = "browse"
    RESUME = "resume"


class TranscriptPager:
    """Keyboard-driven viewer over the lines rendered from a Transcript."""

    def __init__(
        self,
        transcript: Transcript,
        terminal: KeyTerminal,
        options: BrowserOptions,
        loader: Callable[[Path], Transcript] | None = None,
    ) -> None:
        self.transcript = transcript
        self.terminal = terminal
        self.options = options
        self.loader = loader or (lambda path: load_transcript(path, tail=options.tail))
        self.filter_index = _filter_index(options.role_filter)
        self.expand_tools = options.expand_tools
        self.offset = 0
        self.scroll_x = 0
        self.search_term: str | None = None
        self.search_buffer = ""
        self.searching = False
        self.matches: list[int] = []
        self.match_index = -1
        self.show_info = False
        self.at_bottom = True
        self.following = options.follow and bool(transcript.path)
        self._file_size = self._current_size()
        self.lines: list[Text] = []
        self.rebuild()

    @property
    def role_filter(self) -> str:
        return ROLE_FILTERS[self.filter_index]

    def viewport_height(self) -> int:
        _, height = self.terminal.size
        return max(1, height - 2)

    def max_offset(self) -> int:
        return max(0, len(self.lines) - self.viewport_height())

    def rebuild(self) -> None:
        role_filter = None if self.filter_index == 0 else self.role_filter
        self.lines = render_transcript_lines(self.transcript, role_filter, self.expand_tools)
        if self.search_term:
            self._find_matches()
        self.clamp()

    def clamp(self) -> None:
        self.offset = max(0, min(self.offset, self.max_offset()))

    def run(self) -> PagerAction:
        dirty = True
        last_size: tuple[int, int] | None = None
        while True:
            if self.poll_file():
                dirty = True
            size = self.terminal.size
            if size != last_size:
                last_size = size
                self.clamp()
                dirty = True
            if dirty:
                self.terminal.draw(self.render())
                dirty = False
            key = self.terminal.read_key(self.options.tick)
            if key is None:
                continue
            action = self.handle_key(key)
            if action is not None:
                return action
            dirty = True

    def poll_file(self) -> bool:
        """Re-parse the transcript when its file has grown; True if the view changed."""
        if not self.following:
            return False
        size = self._current_size()
        if size <= self._file_size:
            return False
        self._file_size = size
        try:
            transcript = self.loader(Path(self.transcript.path))
        except TranscriptError as exc:
            logger.debug("Follow reload failed: %s", exc)
            return False
        stick = self.at_bottom and self.offset >= self.max_offset()
        self.transcript = transcript
        self.rebuild()
        if stick:
            self.offset = self.max_offset()
        return True

    def handle_key(self, key: str) -> PagerAction | None:
        if self.searching:
            self._handle_search_key(key)
            return None
        if self.show_info:
            self.show_info = False
            return None

        height = self.viewport_height()
        if key == "escape" and self.search_term:
            self.search_term = None
            self.matches = []
            self.match_index = -1
            return None
        if key in ("q", "escape"):
            return PagerAction.QUIT
        if key == "b":
            return PagerAction.BROWSE
        if key == "r":
            return PagerAction.RESUME
        if key in ("up", "k"):
            self.scroll(-1)
        elif key in ("down", "j"):
            self.scroll(1)
        elif key == "pageup":
            self.scroll(-height)
        elif key in ("pagedown", " "):
            self.scroll(height)
        elif key in ("home", "g"):
            self.offset = 0
            if key == "home":
                self.scroll_x = 0
            self.at_bottom = len(self.lines) <= height
        elif key in ("end", "G"):
            self.offset = self.max_offset()
            self.at_bottom = True
        elif key in ("left", "h"):
            self.scroll_x = max(0, self.scroll_x - HORIZONTAL_STEP)
        elif key in ("right", "l"):
            self.scroll_x += HORIZONTAL_STEP
        elif key == "0":
            self.scroll_x = 0
        elif key == "t":
            self._rebuild_anchored(self._toggle_tools)
        elif key == "f":
            self._rebuild_anchored(self._next_filter)
        elif key == "/":
            self.searching = True
            self.search_buffer = ""
        elif key == "i":
            self.show_info = True
        elif key == "n":
            self.jump_to_match(1)
        elif key == "N":
            self.jump_to_match(-1)
        return None

    def scroll(self, delta: int) -> None:
        self.offset += delta
        self.clamp()
        self.at_bottom = self.offset >= self.max_offset()

    def jump_to_match(self, step: int) -> None:
        if not self.matches:
            return
        if self.match_index < 0:
            self.match_index = 0 if step > 0 else len(self.matches) - 1
        else:
            self.match_index = (self.match_index + step) % len(self.matches)
        self.offset = max(0, self.matches[self.match_index] - self.viewport_height() // 3)
        self.clamp()
        self.at_bottom = self.offset >= self.max_offset()

    def render(self) -> RenderableType:
        width, _ = self.terminal.size
        height = self.viewport_height()
        bar = " " + build_info_bar(self.transcript)
        if self.following:
            bar += " ↓ FOLLOWING"
        lines = [fit_line(Text(bar), width, style="reverse")]

        if self.show_info:
            body = render_transcript_header(self.transcript, width)[:height]
        else:
            body = []
            match_set = set(self.matches)
            for index in range(self.offset, min(self.offset + height, len(self.lines))):
                line = self.lines[index]
                if self.scroll_x:
                    line = line[self.scroll_x :]
                if index in match_set:
                    line = Text(line.plain, style=MATCH_STYLE)
                body.append(line)
        for index in range(height):
            line = body[index] if index < len(body) else Text("")
            lines.append(fit_line(line, width))
        lines.append(fit_line(Text(self.status_text()), width, style="reverse"))
        return Group(*lines)

    def status_text(self) -> str:
        if self.show_info:
            return " Press i or any key to dismiss"
        if self.searching:
            return f" Search: {self.search_buffer}_"
        if self.search_term and self.matches:
            return (
                f' Search: "{self.search_term}" ({self.match_index + 1}/{len(self.matches)})'
                " | n/N next/prev | Esc clear"
            )
        current = 0 if not self.lines else self.offset + 1
        column = f" Col {self.scroll_x}+" if self.scroll_x else ""
        live = ""
        if self.following:
            live = " LIVE" if self.at_bottom else " [new content ↓]"
        return (
            f" Line {current}/{len(self.lines)}{column} | Filter: {self.role_filter}{live}"
            " | t tools | b browse | r resume | q quit"
        )

    def _handle_search_key(self, key: str) -> None:
        if key == "escape":
            self.searching = False
            self.search_buffer = ""
        elif key == "enter":
            self.searching = False
            term = self.search_buffer
            self.search_buffer = ""
            if not term:
                self.search_term = None
                self.matches = []
                self.match_index = -1
                return
            self.search_term = term
            self._find_matches()
            if self.matches:
                self.match_index = 0
                self.offset = max(0, self.matches[0] - self.viewport_height() // 3)
                self.clamp()
        elif key == "backspace":
            self.search_buffer = self.search_buffer[:-1]
        elif len(key) == 1 and key.isprintable():
            self.search_buffer += key

    def _find_matches(self) -> None:
        term = (self.search_term or "").lower()
        self.matches = [i for i, line in enumerate(self.lines) if term and term in line.plain.lower()]
        self.match_index = -1

    def _toggle_tools(self) -> None:
        self.expand_tools = not self.expand_tools

    def _next_filter(self) -> None:
        self.filter_index = (self.filter_index + 1) % len(ROLE_FILTERS)

    def _rebuild_anchored(self, change: Callable[[], None]) -> None:
        anchor = scroll_anchor(self.lines, self.offset)
        old_count = len(self.lines)
        old_offset = self.offset
        change()
        self.rebuild()
        self.offset = anchored_offset(self.lines, anchor, old_offset, old_count)
        self.clamp()

    def _current_size(self) -> int:
        if not self.transcript.path:
            return 0
        try:
            return Path(self.transcript.path).stat().st_size
        except OSError:
            return 0


def scroll_anchor(lines: list[Text], offset: int) -> str | None:
    """Pick a distinctive line near the top of the viewport to re-find after a rebuild."""
    if offset >= len(lines):
        return None
    for line in lines[offset : offset + 5]:
        text = line.plain
        stripped = text.strip()
        if stripped and not stripped.startswith("───") and stripped != "┃" and len(text) > 5:
            return text
    return lines[offset].plain


def anchored_offset(lines: list[Text], anchor: str | None, fallback: int, old_count: int) -> int:
    if anchor is None:
        return fallback
    for index, line in enumerate(lines):
        if line.plain == anchor:
            return index
    if old_count > 0:
        return min(fallback * len(lines) // old_count, max(0, len(lines) - 1))
    return fallback


def _filter_index(role_filter: str | None) -> int:
    if role_filter in ROLE_FILTERS:
        return ROLE_FILTERS.index(role_filter)
    return 0
