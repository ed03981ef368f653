# ABOUTME: Terminal input/output for the interactive views.
# ABOUTME: Reads keys with a bounded wait in cbreak mode and draws full frames through rich Live.

from __future__ import annotations

import os
import select
import sys
import termios
import tty
from collections import deque
from contextlib import AbstractContextManager, contextmanager
from typing import IO, Iterator, Protocol

from rich.console import Console, RenderableType
from rich.live import Live

ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOC": "right",
    "\x1bOD": "left",
    "\x1b[5~": "pageup",
    "\x1b[6~": "pagedown",
    "\x1b[H": "home",
    "\x1b[F": "end",
    "\x1bOH": "home",
    "\x1bOF": "end",
    "\x1b[1~": "home",
    "\x1b[4~": "end",
    "\x1b[7~": "home",
    "\x1b[8~": "end",
}
SIMPLE_KEYS = {
    "\r": "enter",
    "\n": "enter",
    "\x7f": "backspace",
    "\x08": "backspace",
    "\t": "tab",
}


def decode_keys(data: str) -> list[str]:
    """Split raw terminal input into key names; printable characters map to themselves."""
    keys: list[str] = []
    index = 0
    while index < len(data):
        char = data[index]
        if char != "\x1b":
            keys.append(SIMPLE_KEYS.get(char, char))
            index += 1
            continue
        matched = _match_sequence(data, index)
        if matched is not None:
            name, length = matched
            keys.append(name)
            index += length
        elif data.startswith("\x1b[", index):
            # unknown CSI sequence: drop through its final byte
            end = index + 2
            while end < len(data) and not "@" <= data[end] <= "~":
                end += 1
            index = end + 1
        else:
            keys.append("escape")
            index += 1
    return keys


def _match_sequence(data: str, index: int) -> tuple[str, int] | None:
    for sequence, name in ESCAPE_SEQUENCES.items():
        if data.startswith(sequence, index):
            return name, len(sequence)
    return None


class KeyTerminal(Protocol):
    @property
    def size(self) -> tuple[int, int]: ...

    def read_key(self, timeout: float) -> str | None: ...

    def draw(self, renderable: RenderableType) -> None: ...

    def suspend(self) -> AbstractContextManager[None]: ...


class Terminal:
    """Owns the tty while a view runs: cbreak input plus an alternate-screen Live display."""

    def __init__(self, console: Console | None = None, stream: IO[str] | None = None) -> None:
        self.console = console or Console()
        self._stream = stream or sys.stdin
        self._fd: int | None = None
        self._saved: list | None = None
        self._live: Live | None = None
        self._pending: deque[str] = deque()

    def __enter__(self) -> Terminal:
        self._fd = self._stream.fileno()
        self._saved = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        self._live = Live(console=self.console, screen=True, auto_refresh=False, transient=True)
        self._live.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        if self._fd is not None and self._saved is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
        self._fd = None
        self._saved = None

    @property
    def size(self) -> tuple[int, int]:
        width, height = self.console.size
        return width, height

    def draw(self, renderable: RenderableType) -> None:
        if self._live is None:
            self.console.print(renderable)
            return
        self._live.update(renderable, refresh=True)

    def read_key(self, timeout: float) -> str | None:
        """Return the next key name, or None if nothing arrives within ``timeout`` seconds."""
        if self._pending:
            return self._pending.popleft()
        if self._fd is None:
            raise RuntimeError("Terminal is not active")
        ready, _, _ = select.select([self._fd], [], [], timeout)
        if not ready:
            return None
        data = os.read(self._fd, 64)
        if data == b"\x1b":
            # a lone escape may be the start of a sequence split across reads
            ready, _, _ = select.select([self._fd], [], [], 0.02)
            if ready:
                data += os.read(self._fd, 64)
        self._pending.extend(decode_keys(data.decode("utf-8", errors="replace")))
        return self._pending.popleft() if self._pending else None

    @contextmanager
    def suspend(self) -> Iterator[None]:
        """Hand the terminal back to the shell, e.g. for a prompt or child process."""
        active = self._fd is not None
        if active:
            self.__exit__(None, None, None)
        try:
            yield
        finally:
            if active:
                self.__enter__()
