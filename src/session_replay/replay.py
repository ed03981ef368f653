# ABOUTME: Hand-off between the session list, the transcript pager and resuming a session.
# ABOUTME: Loads transcripts on selection and launches the owning assistant CLI to resume.

from __future__ import annotations

import logging
import shutil
import subprocess
from contextlib import nullcontext
from pathlib import Path
from typing import Callable, Sequence, Union

import questionary
from rich.console import Console

from .browser import BrowserAction, SessionBrowser
from .config import BrowserOptions
from .errors import TranscriptError
from .models import SessionDescriptor
from .parsers import load_transcript
from .registry import SessionRegistry
from .terminal import KeyTerminal
from .viewer import PagerAction, TranscriptPager

logger = logging.getLogger(__name__)

REPLAY_NOTICE = "replay"

Target = Union[SessionDescriptor, Path, str]


def resume_command(target: Target) -> list[str]:
    """Build the resume command line for a Claude or Copilot transcript."""
    path = Path(target.path if isinstance(target, SessionDescriptor) else target)
    normalized = str(path).replace("\\", "/")
    is_claude = "/.claude/projects/" in normalized
    if isinstance(target, SessionDescriptor) and target.agent == "claude":
        is_claude = True
    if is_claude:
        return ["claude", "--resume", path.stem]
    return ["copilot", "--resume", path.parent.name]


class ReplayDriver:
    """Opens transcripts in the pager and resumes sessions on request."""

    def __init__(
        self,
        options: BrowserOptions,
        terminal: KeyTerminal | None = None,
        console: Console | None = None,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
        confirm: Callable[[str], bool] | None = None,
        which: Callable[[str], str | None] | None = None,
    ) -> None:
        self.options = options
        self.terminal = terminal
        self.console = console or Console()
        self.runner = runner or subprocess.run
        self.confirm = confirm or _ask_confirm
        self.which = which or shutil.which

    def open(self, target: Target) -> PagerAction:
        path = target.path if isinstance(target, SessionDescriptor) else str(target)
        if not path:
            raise TranscriptError("Session has no local transcript")
        transcript = load_transcript(path, tail=self.options.tail)
        if self.terminal is None:
            raise TranscriptError("An interactive terminal is required to replay a transcript")
        pager = TranscriptPager(transcript, self.terminal, self.options)
        return pager.run()

    def resume(self, target: Target) -> int | None:
        """Run the assistant's resume command; returns its exit code, or None if not run."""
        command = resume_command(target)
        if not command[-1]:
            self.console.print("[red]Error: Could not determine session ID for resume.[/red]")
            return None
        suspend = self.terminal.suspend() if self.terminal is not None else nullcontext()
        with suspend:
            return self._launch(command)

    def browse(self, registry: SessionRegistry, browser: SessionBrowser) -> None:
        """Alternate between the list and the pager until the user quits or resumes."""
        while True:
            result = browser.run()
            if result.action is BrowserAction.QUIT or result.descriptor is None:
                return
            if result.action is BrowserAction.RESUME:
                self.resume(result.descriptor)
                return
            try:
                action = self.open(result.descriptor)
            except TranscriptError as exc:
                logger.warning("Cannot open %s: %s", result.descriptor.id, exc)
                registry.set_notice(REPLAY_NOTICE, f"Cannot open {result.descriptor.id}: {exc}")
                continue
            registry.clear_notice(REPLAY_NOTICE)
            if action is PagerAction.BROWSE:
                continue
            if action is PagerAction.RESUME:
                self.resume(result.descriptor)
            return

    def _launch(self, command: Sequence[str]) -> int | None:
        display = " ".join(command)
        executable = command[0]
        if not self.options.assume_yes and not self.confirm(f"Resume with: {display}?"):
            return None
        if self.which(executable) is None:
            self._report_missing(executable, "not found")
            return None
        self.console.print(f"Resuming session with: {display}\n")
        try:
            completed = self.runner(list(command), check=False)
        except OSError as exc:
            self._report_missing(executable, str(exc))
            return None
        return completed.returncode

    def _report_missing(self, executable: str, reason: str) -> None:
        logger.warning("Cannot launch %s: %s", executable, reason)
        self.console.print(f"[red]Error launching {executable}: {reason}[/red]")
        self.console.print(f"Make sure '{executable}' is installed and available in your PATH.")


def _ask_confirm(message: str) -> bool:
    return bool(questionary.confirm(message, default=True).ask())
