from __future__ import annotations

import sys
from pathlib import Path

import click
from click_default_group import DefaultGroup
from rich.console import Console

from .browser import SessionBrowser
from .config import BrowserOptions
from .errors import TranscriptError
from .formatters import (
    ROLE_FILTERS,
    format_sessions,
    render_sessions_table,
    render_transcript_header,
    render_transcript_lines,
)
from .loaders import build_sources
from .logging_config import setup_logging
from .parsers import load_transcript
from .registry import SessionRegistry
from .replay import ReplayDriver
from .scheduler import AggregationScheduler
from .terminal import Terminal
from .viewer import PagerAction

LOG_LEVELS = click.Choice(["debug", "info", "warning", "error"], case_sensitive=False)


@click.group(cls=DefaultGroup, default="browse", default_if_no_args=True)
def cli() -> None:
    """Browse, search and replay Copilot CLI and Claude Code sessions."""


@cli.command()
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help="Read only this session store")
@click.option(
    "--session-state-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Copilot session-state directory override",
)
@click.option(
    "--claude-projects-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Claude Code projects directory override",
)
@click.option("--poll-interval", type=float, default=None, help="Seconds between store polls")
@click.option("--log-level", type=LOG_LEVELS, default=None, help="Log level for the log file")
@click.option("--no-color", is_flag=True, help="Disable colors")
def browse(
    path: Path | None,
    db_path: Path | None,
    session_state_dir: Path | None,
    claude_projects_dir: Path | None,
    poll_interval: float | None,
    log_level: str | None,
    no_color: bool,
) -> None:
    """Interactively browse every discovered session."""
    setup_logging(log_level)
    if path is not None and path.suffix == ".db":
        db_path = path
        path = None

    options = BrowserOptions.from_environment(
        session_state_dir=session_state_dir,
        claude_projects_dir=claude_projects_dir,
        db_override=db_path,
        poll_interval=poll_interval,
        no_color=no_color,
    )
    if not _is_interactive():
        raise click.ClickException("Cannot browse in redirected output")
    if path is not None:
        _replay_file(path, options)
        return

    registry = SessionRegistry()
    setup = build_sources(options)
    scheduler = AggregationScheduler(
        registry, setup.plans, store=setup.store, interval=options.poll_interval
    )
    console = Console(no_color=no_color)
    try:
        with scheduler, Terminal(console) as terminal:
            browser = SessionBrowser(registry, terminal, options, scan_status=scheduler)
            driver = ReplayDriver(options, terminal=terminal, console=console)
            driver.browse(registry, browser)
    except KeyboardInterrupt:
        pass


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--filter",
    "role_filter",
    type=click.Choice(ROLE_FILTERS, case_sensitive=False),
    default="all",
    show_default=True,
)
@click.option("--expand-tools", is_flag=True, help="Show tool arguments, results and thinking")
@click.option("--tail", type=int, default=None, help="Only the last N turns")
@click.option("--no-follow", is_flag=True, help="Do not watch the file for new events")
@click.option("--stream", is_flag=True, help="Print rendered lines instead of paging")
@click.option("--log-level", type=LOG_LEVELS, default=None, help="Log level for the log file")
@click.option("--no-color", is_flag=True, help="Disable colors")
def show(
    path: Path,
    role_filter: str,
    expand_tools: bool,
    tail: int | None,
    no_follow: bool,
    stream: bool,
    log_level: str | None,
    no_color: bool,
) -> None:
    """Replay a single transcript file."""
    setup_logging(log_level)
    options = BrowserOptions.from_environment(
        no_color=no_color,
        expand_tools=expand_tools,
        role_filter=role_filter,
        tail=tail,
        follow=not no_follow,
    )
    if stream or not _is_interactive():
        _stream_file(path, options)
        return
    _replay_file(path, options)


@cli.command(name="list")
@click.option("--db", "db_path", type=click.Path(path_type=Path), default=None, help="Read only this session store")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "csv"], case_sensitive=False),
    default="table",
    show_default=True,
)
@click.option("--limit", default=50, show_default=True, help="Max sessions (0 for all)")
def list_sessions(db_path: Path | None, output_format: str, limit: int) -> None:
    """Print the merged session list once."""
    setup_logging()
    options = BrowserOptions.from_environment(db_override=db_path)
    registry = SessionRegistry()
    setup = build_sources(options)
    AggregationScheduler(registry, setup.plans, store=setup.store).run_initial_scan()

    snapshot = registry.snapshot()
    sessions = snapshot.sessions[:limit] if limit > 0 else snapshot.sessions
    for notice in snapshot.notices:
        click.echo(f"Warning: {notice}", err=True)

    formatted = format_sessions(sessions, output_format)
    if formatted is not None:
        click.echo(formatted)
        return
    if not sessions:
        click.echo("No sessions found")
        return
    render_sessions_table(sessions)


@cli.command()
@click.argument("session_path", type=click.Path(path_type=Path))
@click.option("--yes", "assume_yes", is_flag=True, help="Do not ask for confirmation")
def resume(session_path: Path, assume_yes: bool) -> None:
    """Resume a session in the assistant that recorded it."""
    setup_logging()
    options = BrowserOptions.from_environment(assume_yes=assume_yes)
    exit_code = ReplayDriver(options).resume(session_path)
    if exit_code:
        sys.exit(exit_code)


def _is_interactive() -> bool:
    return click.get_text_stream("stdout").isatty() and click.get_text_stream("stdin").isatty()


def _replay_file(path: Path, options: BrowserOptions) -> None:
    console = Console(no_color=options.no_color)
    try:
        with Terminal(console) as terminal:
            driver = ReplayDriver(options, terminal=terminal, console=console)
            action = driver.open(path)
            if action is PagerAction.RESUME:
                driver.resume(path)
    except TranscriptError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        pass


def _stream_file(path: Path, options: BrowserOptions) -> None:
    try:
        transcript = load_transcript(path, tail=options.tail)
    except TranscriptError as exc:
        raise click.ClickException(str(exc)) from exc
    console = Console(no_color=options.no_color, soft_wrap=True)
    role_filter = None if options.role_filter in (None, "all") else options.role_filter
    for line in render_transcript_header(transcript, console.width):
        console.print(line)
    for line in render_transcript_lines(transcript, role_filter, options.expand_tools):
        console.print(line)


if __name__ == "__main__":
    cli()
