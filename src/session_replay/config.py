# ABOUTME: Runtime options and default locations for the session sources.
# ABOUTME: Resolves directories from explicit flags, environment variables, then home defaults.

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

SESSION_STATE_DIR = Path.home() / ".copilot" / "session-state"
CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"
STORE_FILENAME = "session-store.db"
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_TICK = 0.1

ENV_SESSION_STATE_DIR = "COPILOT_SESSION_STATE_DIR"
ENV_PROJECTS_DIR = "CLAUDE_CODE_PROJECTS_DIR"
ENV_POLL_INTERVAL = "SESSION_REPLAY_POLL_INTERVAL"


def resolve_session_state_dir(root_dir: Path | None = None) -> Path:
    if root_dir is not None:
        return root_dir
    env_value = os.environ.get(ENV_SESSION_STATE_DIR)
    if env_value:
        return Path(env_value).expanduser()
    return SESSION_STATE_DIR


def resolve_claude_projects_dir(root_dir: Path | None = None) -> Path:
    if root_dir is not None:
        return root_dir
    env_value = os.environ.get(ENV_PROJECTS_DIR)
    if env_value:
        return Path(env_value).expanduser()
    return CLAUDE_PROJECTS_DIR


def resolve_poll_interval(value: float | None = None) -> float:
    if value is not None:
        return max(value, 0.05)
    env_value = os.environ.get(ENV_POLL_INTERVAL)
    if env_value:
        try:
            return max(float(env_value), 0.05)
        except ValueError:
            return DEFAULT_POLL_INTERVAL
    return DEFAULT_POLL_INTERVAL


@dataclass(frozen=True)
class BrowserOptions:
    """Everything the aggregation engine and pager need for one run."""

    session_state_dir: Path
    claude_projects_dir: Path
    db_override: Path | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    tick: float = DEFAULT_TICK
    no_color: bool = False
    expand_tools: bool = False
    role_filter: str | None = None
    tail: int | None = None
    follow: bool = True
    assume_yes: bool = False

    @property
    def uses_override(self) -> bool:
        return self.db_override is not None

    @property
    def store_path(self) -> Path:
        if self.db_override is not None:
            return self.db_override
        return self.session_state_dir.parent / STORE_FILENAME

    @classmethod
    def from_environment(
        cls,
        session_state_dir: Path | None = None,
        claude_projects_dir: Path | None = None,
        db_override: Path | None = None,
        poll_interval: float | None = None,
        **kwargs: object,
    ) -> BrowserOptions:
        return cls(
            session_state_dir=resolve_session_state_dir(session_state_dir),
            claude_projects_dir=resolve_claude_projects_dir(claude_projects_dir),
            db_override=db_override,
            poll_interval=resolve_poll_interval(poll_interval),
            **kwargs,  # type: ignore[arg-type]
        )
