from __future__ import annotations

from dataclasses import dataclass

from ..config import BrowserOptions
from .base import Discovery, SessionSource
from .claude import ClaudeTreeScanner
from .copilot import CopilotTreeScanner
from .store import DbType, StoreReader, detect_db_type

__all__ = [
    "ClaudeTreeScanner",
    "CopilotTreeScanner",
    "DbType",
    "Discovery",
    "SessionSource",
    "SourcePlan",
    "SourceSetup",
    "StoreReader",
    "build_sources",
    "detect_db_type",
]


@dataclass(frozen=True)
class SourcePlan:
    """A reader and whether its results may enter the registry."""

    source: SessionSource
    enabled: bool = True


@dataclass(frozen=True)
class SourceSetup:
    plans: tuple[SourcePlan, ...]
    store: StoreReader | None


def build_sources(options: BrowserOptions) -> SourceSetup:
    """Build the scan plans for one run.

    With a store override only that database is read and polled; both directory
    trees stay disabled.
    """
    store = StoreReader(options.store_path, options.session_state_dir)
    trees_enabled = not options.uses_override
    plans = (
        SourcePlan(store, enabled=True),
        SourcePlan(CopilotTreeScanner(options.session_state_dir), enabled=trees_enabled),
        SourcePlan(ClaudeTreeScanner(options.claude_projects_dir), enabled=trees_enabled),
    )
    return SourceSetup(plans=plans, store=store)
