# ABOUTME: Exception types shared by the session readers, registry and replay driver.
# ABOUTME: Source failures are reported as values by the readers, never raised across a merge.

from __future__ import annotations


class ReplayError(Exception):
    """Base class for session-replay errors."""


class SourceUnavailable(ReplayError):
    """A session source could not be read at all."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class CorruptRecord(ReplayError):
    """A single session record could not be parsed."""

    def __init__(self, location: str, reason: str) -> None:
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class TranscriptError(ReplayError):
    """A transcript could not be loaded for replay."""
