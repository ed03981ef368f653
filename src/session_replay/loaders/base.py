# ABOUTME: Base class for session sources.
# ABOUTME: Turns reader failures into ScanResult values so a scan never aborts aggregation.

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from ..errors import SourceUnavailable
from ..models import ScanResult, SessionDescriptor, SourceKind

logger = logging.getLogger(__name__)


@dataclass
class Discovery:
    """Raw output of one source walk before it is frozen into a ScanResult."""

    descriptors: list[SessionDescriptor] = field(default_factory=list)
    skipped: int = 0
    cursor: str | None = None


class SessionSource(ABC):
    """Abstract base class for session sources."""

    name: str = "source"
    kind: SourceKind = SourceKind.STORE

    def scan(self) -> ScanResult:
        """Discover every session this source currently holds."""
        return self._collect(self._discover)

    @abstractmethod
    def _discover(self) -> Discovery:
        """Walk the backing store; may raise SourceUnavailable."""
        ...

    def _collect(self, discover: Callable[[], Discovery]) -> ScanResult:
        try:
            discovery = discover()
        except SourceUnavailable as exc:
            logger.warning("%s", exc)
            return ScanResult(source=self.name, error=exc)
        except (OSError, sqlite3.Error) as exc:
            error = SourceUnavailable(self.name, str(exc))
            logger.warning("%s", error)
            return ScanResult(source=self.name, error=error)
        if discovery.skipped:
            logger.debug("%s: skipped %d unreadable sessions", self.name, discovery.skipped)
        return ScanResult(
            source=self.name,
            descriptors=tuple(discovery.descriptors),
            skipped=discovery.skipped,
            cursor=discovery.cursor,
        )
