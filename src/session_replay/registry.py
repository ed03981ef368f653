# ABOUTME: Thread-safe merged view of every discovered session.
# ABOUTME: Deduplicates by id, keeps newest-first order and counts generations for the pager.

from __future__ import annotations

import logging
import threading
from typing import Iterable

from .models import SessionDescriptor, Snapshot

logger = logging.getLogger(__name__)


def _sort_key(descriptor: SessionDescriptor):
    return descriptor.updated_at


class SessionRegistry:
    """Owns the session list, the known-id index and per-source notices.

    The scheduler thread writes through ``merge`` and the notice methods; the
    render loop reads through ``snapshot``/``try_snapshot``. One lock guards
    all state and is never held across I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: list[SessionDescriptor] = []
        self._known: dict[str, int] = {}
        self._notices: dict[str, str] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def merge(
        self,
        descriptors: Iterable[SessionDescriptor],
        allow_source: bool = True,
        refresh: bool = False,
    ) -> int:
        """Admit unseen descriptors and return how many were new.

        Duplicates keep the first descriptor seen. With ``refresh`` a descriptor
        from the same source with a newer ``updated_at`` replaces the stored one.
        """
        if not allow_source:
            return 0
        incoming = list(descriptors)
        if not incoming:
            return 0
        admitted = 0
        replaced = 0
        with self._lock:
            for descriptor in incoming:
                index = self._known.get(descriptor.id)
                if index is None:
                    self._known[descriptor.id] = len(self._sessions)
                    self._sessions.append(descriptor)
                    admitted += 1
                    continue
                current = self._sessions[index]
                if (
                    refresh
                    and current.source is descriptor.source
                    and descriptor.updated_at > current.updated_at
                ):
                    self._sessions[index] = descriptor
                    replaced += 1
            if admitted or replaced:
                self._sessions.sort(key=_sort_key, reverse=True)
                self._known = {item.id: position for position, item in enumerate(self._sessions)}
                self._generation += 1
        if admitted or replaced:
            logger.debug("Merged %d new and %d refreshed sessions", admitted, replaced)
        return admitted

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._snapshot_locked()

    def try_snapshot(self, timeout: float = 0.0) -> Snapshot | None:
        """Snapshot without waiting longer than ``timeout``; None on contention."""
        acquired = self._lock.acquire(timeout=timeout) if timeout > 0 else self._lock.acquire(False)
        if not acquired:
            return None
        try:
            return self._snapshot_locked()
        finally:
            self._lock.release()

    def set_notice(self, source_name: str, message: str) -> None:
        with self._lock:
            if self._notices.get(source_name) == message:
                return
            self._notices[source_name] = message
            self._generation += 1

    def clear_notice(self, source_name: str) -> None:
        with self._lock:
            if self._notices.pop(source_name, None) is not None:
                self._generation += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._known

    def _snapshot_locked(self) -> Snapshot:
        return Snapshot(
            sessions=tuple(self._sessions),
            generation=self._generation,
            notices=tuple(self._notices[name] for name in sorted(self._notices)),
        )
