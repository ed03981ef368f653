# ABOUTME: Tests for the merged session registry.
# ABOUTME: Covers deduplication, ordering, refresh, notices and non-blocking snapshots.

import threading
from datetime import datetime, timedelta, timezone

from session_replay.models import SessionDescriptor, SourceKind
from session_replay.registry import SessionRegistry

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _descriptor(session_id: str, hours: int = 0, source: SourceKind = SourceKind.STORE, title: str = "") -> SessionDescriptor:
    return SessionDescriptor(
        id=session_id,
        source=source,
        updated_at=BASE + timedelta(hours=hours),
        path=f"/sessions/{session_id}/events.jsonl",
        title=title,
    )


class TestMerge:
    """Tests for SessionRegistry.merge."""

    def test_sorted_newest_first(self) -> None:
        """Sessions are kept in descending updated_at order."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a", 1), _descriptor("b", 5), _descriptor("c", 3)])

        ids = [d.id for d in registry.snapshot().sessions]

        assert ids == ["b", "c", "a"]

    def test_first_seen_wins(self) -> None:
        """A duplicate id from a later batch never replaces the first one."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a", 1, SourceKind.STORE, title="store")])

        admitted = registry.merge([_descriptor("a", 9, SourceKind.PRIMARY_TREE, title="tree")])

        (only,) = registry.snapshot().sessions
        assert admitted == 0
        assert only.title == "store"

    def test_duplicates_within_one_batch(self) -> None:
        """Only the first of two equal ids in one batch is admitted."""
        registry = SessionRegistry()

        admitted = registry.merge([_descriptor("a", 1, title="one"), _descriptor("a", 2, title="two")])

        assert admitted == 1
        assert registry.snapshot().sessions[0].title == "one"

    def test_batching_does_not_change_result(self) -> None:
        """Merging in one batch or many gives the same ordered ids."""
        items = [_descriptor(str(n), hours=n % 4) for n in range(12)] + [_descriptor("3", 10)]
        together = SessionRegistry()
        together.merge(items)
        apart = SessionRegistry()
        for item in items:
            apart.merge([item])

        assert [d.id for d in together.snapshot().sessions] == [d.id for d in apart.snapshot().sessions]
        assert len(together) == 12

    def test_equal_timestamps_keep_insertion_order(self) -> None:
        """The sort is stable for ties."""
        registry = SessionRegistry()
        registry.merge([_descriptor("x", 2), _descriptor("y", 2)])
        registry.merge([_descriptor("z", 2)])

        assert [d.id for d in registry.snapshot().sessions] == ["x", "y", "z"]

    def test_refresh_replaces_newer_same_source(self) -> None:
        """With refresh a newer row from the same source updates the entry."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a", 1, title="old"), _descriptor("b", 2)])

        admitted = registry.merge([_descriptor("a", 5, title="new")], refresh=True)

        sessions = registry.snapshot().sessions
        assert admitted == 0
        assert [d.id for d in sessions] == ["a", "b"]
        assert sessions[0].title == "new"

    def test_refresh_ignores_other_sources(self) -> None:
        """Refresh never lets a different source take over an id."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a", 1, SourceKind.PRIMARY_TREE, title="tree")])

        registry.merge([_descriptor("a", 5, SourceKind.STORE, title="store")], refresh=True)

        assert registry.snapshot().sessions[0].title == "tree"

    def test_disallowed_source_is_ignored(self) -> None:
        """allow_source=False drops the whole batch."""
        registry = SessionRegistry()

        admitted = registry.merge([_descriptor("a")], allow_source=False)

        assert admitted == 0
        assert len(registry) == 0
        assert registry.generation == 0

    def test_contains_uses_known_ids(self) -> None:
        registry = SessionRegistry()
        registry.merge([_descriptor("a")])

        assert "a" in registry
        assert "b" not in registry


class TestGeneration:
    """Tests for the change counter the pager watches."""

    def test_bumps_only_on_change(self) -> None:
        """Empty and all-duplicate merges leave the generation alone."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a")])
        first = registry.generation

        registry.merge([])
        registry.merge([_descriptor("a")])

        assert first == 1
        assert registry.generation == first

    def test_notices_bump_generation(self) -> None:
        """Setting and clearing a notice are both visible changes."""
        registry = SessionRegistry()

        registry.set_notice("session store", "session store unavailable: gone")
        registry.set_notice("session store", "session store unavailable: gone")
        after_set = registry.generation
        registry.clear_notice("session store")
        registry.clear_notice("session store")

        assert after_set == 1
        assert registry.generation == 2
        assert registry.snapshot().notices == ()

    def test_notices_sorted_by_source(self) -> None:
        registry = SessionRegistry()
        registry.set_notice("zeta", "z failed")
        registry.set_notice("alpha", "a failed")

        assert registry.snapshot().notices == ("a failed", "z failed")


class TestSnapshot:
    """Tests for snapshot isolation and contention."""

    def test_snapshot_is_detached(self) -> None:
        """Later merges do not change an earlier snapshot."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a")])
        before = registry.snapshot()

        registry.merge([_descriptor("b", 1)])

        assert len(before) == 1
        assert before.generation == 1
        assert len(registry.snapshot()) == 2

    def test_try_snapshot_returns_none_when_locked(self) -> None:
        """A held lock makes try_snapshot give up instead of blocking."""
        registry = SessionRegistry()
        registry.merge([_descriptor("a")])
        holding = threading.Event()
        release = threading.Event()

        def hold() -> None:
            with registry._lock:
                holding.set()
                release.wait(5)

        worker = threading.Thread(target=hold)
        worker.start()
        try:
            assert holding.wait(5)
            assert registry.try_snapshot() is None
            assert registry.try_snapshot(timeout=0.01) is None
        finally:
            release.set()
            worker.join(5)

        snapshot = registry.try_snapshot(timeout=0.5)
        assert snapshot is not None
        assert len(snapshot) == 1
