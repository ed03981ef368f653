# ABOUTME: Background aggregation of every session source into the registry.
# ABOUTME: Runs one initial scan of all enabled sources, then polls the store until stopped.

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Sequence

from .config import DEFAULT_POLL_INTERVAL
from .loaders import SourcePlan, StoreReader
from .models import ScanResult
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

WaitFn = Callable[[float], bool]


class SchedulerState(Enum):
    IDLE = "idle"
    INITIAL_SCAN = "initial-scan"
    STEADY_STATE = "steady-state"
    CANCELLED = "cancelled"


class AggregationScheduler:
    """Feeds the registry from a helper thread.

    ``wait(interval)`` must return True once the scheduler should stop; it
    defaults to the stop event's ``wait`` and can be replaced by a virtual
    clock in tests.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        plans: Sequence[SourcePlan],
        store: StoreReader | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        wait: WaitFn | None = None,
    ) -> None:
        self.registry = registry
        self.plans = tuple(plans)
        self.store = store
        self.interval = interval
        self.state = SchedulerState.IDLE
        self.cursor: str | None = None
        self._stop = threading.Event()
        self._scanned = threading.Event()
        self._wait = wait or self._stop.wait
        self._thread: threading.Thread | None = None

    @property
    def scan_complete(self) -> bool:
        return self._scanned.is_set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def wait_for_initial_scan(self, timeout: float | None = None) -> bool:
        return self._scanned.wait(timeout)

    def run_initial_scan(self) -> int:
        """Scan every enabled plan once and merge each result; returns sessions admitted."""
        self.state = SchedulerState.INITIAL_SCAN
        admitted = 0
        for plan in self.plans:
            if not plan.enabled:
                continue
            result = plan.source.scan()
            admitted += self._apply(result, allow_source=plan.enabled, refresh=False)
            if plan.source is self.store and result.ok:
                self.cursor = result.cursor
        self._scanned.set()
        if self.state is SchedulerState.INITIAL_SCAN:
            self.state = SchedulerState.STEADY_STATE
        logger.info("Initial scan admitted %d sessions", admitted)
        return admitted

    def poll_once(self) -> int:
        """Ask the store for rows newer than the cursor; returns sessions admitted."""
        if self.store is None:
            return 0
        result = self.store.scan_since(self.cursor)
        admitted = self._apply(result, allow_source=self._store_enabled(), refresh=True)
        if result.ok and result.cursor is not None:
            self.cursor = result.cursor
        if admitted:
            logger.info("Polling admitted %d new sessions", admitted)
        return admitted

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="session-aggregation", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the helper thread and wait for its current iteration to finish."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if self.state is not SchedulerState.CANCELLED:
            logger.info("Aggregation stopped")
        self.state = SchedulerState.CANCELLED

    def __enter__(self) -> AggregationScheduler:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        # Bounded join; the helper thread is a daemon.
        self.stop(timeout=self.interval)

    def _run(self) -> None:
        self.run_initial_scan()
        if self.store is None or not self._store_enabled():
            return
        while not self._stop.is_set() and not self._wait(self.interval):
            if self._stop.is_set():
                break
            try:
                self.poll_once()
            except Exception:
                logger.exception("Store poll failed")

    def _store_enabled(self) -> bool:
        return any(plan.source is self.store and plan.enabled for plan in self.plans)

    def _apply(self, result: ScanResult, allow_source: bool, refresh: bool) -> int:
        if result.error is not None:
            self.registry.set_notice(result.source, str(result.error))
            return 0
        self.registry.clear_notice(result.source)
        return self.registry.merge(result.descriptors, allow_source=allow_source, refresh=refresh)
