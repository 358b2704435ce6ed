"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM AUTOMATION - Coordenação das execuções de geração PM por armazém
════════════════════════════════════════════════════════════════════════════════════════════════════

Um coordenador por armazém, com estado explícito:

    IDLE ──run()──▶ RUNNING ──(done | failed | timeout)──▶ IDLE

- A second call while RUNNING is rejected with RunAlreadyInProgress (not queued).
- The run lock covers one generation pass and is always released.
- The pass runs in a worker thread under a time budget. On timeout the pass is
  asked to stop, the lock is released and a partial report is returned. Work
  orders already created stay.
- A timed out worker cannot be killed, so the coordinator keeps its future.
  While more than `max_abandoned_workers` of them are still alive, new runs are
  rejected with RunAlreadyInProgress. The default (0) means a new pass never
  overlaps an old one.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import RunAlreadyInProgress
from .generator import GenerationResult, PMGenerator
from .models import utc_now

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunStatus(str, Enum):
    COMPLETED = "completed"    # No pair errors
    PARTIAL = "partial"        # Some pairs failed, batch finished
    FAILED = "failed"          # Setup failed, nothing to iterate
    TIMED_OUT = "timed_out"    # Abandoned after the time budget


@dataclass
class RunReport:
    """Structured outcome of one automation run. Always returned, never raised."""
    warehouse_id: str
    generated: int
    errors: List[str]
    timestamp: datetime
    status: RunStatus
    skipped: int = 0
    created_work_order_ids: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def timed_out(self) -> bool:
        return self.status == RunStatus.TIMED_OUT


class AutomationCoordinator:
    """
    Serializes generation passes for one warehouse.

    Args:
        warehouse_id: Warehouse this coordinator owns
        generator: PM generator to run
        timeout_seconds: Time budget of one pass
        clock: Source of timestamps
        max_abandoned_workers: Timed out passes allowed to still be running
            when a new run starts
    """

    def __init__(
        self,
        warehouse_id: str,
        generator: PMGenerator,
        timeout_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
        max_abandoned_workers: int = 0,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if max_abandoned_workers < 0:
            raise ValueError("max_abandoned_workers must be >= 0")
        self.warehouse_id = warehouse_id
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self._clock = clock or utc_now
        self.max_abandoned_workers = max_abandoned_workers

        self._lock = threading.Lock()
        self._abandoned: List[Future] = []
        self._state = CoordinatorState.IDLE
        self._started_at: Optional[datetime] = None
        self._last_report: Optional[RunReport] = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def abandoned_workers(self) -> int:
        """Timed out passes whose worker thread is still running."""
        return sum(1 for f in list(self._abandoned) if not f.done())

    @property
    def last_report(self) -> Optional[RunReport]:
        return self._last_report

    def run(self) -> RunReport:
        """
        Run one automation pass and return its report.

        Raises:
            RunAlreadyInProgress: if a pass is already running for this warehouse
        """
        self._acquire()
        try:
            started_at = self._started_at
            logger.info(f"PM automation started for warehouse {self.warehouse_id}")
            result, error, timed_out = self._execute()
            report = self._build_report(result, error, timed_out, started_at)
            self._last_report = report
            logger.info(
                f"PM automation for warehouse {self.warehouse_id} {report.status.value}: "
                f"{report.generated} generated, {report.skipped} skipped, {len(report.errors)} errors"
            )
            return report
        finally:
            self._release()

    def run_generation(self) -> GenerationResult:
        """
        Run one pass under the same lock and return the raw generation result.

        Setup failures propagate to the caller. A timed out pass comes back as
        a snapshot with ``cancelled=True``; the abandoned worker no longer
        writes into it.

        Raises:
            RunAlreadyInProgress: if a pass is already running for this warehouse
            StorageError: if the initial equipment/template fetch fails
        """
        self._acquire()
        try:
            result, error, timed_out = self._execute()
            if error is not None:
                raise error
            if timed_out:
                result.cancelled = True
            return result
        finally:
            self._release()

    def status(self) -> Dict[str, Any]:
        return {
            "warehouse_id": self.warehouse_id,
            "state": self._state.value,
            "started_at": self._started_at,
            "abandoned_workers": self.abandoned_workers,
            "last_run_at": self._last_report.timestamp if self._last_report else None,
            "last_report": self._last_report,
        }

    def wait_abandoned(self, timeout: Optional[float] = None) -> bool:
        """Wait for abandoned workers to finish. Returns True when none is left running."""
        pending = [f for f in list(self._abandoned) if not f.done()]
        if pending:
            wait_futures(pending, timeout=timeout)
        return self.abandoned_workers == 0

    # ═══════════════════════════════════════════════════════════════════════════
    # PRIVATE METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    def _acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            logger.info(f"PM automation already running for warehouse {self.warehouse_id}, rejecting")
            raise RunAlreadyInProgress(self.warehouse_id, self._started_at)
        self._abandoned = [f for f in self._abandoned if not f.done()]
        if len(self._abandoned) > self.max_abandoned_workers:
            self._lock.release()
            logger.warning(
                f"PM automation for warehouse {self.warehouse_id} still has "
                f"{len(self._abandoned)} timed out worker(s) running, rejecting"
            )
            raise RunAlreadyInProgress(self.warehouse_id)
        self._state = CoordinatorState.RUNNING
        self._started_at = self._clock()

    def _release(self) -> None:
        self._state = CoordinatorState.IDLE
        self._started_at = None
        self._lock.release()

    def _execute(self) -> Tuple[GenerationResult, Optional[Exception], bool]:
        result = GenerationResult(warehouse_id=self.warehouse_id)
        cancel_event = threading.Event()
        # A fresh executor per pass: a hung pass must not block the next one.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"pm-{self.warehouse_id}")
        try:
            future = executor.submit(self.generator.generate_work_orders, self.warehouse_id, cancel_event, result)
            try:
                future.result(timeout=self.timeout_seconds)
            except FutureTimeout:
                cancel_event.set()
                self._abandoned.append(future)
                logger.error(
                    f"PM automation for warehouse {self.warehouse_id} exceeded "
                    f"{self.timeout_seconds}s, abandoning with partial results"
                )
                return result.snapshot(), None, True
            except Exception as e:
                logger.error(f"PM automation for warehouse {self.warehouse_id} failed: {e}")
                return result, e, False
            return result, None, False
        finally:
            executor.shutdown(wait=False)

    def _build_report(
        self,
        result: GenerationResult,
        error: Optional[Exception],
        timed_out: bool,
        started_at: Optional[datetime],
    ) -> RunReport:
        created = result.created
        errors = [str(e) for e in result.errors]

        if error is not None:
            status = RunStatus.FAILED
            errors.insert(0, f"{type(error).__name__}: {error}")
        elif timed_out:
            status = RunStatus.TIMED_OUT
            errors.append(
                f"Run exceeded its {self.timeout_seconds}s time budget; "
                f"abandoned after {len(created)} work orders"
            )
        elif errors:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.COMPLETED

        finished_at = self._clock()
        return RunReport(
            warehouse_id=self.warehouse_id,
            generated=len(created),
            errors=errors,
            timestamp=finished_at,
            status=status,
            skipped=len(result.skipped),
            created_work_order_ids=[wo.id for wo in created],
            started_at=started_at,
            duration_seconds=(finished_at - started_at).total_seconds() if started_at else 0.0,
        )


class AutomationRegistry:
    """Owns one AutomationCoordinator per warehouse, created on first use."""

    def __init__(
        self,
        generator: PMGenerator,
        timeout_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
        max_abandoned_workers: int = 0,
    ):
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.max_abandoned_workers = max_abandoned_workers
        self._coordinators: Dict[str, AutomationCoordinator] = {}
        self._registry_lock = threading.Lock()

    def for_warehouse(self, warehouse_id: str) -> AutomationCoordinator:
        with self._registry_lock:
            coordinator = self._coordinators.get(warehouse_id)
            if coordinator is None:
                coordinator = AutomationCoordinator(
                    warehouse_id,
                    self.generator,
                    timeout_seconds=self.timeout_seconds,
                    clock=self._clock,
                    max_abandoned_workers=self.max_abandoned_workers,
                )
                self._coordinators[warehouse_id] = coordinator
            return coordinator

    def run_automation(self, warehouse_id: str) -> RunReport:
        return self.for_warehouse(warehouse_id).run()
