"""
Background scheduler for settlement, valuation and prediction refresh.

Uses APScheduler to run periodic portfolio tasks:
- **Every SETTLEMENT_INTERVAL_SECONDS**: settle on-hold transactions
- **Every VALUATION_REFRESH_INTERVAL_SECONDS**: revalue all holdings
- **Daily, Mon-Fri at PREDICTION_REFRESH_HOUR**: fetch new predictions and
  cancel recommendations they make stale
- **On-demand**: ``run_now(task_name)``

Cron times are in the exchange time zone (MARKET_TIMEZONE).
Jobs run synchronously on the scheduler's worker threads and share the
process-wide services with request handlers.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from portfolio_engine.application.portfolio.dtos import (
    RefreshPredictionsCommand,
    RefreshValuationsCommand,
)
from portfolio_engine.application.portfolio.refresh_predictions import (
    RefreshPredictionsUseCase,
)
from portfolio_engine.application.portfolio.refresh_valuations import (
    RefreshValuationsUseCase,
)
from portfolio_engine.application.portfolio.settle_pending_transactions import (
    SettlePendingTransactionsUseCase,
)

logger = logging.getLogger(__name__)

SETTLE_PENDING = "settle_pending"
REFRESH_VALUATIONS = "refresh_valuations"
REFRESH_PREDICTIONS = "refresh_predictions"


class TaskStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Result of a scheduled task execution."""

    task_name: str
    status: TaskStatus
    started_at: str
    finished_at: str | None = None
    duration_seconds: float = 0.0
    details: dict = field(default_factory=dict)
    error: str | None = None


class SettlementScheduler:
    """Orchestrates the periodic portfolio tasks.

    Usage:
        scheduler = SettlementScheduler(settle, valuations, predictions)
        scheduler.start()                   # begin all scheduled jobs
        scheduler.run_now("settle_pending") # trigger a task immediately
        scheduler.stop()                    # graceful shutdown
    """

    def __init__(
        self,
        settle_pending: SettlePendingTransactionsUseCase,
        refresh_valuations: RefreshValuationsUseCase,
        refresh_predictions: RefreshPredictionsUseCase,
        prediction_symbols: Optional[list[str]] = None,
        timezone_name: str = "America/New_York",
        settlement_interval_seconds: int = 60,
        valuation_refresh_interval_seconds: int = 900,
        prediction_refresh_hour: int = 17,
    ) -> None:
        self._settle_pending = settle_pending
        self._refresh_valuations = refresh_valuations
        self._refresh_predictions = refresh_predictions
        self._prediction_symbols = list(prediction_symbols or [])
        self._timezone = timezone_name
        self._settlement_interval = settlement_interval_seconds
        self._valuation_interval = valuation_refresh_interval_seconds
        self._prediction_hour = prediction_refresh_hour

        self._scheduler: Optional[BackgroundScheduler] = None
        self._task_history: list[TaskResult] = []
        self._max_history = 200
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def task_history(self) -> list[TaskResult]:
        with self._lock:
            return list(self._task_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler with all configured jobs."""
        if self._scheduler is not None:
            logger.warning("Scheduler already running.")
            return

        scheduler = BackgroundScheduler(
            timezone=self._timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        scheduler.add_job(
            self._task_settle_pending,
            IntervalTrigger(seconds=self._settlement_interval),
            id=SETTLE_PENDING,
            name="Pending transaction settlement",
        )
        scheduler.add_job(
            self._task_refresh_valuations,
            IntervalTrigger(seconds=self._valuation_interval),
            id=REFRESH_VALUATIONS,
            name="Holdings valuation refresh",
        )
        if self._prediction_symbols:
            scheduler.add_job(
                self._task_refresh_predictions,
                CronTrigger(day_of_week="mon-fri", hour=self._prediction_hour, minute=0),
                id=REFRESH_PREDICTIONS,
                name="Daily prediction refresh",
            )
        else:
            logger.info("No prediction symbols configured; prediction refresh disabled.")

        scheduler.start()
        self._scheduler = scheduler
        logger.info("SettlementScheduler started with %d jobs.", len(scheduler.get_jobs()))

    def stop(self) -> None:
        """Gracefully stop the scheduler."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("SettlementScheduler stopped.")

    def run_now(self, task_name: str) -> TaskResult:
        """Execute a named task immediately (blocking).

        Args:
            task_name: One of 'settle_pending', 'refresh_valuations',
                       'refresh_predictions'.

        Returns:
            TaskResult with execution details.
        """
        task_map = {
            SETTLE_PENDING: self._task_settle_pending,
            REFRESH_VALUATIONS: self._task_refresh_valuations,
            REFRESH_PREDICTIONS: self._task_refresh_predictions,
        }
        fn = task_map.get(task_name)
        if fn is None:
            return TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=datetime.now(timezone.utc).isoformat(),
                error=f"Unknown task: {task_name}. "
                      f"Available: {list(task_map.keys())}",
            )
        return fn()

    # ------------------------------------------------------------------
    # Task implementations
    # ------------------------------------------------------------------

    def _task_settle_pending(self) -> TaskResult:
        """Settle every on-hold transaction."""

        def work() -> dict[str, Any]:
            result = self._settle_pending.execute()
            return {
                "settled": result.settled,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "market_open": result.market_open,
            }

        return self._run(SETTLE_PENDING, work)

    def _task_refresh_valuations(self) -> TaskResult:
        """Revalue every holding at the current market price."""

        def work() -> dict[str, Any]:
            result = self._refresh_valuations.execute(RefreshValuationsCommand())
            return {"revalued": result.revalued, "skipped": result.skipped}

        return self._run(REFRESH_VALUATIONS, work)

    def _task_refresh_predictions(self) -> TaskResult:
        """Fetch new predictions for the configured symbols."""

        def work() -> dict[str, Any]:
            result = self._refresh_predictions.execute(
                RefreshPredictionsCommand(symbols=self._prediction_symbols)
            )
            return {
                "predictions": len(result.predictions),
                "canceled_optimizations": result.canceled_optimizations,
            }

        return self._run(REFRESH_PREDICTIONS, work)

    def _run(self, task_name: str, work: Callable[[], dict[str, Any]]) -> TaskResult:
        start = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        try:
            details = work()
            task_result = TaskResult(
                task_name=task_name,
                status=TaskStatus.COMPLETED,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                details=details,
            )
        except Exception as exc:
            task_result = TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                error=str(exc),
            )
            logger.exception("Scheduled task %s failed.", task_name)

        self._record_result(task_result)
        return task_result

    def _record_result(self, result: TaskResult) -> None:
        with self._lock:
            self._task_history.append(result)
            if len(self._task_history) > self._max_history:
                self._task_history = self._task_history[-self._max_history:]

    # ------------------------------------------------------------------
    # Status & introspection
    # ------------------------------------------------------------------

    def get_scheduled_jobs(self) -> list[dict]:
        """Return info about all scheduled jobs."""
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time),
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_status(self) -> dict:
        """Return the scheduler status summary."""
        recent = self.task_history[-10:]
        return {
            "running": self.is_running,
            "jobs": self.get_scheduled_jobs(),
            "recent_tasks": [
                {
                    "task": r.task_name,
                    "status": r.status.value,
                    "duration": r.duration_seconds,
                    "started_at": r.started_at,
                }
                for r in recent
            ],
        }
