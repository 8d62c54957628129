"""
Tests for the background settlement scheduler.

Covers task execution, history, job registration and status.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from portfolio_engine.application.portfolio.cancel_stale_optimizations import (
    CancelStaleOptimizationsUseCase,
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
from portfolio_engine.domain.portfolio.entities import (
    AIModel,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from portfolio_engine.domain.portfolio.model_registry import ModelRegistry
from portfolio_engine.interfaces.scheduler import (
    REFRESH_PREDICTIONS,
    REFRESH_VALUATIONS,
    SETTLE_PENDING,
    SettlementScheduler,
    TaskStatus,
)
from tests.fakes import USER_ID, StubModelClient, World


def _scheduler(world: World, symbols: list[str] | None = None) -> SettlementScheduler:
    registry = ModelRegistry([StubModelClient(AIModel.APOLLO, known=["AAPL"])])
    return SettlementScheduler(
        settle_pending=SettlePendingTransactionsUseCase(world.settlement),
        refresh_valuations=RefreshValuationsUseCase(world.holdings, world.ledger, world.oracle),
        refresh_predictions=RefreshPredictionsUseCase(registry, CancelStaleOptimizationsUseCase(world.lifecycle)),
        prediction_symbols=symbols,
    )


class TestRunNow:
    """Tasks triggered on demand."""

    def test_initial_state(self, world: World) -> None:
        scheduler = _scheduler(world)
        assert not scheduler.is_running
        assert scheduler.task_history == []
        assert scheduler.get_status()["running"] is False

    def test_settle_pending(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = Transaction(
            user_id=USER_ID,
            portfolio_id=portfolio.id,
            symbol="AAPL",
            quantity=Decimal("2"),
            price_per_share=Decimal("150"),
            type=TransactionType.BUY,
        )
        world.transactions.add(transaction)

        result = _scheduler(world).run_now(SETTLE_PENDING)

        assert result.status is TaskStatus.COMPLETED
        assert result.details == {"settled": 1, "succeeded": 1, "failed": 0, "market_open": True}
        assert world.transactions.get_by_id(transaction.id).status is TransactionStatus.SUCCEEDED

    def test_refresh_valuations(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.add_holding(portfolio, "AAPL", "10", "140")

        result = _scheduler(world).run_now(REFRESH_VALUATIONS)

        assert result.status is TaskStatus.COMPLETED
        assert result.details == {"revalued": 1, "skipped": 0}

    def test_refresh_predictions(self, world: World) -> None:
        result = _scheduler(world, symbols=["AAPL", "MSFT"]).run_now(REFRESH_PREDICTIONS)

        assert result.status is TaskStatus.COMPLETED
        assert result.details == {"predictions": 1, "canceled_optimizations": 0}

    def test_unknown_task(self, world: World) -> None:
        result = _scheduler(world).run_now("nonexistent_task")
        assert result.status is TaskStatus.FAILED
        assert "Unknown task" in result.error

    def test_failure_is_recorded(self, world: World) -> None:
        settle = MagicMock()
        settle.execute.side_effect = RuntimeError("database unavailable")
        scheduler = SettlementScheduler(
            settle_pending=settle,
            refresh_valuations=MagicMock(),
            refresh_predictions=MagicMock(),
        )

        result = scheduler.run_now(SETTLE_PENDING)

        assert result.status is TaskStatus.FAILED
        assert result.error == "database unavailable"
        assert scheduler.task_history == [result]
        assert scheduler.get_status()["recent_tasks"][0]["status"] == "failed"


class TestLifecycle:
    """Starting and stopping the APScheduler backend."""

    @pytest.mark.parametrize(
        "symbols, expected",
        [
            (None, {SETTLE_PENDING, REFRESH_VALUATIONS}),
            (["AAPL"], {SETTLE_PENDING, REFRESH_VALUATIONS, REFRESH_PREDICTIONS}),
        ],
    )
    def test_jobs_registered(self, world: World, symbols, expected) -> None:
        scheduler = _scheduler(world, symbols=symbols)
        scheduler.start()
        try:
            assert scheduler.is_running
            assert {job["id"] for job in scheduler.get_scheduled_jobs()} == expected
        finally:
            scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.get_scheduled_jobs() == []

    def test_start_twice_keeps_one_scheduler(self, world: World) -> None:
        scheduler = _scheduler(world)
        scheduler.start()
        try:
            scheduler.start()
            assert len(scheduler.get_scheduled_jobs()) == 2
        finally:
            scheduler.stop()
