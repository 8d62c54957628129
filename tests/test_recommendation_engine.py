"""
Tests for the recommendation application engine.

Recommendations are applied all or nothing.
"""

from decimal import Decimal

from portfolio_engine.domain.portfolio.entities import (
    Holding,
    OptimizationRecommendation,
    OptimizationRecord,
    OptimizationStatus,
    Portfolio,
    RecommendationAction,
)
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger
from portfolio_engine.domain.portfolio.recommendation_engine import (
    RecommendationApplicationEngine,
)
from portfolio_engine.infrastructure.portfolio.memory_store import (
    InMemoryHoldingRepository,
)


class FlakyHoldingRepository(InMemoryHoldingRepository):
    """Holding store whose writes fail for one symbol."""

    def __init__(self, fail_on: str) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.armed = False

    def save(self, holding: Holding) -> bool:
        if self.armed and holding.symbol == self.fail_on:
            raise RuntimeError("disk full")
        return super().save(holding)


def _recommendation(symbol: str, current: str, target: str) -> OptimizationRecommendation:
    return OptimizationRecommendation(
        symbol=symbol,
        action=RecommendationAction.BUY if Decimal(target) > Decimal(current) else RecommendationAction.SELL,
        current_quantity=Decimal(current),
        target_quantity=Decimal(target),
    )


def _record(portfolio: Portfolio, *recommendations: OptimizationRecommendation) -> OptimizationRecord:
    return OptimizationRecord(
        user_id=portfolio.user_id,
        portfolio_id=portfolio.id,
        status=OptimizationStatus.IN_PROGRESS,
        recommendations=list(recommendations),
    )


def _setup(repo: InMemoryHoldingRepository) -> tuple[HoldingsLedger, Portfolio]:
    ledger = HoldingsLedger(repo)
    portfolio = Portfolio(user_id="user-1", name="Growth")
    ledger.apply_buy(portfolio.id, "AAPL", Decimal("10"), Decimal("150"), Decimal("150"))
    ledger.apply_buy(portfolio.id, "TSLA", Decimal("4"), Decimal("200"), Decimal("200"))
    return ledger, portfolio


class TestApply:
    """Applying recommendations to holdings."""

    def test_all_targets_applied(self) -> None:
        repo = InMemoryHoldingRepository()
        ledger, portfolio = _setup(repo)
        record = _record(
            portfolio,
            _recommendation("AAPL", "10", "15"),
            _recommendation("TSLA", "4", "0"),
            _recommendation("MSFT", "0", "2"),
        )

        assert RecommendationApplicationEngine(ledger).apply(record, portfolio) is True

        assert repo.get(portfolio.id, "AAPL").quantity == Decimal("15")
        assert repo.get(portfolio.id, "TSLA") is None
        assert repo.get(portfolio.id, "MSFT").quantity == Decimal("2")

    def test_failure_restores_every_holding(self) -> None:
        repo = FlakyHoldingRepository(fail_on="MSFT")
        ledger, portfolio = _setup(repo)
        record = _record(
            portfolio,
            _recommendation("AAPL", "10", "15"),
            _recommendation("TSLA", "4", "0"),
            _recommendation("MSFT", "0", "2"),
        )
        repo.armed = True

        assert RecommendationApplicationEngine(ledger).apply(record, portfolio) is False

        aapl = repo.get(portfolio.id, "AAPL")
        assert aapl.quantity == Decimal("10")
        assert aapl.cost_basis == Decimal("1500")
        assert repo.get(portfolio.id, "TSLA").quantity == Decimal("4")
        assert repo.get(portfolio.id, "MSFT") is None

    def test_empty_record_is_noop(self) -> None:
        repo = InMemoryHoldingRepository()
        ledger, portfolio = _setup(repo)

        assert RecommendationApplicationEngine(ledger).apply(_record(portfolio), portfolio) is True
        assert [h.symbol for h in repo.list_for_portfolio(portfolio.id)] == ["AAPL", "TSLA"]

    def test_refused_commit_restores_every_holding(self) -> None:
        repo = InMemoryHoldingRepository()
        ledger, portfolio = _setup(repo)
        record = _record(
            portfolio,
            _recommendation("AAPL", "10", "15"),
            _recommendation("TSLA", "4", "0"),
        )

        assert RecommendationApplicationEngine(ledger).apply(record, portfolio, commit=lambda: False) is False

        assert repo.get(portfolio.id, "AAPL").quantity == Decimal("10")
        assert repo.get(portfolio.id, "TSLA").quantity == Decimal("4")

    def test_commit_runs_after_targets_are_written(self) -> None:
        repo = InMemoryHoldingRepository()
        ledger, portfolio = _setup(repo)
        record = _record(portfolio, _recommendation("AAPL", "10", "15"))
        seen: list[Decimal] = []

        def commit() -> bool:
            seen.append(repo.get(portfolio.id, "AAPL").quantity)
            return True

        assert RecommendationApplicationEngine(ledger).apply(record, portfolio, commit=commit) is True
        assert seen == [Decimal("15")]
