"""
Tests for the HoldingsLedger domain service.

Covers buy/sell arithmetic, liquidation, rebalancing targets,
revaluation and snapshot/restore. In-memory stores only.
"""

from decimal import Decimal

import pytest

from portfolio_engine.domain.portfolio.entities import Holding
from portfolio_engine.domain.portfolio.errors import (
    HoldingWriteConflictError,
    InsufficientHoldingsError,
    InvalidQuantityError,
)
from portfolio_engine.domain.portfolio.holdings_ledger import (
    MAX_WRITE_ATTEMPTS,
    HoldingsLedger,
)
from portfolio_engine.infrastructure.portfolio.memory_store import (
    InMemoryHoldingRepository,
)

PID = "portfolio-1"


def _ledger_with_aapl() -> tuple[HoldingsLedger, InMemoryHoldingRepository]:
    """Ledger holding 10 AAPL bought at 150 (cost basis 1500)."""
    repo = InMemoryHoldingRepository()
    ledger = HoldingsLedger(repo)
    ledger.apply_buy(PID, "AAPL", Decimal("10"), Decimal("150"), Decimal("150"))
    return ledger, repo


class TestApplyBuy:
    """Buying adds quantity and cost basis."""

    def test_buy_creates_holding(self) -> None:
        ledger, repo = _ledger_with_aapl()
        holding = repo.get(PID, "AAPL")
        assert holding.quantity == Decimal("10")
        assert holding.cost_basis == Decimal("1500")
        assert holding.market_value == Decimal("1500")
        assert holding.change_percent == Decimal("0")

    def test_buy_accumulates_cost_basis(self) -> None:
        """10 @ 150 plus 5 @ 155 gives 15 shares with cost basis 2275."""
        ledger, repo = _ledger_with_aapl()
        holding = ledger.apply_buy(PID, "AAPL", Decimal("5"), Decimal("155"), Decimal("160"))

        assert holding.quantity == Decimal("15")
        assert holding.cost_basis == Decimal("2275")
        assert holding.market_value == Decimal("2400")
        assert repo.get(PID, "AAPL").cost_basis == Decimal("2275")

    def test_buy_revalues_change_percent(self) -> None:
        ledger, _ = _ledger_with_aapl()
        holding = ledger.apply_buy(PID, "AAPL", Decimal("10"), Decimal("150"), Decimal("165"))
        assert holding.change_percent == Decimal("10")

    def test_non_positive_quantity_rejected(self) -> None:
        ledger, _ = _ledger_with_aapl()
        with pytest.raises(InvalidQuantityError):
            ledger.apply_buy(PID, "AAPL", Decimal("0"), Decimal("150"), Decimal("150"))


class TestApplySell:
    """Selling removes cost basis proportionally."""

    def test_partial_sell_is_proportional(self) -> None:
        """Selling 5 of 10 with cost basis 1500 leaves 5 with cost basis 750."""
        ledger, repo = _ledger_with_aapl()
        holding = ledger.apply_sell(PID, "AAPL", Decimal("5"), Decimal("150"))

        assert holding.quantity == Decimal("5")
        assert holding.cost_basis == Decimal("750")
        assert repo.get(PID, "AAPL").quantity == Decimal("5")

    def test_full_sell_deletes_holding(self) -> None:
        ledger, repo = _ledger_with_aapl()
        assert ledger.apply_sell(PID, "AAPL", Decimal("10"), Decimal("150")) is None
        assert repo.get(PID, "AAPL") is None

    def test_sell_after_liquidation_fails(self) -> None:
        ledger, _ = _ledger_with_aapl()
        ledger.apply_sell(PID, "AAPL", Decimal("10"), Decimal("150"))
        with pytest.raises(InsufficientHoldingsError) as exc_info:
            ledger.apply_sell(PID, "AAPL", Decimal("1"), Decimal("150"))
        assert exc_info.value.available == Decimal("0")

    def test_oversell_leaves_holding_untouched(self) -> None:
        ledger, repo = _ledger_with_aapl()
        with pytest.raises(InsufficientHoldingsError) as exc_info:
            ledger.apply_sell(PID, "AAPL", Decimal("11"), Decimal("150"))

        assert exc_info.value.requested == Decimal("11")
        assert exc_info.value.available == Decimal("10")
        assert repo.get(PID, "AAPL").quantity == Decimal("10")


class TestSetTargetQuantity:
    """Rebalancing overwrites the quantity."""

    def test_existing_holding_keeps_cost_basis(self) -> None:
        ledger, _ = _ledger_with_aapl()
        holding = ledger.set_target_quantity(PID, "AAPL", Decimal("15"))
        assert holding.quantity == Decimal("15")
        assert holding.cost_basis == Decimal("1500")

    def test_new_holding_starts_without_value(self) -> None:
        ledger, repo = _ledger_with_aapl()
        holding = ledger.set_target_quantity(PID, "MSFT", Decimal("3"))

        assert holding.quantity == Decimal("3")
        assert holding.cost_basis == Decimal("0")
        assert holding.market_value == Decimal("0")
        assert repo.get(PID, "MSFT") is not None

    def test_zero_target_deletes(self) -> None:
        ledger, repo = _ledger_with_aapl()
        assert ledger.set_target_quantity(PID, "AAPL", Decimal("0")) is None
        assert repo.get(PID, "AAPL") is None

    def test_zero_target_for_missing_symbol_is_noop(self) -> None:
        ledger, repo = _ledger_with_aapl()
        assert ledger.set_target_quantity(PID, "TSLA", Decimal("0")) is None
        assert [h.symbol for h in repo.list_for_portfolio(PID)] == ["AAPL"]


class TestRevalueAndSnapshot:
    """Revaluation and snapshot/restore."""

    def test_revalue_updates_market_value(self) -> None:
        ledger, _ = _ledger_with_aapl()
        holding = ledger.revalue(PID, "AAPL", Decimal("135"))
        assert holding.market_value == Decimal("1350")
        assert holding.change_percent == Decimal("-10")

    def test_revalue_missing_holding_returns_none(self) -> None:
        ledger, _ = _ledger_with_aapl()
        assert ledger.revalue(PID, "TSLA", Decimal("200")) is None

    def test_restore_undoes_changes(self) -> None:
        ledger, repo = _ledger_with_aapl()
        snapshot = ledger.snapshot(PID, ["AAPL", "MSFT"])

        ledger.set_target_quantity(PID, "AAPL", Decimal("1"))
        ledger.set_target_quantity(PID, "MSFT", Decimal("7"))
        ledger.restore(PID, snapshot)

        assert repo.get(PID, "AAPL").quantity == Decimal("10")
        assert repo.get(PID, "AAPL").cost_basis == Decimal("1500")
        assert repo.get(PID, "MSFT") is None


class AlwaysStaleHoldingRepository(InMemoryHoldingRepository):
    """Holding store where every conditional write loses."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def save(self, holding: Holding) -> bool:
        self.attempts += 1
        return False


class TestConcurrentWrites:
    """Writes are conditional on the version that was read."""

    def test_stored_version_advances(self) -> None:
        ledger, repo = _ledger_with_aapl()
        assert repo.get(PID, "AAPL").version == 1

        holding = ledger.apply_buy(PID, "AAPL", Decimal("1"), Decimal("150"), Decimal("150"))

        assert holding.version == 2
        assert repo.get(PID, "AAPL").version == 2

    def test_gives_up_after_repeated_conflicts(self) -> None:
        repo = AlwaysStaleHoldingRepository()
        ledger = HoldingsLedger(repo)

        with pytest.raises(HoldingWriteConflictError) as exc_info:
            ledger.apply_buy(PID, "AAPL", Decimal("1"), Decimal("150"), Decimal("150"))

        assert repo.attempts == MAX_WRITE_ATTEMPTS
        assert exc_info.value.attempts == MAX_WRITE_ATTEMPTS
