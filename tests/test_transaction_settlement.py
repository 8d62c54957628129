"""
Tests for the transaction settlement state machine.

ON_HOLD settles to SUCCEEDED or FAILED while the market is open,
stays ON_HOLD while it is closed, and can be canceled by its owner.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from portfolio_engine.domain.portfolio.entities import (
    Portfolio,
    Transaction,
    TransactionStatus,
    TransactionType,
    TriggeredBy,
)
from portfolio_engine.domain.portfolio.errors import (
    InvalidStateError,
    TransactionNotFoundError,
)
from tests.fakes import OTHER_USER_ID, USER_ID, World


def _tx(
    world: World,
    portfolio: Portfolio,
    type_: TransactionType = TransactionType.BUY,
    quantity: str = "10",
    price: str = "150",
    symbol: str = "AAPL",
    triggered_by: TriggeredBy = TriggeredBy.USER,
) -> Transaction:
    transaction = Transaction(
        user_id=portfolio.user_id,
        portfolio_id=portfolio.id,
        symbol=symbol,
        quantity=Decimal(quantity),
        price_per_share=Decimal(price),
        type=type_,
        triggered_by=triggered_by,
        created_at=world.clock(),
    )
    world.transactions.add(transaction)
    world.clock.advance(timedelta(seconds=1))
    return transaction


class TestSettle:
    """Single transaction settlement."""

    def test_buy_succeeds_when_market_open(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)

        assert world.settlement.settle(transaction) is True

        assert transaction.status is TransactionStatus.SUCCEEDED
        assert transaction.settled_at == world.clock()
        stored = world.transactions.get_by_id(transaction.id)
        assert stored.status is TransactionStatus.SUCCEEDED
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")
        assert world.portfolios.get_by_id(portfolio.id).last_updated == world.clock()

    def test_settle_is_idempotent(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)
        world.settlement.settle(transaction)

        assert world.settlement.settle(transaction) is False
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")

    def test_closed_market_keeps_transaction_on_hold(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio)

        assert world.settlement.settle(transaction) is False
        assert transaction.status is TransactionStatus.ON_HOLD
        assert world.holdings.get(portfolio.id, "AAPL") is None

    def test_oversell_fails_with_reason(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.add_holding(portfolio, "AAPL", "3", "150")
        transaction = _tx(world, portfolio, TransactionType.SELL, quantity="5")

        assert world.settlement.settle(transaction) is True
        assert transaction.status is TransactionStatus.FAILED
        assert "Insufficient holdings" in transaction.failure_reason
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("3")

    def test_missing_price_fails(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio, symbol="ZZZZ")

        assert world.settlement.settle(transaction) is True
        assert transaction.status is TransactionStatus.FAILED
        assert "ZZZZ" in transaction.failure_reason

    def test_oracle_error_counts_as_closed(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)

        def broken() -> bool:
            raise RuntimeError("feed down")

        world.oracle.is_market_open = broken
        assert world.settlement.settle(transaction) is False
        assert world.transactions.get_by_id(transaction.id).status is TransactionStatus.ON_HOLD

    def test_concurrent_settlement_applies_once(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)

        def settle_copy(_: int) -> bool:
            return world.settlement.settle(world.transactions.get_by_id(transaction.id))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(settle_copy, range(16)))

        assert results.count(True) == 1
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")


class TestSettlePending:
    """Batch settlement sweep."""

    def test_deferred_then_settled(self, world: World) -> None:
        """A transaction placed while closed settles on the next open sweep."""
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio)
        world.settlement.settle(transaction)

        closed = world.settlement.settle_pending()
        assert closed.market_open is False
        assert closed.settled == 0

        world.oracle.is_open = True
        summary = world.settlement.settle_pending()

        assert summary.settled == 1
        assert summary.succeeded == 1
        assert summary.failed == 0
        stored = world.transactions.get_by_id(transaction.id)
        assert stored.status is TransactionStatus.SUCCEEDED
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")

    def test_counts_successes_and_failures_oldest_first(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        _tx(world, portfolio, quantity="4")
        _tx(world, portfolio, TransactionType.SELL, quantity="4")
        _tx(world, portfolio, TransactionType.SELL, quantity="1")
        world.oracle.is_open = True

        summary = world.settlement.settle_pending()

        assert (summary.settled, summary.succeeded, summary.failed) == (3, 2, 1)
        assert world.holdings.get(portfolio.id, "AAPL") is None
        assert world.transactions.list_pending() == []


class TestCancel:
    """User cancelation of on-hold transactions."""

    def test_owner_cancels_on_hold(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio)

        canceled = world.settlement.cancel(transaction.id, USER_ID)

        assert canceled.status is TransactionStatus.CANCELED
        world.oracle.is_open = True
        assert world.settlement.settle_pending().settled == 0
        assert world.holdings.get(portfolio.id, "AAPL") is None

    def test_cancel_settled_transaction_rejected(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)
        world.settlement.settle(transaction)

        with pytest.raises(InvalidStateError):
            world.settlement.cancel(transaction.id, USER_ID)

    def test_cancel_ai_transaction_rejected(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio, triggered_by=TriggeredBy.AI)

        with pytest.raises(InvalidStateError):
            world.settlement.cancel(transaction.id, USER_ID)

    def test_other_users_transaction_not_found(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio)

        with pytest.raises(TransactionNotFoundError):
            world.settlement.cancel(transaction.id, OTHER_USER_ID)

    def test_unknown_transaction_not_found(self, world: World) -> None:
        with pytest.raises(TransactionNotFoundError):
            world.settlement.cancel("missing", USER_ID)


class TestClaims:
    """Settlement and cancelation claim the transaction in the store first."""

    def test_transaction_claimed_elsewhere_is_left_alone(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)
        assert world.transactions.claim(transaction.id, world.clock(), world.clock())

        assert world.settlement.settle(transaction) is False
        assert world.transactions.get_by_id(transaction.id).status is TransactionStatus.ON_HOLD
        assert world.holdings.get(portfolio.id, "AAPL") is None

    def test_abandoned_claim_is_taken_over(self, world: World) -> None:
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)
        assert world.transactions.claim(transaction.id, world.clock(), world.clock())
        world.clock.advance(timedelta(minutes=6))

        assert world.settlement.settle(transaction) is True
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")

    def test_cancel_rejected_while_settling(self, world: World) -> None:
        portfolio = world.add_portfolio()
        world.oracle.is_open = False
        transaction = _tx(world, portfolio)
        assert world.transactions.claim(transaction.id, world.clock(), world.clock())

        with pytest.raises(InvalidStateError) as exc_info:
            world.settlement.cancel(transaction.id, USER_ID)
        assert exc_info.value.state == "settling"
        assert world.transactions.get_by_id(transaction.id).status is TransactionStatus.ON_HOLD

    def test_cancel_during_ledger_write_loses(self, world: World, monkeypatch) -> None:
        """A cancel racing the ledger write cannot undo an applied buy."""
        portfolio = world.add_portfolio()
        transaction = _tx(world, portfolio)
        outcomes: list[Exception] = []
        original_price = world.oracle.current_price

        def price_then_cancel(symbol: str):
            try:
                world.settlement.cancel(transaction.id, USER_ID)
            except InvalidStateError as exc:
                outcomes.append(exc)
            return original_price(symbol)

        monkeypatch.setattr(world.oracle, "current_price", price_then_cancel)

        assert world.settlement.settle(transaction) is True
        assert len(outcomes) == 1
        assert transaction.status is TransactionStatus.SUCCEEDED
        assert world.holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")
