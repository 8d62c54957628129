"""
Tests for the SQL stores and the SQL quote source.

Runs against an in-memory SQLite database shared through a StaticPool.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from portfolio_engine.domain.portfolio.entities import (
    Holding,
    OptimizationRecommendation,
    OptimizationRecord,
    OptimizationStatus,
    Portfolio,
    RecommendationAction,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger
from portfolio_engine.domain.portfolio.optimization_lifecycle import (
    CANCELED_BY_USER_NOTE,
    OptimizationLifecycle,
)
from portfolio_engine.domain.portfolio.recommendation_engine import (
    RecommendationApplicationEngine,
)
from portfolio_engine.domain.portfolio.settlement_service import (
    TransactionSettlementService,
)
from portfolio_engine.infrastructure.portfolio.market_oracle import SqlQuoteSource
from portfolio_engine.infrastructure.portfolio.sql_store import (
    SqlHoldingRepository,
    SqlOptimizationRepository,
    SqlPortfolioRepository,
    SqlTransactionRepository,
    create_schema,
    from_db_time,
    to_db_time,
)
from portfolio_engine.shared.concurrency import KeyedLock
from tests.fakes import START, FakeOracle, FakeProvider, FixedClock


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


def _record(portfolio_id: str = "p1", user_id: str = "u1", offset_minutes: int = 0) -> OptimizationRecord:
    return OptimizationRecord(
        user_id=user_id,
        portfolio_id=portfolio_id,
        timestamp=START + timedelta(minutes=offset_minutes),
    )


class InterleavingHoldingRepository(SqlHoldingRepository):
    """Holding store that runs a hook once, just before its next write."""

    def __init__(self, engine, before_save=None) -> None:
        super().__init__(engine)
        self.before_save = before_save

    def save(self, holding: Holding) -> bool:
        hook, self.before_save = self.before_save, None
        if hook is not None:
            hook()
        return super().save(holding)


class TestTimeEncoding:
    """Timestamps survive the round trip as aware UTC values."""

    def test_round_trip(self) -> None:
        assert from_db_time(to_db_time(START)) == START

    def test_fixed_width_sorts_as_text(self) -> None:
        earlier = to_db_time(START)
        later = to_db_time(START + timedelta(microseconds=1))
        assert len(earlier) == len(later)
        assert earlier < later


class TestSqlPortfolioAndHoldings:
    """Portfolio and holding persistence."""

    def test_portfolio_save_and_update(self, engine) -> None:
        repo = SqlPortfolioRepository(engine)
        portfolio = Portfolio(user_id="u1", name="Growth", created_at=START, last_updated=START)
        repo.save(portfolio)

        portfolio.last_updated = START + timedelta(hours=1)
        repo.save(portfolio)

        stored = repo.get_by_id(portfolio.id)
        assert stored.name == "Growth"
        assert stored.created_at == START
        assert stored.last_updated == START + timedelta(hours=1)
        assert repo.get_by_id("missing") is None

    def test_holding_crud(self, engine) -> None:
        repo = SqlHoldingRepository(engine)
        repo.save(Holding("p1", "AAPL", Decimal("10"), cost_basis=Decimal("1500.25")))
        repo.save(Holding("p1", "MSFT", Decimal("2")))
        repo.save(Holding("p2", "AAPL", Decimal("1")))

        holding = repo.get("p1", "AAPL")
        holding.quantity = Decimal("12")
        repo.save(holding)

        assert repo.get("p1", "AAPL").quantity == Decimal("12")
        assert repo.get("p1", "AAPL").cost_basis == Decimal("1500.25")
        assert [h.symbol for h in repo.list_for_portfolio("p1")] == ["AAPL", "MSFT"]
        assert len(repo.list_all()) == 3
        assert repo.portfolio_ids_holding(["AAPL"]) == {"p1", "p2"}
        assert repo.portfolio_ids_holding([]) == set()

        repo.delete("p1", "AAPL")
        assert repo.get("p1", "AAPL") is None

    def test_holding_write_is_conditional_on_version(self, engine) -> None:
        repo = SqlHoldingRepository(engine)
        assert repo.save(Holding("p1", "AAPL", Decimal("10")))
        assert not repo.save(Holding("p1", "AAPL", Decimal("99")))

        mine, theirs = repo.get("p1", "AAPL"), repo.get("p1", "AAPL")
        mine.quantity = Decimal("12")
        assert repo.save(mine)
        assert mine.version == 2

        theirs.quantity = Decimal("7")
        assert not repo.save(theirs)
        assert not repo.delete("p1", "AAPL", version=theirs.version)
        assert repo.get("p1", "AAPL").quantity == Decimal("12")
        assert repo.delete("p1", "AAPL", version=mine.version)

    def test_ledger_retries_after_concurrent_write(self, engine) -> None:
        """Two ledgers with their own locks both land their buys."""
        other = HoldingsLedger(SqlHoldingRepository(engine))
        other.apply_buy("p1", "AAPL", Decimal("10"), Decimal("100"), Decimal("100"))
        ledger = HoldingsLedger(
            InterleavingHoldingRepository(
                engine,
                lambda: other.apply_buy("p1", "AAPL", Decimal("5"), Decimal("100"), Decimal("100")),
            )
        )

        holding = ledger.apply_buy("p1", "AAPL", Decimal("5"), Decimal("100"), Decimal("100"))

        assert holding.quantity == Decimal("20")
        stored = SqlHoldingRepository(engine).get("p1", "AAPL")
        assert stored.quantity == Decimal("20")
        assert stored.cost_basis == Decimal("2000")


class TestSqlTransactions:
    """Transaction persistence and compare-and-set."""

    def _tx(self, minutes: int, user_id: str = "u1", portfolio_id: str = "p1") -> Transaction:
        return Transaction(
            user_id=user_id,
            portfolio_id=portfolio_id,
            symbol="AAPL",
            quantity=Decimal("3"),
            price_per_share=Decimal("150.5"),
            type=TransactionType.BUY,
            created_at=START + timedelta(minutes=minutes),
        )

    def test_transition_is_compare_and_set(self, engine) -> None:
        repo = SqlTransactionRepository(engine)
        transaction = self._tx(0)
        repo.add(transaction)

        settled_at = START + timedelta(minutes=1)
        assert repo.transition(
            transaction.id, TransactionStatus.ON_HOLD, TransactionStatus.SUCCEEDED, settled_at=settled_at
        )
        assert not repo.transition(
            transaction.id, TransactionStatus.ON_HOLD, TransactionStatus.FAILED, failure_reason="late"
        )

        stored = repo.get_by_id(transaction.id)
        assert stored.status is TransactionStatus.SUCCEEDED
        assert stored.settled_at == settled_at
        assert stored.price_per_share == Decimal("150.5")
        assert stored.failure_reason is None

    def test_claim_is_exclusive_until_stale(self, engine) -> None:
        repo = SqlTransactionRepository(engine)
        transaction = self._tx(0)
        repo.add(transaction)

        assert repo.claim(transaction.id, START, START - timedelta(minutes=5))
        assert not repo.claim(transaction.id, START + timedelta(minutes=1), START - timedelta(minutes=4))
        assert repo.claim(transaction.id, START + timedelta(minutes=6), START + timedelta(minutes=1))

        repo.transition(transaction.id, TransactionStatus.ON_HOLD, TransactionStatus.SUCCEEDED)
        assert not repo.claim(transaction.id, START + timedelta(hours=1), START + timedelta(hours=1))
        assert not repo.claim("missing", START, START)

    def test_listing_order_and_filters(self, engine) -> None:
        repo = SqlTransactionRepository(engine)
        first, second, other = self._tx(0), self._tx(5, portfolio_id="p2"), self._tx(2, user_id="u2")
        for t in (second, first, other):
            repo.add(t)
        repo.transition(other.id, TransactionStatus.ON_HOLD, TransactionStatus.CANCELED)

        assert [t.id for t in repo.list_pending()] == [first.id, second.id]
        assert [t.id for t in repo.list_for_user("u1")] == [second.id, first.id]
        assert [t.id for t in repo.list_for_user("u1", "p2")] == [second.id]


class TestSqlOptimizations:
    """Optimization persistence and its conditional writes."""

    def test_reserve_is_exclusive_per_pair(self, engine) -> None:
        repo = SqlOptimizationRepository(engine)
        since = START - timedelta(hours=24)

        assert repo.reserve(_record(), since)
        assert not repo.reserve(_record(offset_minutes=1), since)
        assert repo.reserve(_record(portfolio_id="p2"), since)

    def test_complete_stores_recommendations(self, engine) -> None:
        repo = SqlOptimizationRepository(engine)
        record = _record()
        repo.reserve(record, START)

        record.status = OptimizationStatus.CREATED
        record.explanation = "Shift toward AAPL"
        record.confidence = Decimal("0.75")
        record.metrics = {"sharpe_ratio": 1.4}
        record.model_version = "2.1"
        record.recommendations = [
            OptimizationRecommendation("AAPL", RecommendationAction.BUY, Decimal("10"), Decimal("15")),
            OptimizationRecommendation("TSLA", RecommendationAction.SELL, Decimal("4"), Decimal("0")),
        ]
        assert repo.complete(record)
        assert not repo.complete(record)

        stored = repo.get_by_id(record.id)
        assert stored.status is OptimizationStatus.CREATED
        assert stored.symbols == ["AAPL", "TSLA"]
        assert stored.recommendations[0].target_quantity == Decimal("15")
        assert stored.metrics == {"sharpe_ratio": 1.4}
        assert stored.confidence == Decimal("0.75")
        assert repo.find("u1", "p1", [OptimizationStatus.CREATED])[0].id == record.id
        assert [r.id for r in repo.list_created_for_portfolios(["p1"])] == [record.id]

    def test_transition_appends_note(self, engine) -> None:
        repo = SqlOptimizationRepository(engine)
        record = _record()
        record.explanation = "Original"
        repo.reserve(record, START)

        assert repo.transition(
            record.id,
            [OptimizationStatus.CREATED, OptimizationStatus.IN_PROGRESS],
            OptimizationStatus.CANCELED,
            note=CANCELED_BY_USER_NOTE,
        )
        assert not repo.transition(
            record.id, [OptimizationStatus.IN_PROGRESS], OptimizationStatus.FAILED
        )

        stored = repo.get_by_id(record.id)
        assert stored.status is OptimizationStatus.CANCELED
        assert stored.explanation == "Original (Canceled by user)"

    def test_applied_record_blocks_reserve_during_cool_off(self, engine) -> None:
        repo = SqlOptimizationRepository(engine)
        record = _record()
        repo.reserve(record, START)
        applied_at = START + timedelta(hours=1)
        assert repo.mark_applied(record.id, applied_at)
        assert not repo.mark_applied(record.id, applied_at)

        latest = repo.latest_applied("u1", "p1")
        assert latest.id == record.id
        assert latest.applied_at == applied_at
        assert latest.is_applied is True

        assert not repo.reserve(_record(offset_minutes=90), applied_at - timedelta(minutes=1))
        assert repo.reserve(_record(offset_minutes=90), applied_at + timedelta(minutes=1))

    def test_list_for_portfolio_window(self, engine) -> None:
        repo = SqlOptimizationRepository(engine)
        inside, outside = _record(offset_minutes=10), _record(offset_minutes=-120)
        repo.reserve(outside, START)
        repo.transition(outside.id, [OptimizationStatus.IN_PROGRESS], OptimizationStatus.FAILED)
        repo.reserve(inside, START)

        records = repo.list_for_portfolio("u1", "p1", START, START + timedelta(hours=1))
        assert [r.id for r in records] == [inside.id]


class InterleavingOracle(FakeOracle):
    """Oracle that runs a hook once from inside one of its calls."""

    def __init__(self, prices: dict[str, str]) -> None:
        super().__init__(prices)
        self.during_open_check = None
        self.during_price = None

    def is_market_open(self) -> bool:
        hook, self.during_open_check = self.during_open_check, None
        if hook is not None:
            hook()
        return super().is_market_open()

    def current_price(self, symbol: str):
        hook, self.during_price = self.during_price, None
        if hook is not None:
            hook()
        return super().current_price(symbol)


class TestSqlSettlementAcrossProcesses:
    """Settlement services that share only the database apply a transaction once."""

    def _service(self, engine, oracle: FakeOracle, clock: FixedClock) -> TransactionSettlementService:
        return TransactionSettlementService(
            SqlTransactionRepository(engine),
            SqlPortfolioRepository(engine),
            HoldingsLedger(SqlHoldingRepository(engine), locks=KeyedLock(), clock=clock),
            oracle,
            locks=KeyedLock(),
            clock=clock,
        )

    def _buy(self, engine) -> Transaction:
        portfolio = Portfolio(user_id="u1", name="Growth")
        SqlPortfolioRepository(engine).save(portfolio)
        transaction = Transaction(
            user_id="u1",
            portfolio_id=portfolio.id,
            symbol="AAPL",
            quantity=Decimal("10"),
            price_per_share=Decimal("150"),
            type=TransactionType.BUY,
            created_at=START,
        )
        SqlTransactionRepository(engine).add(transaction)
        return transaction

    @pytest.mark.parametrize("hook", ["during_open_check", "during_price"])
    def test_one_buy_applied_once(self, engine, hook: str) -> None:
        clock = FixedClock()
        oracle = InterleavingOracle({"AAPL": "150"})
        first = self._service(engine, oracle, clock)
        second = self._service(engine, FakeOracle({"AAPL": "150"}), clock)
        transaction = self._buy(engine)
        transactions = SqlTransactionRepository(engine)

        results: list[bool] = []
        setattr(
            oracle,
            hook,
            lambda: results.append(second.settle(transactions.get_by_id(transaction.id))),
        )
        results.insert(0, first.settle(transactions.get_by_id(transaction.id)))

        assert sorted(results) == [False, True]
        assert transactions.get_by_id(transaction.id).status is TransactionStatus.SUCCEEDED
        holding = SqlHoldingRepository(engine).get(transaction.portfolio_id, "AAPL")
        assert holding.quantity == Decimal("10")


class TestSqlLifecycle:
    """The lifecycle runs unchanged on the SQL stores."""

    def _lifecycle(self, engine, holdings, clock: FixedClock) -> OptimizationLifecycle:
        return OptimizationLifecycle(
            SqlOptimizationRepository(engine),
            SqlPortfolioRepository(engine),
            holdings,
            FakeProvider({"AAPL": "15"}),
            RecommendationApplicationEngine(HoldingsLedger(holdings, locks=KeyedLock(), clock=clock)),
            locks=KeyedLock(),
            clock=clock,
        )

    def _portfolio_with_aapl(self, engine, clock: FixedClock) -> Portfolio:
        portfolio = Portfolio(user_id="u1", name="Growth")
        SqlPortfolioRepository(engine).save(portfolio)
        HoldingsLedger(SqlHoldingRepository(engine), clock=clock).apply_buy(
            portfolio.id, "AAPL", Decimal("10"), Decimal("150"), Decimal("150")
        )
        return portfolio

    def test_request_and_apply(self, engine) -> None:
        clock = FixedClock()
        holdings = SqlHoldingRepository(engine)
        lifecycle = self._lifecycle(engine, holdings, clock)
        portfolio = self._portfolio_with_aapl(engine, clock)

        created = lifecycle.request_optimization("u1", portfolio.id)
        applied = lifecycle.apply_recommendation("u1", created.optimization_id)

        assert applied.successful is True
        assert holdings.get(portfolio.id, "AAPL").quantity == Decimal("15")
        assert lifecycle.get_status("u1", created.optimization_id) is OptimizationStatus.APPLIED
        assert lifecycle.remaining_cool_off("u1", portfolio.id) == timedelta(hours=24)

    def test_cancel_from_other_process_during_apply_restores_holdings(self, engine) -> None:
        clock = FixedClock()
        holdings = InterleavingHoldingRepository(engine)
        lifecycle = self._lifecycle(engine, holdings, clock)
        other = self._lifecycle(engine, SqlHoldingRepository(engine), clock)
        portfolio = self._portfolio_with_aapl(engine, clock)
        created = lifecycle.request_optimization("u1", portfolio.id)

        holdings.before_save = lambda: other.cancel_optimization("u1", created.optimization_id)
        result = lifecycle.apply_recommendation("u1", created.optimization_id)

        assert result.successful is False
        assert result.status is OptimizationStatus.CANCELED
        stored = lifecycle.get_record("u1", created.optimization_id)
        assert stored.is_applied is False
        assert stored.explanation.endswith(CANCELED_BY_USER_NOTE)
        assert holdings.get(portfolio.id, "AAPL").quantity == Decimal("10")
        assert lifecycle.remaining_cool_off("u1", portfolio.id) == timedelta(0)


class TestSqlQuoteSource:
    """Latest intraday quote, falling back to the daily close."""

    def _seed(self, engine) -> None:
        with engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO intraday_market_data (symbol, timestamp, current) "
                    "VALUES (:symbol, :timestamp, :current)"
                ),
                [
                    {"symbol": "AAPL", "timestamp": to_db_time(START), "current": "151.10"},
                    {"symbol": "AAPL", "timestamp": to_db_time(START + timedelta(minutes=1)), "current": "151.40"},
                ],
            )
            conn.execute(
                text(
                    "INSERT INTO historical_market_data (symbol, date, close) "
                    "VALUES (:symbol, :date, :close)"
                ),
                [
                    {"symbol": "MSFT", "date": "2024-03-01", "close": "410.00"},
                    {"symbol": "MSFT", "date": "2024-03-04", "close": "412.50"},
                ],
            )

    def test_prices(self, engine) -> None:
        self._seed(engine)
        quotes = SqlQuoteSource(engine)

        assert quotes.latest_price("AAPL") == Decimal("151.40")
        assert quotes.latest_price("MSFT") == Decimal("412.50")
        assert quotes.latest_price("TSLA") is None
