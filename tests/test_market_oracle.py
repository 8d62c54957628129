"""
Tests for the exchange market oracle.

Session hours are evaluated in the exchange time zone, including
daylight saving changes.
"""

from datetime import datetime, time, timezone
from decimal import Decimal

import pytest

from portfolio_engine.infrastructure.portfolio.market_oracle import (
    ExchangeMarketOracle,
    InMemoryQuoteSource,
    parse_session_time,
)


def _oracle_at(moment: datetime, quotes: InMemoryQuoteSource | None = None) -> ExchangeMarketOracle:
    return ExchangeMarketOracle(
        quotes or InMemoryQuoteSource(),
        timezone="America/New_York",
        open_time="09:30",
        close_time="16:00",
        clock=lambda: moment,
    )


class TestMarketHours:
    """Tests for is_market_open."""

    @pytest.mark.parametrize(
        "moment, expected",
        [
            (datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc), True),    # Mon 10:00 EST
            (datetime(2024, 3, 4, 14, 29, tzinfo=timezone.utc), False),  # Mon 09:29 EST
            (datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc), True),   # Mon 09:30 EST
            (datetime(2024, 3, 4, 21, 0, tzinfo=timezone.utc), False),   # Mon 16:00 EST
            (datetime(2024, 3, 9, 15, 0, tzinfo=timezone.utc), False),   # Saturday
            (datetime(2024, 3, 10, 15, 0, tzinfo=timezone.utc), False),  # Sunday
            (datetime(2024, 7, 1, 13, 30, tzinfo=timezone.utc), True),   # Mon 09:30 EDT
            (datetime(2024, 7, 1, 20, 0, tzinfo=timezone.utc), False),   # Mon 16:00 EDT
        ],
    )
    def test_session(self, moment: datetime, expected: bool) -> None:
        assert _oracle_at(moment).is_market_open() is expected

    def test_parse_session_time(self) -> None:
        assert parse_session_time("09:30") == time(9, 30)
        assert parse_session_time("16:00") == time(16, 0)


class TestCurrentPrice:
    """Tests for current_price."""

    def test_published_price(self) -> None:
        quotes = InMemoryQuoteSource({"AAPL": Decimal("150")})
        oracle = _oracle_at(datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc), quotes)

        assert oracle.current_price("AAPL") == Decimal("150")
        quotes.publish("AAPL", Decimal("151.25"))
        assert oracle.current_price("AAPL") == Decimal("151.25")

    def test_unknown_symbol(self) -> None:
        oracle = _oracle_at(datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc))
        assert oracle.current_price("ZZZZ") is None
