"""
Adapter: Exchange market oracle.

Implements MarketOraclePort.
Market hours are a weekday session in the exchange's time zone.
Prices come from the latest intraday quote, falling back to the
latest daily close when the symbol has not traded intraday.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, time
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import text
from sqlalchemy.engine import Engine

from portfolio_engine.domain.portfolio.entities import utcnow
from portfolio_engine.domain.portfolio.ports import MarketOraclePort

logger = logging.getLogger(__name__)

SATURDAY = 5


def parse_session_time(value: str) -> time:
    """Parse an "HH:MM" session boundary."""
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


class QuoteSource(ABC):
    """Where the oracle reads prices from."""

    @abstractmethod
    def latest_price(self, symbol: str) -> Optional[Decimal]:
        raise NotImplementedError


class SqlQuoteSource(QuoteSource):
    """Reads quotes from the intraday and historical market data tables."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def latest_price(self, symbol: str) -> Optional[Decimal]:
        intraday = text(
            "SELECT current FROM intraday_market_data "
            "WHERE symbol = :symbol ORDER BY timestamp DESC LIMIT 1"
        )
        daily = text(
            "SELECT close FROM historical_market_data "
            "WHERE symbol = :symbol AND close IS NOT NULL "
            "ORDER BY date DESC LIMIT 1"
        )
        with self._engine.connect() as conn:
            value = conn.execute(intraday, {"symbol": symbol}).scalar()
            if value is None:
                value = conn.execute(daily, {"symbol": symbol}).scalar()

        if value is None:
            return None
        return Decimal(str(value))


class InMemoryQuoteSource(QuoteSource):
    """Holds the last published price per symbol."""

    def __init__(self, prices: Optional[dict[str, Decimal]] = None) -> None:
        self._lock = threading.Lock()
        self._prices: dict[str, Decimal] = dict(prices or {})

    def publish(self, symbol: str, price: Decimal) -> None:
        with self._lock:
            self._prices[symbol] = price

    def latest_price(self, symbol: str) -> Optional[Decimal]:
        with self._lock:
            return self._prices.get(symbol)


class ExchangeMarketOracle(MarketOraclePort):
    """Market oracle for a single exchange.

    Attributes:
        timezone: IANA zone of the exchange (e.g. "America/New_York").
        open_time: Local session open.
        close_time: Local session close (exclusive).
    """

    def __init__(
        self,
        quotes: QuoteSource,
        timezone: str = "America/New_York",
        open_time: str = "09:30",
        close_time: str = "16:00",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._quotes = quotes
        self.timezone = ZoneInfo(timezone)
        self.open_time = parse_session_time(open_time)
        self.close_time = parse_session_time(close_time)
        self._clock = clock

    def is_market_open(self) -> bool:
        local = self._clock().astimezone(self.timezone)
        if local.weekday() >= SATURDAY:
            return False
        return self.open_time <= local.time() < self.close_time

    def current_price(self, symbol: str) -> Optional[Decimal]:
        price = self._quotes.latest_price(symbol)
        if price is None:
            logger.debug("No quote available for %s", symbol)
        return price
