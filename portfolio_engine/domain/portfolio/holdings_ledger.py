"""
Domain service: Holdings ledger.

The only code that mutates a Holding. Every mutation runs under the
(portfolio_id, symbol) lock, so settlement threads, the scheduler and
the recommendation engine never interleave on one holding in this
process. Writes are conditional on the holding's stored version and
are retried from a fresh read when another process got there first.

Arithmetic:
    - Buy adds quantity and cost basis, then revalues at the current price.
    - Sell removes cost basis in proportion to the shares sold and
      deletes the holding once nothing is left.
    - Target quantity overwrites the quantity as-is (rebalancing).
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from portfolio_engine.domain.portfolio.entities import ZERO, Holding, utcnow
from portfolio_engine.domain.portfolio.errors import (
    HoldingWriteConflictError,
    InsufficientHoldingsError,
    InvalidQuantityError,
)
from portfolio_engine.domain.portfolio.ports import HoldingRepository
from portfolio_engine.shared.concurrency import KeyedLock

logger = logging.getLogger(__name__)

HoldingsSnapshot = dict[str, Optional[Holding]]
HoldingChange = Callable[[Optional[Holding]], Optional[Holding]]

MAX_WRITE_ATTEMPTS = 5


class HoldingsLedger:
    """Applies buys, sells and rebalancing targets to holdings."""

    def __init__(
        self,
        holding_repo: HoldingRepository,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._holdings = holding_repo
        self._locks = locks or KeyedLock()
        self._clock = clock

    @staticmethod
    def _key(portfolio_id: str, symbol: str) -> tuple[str, str, str]:
        return ("holding", portfolio_id, symbol)

    @contextmanager
    def locked(self, portfolio_id: str, symbols: Iterable[str]) -> Iterator[None]:
        """Hold the locks of several symbols of one portfolio at once."""
        keys = [self._key(portfolio_id, s) for s in symbols]
        with self._locks.hold_many(keys):
            yield

    def _update(
        self, portfolio_id: str, symbol: str, change: HoldingChange
    ) -> Optional[Holding]:
        """Read a holding, change it and write it back at the version read.

        ``change`` receives the stored holding (None when absent) and
        returns the holding to store, or None to remove it. It is called
        again on a fresh read whenever the write loses to another writer.

        Raises:
            HoldingWriteConflictError: If every attempt lost.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = self._holdings.get(portfolio_id, symbol)
            version = current.version if current is not None else 0
            updated = change(current)

            if updated is None:
                if current is None or self._holdings.delete(portfolio_id, symbol, version):
                    return None
            else:
                updated.version = version
                if self._holdings.save(updated):
                    return updated

            logger.info(
                "Holding %s of portfolio %s changed during write (attempt %d/%d)",
                symbol,
                portfolio_id,
                attempt,
                MAX_WRITE_ATTEMPTS,
            )

        raise HoldingWriteConflictError(portfolio_id, symbol, MAX_WRITE_ATTEMPTS)

    def apply_buy(
        self,
        portfolio_id: str,
        symbol: str,
        quantity: Decimal,
        price_per_share: Decimal,
        current_price: Decimal,
    ) -> Holding:
        """Add bought shares to a holding, creating it when absent.

        Raises:
            InvalidQuantityError: If quantity is not positive.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)

        def buy(holding: Optional[Holding]) -> Holding:
            if holding is None:
                holding = Holding(
                    portfolio_id=portfolio_id,
                    symbol=symbol,
                    quantity=quantity,
                    cost_basis=quantity * price_per_share,
                )
            else:
                holding.quantity += quantity
                holding.cost_basis += quantity * price_per_share
            holding.revalue(current_price)
            holding.last_updated = now
            return holding

        with self._locks.hold(self._key(portfolio_id, symbol)):
            now = self._clock()
            holding = self._update(portfolio_id, symbol, buy)

        logger.debug(
            "Buy applied: portfolio=%s symbol=%s qty=%s", portfolio_id, symbol, quantity
        )
        return holding

    def apply_sell(
        self,
        portfolio_id: str,
        symbol: str,
        quantity: Decimal,
        current_price: Decimal,
    ) -> Optional[Holding]:
        """Remove sold shares from a holding.

        Returns:
            The updated holding, or None when it was fully liquidated.

        Raises:
            InvalidQuantityError: If quantity is not positive.
            InsufficientHoldingsError: If the holding is missing or too small.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)

        def sell(holding: Optional[Holding]) -> Optional[Holding]:
            if holding is None:
                raise InsufficientHoldingsError(symbol, quantity, ZERO)
            if holding.quantity < quantity:
                raise InsufficientHoldingsError(symbol, quantity, holding.quantity)

            sell_ratio = quantity / holding.quantity
            holding.cost_basis -= holding.cost_basis * sell_ratio
            holding.quantity -= quantity
            if holding.quantity <= ZERO:
                return None

            holding.revalue(current_price)
            holding.last_updated = self._clock()
            return holding

        with self._locks.hold(self._key(portfolio_id, symbol)):
            holding = self._update(portfolio_id, symbol, sell)

        if holding is None:
            logger.debug("Holding liquidated: portfolio=%s symbol=%s", portfolio_id, symbol)
        return holding

    def set_target_quantity(
        self, portfolio_id: str, symbol: str, target_quantity: Decimal
    ) -> Optional[Holding]:
        """Overwrite a holding's quantity with a rebalancing target.

        A new holding starts with zero cost basis and market value; the
        valuation refresh fills in its market value later.

        Returns:
            The resulting holding, or None when it was removed or never existed.
        """

        def retarget(holding: Optional[Holding]) -> Optional[Holding]:
            if target_quantity <= ZERO:
                return None
            if holding is None:
                holding = Holding(
                    portfolio_id=portfolio_id,
                    symbol=symbol,
                    quantity=target_quantity,
                )
            else:
                holding.quantity = target_quantity
            holding.last_updated = self._clock()
            return holding

        with self._locks.hold(self._key(portfolio_id, symbol)):
            return self._update(portfolio_id, symbol, retarget)

    def revalue(
        self, portfolio_id: str, symbol: str, current_price: Decimal
    ) -> Optional[Holding]:
        """Refresh market value and change percent without trading."""

        def mark(holding: Optional[Holding]) -> Optional[Holding]:
            if holding is None:
                return None
            holding.revalue(current_price)
            holding.last_updated = self._clock()
            return holding

        with self._locks.hold(self._key(portfolio_id, symbol)):
            return self._update(portfolio_id, symbol, mark)

    def snapshot(self, portfolio_id: str, symbols: Iterable[str]) -> HoldingsSnapshot:
        """Copy the current state of several holdings.

        Missing holdings are recorded as None so ``restore`` can delete
        anything created afterwards.
        """
        snap: HoldingsSnapshot = {}
        for symbol in symbols:
            holding = self._holdings.get(portfolio_id, symbol)
            snap[symbol] = replace(holding) if holding is not None else None
        return snap

    def restore(self, portfolio_id: str, snapshot: HoldingsSnapshot) -> None:
        """Put holdings back exactly as captured by ``snapshot``."""
        for symbol, captured in snapshot.items():
            with self._locks.hold(self._key(portfolio_id, symbol)):
                self._update(
                    portfolio_id,
                    symbol,
                    lambda _current, h=captured: replace(h) if h is not None else None,
                )
        logger.info(
            "Restored %d holdings of portfolio=%s from snapshot",
            len(snapshot),
            portfolio_id,
        )
