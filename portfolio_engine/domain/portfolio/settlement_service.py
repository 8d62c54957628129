"""
Domain service: Transaction settlement state machine.

    ON_HOLD ──settle──▶ SUCCEEDED | FAILED
    ON_HOLD ──cancel──▶ CANCELED            (user-triggered only)

A transaction settles only while the market is open. Settlement runs
under a per-transaction lock, claims the transaction in the store before
touching the ledger and finishes with a compare-and-set on the stored
status. Request threads, the scheduler sweep and other processes
sharing the store can race on the same transaction and it still
reaches the ledger exactly once.

Ledger and price failures never escape ``settle``: they become FAILED
with a ``failure_reason``. Cancelation needs the same claim, so a
transaction is never both applied to the ledger and CANCELED.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from portfolio_engine.domain.portfolio.entities import (
    Transaction,
    TransactionStatus,
    TransactionType,
    TriggeredBy,
    utcnow,
)
from portfolio_engine.domain.portfolio.errors import (
    InvalidStateError,
    PortfolioDomainError,
    PriceUnavailableError,
    TransactionNotFoundError,
)
from portfolio_engine.domain.portfolio.holdings_ledger import HoldingsLedger
from portfolio_engine.domain.portfolio.ports import (
    MarketOraclePort,
    PortfolioRepository,
    TransactionRepository,
)
from portfolio_engine.shared.concurrency import KeyedLock

logger = logging.getLogger(__name__)

# A claim older than this belongs to a settler that died mid-settlement.
DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=5)


@dataclass(frozen=True)
class SettlementSummary:
    """Outcome of a pending-transactions sweep."""

    settled: int = 0
    succeeded: int = 0
    failed: int = 0
    market_open: bool = True


class TransactionSettlementService:
    """Settles ON_HOLD transactions against the holdings ledger."""

    def __init__(
        self,
        transaction_repo: TransactionRepository,
        portfolio_repo: PortfolioRepository,
        ledger: HoldingsLedger,
        oracle: MarketOraclePort,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> None:
        self._transactions = transaction_repo
        self._portfolios = portfolio_repo
        self._ledger = ledger
        self._oracle = oracle
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._claim_timeout = claim_timeout

    def _claim(self, transaction_id: str) -> bool:
        now = self._clock()
        return self._transactions.claim(transaction_id, now, now - self._claim_timeout)

    def market_is_open(self) -> bool:
        """Ask the oracle whether the market is open; failures count as closed."""
        try:
            return self._oracle.is_market_open()
        except Exception:
            logger.warning("Market oracle failed to answer; treating market as closed", exc_info=True)
            return False

    def settle(self, transaction: Transaction) -> bool:
        """Try to settle one transaction.

        On a terminal transition the passed object is updated in place.

        Returns:
            True if the transaction moved to SUCCEEDED or FAILED.
        """
        with self._locks.hold(("transaction", transaction.id)):
            stored = self._transactions.get_by_id(transaction.id)
            if stored is None or stored.status.is_terminal:
                return False

            if not self.market_is_open():
                logger.debug("Market closed, transaction %s stays on hold", stored.id)
                return False

            if not self._claim(stored.id):
                logger.info("Transaction %s is being settled elsewhere", stored.id)
                return False

            new_status, reason = self._apply_to_ledger(stored)
            settled_at = self._clock()

            if not self._transactions.transition(
                stored.id,
                TransactionStatus.ON_HOLD,
                new_status,
                settled_at=settled_at,
                failure_reason=reason,
            ):
                logger.warning("Transaction %s changed state during settlement", stored.id)
                return False

            transaction.status = new_status
            transaction.settled_at = settled_at
            transaction.failure_reason = reason

            if new_status is TransactionStatus.SUCCEEDED:
                self._touch_portfolio(stored.portfolio_id, settled_at)

        logger.info(
            "Transaction %s settled: status=%s reason=%s",
            transaction.id,
            new_status.value,
            reason,
        )
        return True

    def settle_pending(self) -> SettlementSummary:
        """Settle every ON_HOLD transaction, oldest first.

        Returns:
            Counts of settled transactions and their SUCCEEDED/FAILED split.
        """
        if not self.market_is_open():
            return SettlementSummary(market_open=False)

        succeeded = failed = 0
        for transaction in self._transactions.list_pending():
            try:
                if not self.settle(transaction):
                    continue
            except Exception:
                logger.exception("Settlement of transaction %s aborted", transaction.id)
                continue

            if transaction.status is TransactionStatus.SUCCEEDED:
                succeeded += 1
            else:
                failed += 1

        return SettlementSummary(
            settled=succeeded + failed, succeeded=succeeded, failed=failed
        )

    def cancel(self, transaction_id: str, user_id: str) -> Transaction:
        """Cancel a user's own ON_HOLD, user-triggered transaction.

        Raises:
            TransactionNotFoundError: If the transaction is missing or not the user's.
            InvalidStateError: If it already settled or was triggered by AI.
        """
        with self._locks.hold(("transaction", transaction_id)):
            transaction = self._transactions.get_by_id(transaction_id)
            if transaction is None or transaction.user_id != user_id:
                raise TransactionNotFoundError(transaction_id)

            if (
                transaction.status is not TransactionStatus.ON_HOLD
                or transaction.triggered_by is not TriggeredBy.USER
            ):
                raise InvalidStateError(
                    "transaction", transaction_id, transaction.status.value, "cancel"
                )

            if not self._claim(transaction_id):
                raise InvalidStateError("transaction", transaction_id, "settling", "cancel")

            if not self._transactions.transition(
                transaction_id, TransactionStatus.ON_HOLD, TransactionStatus.CANCELED
            ):
                current = self._transactions.get_by_id(transaction_id)
                state = current.status.value if current else "missing"
                raise InvalidStateError("transaction", transaction_id, state, "cancel")

            transaction.status = TransactionStatus.CANCELED

        logger.info("Transaction %s canceled by user=%s", transaction_id, user_id)
        return transaction

    def _apply_to_ledger(
        self, transaction: Transaction
    ) -> tuple[TransactionStatus, Optional[str]]:
        try:
            price = self._oracle.current_price(transaction.symbol)
            if price is None:
                raise PriceUnavailableError(transaction.symbol)

            if transaction.type is TransactionType.BUY:
                self._ledger.apply_buy(
                    transaction.portfolio_id,
                    transaction.symbol,
                    transaction.quantity,
                    transaction.price_per_share,
                    price,
                )
            else:
                self._ledger.apply_sell(
                    transaction.portfolio_id,
                    transaction.symbol,
                    transaction.quantity,
                    price,
                )
        except PortfolioDomainError as exc:
            logger.warning("Transaction %s failed: %s", transaction.id, exc.message)
            return TransactionStatus.FAILED, exc.message
        except Exception as exc:
            logger.exception("Unexpected error settling transaction %s", transaction.id)
            return TransactionStatus.FAILED, f"Settlement error: {type(exc).__name__}"

        return TransactionStatus.SUCCEEDED, None

    def _touch_portfolio(self, portfolio_id: str, at: datetime) -> None:
        portfolio = self._portfolios.get_by_id(portfolio_id)
        if portfolio is None:
            return
        portfolio.last_updated = at
        self._portfolios.save(portfolio)
