"""
Port interfaces (ABCs) for the portfolio bounded context.

Ports define the contracts that the domain requires from the outside world.
Infrastructure adapters implement these interfaces.
The domain layer never depends on concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Optional

from portfolio_engine.domain.portfolio.entities import (
    AIModel,
    Holding,
    ModelPrediction,
    OptimizationProposal,
    OptimizationRecord,
    OptimizationStatus,
    Portfolio,
    Transaction,
    TransactionStatus,
)


class MarketOraclePort(ABC):
    """Port answering whether the market trades and at what price."""

    @abstractmethod
    def is_market_open(self) -> bool:
        """Return True while the exchange session is open."""
        raise NotImplementedError

    @abstractmethod
    def current_price(self, symbol: str) -> Optional[Decimal]:
        """Return the latest known price for a symbol, or None."""
        raise NotImplementedError


class OptimizationProviderPort(ABC):
    """Port for obtaining rebalancing recommendations for a portfolio."""

    @abstractmethod
    def optimize(self, portfolio_id: str, symbols: list[str]) -> OptimizationProposal:
        """Return a proposal for the portfolio.

        Raises:
            ProviderError: If the provider fails or times out.
        """
        raise NotImplementedError


class ModelClientPort(ABC):
    """Port for one external model service."""

    model: AIModel

    @abstractmethod
    def check_health(self) -> bool:
        """Return True when the service reports itself healthy."""
        raise NotImplementedError

    @abstractmethod
    def predict(self, symbols: list[str]) -> list[ModelPrediction]:
        """Return predictions for the given symbols."""
        raise NotImplementedError

    @abstractmethod
    def retrain(self) -> bool:
        """Ask the service to retrain; return True when accepted."""
        raise NotImplementedError

    @abstractmethod
    def model_version(self) -> str:
        """Return the version string the service currently serves."""
        raise NotImplementedError

    def close(self) -> None:
        """Release connections held by the client; a no-op by default."""


class PortfolioRepository(ABC):
    """Port for portfolio persistence."""

    @abstractmethod
    def get_by_id(self, portfolio_id: str) -> Optional[Portfolio]:
        """Return a portfolio by its ID, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def save(self, portfolio: Portfolio) -> None:
        """Insert or update a portfolio."""
        raise NotImplementedError


class HoldingRepository(ABC):
    """Port for holding persistence, keyed by (portfolio_id, symbol)."""

    @abstractmethod
    def get(self, portfolio_id: str, symbol: str) -> Optional[Holding]:
        """Return a holding, or None if the portfolio does not hold the symbol."""
        raise NotImplementedError

    @abstractmethod
    def list_for_portfolio(self, portfolio_id: str) -> list[Holding]:
        """Return every holding of a portfolio ordered by symbol."""
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> list[Holding]:
        """Return every holding of every portfolio."""
        raise NotImplementedError

    @abstractmethod
    def save(self, holding: Holding) -> bool:
        """Write a holding if the stored row still has ``holding.version``.

        Version 0 inserts and fails when the row already exists. On
        success ``holding.version`` is advanced to the stored version.

        Returns:
            True if the write happened, False if another writer got there first.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(
        self, portfolio_id: str, symbol: str, version: Optional[int] = None
    ) -> bool:
        """Remove a holding, only at ``version`` when one is given.

        Returns:
            True if a row was removed.
        """
        raise NotImplementedError

    @abstractmethod
    def portfolio_ids_holding(self, symbols: Iterable[str]) -> set[str]:
        """Return the IDs of portfolios holding any of the symbols."""
        raise NotImplementedError


class TransactionRepository(ABC):
    """Port for transaction persistence."""

    @abstractmethod
    def add(self, transaction: Transaction) -> None:
        """Persist a new transaction."""
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """Return a transaction by its ID, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def list_pending(self) -> list[Transaction]:
        """Return every ON_HOLD transaction, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def list_for_user(
        self, user_id: str, portfolio_id: Optional[str] = None
    ) -> list[Transaction]:
        """Return a user's transactions, newest first."""
        raise NotImplementedError

    @abstractmethod
    def claim(
        self, transaction_id: str, claimed_at: datetime, stale_before: datetime
    ) -> bool:
        """Atomically mark an ON_HOLD transaction as taken by one settler.

        A claim older than ``stale_before`` is considered abandoned and
        can be taken over.

        Returns:
            True if the caller now owns the transaction.
        """
        raise NotImplementedError

    @abstractmethod
    def transition(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        new: TransactionStatus,
        settled_at: Optional[datetime] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """Atomically move a transaction from ``expected`` to ``new``.

        Returns:
            True if the stored status was ``expected`` and has been changed.
        """
        raise NotImplementedError


class OptimizationRepository(ABC):
    """Port for optimization record persistence.

    The conditional methods (reserve, complete, transition, mark_applied)
    must be atomic with respect to concurrent callers, including callers
    in other processes sharing the same store.
    """

    @abstractmethod
    def reserve(self, record: OptimizationRecord, cool_off_since: datetime) -> bool:
        """Insert ``record`` as IN_PROGRESS unless the slot is taken.

        The slot is taken when the (user, portfolio) pair already has an
        IN_PROGRESS or CREATED record, or an APPLIED record whose
        ``applied_at`` is not older than ``cool_off_since``.

        Returns:
            True if the record was inserted.
        """
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, optimization_id: str) -> Optional[OptimizationRecord]:
        """Return a record by its ID, or None if not found."""
        raise NotImplementedError

    @abstractmethod
    def find(
        self,
        user_id: str,
        portfolio_id: str,
        statuses: Iterable[OptimizationStatus],
    ) -> list[OptimizationRecord]:
        """Return the pair's records in any of the statuses, newest first."""
        raise NotImplementedError

    @abstractmethod
    def latest_applied(
        self, user_id: str, portfolio_id: str
    ) -> Optional[OptimizationRecord]:
        """Return the most recently applied record of the pair, or None."""
        raise NotImplementedError

    @abstractmethod
    def list_for_portfolio(
        self, user_id: str, portfolio_id: str, start: datetime, end: datetime
    ) -> list[OptimizationRecord]:
        """Return records with ``start <= timestamp <= end``, newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_created_for_portfolios(
        self, portfolio_ids: Iterable[str]
    ) -> list[OptimizationRecord]:
        """Return CREATED, unapplied records of any of the portfolios."""
        raise NotImplementedError

    @abstractmethod
    def complete(self, record: OptimizationRecord) -> bool:
        """Store the provider's proposal and move IN_PROGRESS to CREATED.

        Returns:
            False if the record is no longer IN_PROGRESS (e.g. canceled).
        """
        raise NotImplementedError

    @abstractmethod
    def transition(
        self,
        optimization_id: str,
        expected: Iterable[OptimizationStatus],
        new: OptimizationStatus,
        note: Optional[str] = None,
    ) -> bool:
        """Atomically move a record whose status is in ``expected`` to ``new``.

        Args:
            note: Text appended to the record's explanation on success.

        Returns:
            True if the transition happened.
        """
        raise NotImplementedError

    @abstractmethod
    def mark_applied(self, optimization_id: str, applied_at: datetime) -> bool:
        """Set APPLIED, ``is_applied`` and ``applied_at`` exactly once.

        Only succeeds for an IN_PROGRESS record that is not yet applied.
        """
        raise NotImplementedError
