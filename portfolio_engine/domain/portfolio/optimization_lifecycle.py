"""
Domain service: Optimization lifecycle.

    request ──▶ IN_PROGRESS ──provider ok──▶ CREATED ──apply──▶ IN_PROGRESS ──▶ APPLIED
                     │                          │                  │
                     ├─provider error─▶ FAILED  ├─cancel─▶ CANCELED └─rollback─▶ CREATED
                     └─cancel─▶ CANCELED

Gating per (user, portfolio):
    - one IN_PROGRESS record at a time,
    - no new request while a CREATED record awaits application,
    - no new request within the cool-off window after an application.

The checks and the reservation happen under the pair lock and through
the store's insert-if-absent primitive. The provider is called outside
the lock, so a cancel can land while it is in flight. A cancel that
lands while recommendations are being applied also wins: the record is
marked applied before the holding locks are released, and the holdings
are restored when that fails.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from portfolio_engine.domain.portfolio.entities import (
    OptimizationRecord,
    OptimizationStatus,
    Portfolio,
    utcnow,
)
from portfolio_engine.domain.portfolio.errors import (
    AlreadyAppliedError,
    CoolOffActiveError,
    EmptyPortfolioError,
    InvalidDateRangeError,
    InvalidStateError,
    OptimizationInProgressError,
    OptimizationNotFoundError,
    OptimizationStillInProgressError,
    PendingRecommendationError,
    PortfolioDomainError,
    PortfolioNotFoundError,
)
from portfolio_engine.domain.portfolio.ports import (
    HoldingRepository,
    OptimizationProviderPort,
    OptimizationRepository,
    PortfolioRepository,
)
from portfolio_engine.domain.portfolio.recommendation_engine import (
    RecommendationApplicationEngine,
)
from portfolio_engine.shared.concurrency import KeyedLock

logger = logging.getLogger(__name__)

CANCELED_BY_USER_NOTE = " (Canceled by user)"
CANCELED_BY_PREDICTIONS_NOTE = " (Canceled due to new predictions)"
APPLY_FAILED_NOTE = " (Failed to apply recommendations)"


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of requesting or applying an optimization."""

    optimization_id: str
    successful: bool
    status: OptimizationStatus
    message: str = ""
    record: Optional[OptimizationRecord] = None


class OptimizationLifecycle:
    """Gates, runs, applies and cancels portfolio optimizations."""

    def __init__(
        self,
        optimization_repo: OptimizationRepository,
        portfolio_repo: PortfolioRepository,
        holding_repo: HoldingRepository,
        provider: OptimizationProviderPort,
        engine: RecommendationApplicationEngine,
        cool_off: timedelta = timedelta(hours=24),
        history_window: timedelta = timedelta(days=30),
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._optimizations = optimization_repo
        self._portfolios = portfolio_repo
        self._holdings = holding_repo
        self._provider = provider
        self._engine = engine
        self._cool_off = cool_off
        self._history_window = history_window
        self._locks = locks or KeyedLock()
        self._clock = clock

    @staticmethod
    def _pair_key(user_id: str, portfolio_id: str) -> tuple[str, str, str]:
        return ("optimization", user_id, portfolio_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_ongoing_optimization(self, user_id: str, portfolio_id: str) -> bool:
        """Return True if the pair has a record in IN_PROGRESS."""
        return bool(
            self._optimizations.find(
                user_id, portfolio_id, [OptimizationStatus.IN_PROGRESS]
            )
        )

    def remaining_cool_off(self, user_id: str, portfolio_id: str) -> timedelta:
        """Return how long until a new optimization may be requested."""
        latest = self._optimizations.latest_applied(user_id, portfolio_id)
        if latest is None or latest.applied_at is None:
            return timedelta(0)

        elapsed = self._clock() - latest.applied_at
        if elapsed >= self._cool_off:
            return timedelta(0)
        return self._cool_off - elapsed

    def get_record(self, user_id: str, optimization_id: str) -> OptimizationRecord:
        """Return the user's record.

        Raises:
            OptimizationNotFoundError: If no record matches (user_id, id).
        """
        record = self._optimizations.get_by_id(optimization_id)
        if record is None or record.user_id != user_id:
            raise OptimizationNotFoundError(optimization_id)
        return record

    def get_status(self, user_id: str, optimization_id: str) -> OptimizationStatus:
        return self.get_record(user_id, optimization_id).status

    def get_history(
        self,
        user_id: str,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[OptimizationRecord]:
        """Return the portfolio's records within [start, end], newest first.

        Raises:
            PortfolioNotFoundError: If the portfolio is missing or not the user's.
            InvalidDateRangeError: If start is after end.
        """
        self._require_portfolio(user_id, portfolio_id)
        end = end or self._clock()
        start = start or end - self._history_window
        if start > end:
            raise InvalidDateRangeError(start.isoformat(), end.isoformat())
        return self._optimizations.list_for_portfolio(user_id, portfolio_id, start, end)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def request_optimization(
        self, user_id: str, portfolio_id: str
    ) -> OptimizationResult:
        """Reserve a slot for the pair and ask the provider for recommendations.

        Provider failures are recorded as FAILED and reported through
        ``successful = False``.

        Raises:
            PortfolioNotFoundError: If the portfolio is missing or not the user's.
            EmptyPortfolioError: If the portfolio holds nothing.
            OptimizationInProgressError: If another request is in flight.
            CoolOffActiveError: If an optimization was applied too recently.
            PendingRecommendationError: If a CREATED record awaits a decision.
        """
        self._require_portfolio(user_id, portfolio_id)
        holdings = self._holdings.list_for_portfolio(portfolio_id)
        if not holdings:
            raise EmptyPortfolioError(portfolio_id)

        with self._locks.hold(self._pair_key(user_id, portfolio_id)):
            if self.has_ongoing_optimization(user_id, portfolio_id):
                raise OptimizationInProgressError(portfolio_id)

            remaining = self.remaining_cool_off(user_id, portfolio_id)
            if remaining > timedelta(0):
                raise CoolOffActiveError(portfolio_id, remaining)

            pending = self._optimizations.find(
                user_id, portfolio_id, [OptimizationStatus.CREATED]
            )
            if pending:
                raise PendingRecommendationError(portfolio_id, pending[0].id)

            now = self._clock()
            record = OptimizationRecord(
                user_id=user_id,
                portfolio_id=portfolio_id,
                status=OptimizationStatus.IN_PROGRESS,
                timestamp=now,
            )
            if not self._optimizations.reserve(record, now - self._cool_off):
                raise OptimizationInProgressError(portfolio_id)

        logger.info(
            "Optimization %s reserved for user=%s portfolio=%s",
            record.id,
            user_id,
            portfolio_id,
        )

        symbols = [h.symbol for h in holdings]
        try:
            proposal = self._provider.optimize(portfolio_id, symbols)
        except Exception as exc:
            reason = exc.message if isinstance(exc, PortfolioDomainError) else type(exc).__name__
            logger.warning("Optimization %s failed at provider: %s", record.id, reason)
            if not self._optimizations.transition(
                record.id,
                [OptimizationStatus.IN_PROGRESS],
                OptimizationStatus.FAILED,
                note=f" (Optimization failed: {reason})",
            ):
                current = self._optimizations.get_by_id(record.id)
                status = current.status if current else OptimizationStatus.CANCELED
                logger.info(
                    "Optimization %s was %s before the provider failed", record.id, status.value
                )
                return OptimizationResult(
                    optimization_id=record.id,
                    successful=False,
                    status=status,
                    message="Optimization was canceled before recommendations arrived",
                    record=current,
                )
            return OptimizationResult(
                optimization_id=record.id,
                successful=False,
                status=OptimizationStatus.FAILED,
                message=f"Optimization failed: {reason}",
            )

        record.status = OptimizationStatus.CREATED
        record.recommendations = list(proposal.recommendations)
        record.explanation = proposal.explanation
        record.confidence = proposal.confidence
        record.metrics = dict(proposal.metrics)
        record.model_version = proposal.model_version

        if not self._optimizations.complete(record):
            current = self._optimizations.get_by_id(record.id)
            status = current.status if current else OptimizationStatus.CANCELED
            logger.info("Optimization %s was %s before completion", record.id, status.value)
            return OptimizationResult(
                optimization_id=record.id,
                successful=False,
                status=status,
                message="Optimization was canceled before recommendations arrived",
                record=current,
            )

        return OptimizationResult(
            optimization_id=record.id,
            successful=True,
            status=OptimizationStatus.CREATED,
            message="Optimization created",
            record=record,
        )

    def apply_recommendation(
        self, user_id: str, optimization_id: str
    ) -> OptimizationResult:
        """Apply a CREATED record's recommendations to its portfolio.

        Raises:
            OptimizationNotFoundError: If no record matches (user_id, id).
            AlreadyAppliedError: If the record was applied before.
            OptimizationStillInProgressError: If the record is IN_PROGRESS.
            InvalidStateError: If the record is CANCELED or FAILED.
        """
        record = self.get_record(user_id, optimization_id)
        self._check_applicable(record)

        with self._locks.hold(self._pair_key(user_id, record.portfolio_id)):
            record = self.get_record(user_id, optimization_id)
            self._check_applicable(record)

            if not self._optimizations.transition(
                optimization_id,
                [OptimizationStatus.CREATED],
                OptimizationStatus.IN_PROGRESS,
            ):
                current = self.get_record(user_id, optimization_id)
                self._check_applicable(current)
                raise InvalidStateError(
                    "optimization", optimization_id, current.status.value, "apply"
                )

            portfolio = self._portfolios.get_by_id(record.portfolio_id)
            if portfolio is None:
                self._optimizations.transition(
                    optimization_id,
                    [OptimizationStatus.IN_PROGRESS],
                    OptimizationStatus.CREATED,
                )
                raise PortfolioNotFoundError(record.portfolio_id)

            now = self._clock()
            applied = self._engine.apply(
                record,
                portfolio,
                commit=lambda: self._optimizations.mark_applied(optimization_id, now),
            )
            if not applied:
                if self._optimizations.transition(
                    optimization_id,
                    [OptimizationStatus.IN_PROGRESS],
                    OptimizationStatus.CREATED,
                    note=APPLY_FAILED_NOTE,
                ):
                    return OptimizationResult(
                        optimization_id=optimization_id,
                        successful=False,
                        status=OptimizationStatus.CREATED,
                        message="Failed to apply recommendations; holdings were restored",
                    )

                current = self.get_record(user_id, optimization_id)
                logger.warning(
                    "Optimization %s became %s while being applied; holdings were restored",
                    optimization_id,
                    current.status.value,
                )
                return OptimizationResult(
                    optimization_id=optimization_id,
                    successful=False,
                    status=current.status,
                    message=(
                        "Optimization changed state while being applied; "
                        "holdings were restored"
                    ),
                    record=current,
                )

            portfolio.last_updated = now
            self._portfolios.save(portfolio)

        logger.info("Optimization %s applied to portfolio %s", optimization_id, portfolio.id)
        return OptimizationResult(
            optimization_id=optimization_id,
            successful=True,
            status=OptimizationStatus.APPLIED,
            message="Optimization applied",
            record=self._optimizations.get_by_id(optimization_id),
        )

    def cancel_optimization(
        self, user_id: str, optimization_id: str
    ) -> OptimizationRecord:
        """Cancel a CREATED or IN_PROGRESS record.

        Raises:
            OptimizationNotFoundError: If no record matches (user_id, id).
            AlreadyAppliedError: If the record was applied.
            InvalidStateError: If the record is already CANCELED or FAILED.
        """
        record = self.get_record(user_id, optimization_id)

        with self._locks.hold(self._pair_key(user_id, record.portfolio_id)):
            record = self.get_record(user_id, optimization_id)
            self._check_cancelable(record)

            if not self._optimizations.transition(
                optimization_id,
                [OptimizationStatus.CREATED, OptimizationStatus.IN_PROGRESS],
                OptimizationStatus.CANCELED,
                note=CANCELED_BY_USER_NOTE,
            ):
                current = self.get_record(user_id, optimization_id)
                self._check_cancelable(current)
                raise InvalidStateError(
                    "optimization", optimization_id, current.status.value, "cancel"
                )

        logger.info("Optimization %s canceled by user=%s", optimization_id, user_id)
        return self.get_record(user_id, optimization_id)

    def cancel_optimizations_for_symbols(self, symbols: Iterable[str]) -> int:
        """Cancel unapplied recommendations of portfolios holding any symbol.

        Returns:
            Number of records canceled.
        """
        portfolio_ids = self._holdings.portfolio_ids_holding(symbols)
        if not portfolio_ids:
            return 0

        canceled = 0
        for record in self._optimizations.list_created_for_portfolios(portfolio_ids):
            with self._locks.hold(self._pair_key(record.user_id, record.portfolio_id)):
                if self._optimizations.transition(
                    record.id,
                    [OptimizationStatus.CREATED],
                    OptimizationStatus.CANCELED,
                    note=CANCELED_BY_PREDICTIONS_NOTE,
                ):
                    canceled += 1

        if canceled:
            logger.info("Canceled %d stale optimizations after new predictions", canceled)
        return canceled

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_portfolio(self, user_id: str, portfolio_id: str) -> Portfolio:
        portfolio = self._portfolios.get_by_id(portfolio_id)
        if portfolio is None or portfolio.user_id != user_id:
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio

    @staticmethod
    def _check_applicable(record: OptimizationRecord) -> None:
        if record.is_applied or record.status is OptimizationStatus.APPLIED:
            raise AlreadyAppliedError(record.id)
        if record.status is OptimizationStatus.IN_PROGRESS:
            raise OptimizationStillInProgressError(record.id)
        if record.status is not OptimizationStatus.CREATED:
            raise InvalidStateError("optimization", record.id, record.status.value, "apply")

    @staticmethod
    def _check_cancelable(record: OptimizationRecord) -> None:
        if record.is_applied or record.status is OptimizationStatus.APPLIED:
            raise AlreadyAppliedError(record.id)
        if record.status in (OptimizationStatus.CANCELED, OptimizationStatus.FAILED):
            raise InvalidStateError("optimization", record.id, record.status.value, "cancel")
