"""
Adapter: In-memory stores.

Implements the repository ports with dictionaries guarded by a lock.
Entities are copied on the way in and out so callers never share
mutable state with the store, which mirrors how a database behaves.
Used when no DATABASE_URL is configured and throughout the tests.
"""

import copy
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from portfolio_engine.domain.portfolio.entities import (
    Holding,
    OptimizationRecord,
    OptimizationStatus,
    Portfolio,
    Transaction,
    TransactionStatus,
)
from portfolio_engine.domain.portfolio.ports import (
    HoldingRepository,
    OptimizationRepository,
    PortfolioRepository,
    TransactionRepository,
)

_OPEN_STATUSES = (OptimizationStatus.IN_PROGRESS, OptimizationStatus.CREATED)


class InMemoryPortfolioRepository(PortfolioRepository):
    """Dictionary-backed portfolio store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Portfolio] = {}

    def get_by_id(self, portfolio_id: str) -> Optional[Portfolio]:
        with self._lock:
            row = self._rows.get(portfolio_id)
            return copy.deepcopy(row) if row is not None else None

    def save(self, portfolio: Portfolio) -> None:
        with self._lock:
            self._rows[portfolio.id] = copy.deepcopy(portfolio)


class InMemoryHoldingRepository(HoldingRepository):
    """Dictionary-backed holding store keyed by (portfolio_id, symbol)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str], Holding] = {}

    def get(self, portfolio_id: str, symbol: str) -> Optional[Holding]:
        with self._lock:
            row = self._rows.get((portfolio_id, symbol))
            return copy.deepcopy(row) if row is not None else None

    def list_for_portfolio(self, portfolio_id: str) -> list[Holding]:
        with self._lock:
            rows = [h for (pid, _), h in self._rows.items() if pid == portfolio_id]
            return [copy.deepcopy(h) for h in sorted(rows, key=lambda h: h.symbol)]

    def list_all(self) -> list[Holding]:
        with self._lock:
            rows = sorted(self._rows.values(), key=lambda h: (h.portfolio_id, h.symbol))
            return [copy.deepcopy(h) for h in rows]

    def save(self, holding: Holding) -> bool:
        key = (holding.portfolio_id, holding.symbol)
        with self._lock:
            row = self._rows.get(key)
            stored_version = row.version if row is not None else 0
            if stored_version != holding.version:
                return False
            holding.version = stored_version + 1
            self._rows[key] = copy.deepcopy(holding)
            return True

    def delete(
        self, portfolio_id: str, symbol: str, version: Optional[int] = None
    ) -> bool:
        key = (portfolio_id, symbol)
        with self._lock:
            row = self._rows.get(key)
            if row is None or (version is not None and row.version != version):
                return False
            del self._rows[key]
            return True

    def portfolio_ids_holding(self, symbols: Iterable[str]) -> set[str]:
        wanted = set(symbols)
        with self._lock:
            return {pid for (pid, symbol) in self._rows if symbol in wanted}


class InMemoryTransactionRepository(TransactionRepository):
    """Dictionary-backed transaction store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Transaction] = {}
        self._claims: dict[str, datetime] = {}

    def add(self, transaction: Transaction) -> None:
        with self._lock:
            self._rows[transaction.id] = copy.deepcopy(transaction)

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            row = self._rows.get(transaction_id)
            return copy.deepcopy(row) if row is not None else None

    def list_pending(self) -> list[Transaction]:
        with self._lock:
            rows = [t for t in self._rows.values() if t.status is TransactionStatus.ON_HOLD]
            return [copy.deepcopy(t) for t in sorted(rows, key=lambda t: t.created_at)]

    def list_for_user(
        self, user_id: str, portfolio_id: Optional[str] = None
    ) -> list[Transaction]:
        with self._lock:
            rows = [
                t
                for t in self._rows.values()
                if t.user_id == user_id
                and (portfolio_id is None or t.portfolio_id == portfolio_id)
            ]
            rows.sort(key=lambda t: t.created_at, reverse=True)
            return [copy.deepcopy(t) for t in rows]

    def claim(
        self, transaction_id: str, claimed_at: datetime, stale_before: datetime
    ) -> bool:
        with self._lock:
            row = self._rows.get(transaction_id)
            if row is None or row.status is not TransactionStatus.ON_HOLD:
                return False
            previous = self._claims.get(transaction_id)
            if previous is not None and previous >= stale_before:
                return False
            self._claims[transaction_id] = claimed_at
            return True

    def transition(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        new: TransactionStatus,
        settled_at: Optional[datetime] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        with self._lock:
            row = self._rows.get(transaction_id)
            if row is None or row.status is not expected:
                return False
            row.status = new
            row.settled_at = settled_at
            row.failure_reason = failure_reason
            self._claims.pop(transaction_id, None)
            return True


class InMemoryOptimizationRepository(OptimizationRepository):
    """Dictionary-backed optimization record store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, OptimizationRecord] = {}

    def _pair(self, user_id: str, portfolio_id: str) -> list[OptimizationRecord]:
        return [
            r
            for r in self._rows.values()
            if r.user_id == user_id and r.portfolio_id == portfolio_id
        ]

    def reserve(self, record: OptimizationRecord, cool_off_since: datetime) -> bool:
        with self._lock:
            for row in self._pair(record.user_id, record.portfolio_id):
                if row.status in _OPEN_STATUSES:
                    return False
                if row.is_applied and row.applied_at and row.applied_at >= cool_off_since:
                    return False
            stored = copy.deepcopy(record)
            stored.status = OptimizationStatus.IN_PROGRESS
            self._rows[record.id] = stored
            return True

    def get_by_id(self, optimization_id: str) -> Optional[OptimizationRecord]:
        with self._lock:
            row = self._rows.get(optimization_id)
            return copy.deepcopy(row) if row is not None else None

    def find(
        self,
        user_id: str,
        portfolio_id: str,
        statuses: Iterable[OptimizationStatus],
    ) -> list[OptimizationRecord]:
        wanted = set(statuses)
        with self._lock:
            rows = [r for r in self._pair(user_id, portfolio_id) if r.status in wanted]
            rows.sort(key=lambda r: r.timestamp, reverse=True)
            return [copy.deepcopy(r) for r in rows]

    def latest_applied(
        self, user_id: str, portfolio_id: str
    ) -> Optional[OptimizationRecord]:
        with self._lock:
            rows = [
                r
                for r in self._pair(user_id, portfolio_id)
                if r.is_applied and r.applied_at is not None
            ]
            if not rows:
                return None
            return copy.deepcopy(max(rows, key=lambda r: r.applied_at))

    def list_for_portfolio(
        self, user_id: str, portfolio_id: str, start: datetime, end: datetime
    ) -> list[OptimizationRecord]:
        with self._lock:
            rows = [
                r for r in self._pair(user_id, portfolio_id) if start <= r.timestamp <= end
            ]
            rows.sort(key=lambda r: r.timestamp, reverse=True)
            return [copy.deepcopy(r) for r in rows]

    def list_created_for_portfolios(
        self, portfolio_ids: Iterable[str]
    ) -> list[OptimizationRecord]:
        wanted = set(portfolio_ids)
        with self._lock:
            rows = [
                r
                for r in self._rows.values()
                if r.portfolio_id in wanted
                and r.status is OptimizationStatus.CREATED
                and not r.is_applied
            ]
            rows.sort(key=lambda r: r.timestamp)
            return [copy.deepcopy(r) for r in rows]

    def complete(self, record: OptimizationRecord) -> bool:
        with self._lock:
            row = self._rows.get(record.id)
            if row is None or row.status is not OptimizationStatus.IN_PROGRESS:
                return False
            row.status = OptimizationStatus.CREATED
            row.recommendations = list(record.recommendations)
            row.explanation = record.explanation
            row.confidence = record.confidence
            row.metrics = copy.deepcopy(record.metrics)
            row.model_version = record.model_version
            return True

    def transition(
        self,
        optimization_id: str,
        expected: Iterable[OptimizationStatus],
        new: OptimizationStatus,
        note: Optional[str] = None,
    ) -> bool:
        wanted = set(expected)
        with self._lock:
            row = self._rows.get(optimization_id)
            if row is None or row.status not in wanted:
                return False
            row.status = new
            if note:
                row.explanation = f"{row.explanation}{note}"
            return True

    def mark_applied(self, optimization_id: str, applied_at: datetime) -> bool:
        with self._lock:
            row = self._rows.get(optimization_id)
            if (
                row is None
                or row.is_applied
                or row.status is not OptimizationStatus.IN_PROGRESS
            ):
                return False
            row.status = OptimizationStatus.APPLIED
            row.is_applied = True
            row.applied_at = applied_at
            return True
