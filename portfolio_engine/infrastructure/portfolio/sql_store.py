"""
Adapter: SQL stores.

Implements the repository ports on a SQLAlchemy Engine with plain SQL.
Decimals are stored as text to keep their exact value on every backend;
timestamps are stored as UTC ISO-8601 strings with a fixed width so
they compare correctly as text.

The conditional methods map to single statements:
    - reserve       INSERT ... SELECT ... WHERE NOT EXISTS (+ partial unique index)
    - claim         UPDATE ... WHERE status = 'on_hold' AND claimed_at is NULL or stale
    - transition    UPDATE ... WHERE status = :expected   (row count)
    - holding save  UPDATE ... WHERE version = :version   (INSERT when version is 0)
    - mark_applied  UPDATE ... WHERE is_applied = 0       (row count)
"""

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

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
    TriggeredBy,
)
from portfolio_engine.domain.portfolio.ports import (
    HoldingRepository,
    OptimizationRepository,
    PortfolioRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS portfolios (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        name VARCHAR(200) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        last_updated VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS holdings (
        portfolio_id VARCHAR(36) NOT NULL,
        symbol VARCHAR(16) NOT NULL,
        quantity VARCHAR(64) NOT NULL,
        cost_basis VARCHAR(64) NOT NULL,
        market_value VARCHAR(64) NOT NULL,
        change_percent VARCHAR(64) NOT NULL,
        last_updated VARCHAR(40) NOT NULL,
        version INTEGER NOT NULL,
        PRIMARY KEY (portfolio_id, symbol)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        portfolio_id VARCHAR(36) NOT NULL,
        symbol VARCHAR(16) NOT NULL,
        quantity VARCHAR(64) NOT NULL,
        price_per_share VARCHAR(64) NOT NULL,
        type VARCHAR(8) NOT NULL,
        triggered_by VARCHAR(8) NOT NULL,
        status VARCHAR(16) NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        settled_at VARCHAR(40),
        failure_reason TEXT,
        claimed_at VARCHAR(40)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_transactions_status ON transactions (status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS optimizations (
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(64) NOT NULL,
        portfolio_id VARCHAR(36) NOT NULL,
        timestamp VARCHAR(40) NOT NULL,
        status VARCHAR(16) NOT NULL,
        confidence VARCHAR(64) NOT NULL,
        explanation TEXT NOT NULL,
        metrics TEXT NOT NULL,
        is_applied INTEGER NOT NULL DEFAULT 0,
        applied_at VARCHAR(40),
        model_version VARCHAR(64) NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_optimizations_in_progress
        ON optimizations (user_id, portfolio_id) WHERE status = 'in_progress'
    """,
    """
    CREATE TABLE IF NOT EXISTS optimization_recommendations (
        optimization_id VARCHAR(36) NOT NULL,
        position INTEGER NOT NULL,
        symbol VARCHAR(16) NOT NULL,
        action VARCHAR(8) NOT NULL,
        current_quantity VARCHAR(64) NOT NULL,
        target_quantity VARCHAR(64) NOT NULL,
        current_weight VARCHAR(64) NOT NULL,
        target_weight VARCHAR(64) NOT NULL,
        explanation TEXT NOT NULL,
        PRIMARY KEY (optimization_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS intraday_market_data (
        symbol VARCHAR(16) NOT NULL,
        timestamp VARCHAR(40) NOT NULL,
        open VARCHAR(64),
        high VARCHAR(64),
        low VARCHAR(64),
        current VARCHAR(64) NOT NULL,
        PRIMARY KEY (symbol, timestamp)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS historical_market_data (
        symbol VARCHAR(16) NOT NULL,
        date VARCHAR(10) NOT NULL,
        open VARCHAR(64),
        high VARCHAR(64),
        low VARCHAR(64),
        close VARCHAR(64),
        volume BIGINT,
        PRIMARY KEY (symbol, date)
    )
    """,
)


def create_schema(engine: Engine) -> None:
    """Create every table and index used by the SQL stores if missing."""
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    logger.info("Portfolio schema ensured (%d statements).", len(SCHEMA_STATEMENTS))


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC ISO-8601 string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


class SqlPortfolioRepository(PortfolioRepository):
    """Portfolio persistence on the ``portfolios`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_by_id(self, portfolio_id: str) -> Optional[Portfolio]:
        query = text(
            "SELECT id, user_id, name, created_at, last_updated "
            "FROM portfolios WHERE id = :id"
        )
        with self._engine.connect() as conn:
            row = conn.execute(query, {"id": portfolio_id}).mappings().first()

        if row is None:
            return None
        return Portfolio(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=from_db_time(row["created_at"]),
            last_updated=from_db_time(row["last_updated"]),
        )

    def save(self, portfolio: Portfolio) -> None:
        params = {
            "id": portfolio.id,
            "user_id": portfolio.user_id,
            "name": portfolio.name,
            "created_at": to_db_time(portfolio.created_at),
            "last_updated": to_db_time(portfolio.last_updated),
        }
        with self._engine.begin() as conn:
            updated = conn.execute(
                text(
                    "UPDATE portfolios SET user_id = :user_id, name = :name, "
                    "last_updated = :last_updated WHERE id = :id"
                ),
                {k: v for k, v in params.items() if k != "created_at"},
            ).rowcount
            if not updated:
                conn.execute(
                    text(
                        "INSERT INTO portfolios (id, user_id, name, created_at, last_updated) "
                        "VALUES (:id, :user_id, :name, :created_at, :last_updated)"
                    ),
                    params,
                )


class SqlHoldingRepository(HoldingRepository):
    """Holding persistence on the ``holdings`` table."""

    _COLUMNS = (
        "portfolio_id, symbol, quantity, cost_basis, market_value, "
        "change_percent, last_updated, version"
    )

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @staticmethod
    def _to_entity(row: Any) -> Holding:
        return Holding(
            portfolio_id=row["portfolio_id"],
            symbol=row["symbol"],
            quantity=_dec(row["quantity"]),
            cost_basis=_dec(row["cost_basis"]),
            market_value=_dec(row["market_value"]),
            change_percent=_dec(row["change_percent"]),
            last_updated=from_db_time(row["last_updated"]),
            version=row["version"],
        )

    def get(self, portfolio_id: str, symbol: str) -> Optional[Holding]:
        query = text(
            f"SELECT {self._COLUMNS} FROM holdings "
            "WHERE portfolio_id = :portfolio_id AND symbol = :symbol"
        )
        with self._engine.connect() as conn:
            row = conn.execute(
                query, {"portfolio_id": portfolio_id, "symbol": symbol}
            ).mappings().first()
        return self._to_entity(row) if row is not None else None

    def list_for_portfolio(self, portfolio_id: str) -> list[Holding]:
        query = text(
            f"SELECT {self._COLUMNS} FROM holdings "
            "WHERE portfolio_id = :portfolio_id ORDER BY symbol"
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query, {"portfolio_id": portfolio_id}).mappings().all()
        return [self._to_entity(r) for r in rows]

    def list_all(self) -> list[Holding]:
        query = text(f"SELECT {self._COLUMNS} FROM holdings ORDER BY portfolio_id, symbol")
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._to_entity(r) for r in rows]

    def save(self, holding: Holding) -> bool:
        params = {
            "portfolio_id": holding.portfolio_id,
            "symbol": holding.symbol,
            "quantity": str(holding.quantity),
            "cost_basis": str(holding.cost_basis),
            "market_value": str(holding.market_value),
            "change_percent": str(holding.change_percent),
            "last_updated": to_db_time(holding.last_updated),
            "version": holding.version,
            "next_version": holding.version + 1,
        }
        try:
            with self._engine.begin() as conn:
                if holding.version == 0:
                    written = conn.execute(
                        text(
                            f"INSERT INTO holdings ({self._COLUMNS}) VALUES "
                            "(:portfolio_id, :symbol, :quantity, :cost_basis, "
                            ":market_value, :change_percent, :last_updated, :next_version)"
                        ),
                        params,
                    ).rowcount
                else:
                    written = conn.execute(
                        text(
                            "UPDATE holdings SET quantity = :quantity, cost_basis = :cost_basis, "
                            "market_value = :market_value, change_percent = :change_percent, "
                            "last_updated = :last_updated, version = :next_version "
                            "WHERE portfolio_id = :portfolio_id AND symbol = :symbol "
                            "AND version = :version"
                        ),
                        params,
                    ).rowcount
        except IntegrityError:
            logger.debug(
                "Holding %s of portfolio %s was inserted concurrently",
                holding.symbol,
                holding.portfolio_id,
            )
            return False

        if written != 1:
            return False
        holding.version = params["next_version"]
        return True

    def delete(
        self, portfolio_id: str, symbol: str, version: Optional[int] = None
    ) -> bool:
        sql = "DELETE FROM holdings WHERE portfolio_id = :portfolio_id AND symbol = :symbol"
        params: dict[str, Any] = {"portfolio_id": portfolio_id, "symbol": symbol}
        if version is not None:
            sql += " AND version = :version"
            params["version"] = version
        with self._engine.begin() as conn:
            return conn.execute(text(sql), params).rowcount == 1

    def portfolio_ids_holding(self, symbols: Iterable[str]) -> set[str]:
        wanted = list(set(symbols))
        if not wanted:
            return set()
        query = text(
            "SELECT DISTINCT portfolio_id FROM holdings WHERE symbol IN :symbols"
        ).bindparams(bindparam("symbols", expanding=True))
        with self._engine.connect() as conn:
            rows = conn.execute(query, {"symbols": wanted}).all()
        return {r[0] for r in rows}


class SqlTransactionRepository(TransactionRepository):
    """Transaction persistence on the ``transactions`` table."""

    _COLUMNS = (
        "id, user_id, portfolio_id, symbol, quantity, price_per_share, type, "
        "triggered_by, status, created_at, settled_at, failure_reason"
    )

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @staticmethod
    def _to_entity(row: Any) -> Transaction:
        return Transaction(
            id=row["id"],
            user_id=row["user_id"],
            portfolio_id=row["portfolio_id"],
            symbol=row["symbol"],
            quantity=_dec(row["quantity"]),
            price_per_share=_dec(row["price_per_share"]),
            type=TransactionType(row["type"]),
            triggered_by=TriggeredBy(row["triggered_by"]),
            status=TransactionStatus(row["status"]),
            created_at=from_db_time(row["created_at"]),
            settled_at=from_db_time(row["settled_at"]),
            failure_reason=row["failure_reason"],
        )

    def add(self, transaction: Transaction) -> None:
        query = text(
            f"INSERT INTO transactions ({self._COLUMNS}) VALUES "
            "(:id, :user_id, :portfolio_id, :symbol, :quantity, :price_per_share, "
            ":type, :triggered_by, :status, :created_at, :settled_at, :failure_reason)"
        )
        with self._engine.begin() as conn:
            conn.execute(
                query,
                {
                    "id": transaction.id,
                    "user_id": transaction.user_id,
                    "portfolio_id": transaction.portfolio_id,
                    "symbol": transaction.symbol,
                    "quantity": str(transaction.quantity),
                    "price_per_share": str(transaction.price_per_share),
                    "type": transaction.type.value,
                    "triggered_by": transaction.triggered_by.value,
                    "status": transaction.status.value,
                    "created_at": to_db_time(transaction.created_at),
                    "settled_at": to_db_time(transaction.settled_at),
                    "failure_reason": transaction.failure_reason,
                },
            )

    def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        query = text(f"SELECT {self._COLUMNS} FROM transactions WHERE id = :id")
        with self._engine.connect() as conn:
            row = conn.execute(query, {"id": transaction_id}).mappings().first()
        return self._to_entity(row) if row is not None else None

    def list_pending(self) -> list[Transaction]:
        query = text(
            f"SELECT {self._COLUMNS} FROM transactions "
            "WHERE status = :status ORDER BY created_at ASC"
        )
        with self._engine.connect() as conn:
            rows = conn.execute(
                query, {"status": TransactionStatus.ON_HOLD.value}
            ).mappings().all()
        return [self._to_entity(r) for r in rows]

    def list_for_user(
        self, user_id: str, portfolio_id: Optional[str] = None
    ) -> list[Transaction]:
        sql = f"SELECT {self._COLUMNS} FROM transactions WHERE user_id = :user_id"
        params: dict[str, Any] = {"user_id": user_id}
        if portfolio_id:
            sql += " AND portfolio_id = :portfolio_id"
            params["portfolio_id"] = portfolio_id
        sql += " ORDER BY created_at DESC"

        with self._engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()
        return [self._to_entity(r) for r in rows]

    def claim(
        self, transaction_id: str, claimed_at: datetime, stale_before: datetime
    ) -> bool:
        query = text(
            "UPDATE transactions SET claimed_at = :claimed_at "
            "WHERE id = :id AND status = :on_hold "
            "AND (claimed_at IS NULL OR claimed_at < :stale_before)"
        )
        with self._engine.begin() as conn:
            result = conn.execute(
                query,
                {
                    "id": transaction_id,
                    "on_hold": TransactionStatus.ON_HOLD.value,
                    "claimed_at": to_db_time(claimed_at),
                    "stale_before": to_db_time(stale_before),
                },
            )
        return result.rowcount == 1

    def transition(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        new: TransactionStatus,
        settled_at: Optional[datetime] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        query = text(
            "UPDATE transactions SET status = :new, settled_at = :settled_at, "
            "failure_reason = :failure_reason WHERE id = :id AND status = :expected"
        )
        with self._engine.begin() as conn:
            result = conn.execute(
                query,
                {
                    "id": transaction_id,
                    "expected": expected.value,
                    "new": new.value,
                    "settled_at": to_db_time(settled_at),
                    "failure_reason": failure_reason,
                },
            )
        return result.rowcount == 1


class SqlOptimizationRepository(OptimizationRepository):
    """Optimization persistence on ``optimizations`` and its recommendations table."""

    _COLUMNS = (
        "id, user_id, portfolio_id, timestamp, status, confidence, explanation, "
        "metrics, is_applied, applied_at, model_version"
    )

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _record_params(record: OptimizationRecord) -> dict[str, Any]:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "portfolio_id": record.portfolio_id,
            "timestamp": to_db_time(record.timestamp),
            "status": record.status.value,
            "confidence": str(record.confidence),
            "explanation": record.explanation,
            "metrics": json.dumps(record.metrics, default=str),
            "is_applied": 1 if record.is_applied else 0,
            "applied_at": to_db_time(record.applied_at),
            "model_version": record.model_version,
        }

    def _load(self, conn: Connection, rows: list[Any]) -> list[OptimizationRecord]:
        if not rows:
            return []

        ids = [r["id"] for r in rows]
        rec_query = text(
            "SELECT optimization_id, symbol, action, current_quantity, target_quantity, "
            "current_weight, target_weight, explanation "
            "FROM optimization_recommendations WHERE optimization_id IN :ids "
            "ORDER BY optimization_id, position"
        ).bindparams(bindparam("ids", expanding=True))

        by_record: dict[str, list[OptimizationRecommendation]] = {i: [] for i in ids}
        for rec in conn.execute(rec_query, {"ids": ids}).mappings().all():
            by_record[rec["optimization_id"]].append(
                OptimizationRecommendation(
                    symbol=rec["symbol"],
                    action=RecommendationAction(rec["action"]),
                    current_quantity=_dec(rec["current_quantity"]),
                    target_quantity=_dec(rec["target_quantity"]),
                    current_weight=_dec(rec["current_weight"]),
                    target_weight=_dec(rec["target_weight"]),
                    explanation=rec["explanation"],
                )
            )

        return [
            OptimizationRecord(
                id=r["id"],
                user_id=r["user_id"],
                portfolio_id=r["portfolio_id"],
                timestamp=from_db_time(r["timestamp"]),
                status=OptimizationStatus(r["status"]),
                confidence=_dec(r["confidence"]),
                explanation=r["explanation"],
                metrics=json.loads(r["metrics"]) if r["metrics"] else {},
                recommendations=by_record[r["id"]],
                is_applied=bool(r["is_applied"]),
                applied_at=from_db_time(r["applied_at"]),
                model_version=r["model_version"],
            )
            for r in rows
        ]

    def _select(
        self,
        where: str,
        params: dict[str, Any],
        order: str = "timestamp DESC",
        expanding: Iterable[str] = (),
    ) -> list[OptimizationRecord]:
        query = text(
            f"SELECT {self._COLUMNS} FROM optimizations WHERE {where} ORDER BY {order}"
        )
        for name in expanding:
            query = query.bindparams(bindparam(name, expanding=True))
        with self._engine.connect() as conn:
            rows = conn.execute(query, params).mappings().all()
            return self._load(conn, list(rows))

    # ------------------------------------------------------------------
    # Port implementation
    # ------------------------------------------------------------------

    def reserve(self, record: OptimizationRecord, cool_off_since: datetime) -> bool:
        query = text(
            f"""
            INSERT INTO optimizations ({self._COLUMNS})
            SELECT :id, :user_id, :portfolio_id, :timestamp, 'in_progress', :confidence,
                   :explanation, :metrics, 0, NULL, :model_version
            WHERE NOT EXISTS (
                SELECT 1 FROM optimizations
                WHERE user_id = :user_id AND portfolio_id = :portfolio_id
                  AND (
                      status IN ('in_progress', 'created')
                      OR (is_applied = 1 AND applied_at >= :cool_off_since)
                  )
            )
            """
        )
        row = self._record_params(record)
        params = {
            key: row[key]
            for key in (
                "id", "user_id", "portfolio_id", "timestamp", "confidence",
                "explanation", "metrics", "model_version",
            )
        }
        params["cool_off_since"] = to_db_time(cool_off_since)
        try:
            with self._engine.begin() as conn:
                inserted = conn.execute(query, params).rowcount
        except IntegrityError:
            logger.info("Reservation for portfolio %s lost to a concurrent request", record.portfolio_id)
            return False
        return inserted == 1

    def get_by_id(self, optimization_id: str) -> Optional[OptimizationRecord]:
        records = self._select("id = :id", {"id": optimization_id})
        return records[0] if records else None

    def find(
        self,
        user_id: str,
        portfolio_id: str,
        statuses: Iterable[OptimizationStatus],
    ) -> list[OptimizationRecord]:
        values = [s.value for s in statuses]
        if not values:
            return []
        return self._select(
            "user_id = :user_id AND portfolio_id = :portfolio_id AND status IN :statuses",
            {"user_id": user_id, "portfolio_id": portfolio_id, "statuses": values},
            expanding=("statuses",),
        )

    def latest_applied(
        self, user_id: str, portfolio_id: str
    ) -> Optional[OptimizationRecord]:
        records = self._select(
            "user_id = :user_id AND portfolio_id = :portfolio_id "
            "AND is_applied = 1 AND applied_at IS NOT NULL",
            {"user_id": user_id, "portfolio_id": portfolio_id},
            order="applied_at DESC",
        )
        return records[0] if records else None

    def list_for_portfolio(
        self, user_id: str, portfolio_id: str, start: datetime, end: datetime
    ) -> list[OptimizationRecord]:
        return self._select(
            "user_id = :user_id AND portfolio_id = :portfolio_id "
            "AND timestamp >= :start AND timestamp <= :end",
            {
                "user_id": user_id,
                "portfolio_id": portfolio_id,
                "start": to_db_time(start),
                "end": to_db_time(end),
            },
        )

    def list_created_for_portfolios(
        self, portfolio_ids: Iterable[str]
    ) -> list[OptimizationRecord]:
        ids = list(set(portfolio_ids))
        if not ids:
            return []
        return self._select(
            "portfolio_id IN :portfolio_ids AND status = :status AND is_applied = 0",
            {"portfolio_ids": ids, "status": OptimizationStatus.CREATED.value},
            order="timestamp ASC",
            expanding=("portfolio_ids",),
        )

    def complete(self, record: OptimizationRecord) -> bool:
        update = text(
            "UPDATE optimizations SET status = 'created', confidence = :confidence, "
            "explanation = :explanation, metrics = :metrics, model_version = :model_version "
            "WHERE id = :id AND status = 'in_progress'"
        )
        insert = text(
            "INSERT INTO optimization_recommendations (optimization_id, position, symbol, "
            "action, current_quantity, target_quantity, current_weight, target_weight, "
            "explanation) VALUES (:optimization_id, :position, :symbol, :action, "
            ":current_quantity, :target_quantity, :current_weight, :target_weight, "
            ":explanation)"
        )
        row = self._record_params(record)
        params = {
            key: row[key]
            for key in ("id", "confidence", "explanation", "metrics", "model_version")
        }

        with self._engine.begin() as conn:
            if conn.execute(update, params).rowcount != 1:
                return False
            conn.execute(
                text("DELETE FROM optimization_recommendations WHERE optimization_id = :id"),
                {"id": record.id},
            )
            rows = [
                {
                    "optimization_id": record.id,
                    "position": position,
                    "symbol": rec.symbol,
                    "action": rec.action.value,
                    "current_quantity": str(rec.current_quantity),
                    "target_quantity": str(rec.target_quantity),
                    "current_weight": str(rec.current_weight),
                    "target_weight": str(rec.target_weight),
                    "explanation": rec.explanation,
                }
                for position, rec in enumerate(record.recommendations)
            ]
            if rows:
                conn.execute(insert, rows)
        return True

    def transition(
        self,
        optimization_id: str,
        expected: Iterable[OptimizationStatus],
        new: OptimizationStatus,
        note: Optional[str] = None,
    ) -> bool:
        values = [s.value for s in expected]
        if not values:
            return False
        query = text(
            "UPDATE optimizations SET status = :new, explanation = explanation || :note "
            "WHERE id = :id AND status IN :expected"
        ).bindparams(bindparam("expected", expanding=True))
        with self._engine.begin() as conn:
            result = conn.execute(
                query,
                {
                    "id": optimization_id,
                    "new": new.value,
                    "note": note or "",
                    "expected": values,
                },
            )
        return result.rowcount == 1

    def mark_applied(self, optimization_id: str, applied_at: datetime) -> bool:
        query = text(
            "UPDATE optimizations SET status = 'applied', is_applied = 1, "
            "applied_at = :applied_at "
            "WHERE id = :id AND is_applied = 0 AND status = 'in_progress'"
        )
        with self._engine.begin() as conn:
            result = conn.execute(
                query, {"id": optimization_id, "applied_at": to_db_time(applied_at)}
            )
        return result.rowcount == 1
