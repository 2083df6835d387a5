from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.import_session import ImportSession, ImportSource, ImportStatus
from ..models.trade import DedupKey, Direction, NewTrade, NormalizedTrade, PersistedTrade, TradeResult
from .base import ActiveSessionExists, DuplicateKeyError, SessionNotFound, StoreError
from .memory import ABANDONED_MESSAGE

"""PostgreSQL stores (psycopg2).

Every operation borrows a connection from a ThreadedConnectionPool and runs in
its own transaction, so the executor's worker threads never share a
transaction. Unique violations on the trades dedup index surface as
DuplicateKeyError; any other driver error becomes StoreError.

The session guard serialises per user with pg_advisory_xact_lock and is backed
by the partial unique index import_sessions_one_active_per_user.
"""

__all__ = [
    "PostgresSessionStore",
    "PostgresTradeStore",
    "apply_schema",
    "create_pool",
]

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_TRADE_COLUMNS = (
    "id", "user_id", "account_id", "import_session_id", "strategy_id", "symbol", "direction",
    "quantity", "entry_price", "exit_price", "entry_date", "exit_date", "pnl", "commission",
    "net_pnl", "result", "efficiency", "mae", "mfe", "source_strategy", "source_account",
    "external_trade_number", "notes", "duration_minutes",
)

_SESSION_COLUMNS = (
    "id", "user_id", "source", "file_name", "file_size", "status", "total_rows",
    "processed_rows", "imported_rows", "skipped_rows", "error_rows", "duplicate_rows",
    "errors", "warnings", "started_at", "updated_at", "completed_at",
)


def create_pool(dsn: str, minconn: int = 1, maxconn: int = 8) -> ThreadedConnectionPool:
    try:
        return ThreadedConnectionPool(minconn, maxconn, dsn)
    except psycopg2.Error as e:
        raise StoreError(f"cannot connect: {e}") from e


def apply_schema(pool: ThreadedConnectionPool) -> None:
    """Create tables and indexes (idempotent)."""
    sql = SCHEMA_PATH.read_text(encoding="utf-8")
    conn = pool.getconn()
    try:
        with conn, conn.cursor() as cur:
            cur.execute(sql)
    finally:
        pool.putconn(conn)


class _PooledStore:
    def __init__(self, pool: ThreadedConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        conn = self._pool.getconn()
        try:
            # `with conn` commits on success and rolls back on exception
            with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
        finally:
            self._pool.putconn(conn)


def _float(value: Any) -> float | None:
    return None if value is None else float(value)


def _row_to_trade(row: dict[str, Any]) -> PersistedTrade:
    trade = NormalizedTrade(
        symbol=row["symbol"],
        direction=Direction(row["direction"]),
        quantity=float(row["quantity"]),
        entry_price=float(row["entry_price"]),
        entry_date=row["entry_date"],
        exit_price=_float(row["exit_price"]),
        exit_date=row["exit_date"],
        pnl=float(row["pnl"]),
        commission=float(row["commission"]),
        mae=float(row["mae"]),
        mfe=float(row["mfe"]),
        strategy=row["source_strategy"],
        account=row["source_account"],
        external_trade_number=row["external_trade_number"],
        notes=row["notes"],
        duration_minutes=row["duration_minutes"],
    )
    return PersistedTrade(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        import_session_id=row["import_session_id"],
        trade=trade,
        strategy_id=row["strategy_id"],
        net_pnl=float(row["net_pnl"]),
        result=TradeResult(row["result"]),
        efficiency=_float(row["efficiency"]),
        created_at=row["created_at"],
    )


class PostgresTradeStore(_PooledStore):
    def create(self, new_trade: NewTrade) -> PersistedTrade:
        t = new_trade.trade
        values = (
            str(uuid.uuid4()), new_trade.user_id, new_trade.account_id, new_trade.import_session_id,
            new_trade.strategy_id, t.symbol, t.direction.value, t.quantity, t.entry_price,
            t.exit_price, t.entry_date, t.exit_date, t.pnl, t.commission, new_trade.net_pnl,
            new_trade.result.value, new_trade.efficiency, t.mae, t.mfe, t.strategy, t.account,
            t.external_trade_number, t.notes, t.duration_minutes,
        )
        cols_sql = ",".join(_TRADE_COLUMNS)
        placeholders = ",".join(["%s"] * len(_TRADE_COLUMNS))
        try:
            with self._transaction() as cur:
                cur.execute(f"INSERT INTO trades ({cols_sql}) VALUES ({placeholders}) RETURNING *", values)
                return _row_to_trade(cur.fetchone())
        except pg_errors.UniqueViolation as e:
            raise DuplicateKeyError(str(e).strip()) from e
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def find_by_dedup_key(self, key: DedupKey, window: timedelta = timedelta(0)) -> PersistedTrade | None:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    SELECT * FROM trades
                    WHERE user_id = %s AND account_id = %s AND symbol = %s AND direction = %s
                      AND entry_price = %s AND quantity = %s
                      AND entry_date BETWEEN %s AND %s
                    ORDER BY abs(extract(epoch FROM entry_date - %s))
                    LIMIT 1
                    """,
                    (
                        key.user_id, key.account_id, key.symbol, key.direction.value,
                        key.entry_price, key.quantity,
                        key.entry_date - window, key.entry_date + window, key.entry_date,
                    ),
                )
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
        return _row_to_trade(row) if row else None

    def count(self, user_id: str, account_id: str) -> int:
        try:
            with self._transaction() as cur:
                cur.execute(
                    "SELECT count(*) AS n FROM trades WHERE user_id = %s AND account_id = %s",
                    (user_id, account_id),
                )
                return int(cur.fetchone()["n"])
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def ensure_strategy(self, user_id: str, name: str) -> str:
        try:
            with self._transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO strategies (id, user_id, name, description)
                    VALUES (%s, %s, %s, 'Imported from trade export')
                    ON CONFLICT (user_id, name) DO NOTHING
                    """,
                    (str(uuid.uuid4()), user_id, name),
                )
                cur.execute("SELECT id FROM strategies WHERE user_id = %s AND name = %s", (user_id, name))
                return cur.fetchone()["id"]
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def delete_by_session(self, session_id: str) -> int:
        try:
            with self._transaction() as cur:
                cur.execute("DELETE FROM trades WHERE import_session_id = %s", (session_id,))
                return cur.rowcount
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e


def _row_to_session(row: dict[str, Any]) -> ImportSession:
    return ImportSession(
        id=row["id"],
        user_id=row["user_id"],
        source=ImportSource(row["source"]),
        file_name=row["file_name"],
        file_size=row["file_size"],
        started_at=row["started_at"],
        status=ImportStatus(row["status"]),
        total_rows=row["total_rows"],
        processed_rows=row["processed_rows"],
        imported_rows=row["imported_rows"],
        skipped_rows=row["skipped_rows"],
        error_rows=row["error_rows"],
        duplicate_rows=row["duplicate_rows"],
        errors=list(row["errors"] or []),
        warnings=list(row["warnings"] or []),
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _session_values(s: ImportSession) -> tuple[Any, ...]:
    return (
        s.id, s.user_id, s.source.value, s.file_name, s.file_size, s.status.value, s.total_rows,
        s.processed_rows, s.imported_rows, s.skipped_rows, s.error_rows, s.duplicate_rows,
        Json(s.errors), Json(s.warnings), s.started_at, s.updated_at, s.completed_at,
    )


class PostgresSessionStore(_PooledStore):
    def _insert(self, cur: Any, session: ImportSession) -> None:
        cols_sql = ",".join(_SESSION_COLUMNS)
        placeholders = ",".join(["%s"] * len(_SESSION_COLUMNS))
        cur.execute(f"INSERT INTO import_sessions ({cols_sql}) VALUES ({placeholders})", _session_values(session))

    def _write(self, cur: Any, session: ImportSession) -> None:
        assignments = ",".join(f"{c} = %s" for c in _SESSION_COLUMNS[1:])
        cur.execute(
            f"UPDATE import_sessions SET {assignments} WHERE id = %s",
            (*_session_values(session)[1:], session.id),
        )

    def create_exclusive(self, session: ImportSession, stale_before: datetime) -> ImportSession:
        try:
            with self._transaction() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (session.user_id,))
                cur.execute(
                    """
                    SELECT * FROM import_sessions
                    WHERE user_id = %s AND status IN ('PENDING', 'PROCESSING')
                    ORDER BY started_at DESC
                    FOR UPDATE
                    """,
                    (session.user_id,),
                )
                active = [_row_to_session(r) for r in cur.fetchall()]
                for existing in active:
                    if not existing.is_stale(stale_before):
                        raise ActiveSessionExists(existing)
                for existing in active:
                    logger.warning("closing abandoned import session %s", existing.id)
                    self._write(cur, existing.fail(ABANDONED_MESSAGE, session.started_at))
                self._insert(cur, session)
        except pg_errors.UniqueViolation as e:
            raise StoreError(f"concurrent session insert for user {session.user_id}: {e}") from e
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
        return session

    def get(self, session_id: str) -> ImportSession | None:
        try:
            with self._transaction() as cur:
                cur.execute("SELECT * FROM import_sessions WHERE id = %s", (session_id,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
        return _row_to_session(row) if row else None

    def update(self, session_id: str, mutate: Callable[[ImportSession], ImportSession]) -> ImportSession:
        try:
            with self._transaction() as cur:
                cur.execute("SELECT * FROM import_sessions WHERE id = %s FOR UPDATE", (session_id,))
                row = cur.fetchone()
                if row is None:
                    raise SessionNotFound(session_id)
                updated = mutate(_row_to_session(row))
                self._write(cur, updated)
                return updated
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def list_for_user(self, user_id: str, limit: int = 10) -> list[ImportSession]:
        try:
            with self._transaction() as cur:
                cur.execute(
                    "SELECT * FROM import_sessions WHERE user_id = %s ORDER BY started_at DESC LIMIT %s",
                    (user_id, limit),
                )
                return [_row_to_session(r) for r in cur.fetchall()]
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def delete(self, session_id: str) -> None:
        try:
            with self._transaction() as cur:
                cur.execute("DELETE FROM import_sessions WHERE id = %s", (session_id,))
                if cur.rowcount == 0:
                    raise SessionNotFound(session_id)
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e
