from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from psycopg2 import errors as pg_errors

from trade_import.db.base import ActiveSessionExists, DuplicateKeyError, SessionNotFound, StoreError
from trade_import.db.postgres import PostgresSessionStore, PostgresTradeStore
from trade_import.models.import_session import ImportSession, ImportSource, ImportStatus
from trade_import.models.trade import DedupKey, Direction, NewTrade, NormalizedTrade

"""PostgreSQL stores against a fake pool/connection/cursor (no database)."""

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
ENTRY = datetime(2024, 1, 15, 9, 30)


class FakeCursor:
    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn
        self.rowcount = 0

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: Any) -> None:
        pass

    def execute(self, sql: str, params: Any = None) -> None:
        self.conn.executed.append((" ".join(sql.split()), params))
        if self.conn.raise_on_execute is not None:
            raise self.conn.raise_on_execute
        self.rowcount = self.conn.rowcount

    def fetchone(self) -> dict[str, Any] | None:
        return self.conn.fetchone_rows.pop(0) if self.conn.fetchone_rows else None

    def fetchall(self) -> list[dict[str, Any]]:
        return self.conn.fetchall_rows


class FakeConn:
    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.fetchone_rows: list[dict[str, Any]] = []
        self.fetchall_rows: list[dict[str, Any]] = []
        self.raise_on_execute: Exception | None = None
        self.rowcount = 0
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self) -> FakeConn:
        return self

    def __exit__(self, exc_type: Any, *exc: Any) -> None:
        if exc_type is None:
            self.commits += 1
        else:
            self.rollbacks += 1

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)


class FakePool:
    def __init__(self) -> None:
        self.conn = FakeConn()
        self.returned = 0

    def getconn(self) -> FakeConn:
        return self.conn

    def putconn(self, conn: FakeConn) -> None:
        self.returned += 1


def _new_trade() -> NewTrade:
    return NewTrade(
        user_id="u1", account_id="a1", import_session_id="s1", strategy_id="st1",
        trade=NormalizedTrade(
            symbol="ES", direction=Direction.LONG, quantity=1, entry_price=5000.0, entry_date=ENTRY,
            exit_price=5002.0, exit_date=ENTRY + timedelta(minutes=10), pnl=100.0, commission=4.2,
        ),
    )


def _trade_row(**kw) -> dict[str, Any]:
    row = {
        "id": "t1", "user_id": "u1", "account_id": "a1", "import_session_id": "s1", "strategy_id": "st1",
        "symbol": "ES", "direction": "LONG", "quantity": 1, "entry_price": 5000.0, "exit_price": 5002.0,
        "entry_date": ENTRY, "exit_date": ENTRY + timedelta(minutes=10), "pnl": 100.0, "commission": 4.2,
        "net_pnl": 95.8, "result": "WIN", "efficiency": None, "mae": 0, "mfe": 0,
        "source_strategy": None, "source_account": None, "external_trade_number": None, "notes": None,
        "duration_minutes": 10, "created_at": T0,
    }
    row.update(kw)
    return row


def _session_row(sid: str = "s1", status: str = "PENDING", updated_at: datetime = T0) -> dict[str, Any]:
    return {
        "id": sid, "user_id": "u1", "source": "NT8_CSV", "file_name": "f.csv", "file_size": 1,
        "status": status, "total_rows": 0, "processed_rows": 0, "imported_rows": 0, "skipped_rows": 0,
        "error_rows": 0, "duplicate_rows": 0, "errors": [], "warnings": [], "started_at": T0,
        "updated_at": updated_at, "completed_at": None,
    }


class TestPostgresTradeStore:
    def test_create_inserts_and_maps_row(self):
        pool = FakePool()
        pool.conn.fetchone_rows = [_trade_row()]
        persisted = PostgresTradeStore(pool).create(_new_trade())
        sql, params = pool.conn.executed[0]
        assert sql.startswith("INSERT INTO trades")
        assert "RETURNING *" in sql
        assert "LONG" in params
        assert persisted.id == "t1"
        assert persisted.trade.direction is Direction.LONG
        assert pool.conn.commits == 1
        assert pool.returned == 1

    def test_unique_violation_becomes_duplicate_key_error(self):
        pool = FakePool()
        pool.conn.raise_on_execute = pg_errors.UniqueViolation("duplicate key value")
        with pytest.raises(DuplicateKeyError):
            PostgresTradeStore(pool).create(_new_trade())
        assert pool.conn.rollbacks == 1
        assert pool.returned == 1

    def test_other_driver_errors_become_store_error(self):
        pool = FakePool()
        pool.conn.raise_on_execute = pg_errors.NotNullViolation("null value")
        with pytest.raises(StoreError) as exc:
            PostgresTradeStore(pool).create(_new_trade())
        assert not isinstance(exc.value, DuplicateKeyError)

    def test_find_uses_window_bounds(self):
        pool = FakePool()
        key = DedupKey.of("u1", "a1", _new_trade().trade)
        assert PostgresTradeStore(pool).find_by_dedup_key(key, timedelta(minutes=5)) is None
        _, params = pool.conn.executed[0]
        assert params[6] == ENTRY - timedelta(minutes=5)
        assert params[7] == ENTRY + timedelta(minutes=5)

    def test_ensure_strategy_upserts_then_selects(self):
        pool = FakePool()
        pool.conn.fetchone_rows = [{"id": "st9"}]
        assert PostgresTradeStore(pool).ensure_strategy("u1", "Breakout") == "st9"
        assert "ON CONFLICT (user_id, name) DO NOTHING" in pool.conn.executed[0][0]


class TestPostgresSessionStore:
    def _session(self, sid: str = "new") -> ImportSession:
        return ImportSession(
            id=sid, user_id="u1", source=ImportSource.NT8_CSV, file_name="f.csv",
            file_size=1, started_at=T0, updated_at=T0,
        )

    def test_create_exclusive_takes_advisory_lock_and_inserts(self):
        pool = FakePool()
        PostgresSessionStore(pool).create_exclusive(self._session(), stale_before=T0 - timedelta(minutes=2))
        statements = [sql for sql, _ in pool.conn.executed]
        assert statements[0].startswith("SELECT pg_advisory_xact_lock")
        assert "FOR UPDATE" in statements[1]
        assert statements[2].startswith("INSERT INTO import_sessions")

    def test_create_exclusive_rejects_fresh_active(self):
        pool = FakePool()
        pool.conn.fetchall_rows = [_session_row("old", "PROCESSING", updated_at=T0 - timedelta(seconds=30))]
        with pytest.raises(ActiveSessionExists):
            PostgresSessionStore(pool).create_exclusive(self._session(), stale_before=T0 - timedelta(minutes=2))
        assert pool.conn.rollbacks == 1

    def test_create_exclusive_closes_stale_in_same_transaction(self):
        pool = FakePool()
        pool.conn.fetchall_rows = [_session_row("old", "PROCESSING", updated_at=T0 - timedelta(minutes=10))]
        PostgresSessionStore(pool).create_exclusive(self._session(), stale_before=T0 - timedelta(minutes=2))
        statements = [sql for sql, _ in pool.conn.executed]
        assert statements[2].startswith("UPDATE import_sessions")
        assert "FAILED" in pool.conn.executed[2][1]
        assert statements[3].startswith("INSERT INTO import_sessions")
        assert pool.conn.commits == 1

    def test_update_reads_for_update_and_writes(self):
        pool = FakePool()
        pool.conn.fetchone_rows = [_session_row()]
        updated = PostgresSessionStore(pool).update("s1", lambda s: s.start_processing(5, T0))
        assert updated.status is ImportStatus.PROCESSING
        assert pool.conn.executed[0][0].endswith("FOR UPDATE")
        assert pool.conn.executed[1][0].startswith("UPDATE import_sessions SET")

    def test_update_missing_session(self):
        pool = FakePool()
        with pytest.raises(SessionNotFound):
            PostgresSessionStore(pool).update("nope", lambda s: s)

    def test_delete_missing_session(self):
        pool = FakePool()
        pool.conn.rowcount = 0
        with pytest.raises(SessionNotFound):
            PostgresSessionStore(pool).delete("nope")


class TestDriverErrorsAreWrapped:
    @pytest.mark.parametrize(
        "call",
        [
            lambda pool: PostgresTradeStore(pool).count("u1", "a1"),
            lambda pool: PostgresTradeStore(pool).delete_by_session("s1"),
            lambda pool: PostgresSessionStore(pool).get("s1"),
            lambda pool: PostgresSessionStore(pool).list_for_user("u1"),
            lambda pool: PostgresSessionStore(pool).delete("s1"),
        ],
        ids=["count", "delete_by_session", "get", "list_for_user", "delete"],
    )
    def test_operational_error_becomes_store_error(self, call):
        pool = FakePool()
        pool.conn.raise_on_execute = pg_errors.AdminShutdown("terminating connection")
        with pytest.raises(StoreError, match="terminating connection"):
            call(pool)
        assert pool.conn.rollbacks == 1
        assert pool.returned == 1
