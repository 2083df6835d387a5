from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from trade_import.db.base import ActiveSessionExists, DuplicateKeyError, SessionNotFound
from trade_import.db.memory import InMemorySessionStore, InMemoryTradeStore
from trade_import.models.import_session import ImportSession, ImportSource, ImportStatus
from trade_import.models.trade import DedupKey, Direction, NewTrade, NormalizedTrade, TradeResult

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
ENTRY = datetime(2024, 1, 15, 9, 30)


def _new_trade(entry: datetime = ENTRY, session_id: str | None = "s1", **kw) -> NewTrade:
    trade = NormalizedTrade(
        symbol="ES", direction=Direction.LONG, quantity=1, entry_price=5000.0, entry_date=entry,
        exit_price=5002.0, exit_date=entry + timedelta(minutes=10),
        pnl=kw.get("pnl", 100.0), commission=kw.get("commission", 4.2),
        mae=kw.get("mae", 0.0), mfe=kw.get("mfe", 0.0),
    )
    return NewTrade(user_id="u1", account_id="a1", import_session_id=session_id, trade=trade)


class TestInMemoryTradeStore:
    def test_create_derives_fields(self):
        store = InMemoryTradeStore()
        p = store.create(_new_trade())
        assert p.id
        assert p.net_pnl == pytest.approx(95.8)
        assert p.result is TradeResult.WIN
        assert store.count("u1", "a1") == 1

    def test_dedup_key_is_unique(self):
        store = InMemoryTradeStore()
        store.create(_new_trade())
        with pytest.raises(DuplicateKeyError):
            store.create(_new_trade(session_id="s2"))

    def test_concurrent_inserts_of_same_key_admit_one(self):
        store = InMemoryTradeStore()
        outcomes: list[str] = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                store.create(_new_trade())
                outcomes.append("ok")
            except DuplicateKeyError:
                outcomes.append("dup")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count("ok") == 1
        assert store.count("u1", "a1") == 1

    def test_find_with_window(self):
        store = InMemoryTradeStore()
        store.create(_new_trade())
        near = DedupKey.of("u1", "a1", _new_trade(ENTRY + timedelta(minutes=3)).trade)
        assert store.find_by_dedup_key(near) is None
        assert store.find_by_dedup_key(near, timedelta(minutes=5)) is not None

    def test_ensure_strategy_is_idempotent(self):
        store = InMemoryTradeStore()
        first = store.ensure_strategy("u1", "Breakout")
        assert store.ensure_strategy("u1", "Breakout") == first
        assert store.ensure_strategy("u2", "Breakout") != first

    def test_delete_by_session_frees_keys(self):
        store = InMemoryTradeStore()
        store.create(_new_trade(session_id="s1"))
        store.create(_new_trade(ENTRY + timedelta(hours=1), session_id="s2"))
        assert store.delete_by_session("s1") == 1
        assert store.count("u1", "a1") == 1
        store.create(_new_trade(session_id="s3"))  # key is free again


def test_efficiency_and_result_derivation():
    t = _new_trade(pnl=50.0, commission=50.0, mae=10.0, mfe=100.0)
    assert t.result is TradeResult.BREAKEVEN
    assert t.efficiency == pytest.approx(50.0)
    assert _new_trade(pnl=-10.0).result is TradeResult.LOSS
    assert _new_trade(mae=0.0, mfe=100.0).efficiency is None


def _session(sid: str, started: datetime, user: str = "u1") -> ImportSession:
    return ImportSession(
        id=sid, user_id=user, source=ImportSource.NT8_CSV, file_name="f.csv",
        file_size=1, started_at=started, updated_at=started,
    )


class TestInMemorySessionStore:
    def test_create_exclusive_rejects_fresh_active(self):
        store = InMemorySessionStore()
        store.create_exclusive(_session("a", T0), stale_before=T0 - timedelta(minutes=2))
        with pytest.raises(ActiveSessionExists) as exc:
            store.create_exclusive(_session("b", T0), stale_before=T0 - timedelta(minutes=2))
        assert exc.value.session.id == "a"
        assert store.get("b") is None

    def test_create_exclusive_closes_stale(self):
        store = InMemorySessionStore()
        store.create_exclusive(_session("a", T0), stale_before=T0 - timedelta(minutes=2))
        later = T0 + timedelta(minutes=3)
        store.create_exclusive(_session("b", later), stale_before=later - timedelta(minutes=2))
        assert store.get("a").status is ImportStatus.FAILED
        assert store.get("b").status is ImportStatus.PENDING

    def test_guard_is_atomic_under_threads(self):
        store = InMemorySessionStore()
        barrier = threading.Barrier(6)
        created: list[str] = []

        def worker(i: int):
            barrier.wait()
            try:
                store.create_exclusive(_session(f"s{i}", T0), stale_before=T0 - timedelta(minutes=2))
                created.append(f"s{i}")
            except ActiveSessionExists:
                pass

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(created) == 1

    def test_update_and_delete_unknown(self):
        store = InMemorySessionStore()
        with pytest.raises(SessionNotFound):
            store.update("nope", lambda s: s)
        with pytest.raises(SessionNotFound):
            store.delete("nope")

    def test_update_applies_mutation(self):
        store = InMemorySessionStore()
        store.create_exclusive(_session("a", T0), stale_before=T0)
        updated = store.update("a", lambda s: s.start_processing(3, T0))
        assert updated.status is ImportStatus.PROCESSING
        assert store.get("a").total_rows == 3
