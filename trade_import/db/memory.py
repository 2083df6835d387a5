from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ..models.import_session import ImportSession
from ..models.trade import DedupKey, NewTrade, PersistedTrade
from .base import ActiveSessionExists, DuplicateKeyError, SessionNotFound

"""In-memory stores.

Used by the test-suite and by the CLI when DISABLE_DB_CONNECT=1 (preview only
workflows). They honour the same contract as the PostgreSQL stores: the exact
dedup key is unique, the session guard is atomic, and every method is safe to
call from the executor's worker threads.
"""

__all__ = [
    "InMemorySessionStore",
    "InMemoryTradeStore",
]

ABANDONED_MESSAGE = "Import abandoned: no progress within the stale-session window"


class InMemoryTradeStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._trades: dict[str, PersistedTrade] = {}
        self._keys: dict[DedupKey, str] = {}
        self._strategies: dict[tuple[str, str], str] = {}

    def create(self, new_trade: NewTrade) -> PersistedTrade:
        key = new_trade.dedup_key
        with self._lock:
            if key in self._keys:
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint (trade {self._keys[key]})"
                )
            persisted = PersistedTrade(
                id=str(uuid.uuid4()),
                user_id=new_trade.user_id,
                account_id=new_trade.account_id,
                import_session_id=new_trade.import_session_id,
                trade=new_trade.trade,
                strategy_id=new_trade.strategy_id,
                net_pnl=new_trade.net_pnl,
                result=new_trade.result,
                efficiency=new_trade.efficiency,
                created_at=datetime.now(UTC),
            )
            self._trades[persisted.id] = persisted
            self._keys[key] = persisted.id
            return persisted

    def find_by_dedup_key(self, key: DedupKey, window: timedelta = timedelta(0)) -> PersistedTrade | None:
        with self._lock:
            if window <= timedelta(0):
                trade_id = self._keys.get(key)
                return self._trades[trade_id] if trade_id else None
            for stored_key, trade_id in self._keys.items():
                if stored_key.bucket == key.bucket and abs(stored_key.entry_date - key.entry_date) <= window:
                    return self._trades[trade_id]
        return None

    def count(self, user_id: str, account_id: str) -> int:
        with self._lock:
            return sum(
                1 for t in self._trades.values() if t.user_id == user_id and t.account_id == account_id
            )

    def ensure_strategy(self, user_id: str, name: str) -> str:
        with self._lock:
            return self._strategies.setdefault((user_id, name), str(uuid.uuid4()))

    def delete_by_session(self, session_id: str) -> int:
        with self._lock:
            doomed = [t for t in self._trades.values() if t.import_session_id == session_id]
            for t in doomed:
                del self._trades[t.id]
                self._keys.pop(DedupKey.of(t.user_id, t.account_id, t.trade), None)
            return len(doomed)

    def all(self) -> list[PersistedTrade]:
        with self._lock:
            return list(self._trades.values())


class InMemorySessionStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, ImportSession] = {}

    def create_exclusive(self, session: ImportSession, stale_before: datetime) -> ImportSession:
        with self._lock:
            active = sorted(
                (s for s in self._sessions.values() if s.user_id == session.user_id and s.status.is_active),
                key=lambda s: s.started_at,
                reverse=True,
            )
            for existing in active:
                if not existing.is_stale(stale_before):
                    raise ActiveSessionExists(existing)
            for existing in active:
                self._sessions[existing.id] = existing.fail(ABANDONED_MESSAGE, session.started_at)
            self._sessions[session.id] = session
            return session

    def get(self, session_id: str) -> ImportSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def update(self, session_id: str, mutate: Callable[[ImportSession], ImportSession]) -> ImportSession:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFound(session_id)
            updated = mutate(current)
            self._sessions[session_id] = updated
            return updated

    def list_for_user(self, user_id: str, limit: int = 10) -> list[ImportSession]:
        with self._lock:
            owned = [s for s in self._sessions.values() if s.user_id == user_id]
        owned.sort(key=lambda s: s.started_at, reverse=True)
        return owned[:limit]

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFound(session_id)
