from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from ..models.import_session import ImportSession
from ..models.trade import DedupKey, NewTrade, PersistedTrade

"""Store contracts consumed by the import pipeline.

The pipeline only relies on these operations; PostgreSQL (db/postgres.py) and
in-memory (db/memory.py) implementations are provided.

Trade store: the uniqueness of the dedup key is enforced by the store itself;
create() reports a violation with DuplicateKeyError.

Session store: create_exclusive() is the per-user singleton guard. The check
for an active session and the insert of the new one happen in a single
transaction, and update() is a transactional read-modify-write.
"""

__all__ = [
    "ActiveSessionExists",
    "DuplicateKeyError",
    "SessionNotFound",
    "SessionStore",
    "StoreError",
    "TradeStore",
]


class StoreError(Exception):
    """Unexpected persistence failure."""


class DuplicateKeyError(StoreError):
    """The store's dedup-key uniqueness constraint rejected an insert."""


class SessionNotFound(StoreError):
    pass


class ActiveSessionExists(StoreError):
    """A fresh PENDING/PROCESSING session already exists for the user."""

    def __init__(self, session: ImportSession) -> None:
        self.session = session
        super().__init__(f"active import session {session.id} ({session.status.value})")


class TradeStore(Protocol):
    def create(self, new_trade: NewTrade) -> PersistedTrade:
        """Insert a trade. Raises DuplicateKeyError on dedup-key conflict, StoreError otherwise."""
        ...

    def find_by_dedup_key(self, key: DedupKey, window: timedelta = timedelta(0)) -> PersistedTrade | None:
        """Return a stored trade matching the key with entry_date within ±window."""
        ...

    def count(self, user_id: str, account_id: str) -> int:
        ...

    def ensure_strategy(self, user_id: str, name: str) -> str:
        """Return the id of the user's strategy called `name`, creating it when absent."""
        ...

    def delete_by_session(self, session_id: str) -> int:
        ...


class SessionStore(Protocol):
    def create_exclusive(self, session: ImportSession, stale_before: datetime) -> ImportSession:
        """Insert `session` unless the user has a fresh active session.

        Active sessions last touched before `stale_before` are closed as FAILED
        in the same transaction. Raises ActiveSessionExists otherwise.
        """
        ...

    def get(self, session_id: str) -> ImportSession | None:
        ...

    def update(self, session_id: str, mutate: Callable[[ImportSession], ImportSession]) -> ImportSession:
        """Apply `mutate` to the current row and persist the result atomically."""
        ...

    def list_for_user(self, user_id: str, limit: int = 10) -> list[ImportSession]:
        ...

    def delete(self, session_id: str) -> None:
        ...
