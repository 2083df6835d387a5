from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ..db.base import ActiveSessionExists, SessionNotFound, SessionStore, TradeStore
from ..models.import_session import ImportSession, ImportSource, InvalidSessionTransition

"""Import session lifecycle service.

Owns every write to the session store: the per-user concurrency guard at
start, PROCESSING with the row count, per-batch progress and the terminal
status. Transitions themselves live on ImportSession; this module applies
them through SessionStore.update so each write is a transactional
read-modify-write.
"""

__all__ = [
    "ConcurrencyConflict",
    "STALE_SESSION_AFTER",
    "SessionManager",
]

logger = logging.getLogger(__name__)

STALE_SESSION_AFTER = timedelta(minutes=2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConcurrencyConflict(Exception):
    """Another import is already running for the user."""

    def __init__(self, user_id: str, active_session_id: str) -> None:
        self.user_id = user_id
        self.active_session_id = active_session_id
        super().__init__(
            f"Import already in progress (session: {active_session_id}). "
            "Please wait for the current import to complete."
        )


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        *,
        stale_after: timedelta = STALE_SESSION_AFTER,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.stale_after = stale_after
        self._clock = clock

    def start(
        self, user_id: str, source: ImportSource, file_name: str | None, file_size: int
    ) -> ImportSession:
        """Create a PENDING session unless the user already has a fresh active one.

        Raises:
            ConcurrencyConflict: a PENDING/PROCESSING session touched within the
                stale window exists for this user
        """
        now = self._clock()
        session = ImportSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            source=source,
            file_name=file_name,
            file_size=file_size,
            started_at=now,
            updated_at=now,
        )
        try:
            created = self.store.create_exclusive(session, stale_before=now - self.stale_after)
        except ActiveSessionExists as e:
            logger.warning("import rejected user=%s active_session=%s", user_id, e.session.id)
            raise ConcurrencyConflict(user_id, e.session.id) from e
        logger.info("session=%s created user=%s file=%s", created.id, user_id, file_name)
        return created

    def begin_processing(self, session_id: str, total_rows: int) -> ImportSession:
        now = self._clock()
        return self.store.update(session_id, lambda s: s.start_processing(total_rows, now))

    def advance(self, session_id: str, processed_rows: int) -> ImportSession:
        now = self._clock()
        return self.store.update(session_id, lambda s: s.advance(processed_rows, now))

    def _finish(self, session_id: str, transition: Callable[[ImportSession], ImportSession]) -> ImportSession:
        def apply(current: ImportSession) -> ImportSession:
            if current.status.is_terminal:
                # closed meanwhile (e.g. reclaimed as abandoned); keep the first terminal state
                logger.warning(
                    "session=%s already %s; final update ignored", current.id, current.status.value
                )
                return current
            return transition(current)

        return self.store.update(session_id, apply)

    def complete(
        self,
        session_id: str,
        *,
        imported_rows: int,
        skipped_rows: int,
        error_rows: int,
        duplicate_rows: int,
        errors: list[str],
        warnings: list[str],
    ) -> ImportSession:
        now = self._clock()
        return self._finish(
            session_id,
            lambda s: s.complete(
                imported_rows=imported_rows,
                skipped_rows=skipped_rows,
                error_rows=error_rows,
                duplicate_rows=duplicate_rows,
                errors=errors,
                warnings=warnings,
                now=now,
            ),
        )

    def fail(self, session_id: str, message: str) -> ImportSession:
        now = self._clock()
        return self._finish(session_id, lambda s: s.fail(message, now))

    # --- queries -------------------------------------------------------

    def get(self, session_id: str, user_id: str) -> ImportSession | None:
        session = self.store.get(session_id)
        if session is None or session.user_id != user_id:
            return None
        return session

    def history(self, user_id: str, limit: int = 10) -> list[ImportSession]:
        return self.store.list_for_user(user_id, limit)

    def delete(
        self,
        session_id: str,
        user_id: str,
        *,
        trade_store: TradeStore | None = None,
        delete_trades: bool = False,
    ) -> int:
        """Delete a finished session, optionally with the trades it imported.

        Returns:
            number of trades deleted
        Raises:
            SessionNotFound: unknown id or owned by another user
            InvalidSessionTransition: the session is still active
        """
        session = self.get(session_id, user_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status.is_active and not session.is_stale(self._clock() - self.stale_after):
            raise InvalidSessionTransition(f"session {session_id} is still {session.status.value}")
        deleted = 0
        if delete_trades:
            if trade_store is None:
                raise ValueError("trade_store is required when delete_trades=True")
            deleted = trade_store.delete_by_session(session_id)
        self.store.delete(session_id)
        logger.info("session=%s deleted (trades removed=%d)", session_id, deleted)
        return deleted
