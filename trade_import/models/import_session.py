from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

"""ImportSession domain model and ImportStatus state machine.

The ImportSession is the durable record of one import attempt. It is created
PENDING when the import starts, moves to PROCESSING once the row count is
known and ends in exactly one terminal status. Every transition returns a new
frozen instance; the session store persists it.

State transitions: PENDING → PROCESSING → (COMPLETED | PARTIAL | FAILED)
                   PENDING → FAILED  (file unreadable, unexpected error)
"""

__all__ = [
    "ImportSession",
    "ImportSource",
    "ImportStatus",
    "InvalidSessionTransition",
    "resolve_terminal_status",
]


class ImportStatus(Enum):
    """Status enum for the import session lifecycle.

    - PENDING: session created, file not read yet
    - PROCESSING: row count known, batches running
    - COMPLETED: every row imported
    - PARTIAL: some rows imported
    - FAILED: nothing imported from a non-empty file, or an unrecoverable error
    """
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


_TERMINAL = frozenset({ImportStatus.COMPLETED, ImportStatus.PARTIAL, ImportStatus.FAILED})


class ImportSource(Enum):
    NT8_CSV = "NT8_CSV"
    NT8_EXCEL = "NT8_EXCEL"


class InvalidSessionTransition(Exception):
    """Raised when a transition is attempted from a status that does not allow it."""


def resolve_terminal_status(total_rows: int, imported_rows: int) -> ImportStatus:
    """Map final counts to a terminal status.

    >>> resolve_terminal_status(10, 10).value
    'COMPLETED'
    >>> resolve_terminal_status(10, 4).value
    'PARTIAL'
    >>> resolve_terminal_status(10, 0).value
    'FAILED'
    """
    if imported_rows == total_rows:
        return ImportStatus.COMPLETED
    if imported_rows == 0:
        return ImportStatus.FAILED
    return ImportStatus.PARTIAL


@dataclass(frozen=True)
class ImportSession:
    """Processing record for one import attempt of one user."""
    id: str
    user_id: str
    source: ImportSource
    file_name: str | None
    file_size: int
    started_at: datetime
    status: ImportStatus = ImportStatus.PENDING
    total_rows: int = 0
    processed_rows: int = 0
    imported_rows: int = 0
    skipped_rows: int = 0
    error_rows: int = 0
    duplicate_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.started_at

    def is_stale(self, stale_before: datetime) -> bool:
        """A non-terminal session untouched since before `stale_before` is abandoned."""
        return self.status.is_active and self.last_activity < stale_before

    def _require(self, *allowed: ImportStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise InvalidSessionTransition(
                f"session {self.id} is {self.status.value}; expected one of: {names}"
            )

    def start_processing(self, total_rows: int, now: datetime) -> ImportSession:
        self._require(ImportStatus.PENDING)
        if total_rows < 0:
            raise ValueError("total_rows must be >= 0")
        return replace(
            self, status=ImportStatus.PROCESSING, total_rows=total_rows, updated_at=now
        )

    def advance(self, processed_rows: int, now: datetime) -> ImportSession:
        """Record batch progress. processed_rows never goes backwards nor past total_rows."""
        self._require(ImportStatus.PROCESSING)
        processed = min(max(self.processed_rows, processed_rows), self.total_rows)
        return replace(self, processed_rows=processed, updated_at=now)

    def complete(
        self,
        *,
        imported_rows: int,
        skipped_rows: int,
        error_rows: int,
        duplicate_rows: int,
        errors: list[str],
        warnings: list[str],
        now: datetime,
    ) -> ImportSession:
        self._require(ImportStatus.PROCESSING)
        processed = imported_rows + skipped_rows + error_rows
        if processed > self.total_rows:
            raise ValueError(
                f"row counts ({processed}) exceed total_rows ({self.total_rows})"
            )
        return replace(
            self,
            status=resolve_terminal_status(self.total_rows, imported_rows),
            processed_rows=max(self.processed_rows, processed),
            imported_rows=imported_rows,
            skipped_rows=skipped_rows,
            error_rows=error_rows,
            duplicate_rows=duplicate_rows,
            errors=list(errors),
            warnings=list(warnings),
            updated_at=now,
            completed_at=now,
        )

    def fail(self, message: str, now: datetime) -> ImportSession:
        self._require(ImportStatus.PENDING, ImportStatus.PROCESSING)
        return replace(
            self,
            status=ImportStatus.FAILED,
            errors=[*self.errors, message],
            updated_at=now,
            completed_at=now,
        )
