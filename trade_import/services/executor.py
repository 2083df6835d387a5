from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from ..db.base import DuplicateKeyError, SessionStore, StoreError, TradeStore
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig
from ..models.error_record import ErrorRecord
from ..models.import_session import ImportSession, ImportStatus
from ..models.processing_result import (
    BatchStatsAccumulator,
    ImportResult,
    PreviewResult,
    RowOutcome,
    RowResult,
)
from ..models.row_data import RawRecord
from ..models.trade import DedupKey, NewTrade
from ..models.validation import ValidationResult
from ..parsing.reader import ExportFile, InputFormatError, check_header, detect_source, read_export
from ..parsing.record_parser import RecordParser, get_field_value
from .commission import CommissionSchedule
from .duplicates import DuplicateDetector
from .progress import ProgressTracker
from .sessions import SessionManager
from .validator import validate_trade

"""Import pipeline: preview and execute.

execute_import() flow:
1. Session guard (SessionManager.start) - ConcurrencyConflict before any row is read
2. Read the export - InputFormatError marks the session FAILED and is re-raised
3. PROCESSING with total_rows, strategies named in the file are pre-created
4. Fixed-size batches: rows are evaluated in order (parse -> validate -> dedupe),
   accepted rows are inserted in parallel, then processed_rows is advanced
5. Finalize with counts, messages and the terminal status

preview_import() runs the same evaluation without persisting anything and
without touching the session store.

Row failures never abort a run; they are RowResult values aggregated into the
session. Only the two fatal errors above escape; any other exception after the
session exists closes it as FAILED and is reported in the returned ImportResult.
"""

__all__ = [
    "ImportPipeline",
    "REQUIRED_FIELDS",
]

logger = logging.getLogger(__name__)

# logical fields that must have at least one alias in the header
REQUIRED_FIELDS = ("entry_time", "instrument", "quantity", "entry_price", "direction")

PARSE_ERROR = "ROW_PARSE_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"

DUPLICATE_MESSAGE = "Duplicate trade (already imported)"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _chunks(records: Sequence[RawRecord], size: int) -> Iterator[Sequence[RawRecord]]:
    for start in range(0, len(records), size):
        yield records[start:start + size]


class ImportPipeline:
    """Public entry point of the importer, bound to a trade store and a session store."""

    def __init__(
        self,
        trade_store: TradeStore,
        session_store: SessionStore,
        config: ImportConfig | None = None,
        *,
        error_log: ErrorLogBuffer | None = None,
        clock: Callable[[], datetime] = _utcnow,
        show_progress: bool | None = False,
    ) -> None:
        self.config = config or ImportConfig()
        self.trades = trade_store
        self.sessions = SessionManager(
            session_store,
            stale_after=timedelta(seconds=self.config.stale_session_seconds),
            clock=clock,
        )
        self._tz = ZoneInfo(self.config.timezone)
        self.parser = RecordParser(
            self.config.field_mapping,
            CommissionSchedule(self.config.commission_rates, self.config.default_commission),
            future_threshold_days=self.config.future_date_threshold_days,
            tz=self._tz,
        )
        self.error_log = error_log
        self.show_progress = show_progress
        self._clock = clock

    # --- helpers -------------------------------------------------------

    def _wall_clock_now(self) -> datetime:
        """'Now' in the export's wall-clock time (naive), the reference for year correction."""
        return self._clock().astimezone(self._tz).replace(tzinfo=None)

    def _read(self, file_bytes: bytes, file_name: str | None) -> ExportFile:
        export = read_export(file_bytes, file_name, delimiter=self.config.delimiter)
        mapping = self.config.field_mapping
        check_header(export.columns, {name: getattr(mapping, name) for name in REQUIRED_FIELDS})
        return export

    def _record_error(self, file_name: str | None, session_id: str, row: int, error_type: str, message: str) -> None:
        if self.error_log is not None:
            self.error_log.append(
                ErrorRecord.create(
                    file=file_name or "<upload>",
                    session_id=session_id,
                    row=row,
                    error_type=error_type,
                    message=message,
                )
            )

    def _evaluate(
        self,
        record: RawRecord,
        user_id: str,
        account_id: str,
        detector: DuplicateDetector,
        now: datetime,
    ) -> RowResult:
        """Classify one row without persisting it. Accepted rows come back as VALID."""
        parsed = self.parser.parse(record, now)
        if parsed.trade is None:
            return RowResult(
                row_number=record.row_number,
                outcome=RowOutcome.ERROR,
                validation=ValidationResult.parse_failure(parsed.error or "Failed to parse trade data"),
                error_type=PARSE_ERROR,
                messages=[parsed.error or "Failed to parse trade data"],
            )

        validation = validate_trade(parsed.trade)
        if not validation.is_valid:
            return RowResult(
                row_number=record.row_number,
                outcome=RowOutcome.ERROR,
                validation=validation,
                trade=parsed.trade,
                error_type=VALIDATION_ERROR,
                messages=[e.message for e in validation.errors],
            )

        key = DedupKey.of(user_id, account_id, parsed.trade)
        if detector.is_duplicate(key):
            return RowResult(
                row_number=record.row_number,
                outcome=RowOutcome.DUPLICATE,
                validation=replace(validation, is_duplicate=True),
                trade=parsed.trade,
                messages=[DUPLICATE_MESSAGE],
            )
        detector.remember(key)
        return RowResult(
            row_number=record.row_number,
            outcome=RowOutcome.VALID,
            validation=validation,
            trade=parsed.trade,
            messages=list(validation.warnings),
        )

    def _persist(self, row: RowResult, new_trade: NewTrade) -> RowResult:
        try:
            persisted = self.trades.create(new_trade)
        except DuplicateKeyError:
            # lost a race against a concurrent insert of the same key
            logger.debug("row=%d rejected by dedup constraint", row.row_number)
            return replace(
                row,
                outcome=RowOutcome.DUPLICATE,
                validation=replace(row.validation, is_duplicate=True),
                messages=[DUPLICATE_MESSAGE],
            )
        except StoreError as e:
            logger.warning("row=%d persistence failed: %s", row.row_number, e)
            return replace(
                row,
                outcome=RowOutcome.ERROR,
                error_type=PERSISTENCE_ERROR,
                messages=[f"Failed to save trade: {e}"],
            )
        return replace(row, outcome=RowOutcome.IMPORTED, trade_id=persisted.id)

    def _ensure_strategies(self, records: Sequence[RawRecord], user_id: str) -> dict[str, str]:
        names = {
            name
            for record in records
            if (name := get_field_value(record, self.config.field_mapping.strategy))
        }
        ids = {name: self.trades.ensure_strategy(user_id, name) for name in sorted(names)}
        if ids:
            logger.info("strategies ready: %d", len(ids))
        return ids

    # --- public operations ---------------------------------------------

    def preview_import(
        self, file_bytes: bytes, user_id: str, account_id: str, file_name: str | None = None
    ) -> PreviewResult:
        """Dry run: classify every row as the execute pass would, without writing anything.

        Raises:
            InputFormatError: unreadable export or missing required columns
        """
        export = self._read(file_bytes, file_name)
        detector = DuplicateDetector.from_config(self.trades, self.config)
        now = self._wall_clock_now()
        rows = [self._evaluate(r, user_id, account_id, detector, now) for r in export.records]
        for row in rows:
            if row.is_error:
                self._record_error(file_name, "", row.row_number, row.error_type or PARSE_ERROR, "; ".join(row.messages))

        result = PreviewResult(
            total=len(rows),
            valid=sum(1 for r in rows if r.outcome is RowOutcome.VALID),
            duplicates=sum(1 for r in rows if r.is_duplicate),
            errors=sum(1 for r in rows if r.is_error),
            rows=rows,
        )
        logger.info(
            "preview file=%s total=%d valid=%d duplicates=%d errors=%d",
            file_name, result.total, result.valid, result.duplicates, result.errors,
        )
        return result

    def execute_import(
        self, file_bytes: bytes, user_id: str, account_id: str, file_name: str | None = None
    ) -> ImportResult:
        """Import an export for one user/account.

        Raises:
            ConcurrencyConflict: another import is active for the user
            InputFormatError: unreadable export or missing required columns
        """
        started = time.perf_counter()
        session = self.sessions.start(
            user_id, detect_source(file_bytes, file_name), file_name, len(file_bytes)
        )

        try:
            export = self._read(file_bytes, file_name)
        except InputFormatError as e:
            logger.error("session=%s unreadable export: %s", session.id, e)
            self._record_error(file_name, session.id, -1, "INPUT_FORMAT_ERROR", str(e))
            self.sessions.fail(session.id, f"Import failed: {e}")
            raise

        rows: list[RowResult] = []
        stats = BatchStatsAccumulator()
        try:
            session = self.sessions.begin_processing(session.id, len(export.records))
            strategy_ids = self._ensure_strategies(export.records, user_id)
            self._run_batches(export.records, session, user_id, account_id, strategy_ids, rows, stats)
        except Exception as e:
            logger.exception("session=%s aborted", session.id)
            self._record_error(file_name, session.id, -1, "UNEXPECTED_ERROR", str(e))
            final = self.sessions.fail(session.id, f"Import failed: {e}")
            return self._result(final, rows, stats, started)

        for row in rows:
            if row.is_error:
                self._record_error(
                    file_name, session.id, row.row_number, row.error_type or PARSE_ERROR, "; ".join(row.messages)
                )

        imported = sum(1 for r in rows if r.outcome is RowOutcome.IMPORTED)
        duplicates = sum(1 for r in rows if r.is_duplicate)
        errors = sum(1 for r in rows if r.is_error)
        final = self.sessions.complete(
            session.id,
            imported_rows=imported,
            skipped_rows=duplicates,
            error_rows=errors,
            duplicate_rows=duplicates,
            errors=[f"Row {r.row_number}: {m}" for r in rows if r.is_error for m in r.messages],
            warnings=[
                f"Row {r.row_number}: {w}"
                for r in rows
                if r.outcome is RowOutcome.IMPORTED
                for w in r.validation.warnings
            ],
        )
        result = self._result(final, rows, stats, started)
        logger.info(
            "session=%s %s imported=%d duplicates=%d errors=%d elapsed=%.2fs",
            final.id, final.status.value, imported, duplicates, errors, result.elapsed_seconds,
        )
        return result

    def _run_batches(
        self,
        records: Sequence[RawRecord],
        session: ImportSession,
        user_id: str,
        account_id: str,
        strategy_ids: dict[str, str],
        rows: list[RowResult],
        stats: BatchStatsAccumulator,
    ) -> None:
        detector = DuplicateDetector.from_config(self.trades, self.config)
        now = self._wall_clock_now()
        processed = 0
        with ProgressTracker(len(records), enabled=self.show_progress) as progress, ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="trade-insert"
        ) as pool:
            for batch_no, batch in enumerate(_chunks(records, self.config.batch_size), start=1):
                batch_start = time.perf_counter()
                evaluated = [self._evaluate(r, user_id, account_id, detector, now) for r in batch]

                futures = {}
                for index, row in enumerate(evaluated):
                    if row.outcome is not RowOutcome.VALID:
                        continue
                    assert row.trade is not None
                    new_trade = NewTrade(
                        user_id=user_id,
                        account_id=account_id,
                        import_session_id=session.id,
                        trade=row.trade,
                        strategy_id=strategy_ids.get(row.trade.strategy or ""),
                    )
                    futures[index] = pool.submit(self._persist, row, new_trade)
                for index, future in futures.items():
                    evaluated[index] = future.result()

                rows.extend(evaluated)
                processed += len(batch)
                self.sessions.advance(session.id, processed)

                elapsed = time.perf_counter() - batch_start
                stats.add_batch_time(elapsed)
                progress.update(len(batch))
                progress.set_postfix(
                    imported=sum(1 for r in rows if r.outcome is RowOutcome.IMPORTED),
                    errors=sum(1 for r in rows if r.is_error),
                )
                logger.debug(
                    "session=%s batch=%d rows=%d processed=%d/%d elapsed=%.3fs",
                    session.id, batch_no, len(batch), processed, len(records), elapsed,
                )

    def _result(
        self,
        session: ImportSession,
        rows: list[RowResult],
        stats: BatchStatsAccumulator,
        started: float,
    ) -> ImportResult:
        total_batches, avg_batch, p95_batch = stats.get_stats()
        status = session.status if session.status.is_terminal else ImportStatus.FAILED
        return ImportResult(
            session_id=session.id,
            status=status,
            total=session.total_rows,
            imported=sum(1 for r in rows if r.outcome is RowOutcome.IMPORTED),
            duplicates=sum(1 for r in rows if r.is_duplicate),
            errors=sum(1 for r in rows if r.is_error),
            skipped=sum(1 for r in rows if r.is_duplicate),
            rows=rows,
            error_messages=list(session.errors),
            warnings=list(session.warnings),
            elapsed_seconds=time.perf_counter() - started,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )

    # --- session queries -------------------------------------------------

    def get_session(self, session_id: str, user_id: str) -> ImportSession | None:
        return self.sessions.get(session_id, user_id)

    def list_sessions(self, user_id: str, limit: int = 10) -> list[ImportSession]:
        return self.sessions.history(user_id, limit)

    def delete_session(self, session_id: str, user_id: str, delete_trades: bool = False) -> int:
        return self.sessions.delete(
            session_id, user_id, trade_store=self.trades, delete_trades=delete_trades
        )
