from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from enum import Enum

from .import_session import ImportStatus
from .trade import NormalizedTrade
from .validation import ValidationResult

"""Processing result models for the trade export importer.

RowResult is the per-row outcome value; PreviewResult and ImportResult are the
aggregates returned by the public preview/execute operations. Batch timing
statistics are accumulated with BatchStatsAccumulator.
"""

__all__ = [
    "BatchStatsAccumulator",
    "ImportResult",
    "PreviewResult",
    "RowOutcome",
    "RowResult",
]


class RowOutcome(Enum):
    """Classification of one export row.

    VALID is the preview counterpart of IMPORTED (would be imported).
    """
    IMPORTED = "IMPORTED"
    VALID = "VALID"
    DUPLICATE = "DUPLICATE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RowResult:
    row_number: int
    outcome: RowOutcome
    validation: ValidationResult
    trade: NormalizedTrade | None = None
    trade_id: str | None = None
    error_type: str | None = None  # UPPER_SNAKE, set for ERROR rows
    messages: list[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.outcome is RowOutcome.ERROR

    @property
    def is_duplicate(self) -> bool:
        return self.outcome is RowOutcome.DUPLICATE


@dataclass(frozen=True)
class PreviewResult:
    """Dry-run outcome: what execute_import would do against the current store."""
    total: int
    valid: int
    duplicates: int
    errors: int
    rows: list[RowResult]


@dataclass(frozen=True)
class ImportResult:
    """Final outcome of execute_import, mirroring the persisted session counters."""
    session_id: str
    status: ImportStatus
    total: int
    imported: int
    duplicates: int
    errors: int
    skipped: int
    rows: list[RowResult]
    error_messages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total / self.elapsed_seconds


class BatchStatsAccumulator:
    """Helper class to accumulate batch timing statistics for ImportResult.

    Collects individual batch timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a batch timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 19th of 20 cut points

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
