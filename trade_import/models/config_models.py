from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .field_mapping import FieldMapping

"""Config dataclasses for the trade export importer.

The YAML loader in trade_import/config/loader.py builds these; library callers
may also construct ImportConfig() directly and rely on the defaults.
"""

__all__ = [
    "DatabaseConfig",
    "DuplicatePolicy",
    "ImportConfig",
]


class DuplicatePolicy(Enum):
    """How entry dates are compared when looking for an already stored trade.

    - EXACT: entry dates must be equal
    - TOLERANCE_WINDOW: entry dates may differ by the configured tolerance
      (export timing jitter for the same underlying trade)
    """
    EXACT = "exact"
    TOLERANCE_WINDOW = "tolerance_window"


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the import pipeline."""
    batch_size: int = 100  # Rows per batch; progress is persisted after each batch
    max_workers: int = 4  # Parallel inserts within one batch
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.TOLERANCE_WINDOW
    duplicate_tolerance_seconds: int = 300
    stale_session_seconds: int = 120  # Non-terminal sessions untouched longer than this are ignored
    future_date_threshold_days: int = 30  # Contract-year correction threshold
    timezone: str = "UTC"  # Timezone of the export's wall-clock timestamps
    delimiter: str = ";"
    default_commission: float = 4.20
    commission_rates: dict[str, float] | None = None  # Overrides merged over the built-in schedule
    field_mapping: FieldMapping = field(default_factory=FieldMapping)
    logs_directory: str = "./logs"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def duplicate_window_seconds(self) -> int:
        """Effective ± window for duplicate lookups (0 for EXACT)."""
        if self.duplicate_policy is DuplicatePolicy.EXACT:
            return 0
        return self.duplicate_tolerance_seconds
