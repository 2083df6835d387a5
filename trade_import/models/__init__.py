"""Domain models for the trade export importer.

This package contains the domain model classes used throughout the pipeline:
configuration, raw and normalized rows, validation and per-row outcomes, and
the ImportSession state machine.
"""

from .config_models import DatabaseConfig, DuplicatePolicy, ImportConfig
from .field_mapping import FieldMapping
from .import_session import ImportSession, ImportSource, ImportStatus, resolve_terminal_status
from .processing_result import ImportResult, PreviewResult, RowOutcome, RowResult
from .row_data import RawRecord
from .trade import DedupKey, Direction, NewTrade, NormalizedTrade, PersistedTrade, TradeResult
from .validation import FieldError, ValidationResult

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "DuplicatePolicy",
    "FieldMapping",
    "ImportConfig",
    # Row models
    "RawRecord",
    "NormalizedTrade",
    "Direction",
    "FieldError",
    "ValidationResult",
    "RowOutcome",
    "RowResult",
    # Persistence / session models
    "DedupKey",
    "NewTrade",
    "PersistedTrade",
    "TradeResult",
    "ImportSession",
    "ImportSource",
    "ImportStatus",
    "resolve_terminal_status",
    # Aggregates
    "ImportResult",
    "PreviewResult",
]
