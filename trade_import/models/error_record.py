from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per failed row (or per file when the row is unknown, row=-1).
The field set is fixed; to_json_line never adds keys.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: export filename being processed
        session_id: import session the row belongs to ("" for previews)
        row: line number in the export. Use -1 for file-level errors
        error_type: error classification in UPPER_SNAKE_CASE format
        message: human readable description
    """
    timestamp: str
    file: str
    session_id: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, session_id: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            session_id=session_id,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
