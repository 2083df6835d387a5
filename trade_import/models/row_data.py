from __future__ import annotations

from dataclasses import dataclass

"""RawRecord model for the trade export importer.

RawRecord represents one source row exactly as read from the export, before
any normalization. It only lives for the duration of one import pass.
"""

__all__ = [
    "RawRecord",
]


@dataclass(frozen=True)
class RawRecord:
    """One data row of an export file.

    The row_number refers to the line in the source file (header = line 1,
    first data row = line 2) so messages point users at the cell to fix.
    """
    row_number: int
    values: dict[str, str]  # Column name -> raw cell text (stripped, "" for empty)

    def get(self, column: str) -> str:
        return self.values.get(column, "")
