from __future__ import annotations

import io
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import PurePath

import pandas as pd

from ..models.import_session import ImportSource
from ..models.row_data import RawRecord

"""Export file reader.

Semicolon separated text is the native export format: header on the first
line, data from the second, trailing delimiters and quoted currency cells
("-$ 200,00") allowed. First-sheet .xlsx exports are read the same way.
Every cell is kept as text; normalization happens in the record parser.
"""

__all__ = [
    "ExportFile",
    "InputFormatError",
    "MissingColumnsError",
    "detect_source",
    "read_export",
    "check_header",
]

_XLSX_MAGIC = b"PK\x03\x04"
_EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


class InputFormatError(Exception):
    """Raised when the file cannot be read as a trade export at all."""


class MissingColumnsError(InputFormatError):
    """Raised when no alias of a required field exists in the header."""


@dataclass
class ExportFile:
    source: ImportSource
    columns: list[str]
    records: list[RawRecord]


def _decode(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Windows workstations export with the ANSI code page
        return file_bytes.decode("cp1252", errors="strict")


def _is_excel(file_bytes: bytes, file_name: str | None) -> bool:
    if file_name and PurePath(file_name).suffix.lower() in _EXCEL_SUFFIXES:
        return True
    return file_bytes.startswith(_XLSX_MAGIC)


def detect_source(file_bytes: bytes, file_name: str | None = None) -> ImportSource:
    return ImportSource.NT8_EXCEL if _is_excel(file_bytes, file_name) else ImportSource.NT8_CSV


def _frame_to_records(df: pd.DataFrame) -> tuple[list[str], list[RawRecord]]:
    columns = [str(c).strip() for c in df.columns]
    df.columns = columns
    # 末尾区切り文字で生じる無名の空列を除去
    unnamed = [
        c for c in columns
        if (not c or c.startswith("Unnamed:")) and df[c].astype(str).str.strip().eq("").all()
    ]
    if unnamed:
        df = df.drop(columns=unnamed)
        columns = [c for c in columns if c not in unnamed]

    records: list[RawRecord] = []
    for offset, raw in enumerate(df.itertuples(index=False, name=None)):
        values = {col: ("" if val is None else str(val).strip()) for col, val in zip(columns, raw, strict=False)}
        if not any(values.values()):
            continue
        # header is line 1; blank lines are read as empty rows, so offset tracks the file line
        records.append(RawRecord(row_number=offset + 2, values=values))
    return columns, records


def read_export(file_bytes: bytes, file_name: str | None = None, *, delimiter: str = ";") -> ExportFile:
    """Read export bytes into RawRecords.

    Raises:
        InputFormatError: empty input, undecodable text, malformed rows or a
            header that does not split on the expected delimiter
    """
    if not file_bytes or not file_bytes.strip():
        raise InputFormatError("file is empty")

    if _is_excel(file_bytes, file_name):
        try:
            df = pd.read_excel(
                io.BytesIO(file_bytes), sheet_name=0, dtype=str, keep_default_na=False
            )
        except Exception as e:
            raise InputFormatError(f"unreadable workbook: {e}") from e
        source = ImportSource.NT8_EXCEL
    else:
        try:
            text = _decode(file_bytes)
        except UnicodeDecodeError as e:
            raise InputFormatError(f"file is not text: {e}") from e
        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,  # blank lines stay as empty rows so row numbers match file lines
                index_col=False,  # rows ending with a delimiter must not shift columns
                quotechar='"',
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
            raise InputFormatError(f"malformed export: {e}") from e
        source = ImportSource.NT8_CSV

    columns, records = _frame_to_records(df.fillna(""))
    if len(columns) < 2:
        raise InputFormatError(
            f"header has {len(columns)} column(s); expected a '{delimiter}'-delimited export"
        )
    return ExportFile(source=source, columns=columns, records=records)


def check_header(columns: Sequence[str], required: Mapping[str, Sequence[str]]) -> None:
    """Validate that every required logical field has at least one alias in the header.

    Raises:
        MissingColumnsError: listing the logical fields without any matching column
    """
    present = set(columns)
    missing = sorted(name for name, aliases in required.items() if not present.intersection(aliases))
    if missing:
        raise MissingColumnsError(f"export is missing columns for: {missing}")
