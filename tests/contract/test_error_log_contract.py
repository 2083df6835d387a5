from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest
from conftest import build_export, trade_row

from trade_import.logging.error_log import ErrorLogBuffer
from trade_import.models.config_models import ImportConfig
from trade_import.models.error_record import ErrorRecord
from trade_import.parsing.reader import InputFormatError
from trade_import.services.executor import ImportPipeline

"""Error log JSON Lines contract: fixed keys, UPPER_SNAKE error types, row=-1 for file-level errors."""

ERROR_LOG_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "file", "session_id", "row", "error_type", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$"},
        "file": {"type": "string"},
        "session_id": {"type": "string"},
        "row": {"type": "integer", "minimum": -1},
        "error_type": {"type": "string", "pattern": "^[A-Z]+(_[A-Z]+)*$"},
        "message": {"type": "string"},
    },
}


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_schema_accepts_record():
    record = ErrorRecord.create("trades.csv", "s1", 4, "VALIDATION_ERROR", "Quantity must be greater than 0")
    jsonschema.validate(json.loads(record.to_json_line()), ERROR_LOG_SCHEMA)


def test_schema_rejects_extra_key():
    record = json.loads(ErrorRecord.create("trades.csv", "s1", 4, "VALIDATION_ERROR", "x").to_json_line())
    record["sheet"] = "Orders"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, ERROR_LOG_SCHEMA)


def test_pipeline_records_match_schema(trade_store, session_store, clock, tmp_path: Path):
    log = ErrorLogBuffer(tmp_path)
    pipeline = ImportPipeline(trade_store, session_store, ImportConfig(), error_log=log, clock=clock)
    data = build_export([trade_row(1), trade_row(2, Qty="0"), trade_row(3, **{"Market pos.": "Flat"})])
    pipeline.execute_import(data, "u1", "a1", "trades.csv")
    records = _lines(log.flush())
    assert [r["error_type"] for r in records] == ["VALIDATION_ERROR", "ROW_PARSE_ERROR"]
    for r in records:
        jsonschema.validate(r, ERROR_LOG_SCHEMA)


def test_file_level_error_uses_unknown_row(trade_store, session_store, clock, tmp_path: Path):
    log = ErrorLogBuffer(tmp_path)
    pipeline = ImportPipeline(trade_store, session_store, ImportConfig(), error_log=log, clock=clock)
    with pytest.raises(InputFormatError):
        pipeline.execute_import(b"   ", "u1", "a1", "blank.csv")
    [record] = _lines(log.flush())
    assert record["row"] == -1
    assert record["error_type"] == "INPUT_FORMAT_ERROR"
    jsonschema.validate(record, ERROR_LOG_SCHEMA)
