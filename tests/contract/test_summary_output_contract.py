from __future__ import annotations

import re

from conftest import build_export, trade_row

from trade_import.services.summary import render_preview_line, render_summary_line

"""SUMMARY 行フォーマット契約テスト."""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+rows=([0-9]+)\s+imported=([0-9]+)\s+duplicates=([0-9]+)\s+errors=([0-9]+)\s+"
    r"skipped=([0-9]+)\s+status=(COMPLETED|PARTIAL|FAILED|PREVIEW)\s+"
    r"elapsed_sec=([0-9]+\.?[0-9]*)\s+throughput_rps=([0-9]+\.?[0-9]*)$"
)


def test_summary_pattern_example_line():
    line = (
        "SUMMARY rows=3 imported=2 duplicates=0 errors=1 skipped=0 "
        "status=PARTIAL elapsed_sec=0.84 throughput_rps=3.571"
    )
    assert SUMMARY_PATTERN.match(line)


def test_rendered_import_line_matches(pipeline):
    result = pipeline.execute_import(build_export([trade_row(1), trade_row(2, Qty="0")]), "u1", "a1")
    m = SUMMARY_PATTERN.match(render_summary_line(result))
    assert m, render_summary_line(result)
    rows, imported, duplicates, errors = (int(g) for g in m.groups()[:4])
    assert rows == imported + duplicates + errors
    assert m.group(6) == "PARTIAL"


def test_rendered_preview_line_matches(pipeline):
    preview = pipeline.preview_import(build_export([trade_row(1)]), "u1", "a1")
    m = SUMMARY_PATTERN.match(render_preview_line(preview, 0.5))
    assert m
    assert m.group(6) == "PREVIEW"
