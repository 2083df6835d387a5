from __future__ import annotations

from ..models.processing_result import ImportResult, PreviewResult

"""SUMMARY line rendering.

Format (single line, key=value pairs in fixed order):
SUMMARY rows={total} imported={imported} duplicates={duplicates} errors={errors}
skipped={skipped} status={status} elapsed_sec={elapsed} throughput_rps={throughput}

Preview runs render the same keys with imported=0 and status=PREVIEW.
"""

__all__ = [
    "format_metric",
    "render_preview_line",
    "render_summary_line",
]


def format_metric(value: float) -> str:
    """Render a float without scientific notation and without a trailing '.0'.

    >>> format_metric(2.0)
    '2'
    >>> format_metric(0.0004)
    '0.0004'
    >>> format_metric(12.5)
    '12.5'
    """
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line for an executed import.

    Examples:
        >>> from trade_import.models.import_session import ImportStatus
        >>> r = ImportResult(
        ...     session_id="s1", status=ImportStatus.PARTIAL, total=3, imported=2,
        ...     duplicates=0, errors=1, skipped=0, rows=[], elapsed_seconds=2.0,
        ... )
        >>> render_summary_line(r)
        'SUMMARY rows=3 imported=2 duplicates=0 errors=1 skipped=0 status=PARTIAL elapsed_sec=2 throughput_rps=1.5'
    """
    return (
        f"SUMMARY rows={result.total} "
        f"imported={result.imported} "
        f"duplicates={result.duplicates} "
        f"errors={result.errors} "
        f"skipped={result.skipped} "
        f"status={result.status.value} "
        f"elapsed_sec={format_metric(result.elapsed_seconds)} "
        f"throughput_rps={format_metric(result.throughput_rows_per_sec)}"
    )


def render_preview_line(result: PreviewResult, elapsed_seconds: float = 0.0) -> str:
    throughput = result.total / elapsed_seconds if elapsed_seconds > 0 else 0.0
    return (
        f"SUMMARY rows={result.total} "
        f"imported=0 "
        f"duplicates={result.duplicates} "
        f"errors={result.errors} "
        f"skipped={result.duplicates} "
        f"status=PREVIEW "
        f"elapsed_sec={format_metric(elapsed_seconds)} "
        f"throughput_rps={format_metric(throughput)}"
    )
