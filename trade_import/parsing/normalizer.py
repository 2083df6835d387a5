from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any

"""Field normalizer for locale-ambiguous export cells.

Trade exports are produced with the workstation's regional settings, so the
same platform emits "6387,50" or "-$ 200,00" for numbers and "2/9/2025
12:18:21" for timestamps whose day/month order is not stated anywhere.

Both entry points are pure and total: they never raise and report
unrecoverable input as None.
"""

__all__ = [
    "FUTURE_DATE_THRESHOLD_DAYS",
    "correct_contract_year",
    "naive_wall_clock",
    "parse_ambiguous_date",
    "parse_locale_number",
]

FUTURE_DATE_THRESHOLD_DAYS = 30

_CURRENCY_RE = re.compile(r"[$€£¥]")
_WHITESPACE_RE = re.compile(r"\s+")
_PLAIN_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_DATE_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?$"
)


def parse_locale_number(raw: Any) -> float | None:
    """Parse a locale formatted number or currency amount.

    - currency symbols and whitespace are removed
    - a minus sign before or after the currency symbol is kept
      ("-$ 200,00" and "$ -200,00" are both -200.0)
    - comma is the decimal separator; when both comma and dot are present the
      last one is the decimal separator and the other groups thousands

    Returns:
        float value, or None when the text is empty or not a number
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return None if value != value else value  # NaN

    text = _WHITESPACE_RE.sub("", _CURRENCY_RE.sub("", str(raw)))
    if not text:
        return None

    negative = text.startswith("-")
    if negative or text.startswith("+"):
        text = text[1:]

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        if text.count(",") > 1:
            return None
        text = text.replace(",", ".")

    if not _PLAIN_NUMBER_RE.match(text):
        return None
    value = float(text)
    return -value if negative else value


def correct_contract_year(
    parsed: datetime, now: datetime, threshold_days: int = FUTURE_DATE_THRESHOLD_DAYS
) -> datetime:
    """Shift a timestamp back one year when it lies too far in the future.

    Futures exports label executions with the contract's expiry year instead of
    the execution year (an ES SEP25 fill in October 2024 shows up as
    10/15/2025). A date more than `threshold_days` after `now` is moved back
    exactly one year; 29 February becomes 28 February.
    """
    reference = now
    if parsed.tzinfo is None and now.tzinfo is not None:
        reference = now.replace(tzinfo=None)
    elif parsed.tzinfo is not None and now.tzinfo is None:
        reference = now.replace(tzinfo=parsed.tzinfo)

    if parsed - reference <= timedelta(days=threshold_days):
        return parsed
    try:
        return parsed.replace(year=parsed.year - 1)
    except ValueError:
        return parsed.replace(year=parsed.year - 1, day=28)


def naive_wall_clock(value: datetime, tz: tzinfo = UTC) -> datetime:
    """Drop the offset of an aware timestamp after converting it to the export's zone.

    >>> from datetime import timezone
    >>> naive_wall_clock(datetime(2024, 1, 15, 15, 1, tzinfo=UTC), timezone(timedelta(hours=-5)))
    datetime.datetime(2024, 1, 15, 10, 1)
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(tz).replace(tzinfo=None)


def parse_ambiguous_date(
    raw: Any,
    now: datetime,
    *,
    future_threshold_days: int = FUTURE_DATE_THRESHOLD_DAYS,
    tz: tzinfo = UTC,
) -> datetime | None:
    """Parse a `D/M/YYYY H:mm:ss` export timestamp.

    Day/month order is decided per value:
    1. first group > 12  -> day/month/year
    2. second group > 12 -> month/day/year
    3. otherwise         -> month/day/year (ambiguous, month-first default)

    ISO 8601 text (what .xlsx date cells become) and datetime values are
    accepted too. Every result is a naive wall-clock time in `tz` and goes
    through the contract-year correction once.

    >>> now = datetime(2025, 12, 20)
    >>> parse_ambiguous_date("15/12/2025 23:59:59", now)
    datetime.datetime(2025, 12, 15, 23, 59, 59)
    >>> parse_ambiguous_date("2/9/2025 12:18:21", now)
    datetime.datetime(2025, 2, 9, 12, 18, 21)
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return correct_contract_year(naive_wall_clock(raw, tz), now, future_threshold_days)
    text = str(raw).strip()
    if not text:
        return None

    m = _DATE_RE.match(text)
    if m is None:
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return correct_contract_year(naive_wall_clock(parsed, tz), now, future_threshold_days)

    first, second, year, hour, minute = (int(g) for g in m.groups()[:5])
    second_part = int(m.group(6) or 0)
    if first > 12:
        day, month = first, second
    else:
        # second > 12 is unambiguous month-first; both <= 12 falls back to month-first
        month, day = first, second

    try:
        parsed = datetime(year, month, day, hour, minute, second_part)
    except ValueError:
        return None
    return correct_contract_year(parsed, now, future_threshold_days)
