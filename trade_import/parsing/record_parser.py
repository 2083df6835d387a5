from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, tzinfo
from typing import NamedTuple

from ..models.field_mapping import FieldMapping
from ..models.row_data import RawRecord
from ..models.trade import Direction, NormalizedTrade
from ..services.commission import CommissionSchedule
from .normalizer import FUTURE_DATE_THRESHOLD_DAYS, parse_ambiguous_date, parse_locale_number
from .symbols import extract_symbol

"""Record parser: one RawRecord -> one NormalizedTrade candidate.

The parser never raises for bad data. When a row cannot become a candidate
(no entry date, unknown direction, quantity or entry price not a number) it
returns a ParseOutcome without trade and with the reason, so the executor
classifies the row as an error instead of dropping it.
"""

__all__ = [
    "ParseOutcome",
    "RecordParser",
    "get_field_value",
    "parse_direction",
]

logger = logging.getLogger(__name__)

_LONG_TOKENS = frozenset({"LONG", "BUY", "1"})
_SHORT_TOKENS = frozenset({"SHORT", "SELL", "-1"})


class ParseOutcome(NamedTuple):
    trade: NormalizedTrade | None
    error: str | None = None


def get_field_value(record: RawRecord | Mapping[str, str], aliases: Sequence[str]) -> str | None:
    """Return the first non-empty value among a field's aliases (in alias order)."""
    values = record.values if isinstance(record, RawRecord) else record
    for name in aliases:
        value = values.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_direction(raw: str | None) -> Direction | None:
    """Map "Long"/"Buy"/"1" and "Short"/"Sell"/"-1" to a Direction."""
    if not raw:
        return None
    token = raw.strip().upper()
    if token in _LONG_TOKENS:
        return Direction.LONG
    if token in _SHORT_TOKENS:
        return Direction.SHORT
    return None


def _optional_text(value: str | None) -> str | None:
    return value.strip() if value and value.strip() else None


class RecordParser:
    """Maps raw export rows to typed candidates using a field-alias configuration."""

    def __init__(
        self,
        mapping: FieldMapping | None = None,
        commissions: CommissionSchedule | None = None,
        *,
        future_threshold_days: int = FUTURE_DATE_THRESHOLD_DAYS,
        tz: tzinfo = UTC,
    ) -> None:
        self.mapping = mapping or FieldMapping()
        self.commissions = commissions or CommissionSchedule()
        self.future_threshold_days = future_threshold_days
        self.tz = tz  # zone of the export's wall-clock timestamps

    def _number(self, record: RawRecord, aliases: Sequence[str]) -> float | None:
        return parse_locale_number(get_field_value(record, aliases))

    def _date(self, record: RawRecord, aliases: Sequence[str], now: datetime) -> datetime | None:
        return parse_ambiguous_date(
            get_field_value(record, aliases), now, future_threshold_days=self.future_threshold_days, tz=self.tz
        )

    def parse(self, record: RawRecord, now: datetime) -> ParseOutcome:
        m = self.mapping

        entry_date = self._date(record, m.entry_time, now)
        if entry_date is None:
            return ParseOutcome(None, "Entry date is missing or not a recognised date")

        direction = parse_direction(get_field_value(record, m.direction))
        if direction is None:
            return ParseOutcome(None, "Unable to determine trade direction")

        quantity = self._number(record, m.quantity)
        if quantity is None:
            return ParseOutcome(None, "Quantity is missing or not a number")
        entry_price = self._number(record, m.entry_price)
        if entry_price is None:
            return ParseOutcome(None, "Entry price is missing or not a number")

        quantity = abs(quantity)
        symbol = extract_symbol(get_field_value(record, m.instrument))
        exit_date = self._date(record, m.exit_time, now)

        reported_commission = abs(self._number(record, m.commission) or 0.0)
        if reported_commission > 0:
            commission = reported_commission
        else:
            commission = self.commissions.commission_for(symbol, quantity) if symbol else 0.0

        duration: int | None = None
        if exit_date is not None:
            duration = round((exit_date - entry_date).total_seconds() / 60)

        trade = NormalizedTrade(
            symbol=symbol,
            direction=direction,
            quantity=quantity,
            entry_price=entry_price,
            entry_date=entry_date,
            exit_price=self._number(record, m.exit_price),
            exit_date=exit_date,
            pnl=self._number(record, m.pnl) or 0.0,
            commission=commission,
            mae=abs(self._number(record, m.mae) or 0.0),
            mfe=abs(self._number(record, m.mfe) or 0.0),
            strategy=_optional_text(get_field_value(record, m.strategy)),
            account=_optional_text(get_field_value(record, m.account)),
            external_trade_number=_optional_text(get_field_value(record, m.trade_id)),
            notes=_optional_text(get_field_value(record, m.notes)),
            duration_minutes=duration,
        )
        logger.debug(
            "row=%d symbol=%s direction=%s qty=%s entry=%s commission=%.2f (reported=%.2f)",
            record.row_number,
            trade.symbol,
            trade.direction.value,
            trade.quantity,
            trade.entry_price,
            trade.commission,
            reported_commission,
        )
        return ParseOutcome(trade)
