from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any

"""Field-alias configuration for trade exports.

Export headers differ between platform versions ("Market pos." vs "Side",
"Qty" vs "Quantity", ...), so every logical field carries an ordered list of
acceptable column names. The first alias with a non-empty value wins.
"""

__all__ = [
    "FieldMapping",
]


def _aliases(*names: str) -> Any:
    return field(default_factory=lambda: list(names))


@dataclass(frozen=True)
class FieldMapping:
    """Ordered column aliases per logical trade field."""
    entry_time: list[str] = _aliases("Entry time", "Entry Time", "EntryTime", "Entry Date/Time", "Fill time")
    exit_time: list[str] = _aliases("Exit time", "Exit Time", "ExitTime", "Exit Date/Time", "Close time")
    instrument: list[str] = _aliases("Instrument", "Symbol", "Market", "Contract")
    quantity: list[str] = _aliases("Qty", "Quantity", "Position size", "PositionSize", "Contracts", "Size")
    entry_price: list[str] = _aliases(
        "Entry price", "Entry Price", "EntryPrice", "Fill price", "Avg fill price"
    )
    exit_price: list[str] = _aliases(
        "Exit price", "Exit Price", "ExitPrice", "Close price", "Avg close price"
    )
    direction: list[str] = _aliases(
        "Market pos.", "Side", "Direction", "Market position", "MarketPosition", "Position"
    )
    pnl: list[str] = _aliases(
        "Profit", "Realized P&L", "P&L", "PnL", "Net profit", "NetProfit", "Gross P&L", "GrossPnL"
    )
    commission: list[str] = _aliases("Commission", "Commissions", "Fees", "Total fees")
    mae: list[str] = _aliases("MAE", "Max adverse excursion", "MaxAdverseExcursion", "Max Adverse Excursion")
    mfe: list[str] = _aliases(
        "MFE", "Max favorable excursion", "MaxFavorableExcursion", "Max Favorable Excursion"
    )
    strategy: list[str] = _aliases("Strategy", "Strategy name", "StrategyName", "System")
    account: list[str] = _aliases("Account", "Account name", "AccountName")
    trade_id: list[str] = _aliases("Trade number", "Trade #", "TradeNumber", "TradeId", "Trade ID", "Id")
    notes: list[str] = _aliases("Exit name", "Notes", "Comment", "Comments", "Exit reason", "ExitReason")

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def with_overrides(self, overrides: dict[str, list[str]] | None) -> FieldMapping:
        """Return a copy where each overridden logical field gets the caller's aliases.

        Raises:
            ValueError: for an unknown logical field or an empty alias list
        """
        if not overrides:
            return self
        known = set(self.field_names())
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"unknown field_mapping keys: {unknown}")
        cleaned: dict[str, list[str]] = {}
        for name, aliases in overrides.items():
            names = [str(a).strip() for a in aliases if str(a).strip()]
            if not names:
                raise ValueError(f"field_mapping '{name}' needs at least one alias")
            cleaned[name] = names
        return replace(self, **cleaned)
