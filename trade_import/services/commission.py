from __future__ import annotations

import logging
from collections.abc import Mapping

from ..parsing.symbols import extract_symbol

"""Commission schedule: per-contract round-trip rates by root symbol.

Used when an export reports no commission for a trade. Rates can be
overridden per symbol from the `commission_rates` config section.
"""

__all__ = [
    "COMMISSION_RATES",
    "DEFAULT_COMMISSION",
    "CommissionSchedule",
]

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION = 4.20

COMMISSION_RATES: dict[str, float] = {
    "ES": 4.20,   # E-mini S&P 500
    "MES": 1.20,  # Micro E-mini S&P 500
    "NQ": 4.20,   # E-mini NASDAQ-100
    "MNQ": 1.20,
    "YM": 4.20,   # E-mini Dow
    "MYM": 1.20,
    "RTY": 4.20,  # E-mini Russell 2000
    "M2K": 1.20,
    "CL": 4.20,   # Crude oil (WTI)
    "MCL": 1.20,
    "GC": 4.20,   # Gold, 100 oz
    "MGC": 1.20,
}


class CommissionSchedule:
    """Symbol -> round-trip commission per contract, with a default for unknown symbols."""

    def __init__(
        self,
        rates: Mapping[str, float] | None = None,
        default_rate: float = DEFAULT_COMMISSION,
    ) -> None:
        self.rates: dict[str, float] = dict(COMMISSION_RATES)
        if rates:
            self.rates.update({k.strip().upper(): float(v) for k, v in rates.items()})
        self.default_rate = default_rate

    def rate_for(self, symbol: str) -> float:
        base = extract_symbol(symbol)
        rate = self.rates.get(base)
        if rate is None:
            logger.debug("no commission rate for symbol=%s, using default %.2f", symbol, self.default_rate)
            return self.default_rate
        return rate

    def commission_for(self, symbol: str, quantity: float) -> float:
        """Round-trip commission for `quantity` contracts (entry + exit included in the rate)."""
        return round(self.rate_for(symbol) * abs(quantity), 2)
