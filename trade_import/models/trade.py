from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

"""Trade domain models.

NormalizedTrade is the typed candidate produced by the record parser.
NewTrade binds a candidate to its owner and import session and carries the
fields derived at insert time; PersistedTrade is what the store hands back.
"""

__all__ = [
    "DedupKey",
    "Direction",
    "NormalizedTrade",
    "NewTrade",
    "PersistedTrade",
    "TradeResult",
]


class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeResult(Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    BREAKEVEN = "BREAKEVEN"


@dataclass(frozen=True)
class NormalizedTrade:
    """Typed candidate trade parsed from one export row."""
    symbol: str
    direction: Direction
    quantity: float
    entry_price: float
    entry_date: datetime
    exit_price: float | None = None
    exit_date: datetime | None = None
    pnl: float = 0.0
    commission: float = 0.0
    mae: float = 0.0
    mfe: float = 0.0
    strategy: str | None = None
    account: str | None = None
    external_trade_number: str | None = None
    notes: str | None = None
    duration_minutes: int | None = None

    @property
    def is_open(self) -> bool:
        return self.exit_date is None or not self.exit_price


@dataclass(frozen=True)
class DedupKey:
    """Field tuple deciding whether two records are the same real-world trade."""
    user_id: str
    account_id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    entry_date: datetime

    @staticmethod
    def of(user_id: str, account_id: str, trade: NormalizedTrade) -> DedupKey:
        return DedupKey(
            user_id=user_id,
            account_id=account_id,
            symbol=trade.symbol,
            direction=trade.direction,
            entry_price=trade.entry_price,
            quantity=trade.quantity,
            entry_date=trade.entry_date,
        )

    @property
    def bucket(self) -> tuple[str, str, str, Direction, float, float]:
        """Key without the entry date; candidates inside a bucket are compared by time."""
        return (self.user_id, self.account_id, self.symbol, self.direction, self.entry_price, self.quantity)


@dataclass(frozen=True)
class NewTrade:
    """A validated candidate ready to be written to the trade store."""
    user_id: str
    account_id: str
    import_session_id: str | None
    trade: NormalizedTrade
    strategy_id: str | None = None

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey.of(self.user_id, self.account_id, self.trade)

    @property
    def net_pnl(self) -> float:
        return self.trade.pnl - self.trade.commission

    @property
    def result(self) -> TradeResult:
        if self.net_pnl > 0:
            return TradeResult.WIN
        if self.net_pnl < 0:
            return TradeResult.LOSS
        return TradeResult.BREAKEVEN

    @property
    def efficiency(self) -> float | None:
        """Captured share (%) of the favourable excursion, None without MAE/MFE."""
        t = self.trade
        if not t.mae or not t.mfe:
            return None
        potential = (t.mfe if t.direction is Direction.LONG else t.mae) * t.quantity
        if potential <= 0:
            return None
        return (t.pnl / potential) * 100


@dataclass(frozen=True)
class PersistedTrade:
    id: str
    user_id: str
    account_id: str
    import_session_id: str | None
    trade: NormalizedTrade
    strategy_id: str | None
    net_pnl: float
    result: TradeResult
    efficiency: float | None
    created_at: datetime
