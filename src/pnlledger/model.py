from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Literal, Tuple

Side = Literal["buy", "sell"]


def position_key(trader: str, instrument: str) -> Tuple[str, str]:
    return (trader, instrument)


@dataclass(frozen=True)
class TradeFact:
    """One matched trade leg for one trader, already price-resolved."""
    trader: str
    instrument: str
    market: str
    quantity: int
    price: int
    is_buy: bool
    fee: int
    timestamp: int

    @property
    def side(self) -> Side:
        return "buy" if self.is_buy else "sell"


@dataclass
class Position:
    trader: str
    instrument: str
    market: str = ""
    quantity: int = 0
    average_cost: int = 0
    realized_pnl: int = 0
    unrealized_pnl: int = 0
    total_bought: int = 0
    total_sold: int = 0
    total_fees_paid: int = 0
    trade_count: int = 0
    first_trade_at: int = 0
    last_trade_at: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return position_key(self.trader, self.instrument)

    @property
    def is_active(self) -> bool:
        return self.quantity > 0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["is_active"] = self.is_active
        return d


@dataclass(frozen=True)
class PositionDelta:
    """Per-trade output handed to the aggregation consumers."""
    trader: str
    instrument: str
    market: str
    is_buy: bool
    quantity: int
    price: int
    realized_pnl_change: int
    fee_change: int
    volume_change: int
    timestamp: int

    @property
    def side(self) -> Side:
        return "buy" if self.is_buy else "sell"
