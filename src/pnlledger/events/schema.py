from __future__ import annotations

from typing import List, Literal, Optional, Union
from pydantic import BaseModel


# ---- Base + envelope ----

class BaseEvent(BaseModel):
    event_type: str
    ts: int
    run_id: str = "r1"
    market: str
    trader: str
    instrument: str
    side: Optional[str] = None  # buy|sell
    tags: List[str] = []


class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: BaseEvent


# ---- Event types ----
# Amounts are fixed-point ints at the ledger scales.

class PositionUpdated(BaseEvent):
    event_type: Literal["position_updated"] = "position_updated"
    quantity: int
    average_cost: int
    realized_pnl: int
    unrealized_pnl: int
    trade_count: int
    realized_pnl_change: int = 0
    fee_change: int = 0
    volume_change: int = 0


class PositionMarked(BaseEvent):
    event_type: Literal["position_marked"] = "position_marked"
    mark_price: int
    quantity: int
    unrealized_pnl: int


class TradeRejected(BaseEvent):
    event_type: Literal["trade_rejected"] = "trade_rejected"
    reason: str
    detail: str = ""


AnyEvent = Union[
    PositionUpdated,
    PositionMarked,
    TradeRejected,
]
