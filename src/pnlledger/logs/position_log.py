from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from ..fixed import COLLATERAL_DECIMALS, PRICE_DECIMALS, QUANTITY_DECIMALS, to_decimal
from ..model import Position

logger = logging.getLogger("pnlledger.ledger")


def position_payload(event: str, pos: Position, side: Optional[str] = None,
                     extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Human-scaled view of a position for log lines.

    Keys: event, trader, instrument, market, side, quantity, average_cost,
    realized_pnl, unrealized_pnl, fees_paid, trades, ts, component, schema_version
    """
    payload: Dict[str, Any] = {
        "event": event,
        "trader": pos.trader,
        "instrument": pos.instrument,
        "market": pos.market,
        "side": side,
        "quantity": str(to_decimal(pos.quantity, QUANTITY_DECIMALS)),
        "average_cost": str(to_decimal(pos.average_cost, PRICE_DECIMALS)),
        "realized_pnl": str(to_decimal(pos.realized_pnl, COLLATERAL_DECIMALS)),
        "unrealized_pnl": str(to_decimal(pos.unrealized_pnl, COLLATERAL_DECIMALS)),
        "fees_paid": str(to_decimal(pos.total_fees_paid, COLLATERAL_DECIMALS)),
        "trades": pos.trade_count,
        "ts": pos.last_trade_at,
        "component": "ledger",
        "schema_version": "v1",
    }
    if extra:
        payload["extra"] = extra
    return payload


def log_position_event(event: str, pos: Position, side: Optional[str] = None,
                       level: int = logging.INFO, extra: Optional[Dict[str, Any]] = None) -> None:
    """Emit a structured JSON log line for one position change."""
    if not logger.isEnabledFor(level):
        return
    logger.log(level, json.dumps(position_payload(event, pos, side, extra), separators=(",", ":")))
