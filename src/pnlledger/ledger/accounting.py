"""Average-cost position accounting.

What it does:
- `apply_trade` folds one trade into a `Position`: weighted average cost on buys,
  realized P&L against that average on sells (over-sells clamped to the held
  quantity), fee and trade-count accumulation.
- `mark_to_market` recomputes unrealized P&L against a mark price.

Both are pure transitions over a single position: no I/O, no locks, no shared
state. Callers serialize updates per (trader, instrument) and feed trades in the
order the source emitted them; the result is order dependent.

Sell policy: fees are never subtracted from realized P&L (they accumulate in
`total_fees_paid`), and a sell larger than the position closes it instead of
going short.
"""
from __future__ import annotations

from ..model import Position, PositionDelta
from ..fixed import PRICE_SCALE, trunc_div


class LedgerError(ValueError):
    """Base class for rejected trade input."""

    reason = "invalid"


class InvalidTrade(LedgerError):
    reason = "invalid_trade"


class InvalidPrice(LedgerError):
    reason = "invalid_price"


def _validate(trade_quantity: int, trade_price: int, fee_amount: int) -> None:
    if trade_quantity <= 0:
        raise InvalidTrade(f"trade quantity must be positive, got {trade_quantity}")
    if trade_price < 0:
        raise InvalidPrice(f"trade price must be non-negative, got {trade_price}")
    if fee_amount < 0:
        raise InvalidTrade(f"fee must be non-negative, got {fee_amount}")


def unrealized_pnl(quantity: int, average_cost: int, mark_price: int) -> int:
    if quantity <= 0:
        return 0
    return trunc_div((mark_price - average_cost) * quantity, PRICE_SCALE)


def apply_trade(
    position: Position,
    trade_quantity: int,
    trade_price: int,
    is_buy: bool,
    fee_amount: int,
    timestamp: int,
) -> PositionDelta:
    _validate(trade_quantity, trade_price, fee_amount)

    quantity = position.quantity
    average_cost = position.average_cost
    realized_delta = 0
    total_bought = position.total_bought
    total_sold = position.total_sold

    if is_buy:
        total_cost = average_cost * quantity + trade_price * trade_quantity
        new_quantity = quantity + trade_quantity
        average_cost = trunc_div(total_cost, new_quantity) if new_quantity > 0 else 0
        quantity = new_quantity
        total_bought += trade_quantity
        effective = trade_quantity
    else:
        effective = min(trade_quantity, quantity)
        cost_basis = average_cost * effective
        sale_value = trade_price * effective
        realized_delta = trunc_div(sale_value - cost_basis, PRICE_SCALE)
        quantity -= effective
        total_sold += effective
        if quantity == 0:
            average_cost = 0

    # commit every field together
    position.quantity = quantity
    position.average_cost = average_cost
    position.realized_pnl += realized_delta
    position.total_bought = total_bought
    position.total_sold = total_sold
    position.total_fees_paid += fee_amount
    position.trade_count += 1
    position.last_trade_at = timestamp
    if position.first_trade_at == 0:
        position.first_trade_at = timestamp
    position.unrealized_pnl = unrealized_pnl(quantity, average_cost, trade_price)

    return PositionDelta(
        trader=position.trader,
        instrument=position.instrument,
        market=position.market,
        is_buy=is_buy,
        quantity=effective,
        price=trade_price,
        realized_pnl_change=realized_delta,
        fee_change=fee_amount,
        volume_change=trunc_div(trade_price * trade_quantity, PRICE_SCALE),
        timestamp=timestamp,
    )


def mark_to_market(position: Position, mark_price: int) -> None:
    position.unrealized_pnl = unrealized_pnl(position.quantity, position.average_cost, mark_price)
