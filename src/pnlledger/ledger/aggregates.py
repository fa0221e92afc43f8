"""Account, market and global roll-ups.

The accumulators are fed from `PositionDelta`s and owned by the consumer side;
the accounting functions never read or write them. `account_analytics` is a
read-side summary computed from a trader's stored positions. No time-bucketing
happens here.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Set

from ..model import PositionDelta
from .store import PositionStore

# Profit factor reported when an account has profits but no losses
PROFIT_FACTOR_NO_LOSSES = 999.0


@dataclass
class AccountTotals:
    trader: str
    num_trades: int = 0
    num_buys: int = 0
    num_sells: int = 0
    volume: int = 0
    fees_paid: int = 0
    realized_pnl: int = 0
    last_traded_at: int = 0


@dataclass
class MarketTotals:
    market: str
    num_trades: int = 0
    num_buys: int = 0
    num_sells: int = 0
    volume: int = 0
    fees: int = 0
    realized_pnl: int = 0
    last_price: int = 0
    previous_price: int = 0


@dataclass
class GlobalTotals:
    num_trades: int = 0
    num_buys: int = 0
    num_sells: int = 0
    buy_volume: int = 0
    sell_volume: int = 0
    fees: int = 0
    realized_pnl: int = 0
    traders: Set[str] = field(default_factory=set)

    @property
    def volume(self) -> int:
        return self.buy_volume + self.sell_volume

    @property
    def num_traders(self) -> int:
        return len(self.traders)


class Aggregator:
    def __init__(self) -> None:
        self._accounts: Dict[str, AccountTotals] = {}
        self._markets: Dict[str, MarketTotals] = {}
        self._global = GlobalTotals()
        self._lock = threading.Lock()

    def on_delta(self, delta: PositionDelta) -> None:
        with self._lock:
            acct = self._accounts.setdefault(delta.trader, AccountTotals(trader=delta.trader))
            mkt = self._markets.setdefault(delta.market, MarketTotals(market=delta.market))
            g = self._global

            acct.num_trades += 1
            acct.volume += delta.volume_change
            acct.fees_paid += delta.fee_change
            acct.realized_pnl += delta.realized_pnl_change
            acct.last_traded_at = delta.timestamp

            mkt.num_trades += 1
            mkt.volume += delta.volume_change
            mkt.fees += delta.fee_change
            mkt.realized_pnl += delta.realized_pnl_change
            mkt.previous_price = mkt.last_price
            mkt.last_price = delta.price

            g.num_trades += 1
            g.fees += delta.fee_change
            g.realized_pnl += delta.realized_pnl_change
            g.traders.add(delta.trader)

            if delta.is_buy:
                acct.num_buys += 1
                mkt.num_buys += 1
                g.num_buys += 1
                g.buy_volume += delta.volume_change
            else:
                acct.num_sells += 1
                mkt.num_sells += 1
                g.num_sells += 1
                g.sell_volume += delta.volume_change

    def account(self, trader: str) -> Optional[AccountTotals]:
        with self._lock:
            a = self._accounts.get(trader)
            return replace(a) if a is not None else None

    def market(self, market: str) -> Optional[MarketTotals]:
        with self._lock:
            m = self._markets.get(market)
            return replace(m) if m is not None else None

    @property
    def totals(self) -> GlobalTotals:
        with self._lock:
            return replace(self._global, traders=set(self._global.traders))


@dataclass
class AccountAnalytics:
    trader: str
    total_positions: int = 0
    active_positions: int = 0
    winning_positions: int = 0
    total_profits: int = 0
    total_losses: int = 0
    max_single_loss: int = 0
    realized_pnl: int = 0
    unrealized_pnl: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0


def account_analytics(store: PositionStore, trader: str) -> AccountAnalytics:
    """Summarize one trader's positions.

    Only positions that were ever bought count. A position wins or loses on its
    cumulative realized PnL; `total_losses` and `max_single_loss` are magnitudes.
    Unrealized PnL is as of each position's last mark.
    """
    out = AccountAnalytics(trader=trader)
    for pos in store.positions():
        if pos.trader != trader or pos.total_bought <= 0:
            continue
        out.total_positions += 1
        if pos.is_active:
            out.active_positions += 1
        out.realized_pnl += pos.realized_pnl
        out.unrealized_pnl += pos.unrealized_pnl
        if pos.realized_pnl > 0:
            out.winning_positions += 1
            out.total_profits += pos.realized_pnl
        elif pos.realized_pnl < 0:
            loss = -pos.realized_pnl
            out.total_losses += loss
            out.max_single_loss = max(out.max_single_loss, loss)

    if out.total_positions:
        out.win_rate = out.winning_positions / out.total_positions
    if out.total_losses:
        out.profit_factor = out.total_profits / out.total_losses
    elif out.total_profits:
        out.profit_factor = PROFIT_FACTOR_NO_LOSSES
    return out
