from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import replace
from typing import Dict, Optional, Set, Tuple

from ..model import Position, PositionDelta, TradeFact, position_key
from ..config.loader import Settings
from ..events.schema import EventEnvelope, PositionMarked, PositionUpdated, TradeRejected
from ..events.bus import publish as publish_event
from ..logs.position_log import log_position_event
from ..metrics.ledger import (
    get_fees_paid_total,
    get_oversells_clamped_total,
    get_trades_applied_total,
    get_trades_rejected_total,
    record_realized_pnl,
    set_unrealized_gauges,
)
from .accounting import LedgerError, apply_trade, mark_to_market
from .aggregates import AccountAnalytics, Aggregator, account_analytics
from .store import InMemoryPositionStore, PositionStore, SQLitePositionStore, load_or_default

log = logging.getLogger("pnlledger.ledger")


class Ledger:
    """Applies trade facts to stored positions, one key at a time.

    Each update runs load -> apply -> store under the (trader, instrument)
    lock, so a reader of the store sees either the whole trade or none of it.
    Facts for the same key must arrive in source order.
    """

    def __init__(
        self,
        store: Optional[PositionStore] = None,
        aggregator: Optional[Aggregator] = None,
        publish_events: bool = False,
        events_stream: Optional[str] = None,
    ):
        self.store = store if store is not None else InMemoryPositionStore()
        self.aggregator = aggregator if aggregator is not None else Aggregator()
        self.publish_events = publish_events
        self.events_stream = events_stream
        self._locks: Dict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()
        self._sequence = 0
        self._gauged_markets: Set[str] = set()
        self._applied = get_trades_applied_total()
        self._rejected = get_trades_rejected_total()
        self._fees = get_fees_paid_total()
        self._clamped = get_oversells_clamped_total()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Ledger":
        if settings.store == "sqlite":
            store: PositionStore = SQLitePositionStore(settings.sqlite_path)
        else:
            store = InMemoryPositionStore()
        return cls(store=store, publish_events=settings.publish_events, events_stream=settings.events_stream)

    def _lock_for(self, trader: str, instrument: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[position_key(trader, instrument)]

    def _publish(self, event) -> None:
        if not self.publish_events:
            return
        with self._locks_guard:
            self._sequence += 1
            seq = self._sequence
        env = EventEnvelope(correlation_id=f"{event.trader}:{event.instrument}", sequence=seq, event=event)
        publish_event(env, stream=self.events_stream)

    def on_trade(self, fact: TradeFact) -> PositionDelta:
        # Aggregator feed, metrics and events stay under the key lock so that
        # consumers see one key's trades in the order they hit the store.
        with self._lock_for(fact.trader, fact.instrument):
            current = load_or_default(self.store, fact.trader, fact.instrument, fact.market)
            pos = replace(current)
            try:
                delta = apply_trade(pos, fact.quantity, fact.price, fact.is_buy, fact.fee, fact.timestamp)
            except LedgerError as e:
                self._rejected.labels(reason=e.reason).inc()
                log.warning("rejected trade %s/%s: %s", fact.trader, fact.instrument, e)
                self._publish(TradeRejected(
                    ts=fact.timestamp, market=fact.market, trader=fact.trader,
                    instrument=fact.instrument, side=fact.side, reason=e.reason, detail=str(e),
                ))
                raise
            self.store.store(pos)
            self.aggregator.on_delta(delta)

            market = pos.market
            self._applied.labels(market=market, side=fact.side).inc()
            if delta.fee_change:
                self._fees.labels(market=market).inc(delta.fee_change)
            record_realized_pnl(market, delta.realized_pnl_change)
            if not fact.is_buy and fact.quantity > delta.quantity:
                self._clamped.labels(market=market).inc()
                if current.quantity == 0:
                    log_position_event("sell_without_position", pos, fact.side, level=logging.WARNING,
                                       extra={"requested": fact.quantity})
                else:
                    log_position_event("oversell_clamped", pos, fact.side, level=logging.WARNING,
                                       extra={"requested": fact.quantity, "effective": delta.quantity})
            log_position_event("position_updated", pos, fact.side)

            self._publish(PositionUpdated(
                ts=fact.timestamp,
                market=market,
                trader=pos.trader,
                instrument=pos.instrument,
                side=fact.side,
                quantity=pos.quantity,
                average_cost=pos.average_cost,
                realized_pnl=pos.realized_pnl,
                unrealized_pnl=pos.unrealized_pnl,
                trade_count=pos.trade_count,
                realized_pnl_change=delta.realized_pnl_change,
                fee_change=delta.fee_change,
                volume_change=delta.volume_change,
            ))
        return delta

    def position(self, trader: str, instrument: str) -> Optional[Position]:
        return self.store.load(trader, instrument)

    def account_analytics(self, trader: str) -> AccountAnalytics:
        return account_analytics(self.store, trader)

    def mark(self, trader: str, instrument: str, mark_price: int, ts: int = 0) -> Optional[Position]:
        """Re-mark one position; returns None if the pair was never traded."""
        with self._lock_for(trader, instrument):
            pos = self.store.load(trader, instrument)
            if pos is None:
                return None
            mark_to_market(pos, mark_price)
            self.store.store(pos)
            self._publish(PositionMarked(
                ts=ts, market=pos.market, trader=trader, instrument=instrument,
                mark_price=mark_price, quantity=pos.quantity, unrealized_pnl=pos.unrealized_pnl,
            ))
        return pos

    def mark_to_market(self, ts: int, price_by_instrument: Dict[str, int]) -> Dict[str, int]:
        """Re-mark every active position with a known price.

        Returns unrealized PnL summed per market over the re-marked positions.
        Markets left with no active position have their gauge reset to zero.
        """
        unreal_by_market: Dict[str, int] = {}
        active_markets: Set[str] = set()
        for snapshot in self.store.positions():
            if not snapshot.is_active:
                continue
            active_markets.add(snapshot.market)
            if snapshot.instrument not in price_by_instrument:
                continue
            pos = self.mark(snapshot.trader, snapshot.instrument, price_by_instrument[snapshot.instrument], ts)
            if pos is None:
                continue
            unreal_by_market[pos.market] = unreal_by_market.get(pos.market, 0) + pos.unrealized_pnl

        gauges = dict(unreal_by_market)
        with self._locks_guard:
            for mkt in self._gauged_markets - active_markets:
                gauges[mkt] = 0
            self._gauged_markets = (self._gauged_markets & active_markets) | set(unreal_by_market)
        set_unrealized_gauges(gauges)
        log.info("mark_to_market ts=%s instruments=%d markets=%d", ts, len(price_by_instrument), len(unreal_by_market))
        return unreal_by_market
