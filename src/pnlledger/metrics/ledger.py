from __future__ import annotations

import os
from typing import Dict, Optional

from prometheus_client import Counter, Gauge, REGISTRY

_trades_applied: Optional[Counter] = None
_trades_rejected: Optional[Counter] = None
_fees_paid_total: Optional[Counter] = None
_oversells_clamped: Optional[Counter] = None
_realized_gain_total: Optional[Counter] = None
_realized_loss_total: Optional[Counter] = None
_unrealized_pnl: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self
    def inc(self, *args, **kwargs):
        return None
    def set(self, *args, **kwargs):
        return None


def _existing(name: str):
    coll = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
    if coll is not None:
        return coll
    for coll in list(getattr(REGISTRY, "_collector_to_names", {}).keys()):  # type: ignore[attr-defined]
        if getattr(coll, "_name", None) == name:
            return coll
    return None


def _safe_counter(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        # already registered (module reloaded or imported under another path)
        return _existing(name) or _NoOp()


def _safe_gauge_labels(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        return _existing(name) or _NoOp()


def get_trades_applied_total():
    global _trades_applied
    if _trades_applied is None:
        _trades_applied = _safe_counter("trades_applied_total", "Trades applied to positions", ["market", "side"])
    return _trades_applied


def get_trades_rejected_total():
    global _trades_rejected
    if _trades_rejected is None:
        _trades_rejected = _safe_counter("trades_rejected_total", "Trades rejected by validation", ["reason"])
    return _trades_rejected


def get_fees_paid_total():
    """Counter: fees paid in collateral units (unscaled), labeled by market."""
    global _fees_paid_total
    if _fees_paid_total is None:
        _fees_paid_total = _safe_counter("fees_paid_total", "Fees paid", ["market"])
    return _fees_paid_total


def get_oversells_clamped_total():
    global _oversells_clamped
    if _oversells_clamped is None:
        _oversells_clamped = _safe_counter(
            "oversells_clamped_total", "Sells larger than the held quantity", ["market"]
        )
    return _oversells_clamped


def get_realized_pnl_gain_total():
    # Counters cannot be decremented, so gains and losses are split
    global _realized_gain_total
    if _realized_gain_total is None:
        _realized_gain_total = _safe_counter("realized_pnl_gain_total", "Realized PnL gains", ["market"])
    return _realized_gain_total


def get_realized_pnl_loss_total():
    global _realized_loss_total
    if _realized_loss_total is None:
        _realized_loss_total = _safe_counter("realized_pnl_loss_total", "Realized PnL losses (absolute)", ["market"])
    return _realized_loss_total


def get_unrealized_pnl():
    """Gauge: unrealized PnL summed over active positions, labeled by market."""
    global _unrealized_pnl
    if _unrealized_pnl is None:
        _unrealized_pnl = _safe_gauge_labels("unrealized_pnl", "Unrealized PnL", ["market"])
    return _unrealized_pnl


def record_realized_pnl(market: str, delta: int) -> None:
    if delta > 0:
        get_realized_pnl_gain_total().labels(market=market).inc(delta)
    elif delta < 0:
        get_realized_pnl_loss_total().labels(market=market).inc(-delta)


def set_unrealized_gauges(unrealized_by_market: Dict[str, int]) -> None:
    g = get_unrealized_pnl()
    for mkt, val in unrealized_by_market.items():
        g.labels(market=str(mkt)).set(float(val))
