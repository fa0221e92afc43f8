import threading

import pytest

from src.pnlledger.events.schema import PositionMarked, PositionUpdated, TradeRejected
from src.pnlledger.fixed import to_fixed
from src.pnlledger.ledger import Aggregator, InvalidTrade, Ledger, SQLitePositionStore
from src.pnlledger.model import TradeFact


def fact(trader="0xa", instrument="tok1", market="m1", qty="1", price="0.5", is_buy=True, fee=0, ts=1):
    return TradeFact(
        trader=trader,
        instrument=instrument,
        market=market,
        quantity=to_fixed(qty, 6),
        price=to_fixed(price, 6),
        is_buy=is_buy,
        fee=fee,
        timestamp=ts,
    )


def test_ledger_creates_position_lazily_and_feeds_aggregator():
    led = Ledger()
    assert led.position("0xa", "tok1") is None
    led.on_trade(fact(qty="100", price="0.50", ts=10, fee=1000))
    led.on_trade(fact(qty="100", price="0.70", ts=11))
    delta = led.on_trade(fact(qty="150", price="0.80", is_buy=False, ts=12))
    assert delta.realized_pnl_change == 30_000_000

    pos = led.position("0xa", "tok1")
    assert pos.quantity == 50_000_000
    assert pos.average_cost == 600_000
    assert pos.first_trade_at == 10

    acct = led.aggregator.account("0xa")
    assert acct.num_trades == 3 and acct.num_buys == 2 and acct.num_sells == 1
    assert acct.realized_pnl == 30_000_000
    assert acct.fees_paid == 1000
    mkt = led.aggregator.market("m1")
    assert mkt.last_price == 800_000 and mkt.previous_price == 700_000


def test_rejected_trade_leaves_store_untouched(monkeypatch):
    published = []
    monkeypatch.setattr("src.pnlledger.ledger.ledger.publish_event", lambda env, stream=None: published.append(env))
    led = Ledger(publish_events=True)
    led.on_trade(fact(qty="10"))
    bad = TradeFact(trader="0xa", instrument="tok1", market="m1", quantity=0, price=1, is_buy=False, fee=0, timestamp=2)
    with pytest.raises(InvalidTrade):
        led.on_trade(bad)
    pos = led.position("0xa", "tok1")
    assert pos.quantity == 10_000_000 and pos.trade_count == 1
    assert led.aggregator.totals.num_trades == 1
    assert isinstance(published[-1].event, TradeRejected)
    assert published[-1].event.reason == "invalid_trade"


def test_rejected_first_trade_does_not_create_position():
    led = Ledger()
    with pytest.raises(InvalidTrade):
        led.on_trade(fact(qty="-1"))
    assert led.position("0xa", "tok1") is None


def test_publishes_position_updated_events(monkeypatch):
    published = []
    monkeypatch.setattr("src.pnlledger.ledger.ledger.publish_event", lambda env, stream=None: published.append(env))
    led = Ledger(publish_events=True)
    led.on_trade(fact(qty="2", price="0.40"))
    led.on_trade(fact(qty="1", price="0.60", is_buy=False, ts=2))
    events = [env.event for env in published]
    assert all(isinstance(e, PositionUpdated) for e in events)
    assert events[-1].realized_pnl_change == 200_000
    assert events[-1].quantity == 1_000_000
    assert [env.sequence for env in published] == [1, 2]
    assert published[0].correlation_id == "0xa:tok1"


def test_no_publish_when_disabled(monkeypatch):
    published = []
    monkeypatch.setattr("src.pnlledger.ledger.ledger.publish_event", lambda env, stream=None: published.append(env))
    Ledger().on_trade(fact())
    assert published == []


def test_mark_to_market_by_market(monkeypatch):
    published = []
    monkeypatch.setattr("src.pnlledger.ledger.ledger.publish_event", lambda env, stream=None: published.append(env))
    led = Ledger(publish_events=True)
    led.on_trade(fact(trader="0xa", instrument="yes", market="m1", qty="10", price="0.40"))
    led.on_trade(fact(trader="0xb", instrument="yes", market="m1", qty="5", price="0.60"))
    led.on_trade(fact(trader="0xa", instrument="no", market="m2", qty="10", price="0.50"))
    led.on_trade(fact(trader="0xc", instrument="yes", market="m1", qty="1", price="0.50"))
    led.on_trade(fact(trader="0xc", instrument="yes", market="m1", qty="1", price="0.50", is_buy=False))
    published.clear()

    out = led.mark_to_market(5, {"yes": 500_000})
    # 0xa: (0.5-0.4)*10 = 1.0, 0xb: (0.5-0.6)*5 = -0.5, 0xc is closed
    assert out == {"m1": 500_000}
    assert led.position("0xa", "yes").unrealized_pnl == 1_000_000
    assert led.position("0xa", "no").unrealized_pnl == 0
    marked = [env.event for env in published]
    assert len(marked) == 2 and all(isinstance(e, PositionMarked) for e in marked)


def test_mark_unknown_position_returns_none():
    assert Ledger().mark("0xz", "tok", 1) is None


def test_mark_does_not_touch_realized():
    led = Ledger()
    led.on_trade(fact(qty="4", price="0.25"))
    led.on_trade(fact(qty="2", price="0.75", is_buy=False))
    pos = led.mark("0xa", "tok1", 100_000)
    assert pos.realized_pnl == 1_000_000
    assert pos.unrealized_pnl == -300_000
    assert pos.quantity == 2_000_000


def test_concurrent_updates_same_key_are_serialized():
    led = Ledger()

    def worker():
        for _ in range(50):
            led.on_trade(fact(qty="1", price="0.50"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    pos = led.position("0xa", "tok1")
    assert pos.trade_count == 400
    assert pos.quantity == 400_000_000
    assert pos.average_cost == 500_000
    assert led.aggregator.totals.num_trades == 400


def test_independent_keys_in_parallel():
    led = Ledger()

    def worker(trader):
        led.on_trade(fact(trader=trader, qty="10", price="0.20"))
        led.on_trade(fact(trader=trader, qty="10", price="0.30", is_buy=False, ts=2))

    threads = [threading.Thread(target=worker, args=(f"0x{i}",)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for i in range(10):
        pos = led.position(f"0x{i}", "tok1")
        assert pos.quantity == 0 and pos.realized_pnl == 1_000_000
    assert led.aggregator.totals.num_traders == 10
    assert led.aggregator.totals.realized_pnl == 10_000_000


def test_ledger_with_sqlite_store(tmp_path):
    store = SQLitePositionStore(str(tmp_path / "pos.sqlite"))
    led = Ledger(store=store)
    led.on_trade(fact(qty="3", price="0.10"))
    led.on_trade(fact(qty="4", price="0.20"))
    led.on_trade(fact(qty="7", price="0.30", is_buy=False))
    reopened = Ledger(store=SQLitePositionStore(str(tmp_path / "pos.sqlite")))
    pos = reopened.position("0xa", "tok1")
    assert pos.quantity == 0
    assert pos.is_active is False
    assert pos.realized_pnl == 1_000_006
    assert pos.trade_count == 3


class _StallingAggregator(Aggregator):
    """Holds the first delta until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()
        self._stalled = False

    def on_delta(self, delta):
        if not self._stalled:
            self._stalled = True
            self.entered.set()
            self.release.wait(5)
        super().on_delta(delta)


def test_same_key_consumers_see_store_order(monkeypatch):
    published = []
    monkeypatch.setattr("src.pnlledger.ledger.ledger.publish_event", lambda env, stream=None: published.append(env))
    agg = _StallingAggregator()
    led = Ledger(aggregator=agg, publish_events=True)

    first = threading.Thread(target=led.on_trade, args=(fact(qty="1", price="0.10", ts=1),))
    first.start()
    assert agg.entered.wait(5)
    second = threading.Thread(target=led.on_trade, args=(fact(qty="1", price="0.90", ts=2),))
    second.start()
    second.join(0.2)
    # the second trade waits for the first one's consumers
    assert second.is_alive()
    assert led.position("0xa", "tok1").trade_count == 1

    agg.release.set()
    first.join(5)
    second.join(5)

    mkt = agg.market("m1")
    assert mkt.last_price == 900_000 and mkt.previous_price == 100_000
    assert agg.account("0xa").last_traded_at == 2
    assert led.position("0xa", "tok1").last_trade_at == 2
    ordered = sorted(published, key=lambda env: env.sequence)
    assert [env.event.ts for env in ordered] == [1, 2]


def test_ledger_account_analytics():
    led = Ledger()
    led.on_trade(fact(instrument="win", qty="10", price="0.40"))
    led.on_trade(fact(instrument="win", qty="10", price="0.60", is_buy=False))
    led.on_trade(fact(instrument="open", qty="5", price="0.50"))
    stats = led.account_analytics("0xa")
    assert stats.total_positions == 2
    assert stats.active_positions == 1
    assert stats.win_rate == 0.5
    assert stats.realized_pnl == 2_000_000
