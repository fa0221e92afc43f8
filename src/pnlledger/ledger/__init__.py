"""Ledger package.

Public API:
- apply_trade / mark_to_market: pure average-cost position accounting.
- Ledger: per-key serialized updates against a position store, feeding aggregators.
"""

from .accounting import InvalidPrice, InvalidTrade, LedgerError, apply_trade, mark_to_market  # re-export
from .aggregates import AccountAnalytics, Aggregator, account_analytics
from .ledger import Ledger
from .store import InMemoryPositionStore, SQLitePositionStore, load_or_default
