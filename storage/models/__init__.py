"""
Storage Models Package.

ORM models for the AI trading ledger.

============================================================
MODEL ORGANIZATION
============================================================

Accounts (trading.py)
- TradingAccountModel

Decisions (trading.py)
- DecisionModel

Fills (trading.py)
- TradeModel (spot)
- FuturesOrderModel (futures)

Positions (trading.py)
- FuturesPositionModel

Snapshots (trading.py)
- BalanceHistoryModel
- FuturesBalanceHistoryModel

============================================================
"""

from storage.models.base import Base, TimestampMixin, new_id, utcnow
from storage.models.trading import (
    POSITION_CLOSED,
    POSITION_OPEN,
    BalanceHistoryModel,
    DecisionModel,
    FuturesBalanceHistoryModel,
    FuturesOrderModel,
    FuturesPositionModel,
    TradeModel,
    TradingAccountModel,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "new_id",
    "utcnow",
    "POSITION_OPEN",
    "POSITION_CLOSED",
    "TradingAccountModel",
    "DecisionModel",
    "TradeModel",
    "FuturesOrderModel",
    "FuturesPositionModel",
    "BalanceHistoryModel",
    "FuturesBalanceHistoryModel",
]
