"""
Portfolio Package.

- holdings: Ledger replay and live/local position merge
- valuation: Initial investment, current value, history
"""

from .holdings import (
    MIN_TRADE_VALUE,
    PositionView,
    PositionViews,
    SpotHolding,
    SpotHoldings,
    SpotLot,
    base_asset,
    build_position_views,
    reconstruct_spot_holdings,
    replay_spot_trades,
)
from .valuation import (
    ClosedPositionSummary,
    PortfolioValuation,
    PortfolioValuator,
    ValuePoint,
    build_value_history,
    derive_initial_investment,
    summarize_closed_position,
    value_spot_balances,
)


__all__ = [
    "MIN_TRADE_VALUE",
    "PositionView",
    "PositionViews",
    "SpotHolding",
    "SpotHoldings",
    "SpotLot",
    "base_asset",
    "build_position_views",
    "reconstruct_spot_holdings",
    "replay_spot_trades",
    "ClosedPositionSummary",
    "PortfolioValuation",
    "PortfolioValuator",
    "ValuePoint",
    "build_value_history",
    "derive_initial_investment",
    "summarize_closed_position",
    "value_spot_balances",
]
