"""
Risk Gate.

Ordered pre-execution checks between the Decision Engine and
the Order Executor. A failing decision is cancelled with a
human-readable reason and never reaches the exchange.
"""

from .config import RiskGateConfig
from .types import (
    AccountLimits,
    CheckName,
    CheckResult,
    RiskContext,
    RiskVerdict,
)
from .checks import (
    ActionCheck,
    AmountCheck,
    BaseCheck,
    ConfidenceCheck,
    DailyLossCheck,
    LeverageCheck,
    SymbolCheck,
    TradeFrequencyCheck,
)
from .gate import RiskGate, resolve_amount


__all__ = [
    "RiskGateConfig",
    "AccountLimits",
    "CheckName",
    "CheckResult",
    "RiskContext",
    "RiskVerdict",
    "BaseCheck",
    "ActionCheck",
    "ConfidenceCheck",
    "SymbolCheck",
    "DailyLossCheck",
    "AmountCheck",
    "LeverageCheck",
    "TradeFrequencyCheck",
    "RiskGate",
    "resolve_amount",
]
