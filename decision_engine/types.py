"""
Decision Engine - Types.

============================================================
PURPOSE
============================================================
Structured trade decision produced from a model reply.

A decision is a tagged variant: the action enum says which
mode it belongs to, and every parsed field carries a status
saying whether it was read, absent, or unusable.

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class TradingMode(Enum):
    """Account trading mode."""

    SPOT = "SPOT"
    FUTURES = "FUTURES"

    @property
    def market(self) -> str:
        """Adapter market name."""
        return self.value.lower()


class DecisionAction(Enum):
    """Recommended action."""

    # Spot
    BUY = "BUY"
    SELL = "SELL"

    # Futures
    OPEN_LONG = "OPEN_LONG"
    OPEN_SHORT = "OPEN_SHORT"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"

    # Both
    HOLD = "HOLD"

    @property
    def is_hold(self) -> bool:
        return self is DecisionAction.HOLD

    @property
    def is_opening(self) -> bool:
        """BUY or OPEN_*: subject to the upper amount bound."""
        return self in (DecisionAction.BUY, DecisionAction.OPEN_LONG, DecisionAction.OPEN_SHORT)

    @property
    def is_closing(self) -> bool:
        return self in (DecisionAction.SELL, DecisionAction.CLOSE_LONG, DecisionAction.CLOSE_SHORT)

    @property
    def position_side(self) -> Optional[str]:
        """'LONG' / 'SHORT' for futures actions."""
        if self in (DecisionAction.OPEN_LONG, DecisionAction.CLOSE_LONG):
            return "LONG"
        if self in (DecisionAction.OPEN_SHORT, DecisionAction.CLOSE_SHORT):
            return "SHORT"
        return None

    @classmethod
    def for_mode(cls, mode: TradingMode) -> FrozenSet["DecisionAction"]:
        return SPOT_ACTIONS if mode is TradingMode.SPOT else FUTURES_ACTIONS


SPOT_ACTIONS = frozenset({DecisionAction.BUY, DecisionAction.SELL, DecisionAction.HOLD})
FUTURES_ACTIONS = frozenset({
    DecisionAction.OPEN_LONG,
    DecisionAction.OPEN_SHORT,
    DecisionAction.CLOSE_LONG,
    DecisionAction.CLOSE_SHORT,
    DecisionAction.HOLD,
})


class RiskLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DecisionOutcome(Enum):
    """Terminal outcome of a non-HOLD decision. Written once."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class FieldStatus(Enum):
    """How a field of the model reply was read."""

    PARSED = "PARSED"
    MISSING = "MISSING"
    INVALID = "INVALID"


@dataclass
class TradeDecision:
    """
    Parsed model recommendation.

    amount is the spot quote amount (USDT) or the futures margin.
    Every field already holds its safe default when it was missing
    or invalid; field_status says which.
    """

    mode: TradingMode
    action: DecisionAction = DecisionAction.HOLD
    confidence: float = 0.5
    risk_level: RiskLevel = RiskLevel.MEDIUM
    symbol: Optional[str] = None
    amount: Decimal = Decimal("0")
    leverage: Optional[int] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    trend: Optional[str] = None
    reason: Optional[str] = None
    raw_text: str = ""
    field_status: Dict[str, FieldStatus] = field(default_factory=dict)

    @property
    def is_hold(self) -> bool:
        return self.action.is_hold

    @property
    def missing_fields(self) -> List[str]:
        return sorted(k for k, v in self.field_status.items() if v is not FieldStatus.PARSED)

    def status_of(self, name: str) -> FieldStatus:
        return self.field_status.get(name, FieldStatus.MISSING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "action": self.action.value,
            "confidence": self.confidence,
            "risk_level": self.risk_level.value,
            "symbol": self.symbol,
            "amount": str(self.amount),
            "leverage": self.leverage,
            "stop_loss": str(self.stop_loss) if self.stop_loss is not None else None,
            "take_profit": str(self.take_profit) if self.take_profit is not None else None,
            "trend": self.trend,
            "reason": self.reason,
            "field_status": {k: v.value for k, v in sorted(self.field_status.items())},
        }


@dataclass
class AccountContext:
    """Account limits and current exposure shown to the model."""

    mode: TradingMode
    allowed_symbols: List[str] = field(default_factory=list)
    max_trade_amount: Decimal = Decimal("100")
    max_position_size: Decimal = Decimal("1000")
    max_leverage: int = 20
    default_leverage: int = 10
    available_balance: Decimal = Decimal("0")

    holdings: Optional[Any] = None
    """portfolio.SpotHoldings (spot)."""

    positions: Optional[Any] = None
    """portfolio.PositionViews (futures)."""

    def exposure_dict(self) -> Dict[str, Any]:
        if self.mode is TradingMode.SPOT:
            return self.holdings.to_dict() if self.holdings is not None else {}
        return self.positions.to_dict() if self.positions is not None else {}
