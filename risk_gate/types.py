"""
Risk Gate - Types.

============================================================
PURPOSE
============================================================
Inputs and outputs of the risk gate.

- AccountLimits: per-account limits, read from the account row
- RiskContext: everything the checks need, loaded up front so
  the checks themselves are synchronous and side-effect free
- CheckResult / RiskVerdict: per-check and aggregate outcome

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class CheckName(Enum):
    """Risk checks in evaluation order."""

    ACTION = "ACTION"
    CONFIDENCE = "CONFIDENCE"
    SYMBOL = "SYMBOL"
    DAILY_LOSS = "DAILY_LOSS"
    AMOUNT = "AMOUNT"
    LEVERAGE = "LEVERAGE"
    TRADE_FREQUENCY = "TRADE_FREQUENCY"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class AccountLimits:
    """Limits configured on the trading account."""

    futures: bool = False
    allowed_symbols: List[str] = field(default_factory=list)
    max_trade_amount: Decimal = Decimal("100")
    max_position_size: Decimal = Decimal("1000")
    max_daily_loss: Decimal = Decimal("50")
    max_leverage: int = 20
    default_leverage: int = 10

    @classmethod
    def from_account(cls, account) -> "AccountLimits":
        """Build from a TradingAccountModel."""
        return cls(
            futures=account.mode == "FUTURES",
            allowed_symbols=list(account.allowed_symbols or []),
            max_trade_amount=Decimal(account.max_trade_amount),
            max_position_size=Decimal(account.max_position_size),
            max_daily_loss=Decimal(account.max_daily_loss),
            max_leverage=account.max_leverage,
            default_leverage=account.default_leverage,
        )


@dataclass
class RiskContext:
    """
    Pre-loaded state for one evaluation.
    """

    limits: AccountLimits
    now: datetime

    realized_loss_today: Decimal = Decimal("0")
    """Sum of |negative PnL| on fills since local midnight."""

    holding_values: Dict[str, Decimal] = field(default_factory=dict)
    """Spot: tradeable holding value by symbol."""

    position_margins: Dict[Tuple[str, str], Decimal] = field(default_factory=dict)
    """Futures: open position margin by (symbol, side)."""

    last_fill_at: Optional[datetime] = None
    """Most recent executed fill, for the frequency check."""


@dataclass
class CheckResult:
    """Outcome of one check."""

    name: CheckName
    passed: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, name: CheckName, **details) -> "CheckResult":
        return cls(name=name, passed=True, details=details)

    @classmethod
    def fail(cls, name: CheckName, reason: str, **details) -> "CheckResult":
        return cls(name=name, passed=False, reason=reason, details=details)


@dataclass
class RiskVerdict:
    """
    Aggregate gate outcome.

    approved=False always carries a human-readable reason.
    """

    approved: bool
    evaluated_at: datetime
    reason: Optional[str] = None
    failed_check: Optional[CheckName] = None
    amount: Decimal = Decimal("0")
    """Amount / margin after resolution (spot SELL, futures CLOSE defaults)."""

    leverage: Optional[int] = None
    results: List[CheckResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "failed_check": self.failed_check.value if self.failed_check else None,
            "amount": str(self.amount),
            "leverage": self.leverage,
            "checks": [r.name.value for r in self.results],
        }
