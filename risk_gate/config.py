"""
Risk Gate - Configuration.

============================================================
PURPOSE
============================================================
Thresholds for the pre-execution risk checks.

Account-specific limits (max amount, max daily loss, leverage
cap, whitelist) live on the trading account. This config holds
the floors that apply to every account.

============================================================
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv


@dataclass
class RiskGateConfig:
    """
    Risk gate thresholds.
    """

    spot_min_confidence: float = 0.70
    """Spot confidence floor."""

    futures_min_confidence: float = 0.65
    """Futures confidence floor."""

    spot_min_trade_value: Decimal = Decimal("5")
    """Binance spot minimum order value (USDT)."""

    futures_min_notional: Decimal = Decimal("5")
    """Futures minimum notional (margin x leverage)."""

    min_trade_interval_minutes: Optional[int] = None
    """
    Minimum time between executed trades of the same symbol.
    None disables the trade-frequency check.
    """

    timezone: str = "UTC"
    """Time zone whose midnight starts the daily-loss window."""

    def min_confidence(self, futures: bool) -> float:
        return self.futures_min_confidence if futures else self.spot_min_confidence

    @classmethod
    def for_testing(cls) -> "RiskGateConfig":
        return cls()

    @classmethod
    def from_env(cls) -> "RiskGateConfig":
        """TRADING_TIMEZONE, MIN_TRADE_INTERVAL_MINUTES."""
        load_dotenv()
        interval = os.getenv("MIN_TRADE_INTERVAL_MINUTES")
        return cls(
            timezone=os.getenv("TRADING_TIMEZONE", "UTC"),
            min_trade_interval_minutes=int(interval) if interval else None,
        )
