"""
Market Data - Configuration.
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


DEFAULT_SYMBOLS = ["BTCUSDT"]


@dataclass
class MarketDataConfig:
    """Kline window used for indicators and prompts."""

    interval: str = "1h"
    """Kline interval."""

    limit: int = 100
    """Number of klines per symbol."""

    recent_candles: int = 5
    """Candles included verbatim in the snapshot."""

    default_symbols: List[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    """Used when an account has no whitelist."""

    @classmethod
    def for_testing(cls) -> "MarketDataConfig":
        return cls(limit=50)

    @classmethod
    def from_env(cls) -> "MarketDataConfig":
        load_dotenv()
        return cls(
            interval=os.getenv("KLINE_INTERVAL", "1h"),
            limit=int(os.getenv("KLINE_LIMIT", "100")),
        )
