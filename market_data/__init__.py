"""
Market Data Package.

- indicators: Pure technical indicator functions
- gatherer: Per-symbol market snapshots through an exchange adapter
"""

from .config import DEFAULT_SYMBOLS, MarketDataConfig
from .gatherer import MarketDataGatherer, MarketSnapshot
from .indicators import (
    BollingerBands,
    IndicatorSet,
    MACDResult,
    calculate_bollinger_bands,
    calculate_ema,
    calculate_ma,
    calculate_macd,
    calculate_rsi,
    summarize,
)


__all__ = [
    "DEFAULT_SYMBOLS",
    "MarketDataConfig",
    "MarketDataGatherer",
    "MarketSnapshot",
    "BollingerBands",
    "IndicatorSet",
    "MACDResult",
    "calculate_bollinger_bands",
    "calculate_ema",
    "calculate_ma",
    "calculate_macd",
    "calculate_rsi",
    "summarize",
]
