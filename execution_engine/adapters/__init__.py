"""
Execution Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations.

AVAILABLE ADAPTERS:
- BinanceSpotAdapter: Binance spot API
- BinanceFuturesAdapter: Binance USDT-M futures API
- MockExchangeAdapter: For testing

============================================================
"""

from .base import ExchangeAdapter
from .binance import BinanceFuturesAdapter, BinanceSpotAdapter
from .mock import MockConfig, MockExchangeAdapter, default_rules
from .factory import MarketType, create_adapter
from .logging_utils import mask_headers, mask_params, mask_value


__all__ = [
    "ExchangeAdapter",
    "BinanceFuturesAdapter",
    "BinanceSpotAdapter",
    "MockConfig",
    "MockExchangeAdapter",
    "default_rules",
    "MarketType",
    "create_adapter",
    "mask_headers",
    "mask_params",
    "mask_value",
]
