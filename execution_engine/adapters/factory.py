"""
Exchange Adapter Factory.

============================================================
PURPOSE
============================================================
Creates the exchange adapter for an account's trading mode.

============================================================
USAGE
============================================================
```python
adapter = create_adapter("futures", credentials, config)
async with adapter:
    summary = await adapter.get_account_summary()
```

============================================================
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..config import ExecutionEngineConfig
from .base import ExchangeAdapter
from .binance import BinanceFuturesAdapter, BinanceSpotAdapter

if TYPE_CHECKING:
    from ..credentials import ApiCredentials


logger = logging.getLogger(__name__)


class MarketType(Enum):
    """Binance market an adapter talks to."""

    SPOT = "spot"
    FUTURES = "futures"


def create_adapter(
    mode: str,
    credentials: "ApiCredentials",
    config: Optional[ExecutionEngineConfig] = None,
    testnet: Optional[bool] = None,
) -> ExchangeAdapter:
    """
    Create an unconnected adapter.

    Args:
        mode: 'spot' or 'futures'
        credentials: Decrypted API credentials
        config: Engine configuration
        testnet: Overrides config.exchange.testnet when given

    Raises:
        ValueError: If mode is unknown
    """
    config = config or ExecutionEngineConfig.from_env()
    market = MarketType(mode.lower())

    exchange = config.exchange
    if testnet is not None and testnet != exchange.testnet:
        exchange = type(exchange)(**{**vars(exchange), "testnet": testnet})

    adapter_cls = BinanceSpotAdapter if market is MarketType.SPOT else BinanceFuturesAdapter
    logger.debug(f"Creating {adapter_cls.__name__} (testnet={exchange.testnet})")
    return adapter_cls(
        credentials=credentials,
        config=exchange,
        timeout_config=config.timeout,
    )
