"""
Execution Engine - Exchange Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for exchange adapters.

DESIGN PRINCIPLES:
- One adapter instance per account per cycle
- Every call is a single bounded HTTP request, no retries
- Fully testable with the mock adapter

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..types import (
    AccountSummary,
    Candle,
    OrderAck,
    OrderSide,
    PositionInfo,
    PositionSide,
    SymbolRules,
)


class ExchangeAdapter(ABC):
    """
    Abstract interface for exchange adapters.

    Implementations:
    - BinanceSpotAdapter: Binance spot API
    - BinanceFuturesAdapter: Binance USDT-M futures API
    - MockExchangeAdapter: For testing
    """

    @property
    @abstractmethod
    def market(self) -> str:
        """'spot' or 'futures'."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the HTTP session.

        Raises:
            ExchangeError: If connection fails
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    async def __aenter__(self) -> "ExchangeAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    @abstractmethod
    async def get_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        pass

    @abstractmethod
    async def get_mark_price(self, symbol: str) -> Decimal:
        """Mark price (futures) or last ticker price (spot)."""
        pass

    @abstractmethod
    async def get_funding_rate(self, symbol: str) -> Optional[Decimal]:
        """Latest funding rate; None where the market has none."""
        pass

    @abstractmethod
    async def get_prices(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
        """Last prices keyed by symbol."""
        pass

    @abstractmethod
    async def get_symbol_rules(self, symbol: str) -> SymbolRules:
        pass

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    @abstractmethod
    async def get_account_summary(self) -> AccountSummary:
        pass

    @abstractmethod
    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        """Live non-zero positions, optionally for one symbol."""
        pass

    @abstractmethod
    async def get_position_mode(self) -> bool:
        """True when the account is in hedge (dual-side) mode."""
        pass

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        pass

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    @abstractmethod
    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        position_side: Optional[PositionSide] = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        """
        Submit a market order.

        Raises:
            ExchangeError: If the exchange rejects the order
        """
        pass
