"""
Execution Engine - Mock Exchange Adapter.

============================================================
PURPOSE
============================================================
In-memory exchange for tests and dry runs.

FEATURES:
- Deterministic prices, klines and symbol rules
- Spot balances and futures positions that move with orders
- Error injection per method
- Response-field omission to exercise execution fallbacks
- Residual quantities after closes to exercise dust handling

============================================================
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import create_exchange_error
from ..types import (
    AccountSummary,
    AssetBalance,
    Candle,
    ExchangeError,
    OrderAck,
    OrderFill,
    OrderSide,
    PositionInfo,
    PositionSide,
    SymbolRules,
)
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


def default_rules(symbol: str) -> SymbolRules:
    return SymbolRules(
        symbol=symbol,
        base_asset=symbol[:-4] if symbol.endswith("USDT") else symbol,
        quote_asset="USDT",
        min_quantity=Decimal("0.001"),
        max_quantity=Decimal("1000"),
        quantity_step=Decimal("0.001"),
        price_step=Decimal("0.01"),
        min_notional=Decimal("5"),
    )


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Configuration for mock adapter."""

    market: str = "futures"
    """'spot' or 'futures'."""

    prices: Dict[str, Decimal] = field(default_factory=lambda: {"BTCUSDT": Decimal("50000")})
    """Last/mark price by symbol."""

    klines: Dict[str, List[Candle]] = field(default_factory=dict)
    """Explicit klines; generated from the price when absent."""

    symbol_rules: Dict[str, SymbolRules] = field(default_factory=dict)
    """Explicit rules; default_rules() when absent."""

    funding_rates: Dict[str, Decimal] = field(default_factory=dict)

    hedge_mode: bool = False

    # Account
    wallet_balance: Decimal = Decimal("1000")
    """Futures wallet / spot USDT balance."""

    spot_balances: Dict[str, Decimal] = field(default_factory=dict)
    """Initial non-USDT spot balances."""

    # Fill behavior
    report_fill_fields: bool = True
    """When False, responses omit executedQty/avgPrice."""

    fill_price: Optional[Decimal] = None
    """Fill at this price instead of the current price."""

    close_residual: Optional[Decimal] = None
    """Quantity left on the exchange after any close."""

    apply_opens: bool = True
    """When False, opening orders are acknowledged but no position appears."""


# ============================================================
# MOCK EXCHANGE ADAPTER
# ============================================================

class MockExchangeAdapter(ExchangeAdapter):
    """
    Mock exchange adapter for testing.

    Simulates exchange behavior including:
    - Market order fills
    - Position tracking (one-way and hedge mode)
    - Balance management
    """

    def __init__(self, config: Optional[MockConfig] = None):
        self._config = config or MockConfig()
        self._connected = False

        self.positions: Dict[Tuple[str, PositionSide], PositionInfo] = {}
        self.leverage: Dict[str, int] = {}
        self.balances: Dict[str, Decimal] = {"USDT": self._config.wallet_balance}
        self.balances.update(self._config.spot_balances)
        self.orders: List[Dict[str, object]] = []
        self.calls: List[str] = []
        self.failures: Dict[str, ExchangeError] = {}

    @property
    def market(self) -> str:
        return self._config.market

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def config(self) -> MockConfig:
        return self._config

    # --------------------------------------------------------
    # TEST HELPERS
    # --------------------------------------------------------

    def fail(self, method: str, code: str = "EXC_ORDER_REJECTED", message: str = "mock failure") -> None:
        """Make the next and all later calls to `method` raise."""
        self.failures[method] = create_exchange_error(code, message)

    def set_price(self, symbol: str, price: Decimal) -> None:
        self._config.prices[symbol] = price
        for (sym, _), position in self.positions.items():
            if sym == symbol:
                position.mark_price = price
                position.unrealized_pnl = self._unrealized(position)

    def set_position(
        self,
        symbol: str,
        side: PositionSide,
        quantity: Decimal,
        entry_price: Decimal,
        leverage: int = 10,
    ) -> None:
        """Place a live position directly (e.g. a manual trade)."""
        key = (symbol, side)
        if quantity <= 0:
            self.positions.pop(key, None)
            return
        position = PositionInfo(
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=entry_price,
            mark_price=self._price(symbol),
            leverage=leverage,
        )
        position.unrealized_pnl = self._unrealized(position)
        self.positions[key] = position

    def _check(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def _price(self, symbol: str) -> Decimal:
        if symbol not in self._config.prices:
            raise create_exchange_error("VAL_INVALID_SYMBOL", f"Invalid symbol: {symbol}")
        return self._config.prices[symbol]

    @staticmethod
    def _unrealized(position: PositionInfo) -> Decimal:
        return (position.mark_price - position.entry_price) * position.quantity * position.side.sign

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        self._check("connect")
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def get_klines(self, symbol: str, interval: str = "1h", limit: int = 100) -> List[Candle]:
        self._check("get_klines")
        if symbol in self._config.klines:
            return self._config.klines[symbol][-limit:]
        price = float(self._price(symbol))
        candles = []
        for i in range(limit):
            # gentle zig-zag ending at the current price
            close = price * (1 + 0.001 * ((i % 5) - 2) * (limit - 1 - i) / limit)
            candles.append(Candle(
                open_time=i * 3_600_000,
                open=close,
                high=close * 1.001,
                low=close * 0.999,
                close=close,
                volume=100.0,
                close_time=(i + 1) * 3_600_000 - 1,
            ))
        return candles

    async def get_mark_price(self, symbol: str) -> Decimal:
        self._check("get_mark_price")
        return self._price(symbol)

    async def get_funding_rate(self, symbol: str) -> Optional[Decimal]:
        self._check("get_funding_rate")
        if self.market == "spot":
            return None
        return self._config.funding_rates.get(symbol)

    async def get_prices(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Decimal]:
        self._check("get_prices")
        wanted = set(symbols) if symbols is not None else None
        return {
            symbol: price
            for symbol, price in self._config.prices.items()
            if wanted is None or symbol in wanted
        }

    async def get_symbol_rules(self, symbol: str) -> SymbolRules:
        self._check("get_symbol_rules")
        self._price(symbol)
        return self._config.symbol_rules.get(symbol) or default_rules(symbol)

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_account_summary(self) -> AccountSummary:
        self._check("get_account_summary")
        if self.market == "spot":
            balances = {
                asset: AssetBalance(asset=asset, free=amount)
                for asset, amount in self.balances.items()
                if amount > 0
            }
            usdt = self.balances.get("USDT", Decimal("0"))
            return AccountSummary(
                balances=balances,
                total_wallet_balance=usdt,
                available_balance=usdt,
            )

        used_margin = sum((p.margin for p in self.positions.values()), Decimal("0"))
        unrealized = sum((p.unrealized_pnl for p in self.positions.values()), Decimal("0"))
        wallet = self.balances["USDT"]
        return AccountSummary(
            balances={"USDT": AssetBalance(asset="USDT", free=wallet - used_margin, locked=used_margin)},
            total_wallet_balance=wallet,
            available_balance=wallet - used_margin,
            used_margin=used_margin,
            unrealized_pnl=unrealized,
        )

    async def get_positions(self, symbol: Optional[str] = None) -> List[PositionInfo]:
        self._check("get_positions")
        return [
            PositionInfo(**vars(p))
            for (sym, _), p in self.positions.items()
            if symbol is None or sym == symbol
        ]

    async def get_position_mode(self) -> bool:
        self._check("get_position_mode")
        return self._config.hedge_mode

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self._check("set_leverage")
        if self.market == "spot":
            raise create_exchange_error("EXC_UNSUPPORTED", "Spot market has no leverage")
        self.leverage[symbol] = leverage

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        position_side: Optional[PositionSide] = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        self._check("place_market_order")
        price = self._config.fill_price or self._price(symbol)

        if self.market == "spot":
            self._fill_spot(symbol, side, quantity, price)
        else:
            self._fill_futures(symbol, side, quantity, price, position_side, reduce_only)

        order_id = uuid.uuid4().hex[:12]
        self.orders.append({
            "order_id": order_id,
            "symbol": symbol,
            "side": side,
            "quantity": quantity,
            "price": price,
            "position_side": position_side,
            "reduce_only": reduce_only,
        })
        logger.debug(f"Mock fill {symbol} {side.value} {quantity} @ {price}")

        if not self._config.report_fill_fields:
            return OrderAck(exchange_order_id=order_id, symbol=symbol, side=side, status="NEW")

        fills = [OrderFill(price=price, quantity=quantity)] if self.market == "spot" else []
        return OrderAck(
            exchange_order_id=order_id,
            symbol=symbol,
            side=side,
            status="FILLED",
            executed_quantity=quantity,
            average_price=price if self.market == "futures" else None,
            cumulative_quote=quantity * price,
            fills=fills,
        )

    def _fill_spot(self, symbol: str, side: OrderSide, quantity: Decimal, price: Decimal) -> None:
        base = symbol[:-4] if symbol.endswith("USDT") else symbol
        held = self.balances.get(base, Decimal("0"))
        cash = self.balances.get("USDT", Decimal("0"))
        if side is OrderSide.BUY:
            if cash < quantity * price:
                raise create_exchange_error("EXC_INSUFFICIENT_BALANCE", "Account has insufficient balance")
            self.balances["USDT"] = cash - quantity * price
            self.balances[base] = held + quantity
        else:
            if held < quantity:
                raise create_exchange_error("EXC_INSUFFICIENT_BALANCE", "Account has insufficient balance")
            self.balances[base] = held - quantity
            self.balances["USDT"] = cash + quantity * price

    def _fill_futures(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        position_side: Optional[PositionSide],
        reduce_only: bool,
    ) -> None:
        if position_side is None or position_side is PositionSide.BOTH:
            if reduce_only:
                target = PositionSide.SHORT if side is OrderSide.BUY else PositionSide.LONG
            else:
                target = PositionSide.LONG if side is OrderSide.BUY else PositionSide.SHORT
        else:
            target = position_side

        key = (symbol, target)
        existing = self.positions.get(key)
        closing = side is target.closing_side

        if closing:
            if existing is None:
                raise create_exchange_error("EXC_REDUCE_ONLY_REJECTED", "ReduceOnly Order is rejected")
            closed = min(quantity, existing.quantity)
            realized = (price - existing.entry_price) * closed * target.sign
            self.balances["USDT"] += realized
            remaining = existing.quantity - closed
            if self._config.close_residual is not None:
                remaining = self._config.close_residual
            if remaining <= 0:
                del self.positions[key]
            else:
                existing.quantity = remaining
                existing.unrealized_pnl = self._unrealized(existing)
            return

        if not self._config.apply_opens:
            return
        leverage = self.leverage.get(symbol, 10)
        if existing is None:
            self.set_position(symbol, target, quantity, price, leverage)
        else:
            total = existing.quantity + quantity
            existing.entry_price = (existing.entry_price * existing.quantity + price * quantity) / total
            existing.quantity = total
            existing.leverage = leverage
            existing.unrealized_pnl = self._unrealized(existing)
