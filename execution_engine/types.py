"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Execution Engine.

CRITICAL PRINCIPLE:
    "Exchange state is authoritative."
    "The engine executes only decisions that passed the Risk Gate."

============================================================
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# ORDER TYPES
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class PositionSide(Enum):
    """Position side for hedge mode."""

    LONG = "LONG"
    SHORT = "SHORT"
    BOTH = "BOTH"  # One-way mode

    @property
    def sign(self) -> int:
        """PnL sign: +1 for LONG, -1 for SHORT."""
        return -1 if self is PositionSide.SHORT else 1

    @property
    def opening_side(self) -> OrderSide:
        return OrderSide.SELL if self is PositionSide.SHORT else OrderSide.BUY

    @property
    def closing_side(self) -> OrderSide:
        return self.opening_side.opposite


class PositionStatus(Enum):
    """Local position lifecycle. CLOSED is terminal."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


# ============================================================
# MARKET DATA
# ============================================================

@dataclass(frozen=True)
class Candle:
    """One kline."""

    open_time: int
    """Open time (ms since epoch)."""

    open: float
    high: float
    low: float
    close: float
    volume: float

    close_time: int = 0
    """Close time (ms since epoch)."""


# ============================================================
# ACCOUNT STATE
# ============================================================

@dataclass
class AssetBalance:
    """Account balance for an asset."""

    asset: str = ""
    """Asset symbol (e.g., USDT)."""

    free: Decimal = Decimal("0")
    """Free (available) balance."""

    locked: Decimal = Decimal("0")
    """Locked (in orders) balance."""

    @property
    def total(self) -> Decimal:
        return self.free + self.locked


@dataclass
class AccountSummary:
    """
    Account-level balance snapshot from the exchange.

    Spot fills `balances`; futures fills the wallet/margin fields.
    """

    balances: Dict[str, AssetBalance] = field(default_factory=dict)
    """Balances by asset."""

    total_wallet_balance: Decimal = Decimal("0")
    """Futures wallet balance (USDT)."""

    available_balance: Decimal = Decimal("0")
    """Balance available for new positions."""

    used_margin: Decimal = Decimal("0")
    """Initial margin held by open positions."""

    unrealized_pnl: Decimal = Decimal("0")
    """Account-level unrealized PnL."""

    @property
    def total_value(self) -> Decimal:
        """Futures total value: wallet + unrealized."""
        return self.total_wallet_balance + self.unrealized_pnl

    def non_zero_balances(self) -> List[AssetBalance]:
        return [b for b in self.balances.values() if b.total > 0]


@dataclass
class PositionInfo:
    """Live futures position as reported by the exchange."""

    symbol: str = ""
    """Trading symbol."""

    side: PositionSide = PositionSide.LONG
    """LONG or SHORT (derived from amount sign in one-way mode)."""

    quantity: Decimal = Decimal("0")
    """Absolute position size."""

    entry_price: Decimal = Decimal("0")
    """Average entry price."""

    mark_price: Decimal = Decimal("0")
    """Current mark price."""

    unrealized_pnl: Decimal = Decimal("0")
    """Unrealized PnL."""

    leverage: int = 1
    """Position leverage."""

    isolated_margin: Optional[Decimal] = None
    """Isolated margin, None for cross."""

    liquidation_price: Optional[Decimal] = None
    """Estimated liquidation price."""

    @property
    def notional(self) -> Decimal:
        price = self.mark_price if self.mark_price > 0 else self.entry_price
        return self.quantity * price

    @property
    def margin(self) -> Decimal:
        """Isolated margin, else notional / leverage."""
        if self.isolated_margin is not None and self.isolated_margin > 0:
            return self.isolated_margin
        return self.notional / Decimal(max(self.leverage, 1))


# ============================================================
# EXCHANGE RULES
# ============================================================

@dataclass
class SymbolRules:
    """Exchange rules for a trading symbol."""

    symbol: str = ""
    """Trading symbol."""

    base_asset: str = ""
    quote_asset: str = "USDT"

    # Quantity rules
    min_quantity: Decimal = Decimal("0")
    """Minimum order quantity."""

    max_quantity: Decimal = Decimal("0")
    """Maximum order quantity (0 = unbounded)."""

    quantity_step: Decimal = Decimal("0")
    """Quantity step size."""

    # Price rules
    price_step: Decimal = Decimal("0")
    """Price tick size."""

    # Notional rules
    min_notional: Decimal = Decimal("0")
    """Minimum notional value."""

    # Leverage
    max_leverage: int = 125
    """Maximum leverage allowed."""

    def round_quantity(self, quantity: Decimal) -> Decimal:
        """Round quantity down to the step size."""
        if self.quantity_step == 0:
            return quantity
        return (quantity // self.quantity_step) * self.quantity_step

    def round_price(self, price: Decimal) -> Decimal:
        """Round price down to the tick size."""
        if self.price_step == 0:
            return price
        return (price // self.price_step) * self.price_step


# ============================================================
# ORDER ACKNOWLEDGEMENT
# ============================================================

@dataclass
class OrderFill:
    """One partial fill inside a spot order response."""

    price: Decimal
    quantity: Decimal
    commission: Decimal = Decimal("0")
    commission_asset: str = ""


@dataclass
class OrderAck:
    """
    Raw market-order response, normalized to types.

    Every numeric field is optional: exchanges omit or zero them
    depending on response type and market.
    """

    exchange_order_id: str = ""
    symbol: str = ""
    side: OrderSide = OrderSide.BUY
    status: str = ""

    executed_quantity: Optional[Decimal] = None
    average_price: Optional[Decimal] = None
    cumulative_quote: Optional[Decimal] = None
    fills: List[OrderFill] = field(default_factory=list)
    transact_time: Optional[int] = None

    raw: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# EXECUTION REPORT
# ============================================================

@dataclass
class ExecutionReport:
    """
    Best-effort execution result.

    quantity_confirmed / price_confirmed say whether the values came
    from the exchange response or from the pre-trade estimate.
    """

    exchange_order_id: str
    symbol: str
    side: OrderSide
    position_side: Optional[PositionSide]
    status: str

    requested_quantity: Decimal
    executed_quantity: Decimal
    average_price: Decimal
    commission: Decimal = Decimal("0")

    quantity_confirmed: bool = False
    price_confirmed: bool = False

    reduce_only: bool = False
    leverage: Optional[int] = None
    executed_at: datetime = field(default_factory=datetime.utcnow)

    pre_trade_position: Optional[PositionInfo] = None
    """Live position read before a close, for entry-price fallback."""

    rules: Optional[SymbolRules] = None
    """Rules the quantity was normalized against."""

    @property
    def quote_quantity(self) -> Decimal:
        return self.executed_quantity * self.average_price

    @property
    def fully_confirmed(self) -> bool:
        return self.quantity_confirmed and self.price_confirmed

    @classmethod
    def from_ack(
        cls,
        ack: OrderAck,
        requested_quantity: Decimal,
        fallback_price: Decimal,
        position_side: Optional[PositionSide] = None,
        reduce_only: bool = False,
        leverage: Optional[int] = None,
        executed_at: Optional[datetime] = None,
    ) -> "ExecutionReport":
        """
        Derive executed quantity and price from an exchange response.

        Order of preference for price:
            1. average_price (futures avgPrice)
            2. cumulative_quote / executed_quantity (spot)
            3. quantity-weighted fills
            4. fallback_price (pre-trade mark/ticker)
        """
        quantity = ack.executed_quantity
        quantity_confirmed = quantity is not None and quantity > 0
        if not quantity_confirmed:
            quantity = requested_quantity

        price: Optional[Decimal] = None
        if ack.average_price is not None and ack.average_price > 0:
            price = ack.average_price
        elif ack.cumulative_quote and quantity_confirmed:
            price = ack.cumulative_quote / quantity
        elif ack.fills:
            filled = sum((f.quantity for f in ack.fills), Decimal("0"))
            if filled > 0:
                price = sum((f.price * f.quantity for f in ack.fills), Decimal("0")) / filled
        price_confirmed = price is not None
        if price is None:
            price = fallback_price

        return cls(
            exchange_order_id=ack.exchange_order_id,
            symbol=ack.symbol,
            side=ack.side,
            position_side=position_side,
            status=ack.status or "FILLED",
            requested_quantity=requested_quantity,
            executed_quantity=quantity,
            average_price=price,
            commission=sum((f.commission for f in ack.fills), Decimal("0")),
            quantity_confirmed=quantity_confirmed,
            price_confirmed=price_confirmed,
            reduce_only=reduce_only,
            leverage=leverage,
            executed_at=executed_at or datetime.utcnow(),
        )


# ============================================================
# EXCEPTIONS
# ============================================================

class ExecutionEngineError(Exception):
    """Base exception for Execution Engine."""
    pass


class OrderRejectedError(ExecutionEngineError):
    """Order failed pre-submission checks against live exchange rules."""
    pass


class NoLivePositionError(OrderRejectedError):
    """Close requested but the exchange reports no position to close."""
    pass


class ReconciliationError(ExecutionEngineError):
    """Ledger could not be reconciled with exchange state."""
    pass


class CredentialsNotFoundError(ExecutionEngineError):
    """No API credentials for the account."""
    pass


class ExchangeError(ExecutionEngineError):
    """Exchange communication error."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        exchange_code: Optional[int] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.exchange_code = exchange_code
        self.is_retryable = is_retryable
