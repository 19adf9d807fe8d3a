"""
Portfolio - Ledger Reader.

============================================================
PURPOSE
============================================================
Rebuilds current holdings from the ledger and merges them with
live exchange state.

- Spot: replay every Trade (BUY adds, SELL removes with cost
  basis reduced proportionally), value at live prices, split
  tradeable from dust.
- Futures: merge live exchange positions with local OPEN rows,
  derive margin, ROE and holding time, split by notional.

Side-effect free. Callers supply the rows and the live data.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Tuple

from storage.models import FuturesPositionModel, TradeModel

if TYPE_CHECKING:
    from execution_engine.types import PositionInfo


logger = logging.getLogger(__name__)


MIN_TRADE_VALUE = Decimal("5")
QUOTE_ASSET = "USDT"

ZERO = Decimal("0")


def base_asset(symbol: str) -> str:
    return symbol[: -len(QUOTE_ASSET)] if symbol.endswith(QUOTE_ASSET) else symbol


# ============================================================
# SPOT LEDGER REPLAY
# ============================================================

@dataclass
class SpotLot:
    """Net quantity and remaining cost basis for one symbol."""

    symbol: str
    quantity: Decimal = ZERO
    cost: Decimal = ZERO

    @property
    def avg_cost(self) -> Decimal:
        return self.cost / self.quantity if self.quantity > 0 else ZERO

    def buy(self, quantity: Decimal, price: Decimal) -> None:
        self.quantity += quantity
        self.cost += quantity * price

    def sell(self, quantity: Decimal) -> Decimal:
        """Remove up to `quantity`; returns the quantity matched."""
        if self.quantity <= 0:
            return ZERO
        matched = min(quantity, self.quantity)
        self.cost -= self.cost * matched / self.quantity
        self.quantity -= matched
        if self.quantity == 0:
            self.cost = ZERO
        return matched


def replay_spot_trades(trades: Iterable[TradeModel]) -> Dict[str, SpotLot]:
    """Replay trades oldest first into per-symbol lots."""
    lots: Dict[str, SpotLot] = {}
    for trade in trades:
        lot = lots.setdefault(trade.symbol, SpotLot(symbol=trade.symbol))
        if trade.side == "BUY":
            lot.buy(Decimal(trade.quantity), Decimal(trade.price))
        else:
            lot.sell(Decimal(trade.quantity))
    return lots


@dataclass
class SpotHolding:
    """One spot asset held according to the ledger."""

    symbol: str
    asset: str
    quantity: Decimal
    avg_cost: Decimal
    price: Decimal
    value: Decimal
    cost_basis: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_pct: Decimal
    is_dust: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "asset": self.asset,
            "quantity": str(self.quantity),
            "avg_cost": f"{self.avg_cost:.8f}",
            "price": str(self.price),
            "value": f"{self.value:.2f}",
            "unrealized_pnl": f"{self.unrealized_pnl:.2f}",
            "unrealized_pnl_pct": f"{self.unrealized_pnl_pct:.2f}",
        }


@dataclass
class SpotHoldings:
    tradeable: List[SpotHolding] = field(default_factory=list)
    dust: List[SpotHolding] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return sum((h.value for h in self.tradeable + self.dust), ZERO)

    @property
    def total_unrealized_pnl(self) -> Decimal:
        return sum((h.unrealized_pnl for h in self.tradeable + self.dust), ZERO)

    def get(self, symbol: str) -> Optional[SpotHolding]:
        for holding in self.tradeable:
            if holding.symbol == symbol:
                return holding
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holdings": [h.to_dict() for h in self.tradeable],
            "dust": [h.to_dict() for h in self.dust],
            "total_value": f"{self.total_value:.2f}",
        }


def reconstruct_spot_holdings(
    trades: Iterable[TradeModel],
    prices: Mapping[str, Decimal],
    min_trade_value: Decimal = MIN_TRADE_VALUE,
) -> SpotHoldings:
    """
    Holdings implied by the trade ledger, valued at `prices`.

    Assets worth less than `min_trade_value` (or unpriced) are dust.
    """
    holdings = SpotHoldings()
    for symbol, lot in sorted(replay_spot_trades(trades).items()):
        if lot.quantity <= 0:
            continue
        price = prices.get(symbol)
        if price is None:
            logger.warning(f"No price for {symbol}; valuing holding at 0")
            price = ZERO
        value = lot.quantity * price
        unrealized = value - lot.cost
        holding = SpotHolding(
            symbol=symbol,
            asset=base_asset(symbol),
            quantity=lot.quantity,
            avg_cost=lot.avg_cost,
            price=price,
            value=value,
            cost_basis=lot.cost,
            unrealized_pnl=unrealized,
            unrealized_pnl_pct=(unrealized / lot.cost * 100) if lot.cost > 0 else ZERO,
            is_dust=value < min_trade_value,
        )
        (holdings.dust if holding.is_dust else holdings.tradeable).append(holding)
    return holdings


# ============================================================
# FUTURES POSITION VIEWS
# ============================================================

@dataclass
class PositionView:
    """A live futures position joined with its local row."""

    symbol: str
    side: str
    quantity: Decimal
    entry_price: Decimal
    mark_price: Decimal
    notional: Decimal
    margin: Decimal
    leverage: int
    unrealized_pnl: Decimal
    roe_pct: Decimal
    holding_hours: Optional[float] = None
    position_id: Optional[str] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    liquidation_price: Optional[Decimal] = None
    is_dust: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "quantity": str(self.quantity),
            "entry_price": str(self.entry_price),
            "mark_price": str(self.mark_price),
            "margin": f"{self.margin:.2f}",
            "leverage": self.leverage,
            "unrealized_pnl": f"{self.unrealized_pnl:.2f}",
            "roe_pct": f"{self.roe_pct:.2f}",
            "holding_hours": round(self.holding_hours, 1) if self.holding_hours is not None else None,
        }


@dataclass
class PositionViews:
    tradeable: List[PositionView] = field(default_factory=list)
    dust: List[PositionView] = field(default_factory=list)

    @property
    def total_unrealized_pnl(self) -> Decimal:
        return sum((p.unrealized_pnl for p in self.tradeable + self.dust), ZERO)

    def get(self, symbol: str, side: str) -> Optional[PositionView]:
        for view in self.tradeable:
            if view.symbol == symbol and view.side == side:
                return view
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": [p.to_dict() for p in self.tradeable],
            "dust": [p.to_dict() for p in self.dust],
        }


def build_position_views(
    live_positions: Iterable["PositionInfo"],
    local_positions: Iterable[FuturesPositionModel],
    dust_notional: Decimal = MIN_TRADE_VALUE,
    now: Optional[datetime] = None,
) -> PositionViews:
    """
    Merge live exchange positions with local OPEN rows.

    Live values win; the local row contributes id, opened_at and
    protective prices. Live positions with no local row still appear.
    """
    local: Dict[Tuple[str, str], FuturesPositionModel] = {
        (p.symbol, p.side): p for p in local_positions if p.is_open
    }
    views = PositionViews()
    for live in live_positions:
        if live.quantity <= 0:
            continue
        row = local.get((live.symbol, live.side.value))
        margin = live.margin
        holding_hours = None
        if row is not None and now is not None:
            holding_hours = (now - row.opened_at).total_seconds() / 3600
        view = PositionView(
            symbol=live.symbol,
            side=live.side.value,
            quantity=live.quantity,
            entry_price=live.entry_price,
            mark_price=live.mark_price,
            notional=live.notional,
            margin=margin,
            leverage=live.leverage,
            unrealized_pnl=live.unrealized_pnl,
            roe_pct=(live.unrealized_pnl / margin * 100) if margin > 0 else ZERO,
            holding_hours=holding_hours,
            position_id=row.id if row is not None else None,
            stop_loss=row.stop_loss if row is not None else None,
            take_profit=row.take_profit if row is not None else None,
            liquidation_price=live.liquidation_price,
            is_dust=live.notional < dust_notional,
        )
        (views.dust if view.is_dust else views.tradeable).append(view)
    return views
