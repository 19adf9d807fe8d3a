"""
Portfolio - Valuation.

============================================================
PURPOSE
============================================================
Derived, side-effect-free portfolio read for one account.

- Current value: spot balances priced at live rates, or futures
  wallet balance + unrealized PnL
- Initial investment: one canonical derivation for both modes
- Value history: initial + running realized PnL per closing fill
- Closed-position summaries (futures)
- Stored balance snapshots in a time window

The only write it can trigger is the background orphan-position
sync, scheduled on its own session.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.clock import ClockProtocol, get_clock
from storage.models import FuturesOrderModel, FuturesPositionModel
from storage.repository import TradingRepository

from .holdings import (
    MIN_TRADE_VALUE,
    PositionViews,
    SpotHoldings,
    build_position_views,
    reconstruct_spot_holdings,
)

if TYPE_CHECKING:
    from execution_engine.adapters.base import ExchangeAdapter
    from execution_engine.reconciliation import PositionSynchronizer


logger = logging.getLogger(__name__)


ZERO = Decimal("0")


# ============================================================
# INITIAL INVESTMENT
# ============================================================

def derive_initial_investment(
    current_value: Decimal,
    total_realized_pnl: Decimal,
    current_unrealized_pnl: Decimal,
    first_snapshot_value: Optional[Decimal] = None,
    first_fill_pnl: Optional[Decimal] = None,
) -> Decimal:
    """
    Capital the account started with.

    (a) The first snapshot taken at or after the first-ever fill, minus
        that fill's own PnL.
    (b) Otherwise current - realized - unrealized, clamped at 0.
    """
    if first_snapshot_value is not None:
        return Decimal(first_snapshot_value) - Decimal(first_fill_pnl or 0)
    return max(ZERO, current_value - total_realized_pnl - current_unrealized_pnl)


async def value_spot_balances(
    adapter: "ExchangeAdapter",
    balances: Sequence[Any],
) -> Tuple[Dict[str, Any], Decimal]:
    """
    Price spot balances in USDT.

    Assets with no USDT market contribute 0.
    """
    symbols = [f"{b.asset}USDT" for b in balances if b.asset != "USDT"]
    prices = await adapter.get_prices(symbols) if symbols else {}
    valued: Dict[str, Any] = {}
    total = ZERO
    for balance in balances:
        if balance.asset == "USDT":
            price = Decimal("1")
        else:
            price = prices.get(f"{balance.asset}USDT", ZERO)
        value = balance.total * price
        total += value
        valued[balance.asset] = {
            "free": str(balance.free),
            "locked": str(balance.locked),
            "value_usdt": f"{value:.8f}",
        }
    return valued, total


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ValuePoint:
    at: datetime
    value: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"at": self.at.isoformat(), "value": f"{self.value:.2f}"}


@dataclass
class ClosedPositionSummary:
    """A CLOSED futures position paired with its closing orders."""

    position_id: str
    symbol: str
    side: str
    entry_price: Decimal
    exit_price: Decimal
    quantity: Decimal
    leverage: int
    realized_pnl: Decimal
    pnl_pct: Decimal
    opened_at: datetime
    closed_at: Optional[datetime]

    @property
    def duration_hours(self) -> Optional[float]:
        if self.closed_at is None:
            return None
        return (self.closed_at - self.opened_at).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "entry_price": str(self.entry_price),
            "exit_price": f"{self.exit_price:.8f}",
            "quantity": str(self.quantity),
            "leverage": self.leverage,
            "realized_pnl": f"{self.realized_pnl:.2f}",
            "pnl_pct": f"{self.pnl_pct:.2f}",
            "duration_hours": round(self.duration_hours, 1) if self.duration_hours is not None else None,
        }


@dataclass
class PortfolioValuation:
    mode: str
    initial_investment: Decimal
    current_value: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    valued_at: datetime
    history: List[ValuePoint] = field(default_factory=list)
    closed_positions: List[ClosedPositionSummary] = field(default_factory=list)
    holdings: Optional[SpotHoldings] = None
    positions: Optional[PositionViews] = None

    @property
    def total_pnl(self) -> Decimal:
        return self.current_value - self.initial_investment

    @property
    def total_pnl_pct(self) -> Decimal:
        if self.initial_investment <= 0:
            return ZERO
        return self.total_pnl / self.initial_investment * 100

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mode": self.mode,
            "initial_investment": f"{self.initial_investment:.2f}",
            "current_value": f"{self.current_value:.2f}",
            "realized_pnl": f"{self.realized_pnl:.2f}",
            "unrealized_pnl": f"{self.unrealized_pnl:.2f}",
            "total_pnl": f"{self.total_pnl:.2f}",
            "total_pnl_pct": f"{self.total_pnl_pct:.2f}",
            "valued_at": self.valued_at.isoformat(),
            "history": [p.to_dict() for p in self.history],
        }
        if self.holdings is not None:
            data["holdings"] = self.holdings.to_dict()
        if self.positions is not None:
            data["positions"] = self.positions.to_dict()
            data["closed_positions"] = [c.to_dict() for c in self.closed_positions]
        return data


def build_value_history(
    initial: Decimal,
    fills: Iterable[Tuple[datetime, Optional[Decimal]]],
    current_value: Decimal,
    now: datetime,
) -> List[ValuePoint]:
    """initial, then initial + running realized PnL per closing fill, then current."""
    fills = list(fills)
    if not fills:
        return [ValuePoint(at=now, value=current_value)]

    points = [ValuePoint(at=fills[0][0], value=initial)]
    running = initial
    for at, pnl in fills:
        if pnl is None:
            continue
        running += Decimal(pnl)
        points.append(ValuePoint(at=at, value=running))
    points.append(ValuePoint(at=now, value=current_value))
    return points


def summarize_closed_position(
    position: FuturesPositionModel,
    orders: Iterable[FuturesOrderModel],
) -> ClosedPositionSummary:
    closing = [o for o in orders if o.pnl is not None and not o.is_dust_close]
    quantity = sum((Decimal(o.quantity) for o in closing), ZERO)
    if quantity > 0:
        exit_price = sum((Decimal(o.quantity) * Decimal(o.price) for o in closing), ZERO) / quantity
    else:
        exit_price = Decimal(position.mark_price or position.entry_price)

    realized = Decimal(position.realized_pnl or 0)
    initial_margin = Decimal(position.entry_price) * quantity / Decimal(max(position.leverage, 1))
    return ClosedPositionSummary(
        position_id=position.id,
        symbol=position.symbol,
        side=position.side,
        entry_price=Decimal(position.entry_price),
        exit_price=exit_price,
        quantity=quantity,
        leverage=position.leverage,
        realized_pnl=realized,
        pnl_pct=(realized / initial_margin * 100) if initial_margin > 0 else ZERO,
        opened_at=position.opened_at,
        closed_at=position.closed_at,
    )


# ============================================================
# VALUATOR
# ============================================================

class PortfolioValuator:
    """
    Portfolio read for one account.

    Usage:
        valuator = PortfolioValuator(repository, adapter, account.id)
        valuation = await valuator.value()
    """

    def __init__(
        self,
        repository: TradingRepository,
        adapter: "ExchangeAdapter",
        account_id: str,
        clock: Optional[ClockProtocol] = None,
        min_trade_value: Decimal = MIN_TRADE_VALUE,
        synchronizer: Optional["PositionSynchronizer"] = None,
    ):
        self._repo = repository
        self._adapter = adapter
        self._account_id = account_id
        self._clock = clock or get_clock()
        self._min_trade_value = min_trade_value
        self._synchronizer = synchronizer

    @property
    def is_futures(self) -> bool:
        return self._adapter.market == "futures"

    # --------------------------------------------------------
    # HOLDINGS
    # --------------------------------------------------------

    async def spot_holdings(self) -> SpotHoldings:
        trades = await self._repo.list_trades(self._account_id)
        symbols = sorted({t.symbol for t in trades})
        prices = await self._adapter.get_prices(symbols) if symbols else {}
        return reconstruct_spot_holdings(trades, prices, self._min_trade_value)

    async def position_views(self) -> PositionViews:
        """Live positions joined with local rows; schedules a sync."""
        observed_at = self._clock.now()
        live = await self._adapter.get_positions()
        local = await self._repo.list_open_positions(self._account_id)
        if self._synchronizer is not None:
            self._synchronizer.schedule(self._account_id, live, observed_at)
        return build_position_views(live, local, self._min_trade_value, observed_at)

    # --------------------------------------------------------
    # VALUATION
    # --------------------------------------------------------

    async def value(self) -> PortfolioValuation:
        if self.is_futures:
            return await self._value_futures()
        return await self._value_spot()

    async def _value_spot(self) -> PortfolioValuation:
        now = self._clock.now()
        trades = await self._repo.list_trades(self._account_id)
        summary = await self._adapter.get_account_summary()
        _, current_value = await value_spot_balances(self._adapter, summary.non_zero_balances())

        symbols = sorted({t.symbol for t in trades})
        prices = await self._adapter.get_prices(symbols) if symbols else {}
        holdings = reconstruct_spot_holdings(trades, prices, self._min_trade_value)

        realized = sum((Decimal(t.realized_pnl) for t in trades if t.realized_pnl is not None), ZERO)
        unrealized = holdings.total_unrealized_pnl
        initial = await self._initial_investment(
            [(t.executed_at, t.realized_pnl) for t in trades],
            current_value,
            realized,
            unrealized,
            futures=False,
        )
        return PortfolioValuation(
            mode="SPOT",
            initial_investment=initial,
            current_value=current_value,
            realized_pnl=realized,
            unrealized_pnl=unrealized,
            valued_at=now,
            history=build_value_history(
                initial, [(t.executed_at, t.realized_pnl) for t in trades], current_value, now
            ),
            holdings=holdings,
        )

    async def _value_futures(self) -> PortfolioValuation:
        now = self._clock.now()
        orders = await self._repo.list_futures_orders(self._account_id)
        summary = await self._adapter.get_account_summary()
        current_value = summary.total_wallet_balance + summary.unrealized_pnl

        positions = await self.position_views()
        realized = sum((Decimal(o.pnl) for o in orders if o.pnl is not None), ZERO)
        unrealized = summary.unrealized_pnl
        fills = [(o.executed_at, o.pnl) for o in orders]
        initial = await self._initial_investment(
            fills, current_value, realized, unrealized, futures=True
        )

        closed = []
        for position in await self._repo.list_closed_positions(self._account_id):
            closed.append(summarize_closed_position(
                position, await self._repo.list_position_orders(position.id)
            ))

        return PortfolioValuation(
            mode="FUTURES",
            initial_investment=initial,
            current_value=current_value,
            realized_pnl=realized,
            unrealized_pnl=unrealized,
            valued_at=now,
            history=build_value_history(initial, fills, current_value, now),
            closed_positions=closed,
            positions=positions,
        )

    async def _initial_investment(
        self,
        fills: List[Tuple[datetime, Optional[Decimal]]],
        current_value: Decimal,
        realized: Decimal,
        unrealized: Decimal,
        futures: bool,
    ) -> Decimal:
        first_snapshot_value = None
        first_fill_pnl = None
        if fills:
            first_at, first_fill_pnl = fills[0]
            snapshot = await self._repo.get_first_snapshot_after(self._account_id, first_at, futures)
            if snapshot is not None:
                first_snapshot_value = Decimal(snapshot.total_value_usdt)
        return derive_initial_investment(
            current_value,
            realized,
            unrealized,
            first_snapshot_value=first_snapshot_value,
            first_fill_pnl=first_fill_pnl,
        )

    # --------------------------------------------------------
    # BALANCE HISTORY
    # --------------------------------------------------------

    async def balance_history(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        snapshots = await self._repo.list_snapshots(
            self._account_id, self.is_futures, since=since, until=until
        )
        return [s.to_dict() for s in snapshots]
