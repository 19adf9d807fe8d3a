"""
Execution Engine - Reconciliation.

============================================================
PURPOSE
============================================================
Writes executed fills into the local ledger and keeps the
ledger consistent with the exchange.

RESPONSIBILITIES:
- Record spot trades with realized PnL for matched SELLs
- Record futures orders and open / grow / shrink / close the
  matching Position row
- Tag dust closes (PnL on the order, Position untouched)
- Close local OPEN positions that no longer exist on the exchange
- Append one balance snapshot per cycle

CRITICAL INVARIANT:
    "Exchange state is authoritative for position size."

    A CLOSED position never reopens. A dust close never drives a
    Position quantity negative.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.orm.exc import StaleDataError

from core.clock import ClockProtocol, get_clock
from portfolio.holdings import replay_spot_trades
from portfolio.valuation import value_spot_balances
from storage.database import Database
from storage.models import (
    POSITION_CLOSED,
    POSITION_OPEN,
    BalanceHistoryModel,
    FuturesBalanceHistoryModel,
    FuturesOrderModel,
    FuturesPositionModel,
    TradeModel,
)
from storage.repository import TradingRepository

from .adapters.base import ExchangeAdapter
from .config import ReconciliationConfig
from .types import (
    ExecutionReport,
    OrderSide,
    PositionInfo,
    PositionSide,
    ReconciliationError,
)


logger = logging.getLogger(__name__)


ZERO = Decimal("0")


@dataclass
class SyncResult:
    """Outcome of one orphan-position sync."""

    checked: int = 0
    closed: List[str] = field(default_factory=list)
    skipped: int = 0


def _find_live(
    positions: Iterable[PositionInfo],
    symbol: str,
    side: PositionSide,
) -> Optional[PositionInfo]:
    for position in positions:
        if position.symbol == symbol and position.side is side and position.quantity > 0:
            return position
    return None


async def close_orphan_positions(
    repository: TradingRepository,
    account_id: str,
    live_positions: Iterable[PositionInfo],
    observed_at: datetime,
    now: datetime,
) -> SyncResult:
    """
    Close local OPEN rows with no live counterpart.

    Rows opened after `observed_at` are newer than the live snapshot
    and are left alone. Only ever moves OPEN -> CLOSED.
    """
    live_keys: Set[Tuple[str, str]] = {
        (p.symbol, p.side.value) for p in live_positions if p.quantity > 0
    }
    result = SyncResult()
    for position in await repository.list_open_positions(account_id):
        result.checked += 1
        if (position.symbol, position.side) in live_keys:
            continue
        if position.opened_at > observed_at:
            result.skipped += 1
            continue
        position.status = POSITION_CLOSED
        position.quantity = ZERO
        position.unrealized_pnl = ZERO
        position.closed_at = now
        try:
            await repository.commit()
        except StaleDataError:
            await repository.rollback()
            result.skipped += 1
            logger.warning(f"Position {position.id} changed during sync; skipped")
            continue
        result.closed.append(position.id)
        logger.warning(
            f"Closed orphan position {position.symbol} {position.side} "
            f"({position.id}): not present on exchange"
        )
    return result


# ============================================================
# RECONCILER
# ============================================================

class Reconciler:
    """
    Ledger writer for one account's cycle.

    Shares the cycle's repository (session) and adapter.
    """

    def __init__(
        self,
        repository: TradingRepository,
        adapter: ExchangeAdapter,
        account_id: str,
        config: Optional[ReconciliationConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repo = repository
        self._adapter = adapter
        self._account_id = account_id
        self._config = config or ReconciliationConfig()
        self._clock = clock or get_clock()

    # --------------------------------------------------------
    # SPOT
    # --------------------------------------------------------

    async def record_spot_fill(
        self,
        report: ExecutionReport,
        decision_id: Optional[str] = None,
    ) -> TradeModel:
        """
        Append the fill as a Trade.

        A SELL matched against replayed holdings carries realized PnL
        (sell price - average cost) * matched quantity.
        """
        realized_pnl: Optional[Decimal] = None
        is_dust = False

        if report.side is OrderSide.SELL:
            lots = replay_spot_trades(await self._repo.list_trades(self._account_id))
            lot = lots.get(report.symbol)
            held = lot.quantity if lot is not None else ZERO
            matched = min(report.executed_quantity, held)
            if matched > 0:
                realized_pnl = (report.average_price - lot.avg_cost) * matched
            if held * report.average_price < self._config.dust_threshold_usd:
                is_dust = True
                logger.info(
                    f"Spot SELL {report.symbol} against ledger holding worth "
                    f"${held * report.average_price:.2f}; tagged dust"
                )
            if report.executed_quantity > held:
                logger.warning(
                    f"Spot SELL {report.symbol} qty {report.executed_quantity} exceeds "
                    f"ledger holding {held}; PnL on matched {matched} only"
                )

        trade = TradeModel(
            account_id=self._account_id,
            decision_id=decision_id,
            exchange_order_id=report.exchange_order_id,
            symbol=report.symbol,
            side=report.side.value,
            quantity=report.executed_quantity,
            price=report.average_price,
            quote_quantity=report.quote_quantity,
            commission=report.commission,
            status=report.status,
            realized_pnl=realized_pnl,
            is_dust_close=is_dust,
            price_confirmed=report.price_confirmed,
            quantity_confirmed=report.quantity_confirmed,
            executed_at=report.executed_at,
        )
        await self._repo.add_trade(trade)
        logger.info(
            f"Recorded spot trade {trade.side} {trade.symbol} qty={trade.quantity} "
            f"@ {trade.price}" + (f" pnl={realized_pnl:.4f}" if realized_pnl is not None else "")
        )
        return trade

    # --------------------------------------------------------
    # FUTURES OPEN
    # --------------------------------------------------------

    async def record_futures_open(
        self,
        report: ExecutionReport,
        decision_id: Optional[str] = None,
        stop_loss: Optional[Decimal] = None,
        take_profit: Optional[Decimal] = None,
    ) -> FuturesOrderModel:
        """
        Append the opening order and create or grow the Position.

        The Position is only touched when the live exchange position
        reflects the fill within tolerance.
        """
        side = report.position_side or PositionSide.LONG
        order = self._new_order(report, decision_id)

        live = _find_live(await self._adapter.get_positions(report.symbol), report.symbol, side)
        tolerance = self._config.quantity_tolerance_pct / Decimal("100")
        expected = report.executed_quantity * (1 - tolerance)
        if live is None or live.quantity < expected:
            logger.error(
                f"Open {report.symbol} {side.value} not reflected on exchange "
                f"(expected >= {expected}, live={live.quantity if live else 0}); "
                f"no position recorded"
            )
            await self._repo.add_futures_order(order)
            return order

        for attempt in (1, 2):
            position = await self._repo.get_open_position(self._account_id, report.symbol, side.value)
            leverage = report.leverage or live.leverage
            if position is None:
                position = FuturesPositionModel(
                    account_id=self._account_id,
                    decision_id=decision_id,
                    symbol=report.symbol,
                    side=side.value,
                    entry_price=live.entry_price if live.entry_price > 0 else report.average_price,
                    quantity=live.quantity,
                    margin=live.margin,
                    leverage=leverage,
                    mark_price=live.mark_price,
                    unrealized_pnl=live.unrealized_pnl,
                    stop_loss=stop_loss,
                    take_profit=take_profit,
                    status=POSITION_OPEN,
                    opened_at=report.executed_at,
                )
                self._repo.session.add(position)
                await self._repo.session.flush()
                action = "Opened"
            else:
                position.quantity = live.quantity
                if live.entry_price > 0:
                    position.entry_price = live.entry_price
                position.margin = position.margin + report.quote_quantity / Decimal(max(leverage, 1))
                position.leverage = leverage
                position.mark_price = live.mark_price
                position.unrealized_pnl = live.unrealized_pnl
                if stop_loss is not None:
                    position.stop_loss = stop_loss
                if take_profit is not None:
                    position.take_profit = take_profit
                action = "Grew"

            order.position_id = position.id
            self._repo.session.add(order)
            try:
                await self._repo.commit()
            except StaleDataError:
                await self._repo.rollback()
                if attempt == 2:
                    raise ReconciliationError(
                        f"Position {report.symbol} {side.value} kept changing during open"
                    )
                logger.warning(f"Stale position {report.symbol} {side.value}; re-reading")
                order = self._new_order(report, decision_id)
                continue
            break

        logger.info(
            f"{action} position {position.symbol} {position.side} qty={position.quantity} "
            f"entry={position.entry_price} margin={position.margin:.2f}"
        )
        return order

    # --------------------------------------------------------
    # FUTURES CLOSE
    # --------------------------------------------------------

    async def record_futures_close(
        self,
        report: ExecutionReport,
        decision_id: Optional[str] = None,
    ) -> FuturesOrderModel:
        """
        Append the closing order with its PnL and shrink or close the
        matching Position.

        Dust close (no local row, row CLOSED, or local remaining value
        below the dust threshold): PnL on the order only.
        """
        side = report.position_side or PositionSide.LONG
        price = report.average_price

        for attempt in (1, 2):
            position = await self._repo.get_latest_position(self._account_id, report.symbol, side.value)
            if position is not None:
                await self._repo.session.refresh(position)

            is_dust = (
                position is None
                or position.status == POSITION_CLOSED
                or position.quantity * price < self._config.dust_threshold_usd
            )

            entry = self._entry_price(position, report)
            matched = report.executed_quantity if is_dust else min(report.executed_quantity, position.quantity)
            pnl = (price - entry) * side.sign * matched if entry is not None else ZERO

            order = self._new_order(report, decision_id)
            order.pnl = pnl
            order.is_dust_close = is_dust

            if is_dust:
                order.position_id = None
                await self._repo.add_futures_order(order)
                logger.info(
                    f"Dust close {report.symbol} {side.value} qty={report.executed_quantity} "
                    f"pnl={pnl:.4f}; position untouched"
                )
                return order

            live_qty, live_mark = await self._live_after_close(report.symbol, side, price)
            self._apply_close(position, pnl, matched, live_qty, live_mark)
            order.position_id = position.id
            self._repo.session.add(order)
            try:
                await self._repo.commit()
            except StaleDataError:
                await self._repo.rollback()
                if attempt == 2:
                    raise ReconciliationError(
                        f"Position {report.symbol} {side.value} kept changing during close"
                    )
                logger.warning(f"Stale position {report.symbol} {side.value}; re-reading")
                continue
            return order

        raise ReconciliationError(f"Close of {report.symbol} {side.value} not recorded")

    def _entry_price(
        self,
        position: Optional[FuturesPositionModel],
        report: ExecutionReport,
    ) -> Optional[Decimal]:
        if position is not None and position.entry_price and position.entry_price > 0:
            return Decimal(position.entry_price)
        pre = report.pre_trade_position
        if pre is not None and pre.entry_price > 0:
            return pre.entry_price
        logger.warning(f"No entry price for {report.symbol} close; PnL recorded as 0")
        return None

    async def _live_after_close(
        self,
        symbol: str,
        side: PositionSide,
        fallback_price: Decimal,
    ) -> Tuple[Decimal, Decimal]:
        live = _find_live(await self._adapter.get_positions(symbol), symbol, side)
        if live is None:
            return ZERO, fallback_price
        return live.quantity, live.mark_price if live.mark_price > 0 else fallback_price

    def _apply_close(
        self,
        position: FuturesPositionModel,
        pnl: Decimal,
        matched: Decimal,
        live_qty: Decimal,
        live_mark: Decimal,
    ) -> None:
        now = self._clock.now()
        old_qty = Decimal(position.quantity)
        position.realized_pnl = Decimal(position.realized_pnl or 0) + pnl
        position.mark_price = live_mark

        if live_qty * live_mark < self._config.flat_notional_epsilon_usd:
            position.status = POSITION_CLOSED
            position.quantity = ZERO
            position.unrealized_pnl = ZERO
            position.closed_at = now
            logger.info(
                f"Closed position {position.symbol} {position.side} "
                f"realized={position.realized_pnl:.4f}"
            )
            return

        naive = old_qty - matched
        if naive != live_qty:
            logger.warning(
                f"Position {position.symbol} {position.side} quantity mismatch: "
                f"ledger would be {naive}, exchange reports {live_qty}; using exchange"
            )
        if old_qty > 0:
            position.margin = Decimal(position.margin) * live_qty / old_qty
        position.quantity = live_qty
        logger.info(
            f"Partially closed {position.symbol} {position.side}: remaining={live_qty} "
            f"realized={position.realized_pnl:.4f}"
        )

    def _new_order(self, report: ExecutionReport, decision_id: Optional[str]) -> FuturesOrderModel:
        return FuturesOrderModel(
            account_id=self._account_id,
            decision_id=decision_id,
            exchange_order_id=report.exchange_order_id,
            symbol=report.symbol,
            side=report.side.value,
            position_side=(report.position_side or PositionSide.LONG).value,
            requested_quantity=report.requested_quantity,
            quantity=report.executed_quantity,
            price=report.average_price,
            reduce_only=report.reduce_only,
            status=report.status,
            leverage=report.leverage,
            price_confirmed=report.price_confirmed,
            quantity_confirmed=report.quantity_confirmed,
            executed_at=report.executed_at,
        )

    # --------------------------------------------------------
    # SYNC
    # --------------------------------------------------------

    async def sync_open_positions(self) -> SyncResult:
        """Close local OPEN rows the exchange no longer has."""
        if self._adapter.market != "futures":
            return SyncResult()
        observed_at = self._clock.now()
        live = await self._adapter.get_positions()
        return await close_orphan_positions(
            self._repo, self._account_id, live, observed_at, self._clock.now()
        )

    # --------------------------------------------------------
    # SNAPSHOTS
    # --------------------------------------------------------

    async def record_snapshot(self):
        """Append one balance snapshot for the account."""
        summary = await self._adapter.get_account_summary()
        now = self._clock.now()

        if self._adapter.market == "futures":
            snapshot = FuturesBalanceHistoryModel(
                account_id=self._account_id,
                total_balance=summary.total_wallet_balance,
                available_balance=summary.available_balance,
                used_margin=summary.used_margin,
                unrealized_pnl=summary.unrealized_pnl,
                total_value_usdt=summary.total_wallet_balance + summary.unrealized_pnl,
                snapshot_at=now,
            )
            await self._repo.add_futures_balance_snapshot(snapshot)
            logger.info(f"Futures snapshot: total=${snapshot.total_value_usdt:.2f}")
            return snapshot

        balances, total = await value_spot_balances(self._adapter, summary.non_zero_balances())
        snapshot = BalanceHistoryModel(
            account_id=self._account_id,
            balances=balances,
            total_value_usdt=total,
            snapshot_at=now,
        )
        await self._repo.add_balance_snapshot(snapshot)
        logger.info(f"Spot snapshot: total=${total:.2f}")
        return snapshot


# ============================================================
# BACKGROUND SYNC
# ============================================================

class PositionSynchronizer:
    """
    Fire-and-forget orphan-position sync.

    Runs next to a positions read on its own session, from the live
    positions that read already fetched.
    """

    def __init__(self, database: Database, clock: Optional[ClockProtocol] = None):
        self._database = database
        self._clock = clock or get_clock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        account_id: str,
        live_positions: List[PositionInfo],
        observed_at: Optional[datetime] = None,
    ) -> asyncio.Task:
        observed_at = observed_at or self._clock.now()
        task = asyncio.create_task(self.sync(account_id, live_positions, observed_at))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def sync(
        self,
        account_id: str,
        live_positions: List[PositionInfo],
        observed_at: datetime,
    ) -> SyncResult:
        async with self._database.session() as session:
            return await close_orphan_positions(
                TradingRepository(session),
                account_id,
                live_positions,
                observed_at,
                self._clock.now(),
            )

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background position sync failed: {error}", exc_info=error)

    async def wait_idle(self) -> None:
        """Wait for all scheduled syncs to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
