"""
Execution Engine - Order Executor.

============================================================
PURPOSE
============================================================
Turns an approved amount into an exchange market order.

CRITICAL PRINCIPLE:
    The executor is REACTIVE. It only runs for decisions the
    Risk Gate passed and never resizes beyond exchange rules.

FLOW:
1. Resolve live price and lot-size rules
2. amount / price (spot) or margin * leverage / mark (futures)
3. Normalize quantity (clamp, round down)
4. Re-check minimum notional (opens and spot only)
5. Futures: set leverage before opening, cap closes at live size
6. Place market order, build ExecutionReport with fallbacks

No retries. Any ExchangeError propagates to the caller.

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from core.clock import ClockProtocol, get_clock

from .adapters.base import ExchangeAdapter
from .quantity import cap_close_quantity, normalize_quantity, notional
from .types import (
    ExecutionReport,
    NoLivePositionError,
    OrderRejectedError,
    OrderSide,
    PositionInfo,
    PositionSide,
)


logger = logging.getLogger(__name__)


SPOT_MIN_NOTIONAL = Decimal("5")
FUTURES_MIN_NOTIONAL = Decimal("5")


def below_minimum_message(value: Decimal, minimum: Decimal) -> str:
    return f"订单金额 ${value:.2f} 低于最小要求 ${minimum:.2f}"


class OrderExecutor:
    """
    Places market orders for one account through one adapter.

    Usage:
        executor = OrderExecutor(adapter)
        report = await executor.execute_spot("BTCUSDT", OrderSide.BUY, Decimal("50"))
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        clock: Optional[ClockProtocol] = None,
        spot_min_notional: Decimal = SPOT_MIN_NOTIONAL,
        futures_min_notional: Decimal = FUTURES_MIN_NOTIONAL,
    ):
        self._adapter = adapter
        self._clock = clock or get_clock()
        self._spot_min_notional = spot_min_notional
        self._futures_min_notional = futures_min_notional

    @property
    def adapter(self) -> ExchangeAdapter:
        return self._adapter

    def _check_notional(self, quantity: Decimal, price: Decimal, minimum: Decimal) -> None:
        value = notional(quantity, price)
        if value < minimum:
            raise OrderRejectedError(below_minimum_message(value, minimum))

    # --------------------------------------------------------
    # SPOT
    # --------------------------------------------------------

    async def execute_spot(
        self,
        symbol: str,
        side: OrderSide,
        amount: Decimal,
    ) -> ExecutionReport:
        """
        Buy or sell `amount` USDT worth of `symbol`.

        Raises:
            OrderRejectedError: Normalized order below minimum notional
            ExchangeError: Exchange call failed
        """
        price = await self._adapter.get_mark_price(symbol)
        if price <= 0:
            raise OrderRejectedError(f"{symbol} 无有效价格")
        rules = await self._adapter.get_symbol_rules(symbol)

        quantity = normalize_quantity(amount / price, rules)
        minimum = max(rules.min_notional, self._spot_min_notional)
        self._check_notional(quantity, price, minimum)

        logger.info(f"Spot {side.value} {symbol} qty={quantity} (~${notional(quantity, price):.2f})")
        ack = await self._adapter.place_market_order(symbol, side, quantity)

        report = ExecutionReport.from_ack(
            ack,
            requested_quantity=quantity,
            fallback_price=price,
            executed_at=self._clock.now(),
        )
        report.rules = rules
        self._log_report(report)
        return report

    # --------------------------------------------------------
    # FUTURES
    # --------------------------------------------------------

    async def open_futures(
        self,
        symbol: str,
        position_side: PositionSide,
        margin: Decimal,
        leverage: int,
    ) -> ExecutionReport:
        """
        Open or grow a position with `margin` USDT at `leverage`.

        Raises:
            OrderRejectedError: Normalized order below minimum notional
            ExchangeError: Exchange call failed
        """
        mark = await self._adapter.get_mark_price(symbol)
        if mark <= 0:
            raise OrderRejectedError(f"{symbol} 无有效标记价格")
        rules = await self._adapter.get_symbol_rules(symbol)

        quantity = normalize_quantity(margin * Decimal(leverage) / mark, rules)
        minimum = rules.min_notional if rules.min_notional > 0 else self._futures_min_notional
        self._check_notional(quantity, mark, minimum)

        await self._adapter.set_leverage(symbol, leverage)

        side = position_side.opening_side
        logger.info(
            f"Futures open {position_side.value} {symbol} qty={quantity} "
            f"margin=${margin} leverage={leverage}x"
        )
        ack = await self._adapter.place_market_order(
            symbol,
            side,
            quantity,
            position_side=position_side,
        )

        report = ExecutionReport.from_ack(
            ack,
            requested_quantity=quantity,
            fallback_price=mark,
            position_side=position_side,
            leverage=leverage,
            executed_at=self._clock.now(),
        )
        report.rules = rules
        self._log_report(report)
        return report

    async def close_futures(
        self,
        symbol: str,
        position_side: PositionSide,
        margin: Optional[Decimal] = None,
        leverage: Optional[int] = None,
    ) -> ExecutionReport:
        """
        Reduce-only close, capped at the live position size.

        margin * leverage / mark gives the requested quantity; no margin
        closes the whole live position.

        Raises:
            NoLivePositionError: Exchange reports nothing to close
            ExchangeError: Exchange call failed
        """
        live = await self._live_position(symbol, position_side)
        if live is None:
            raise NoLivePositionError(f"交易所没有 {symbol} {position_side.value} 持仓")

        mark = await self._adapter.get_mark_price(symbol)
        rules = await self._adapter.get_symbol_rules(symbol)

        requested = Decimal("0")
        if margin is not None and margin > 0 and mark > 0:
            requested = margin * Decimal(leverage or live.leverage) / mark
        quantity = cap_close_quantity(requested, live.quantity, rules)
        if quantity <= 0:
            raise OrderRejectedError(f"{symbol} 平仓数量为 0")

        logger.info(
            f"Futures close {position_side.value} {symbol} qty={quantity} "
            f"(live={live.quantity})"
        )
        ack = await self._adapter.place_market_order(
            symbol,
            position_side.closing_side,
            quantity,
            position_side=position_side,
            reduce_only=True,
        )

        report = ExecutionReport.from_ack(
            ack,
            requested_quantity=quantity,
            fallback_price=mark if mark > 0 else live.mark_price,
            position_side=position_side,
            reduce_only=True,
            leverage=live.leverage,
            executed_at=self._clock.now(),
        )
        report.pre_trade_position = live
        report.rules = rules
        self._log_report(report)
        return report

    async def _live_position(self, symbol: str, position_side: PositionSide) -> Optional[PositionInfo]:
        for position in await self._adapter.get_positions(symbol):
            if position.side is position_side and position.quantity > 0:
                return position
        return None

    def _log_report(self, report: ExecutionReport) -> None:
        if not report.fully_confirmed:
            logger.warning(
                f"Order {report.exchange_order_id} fill not fully reported "
                f"(qty_confirmed={report.quantity_confirmed}, "
                f"price_confirmed={report.price_confirmed}); using estimates"
            )
        logger.info(
            f"Order {report.exchange_order_id} {report.symbol} {report.side.value} "
            f"executed={report.executed_quantity} @ {report.average_price}"
        )
