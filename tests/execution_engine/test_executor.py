"""
Order Executor Tests.

============================================================
PURPOSE
============================================================
Approved amounts become exchange-valid market orders.

TEST CATEGORIES:
- Spot quantity derivation and minimum notional
- Missing response fields fall back to estimates
- Futures leverage, opening and capped closes
- Exchange errors propagate

============================================================
"""

from decimal import Decimal

import pytest

from execution_engine import (
    ExchangeError,
    MockConfig,
    MockExchangeAdapter,
    NoLivePositionError,
    OrderExecutor,
    OrderRejectedError,
    OrderSide,
    PositionSide,
)


def spot_adapter(**overrides) -> MockExchangeAdapter:
    values = dict(
        market="spot",
        prices={"BTCUSDT": Decimal("50000"), "ETHUSDT": Decimal("3000")},
        spot_balances={"BTC": Decimal("0.01")},
    )
    values.update(overrides)
    return MockExchangeAdapter(MockConfig(**values))


def futures_adapter(**overrides) -> MockExchangeAdapter:
    values = dict(market="futures", prices={"BTCUSDT": Decimal("50000")})
    values.update(overrides)
    return MockExchangeAdapter(MockConfig(**values))


# ============================================================
# SPOT
# ============================================================

class TestSpotExecution:
    """Tests for execute_spot."""

    @pytest.mark.asyncio
    async def test_buy_quantity_from_amount(self, clock):
        adapter = spot_adapter()
        report = await OrderExecutor(adapter, clock).execute_spot("BTCUSDT", OrderSide.BUY, Decimal("50"))

        assert report.executed_quantity == Decimal("0.001")
        assert report.average_price == Decimal("50000")
        assert report.fully_confirmed is True
        assert report.executed_at == clock.now()
        assert adapter.balances["BTC"] == Decimal("0.011")

    @pytest.mark.asyncio
    async def test_below_minimum_after_rounding(self, clock):
        adapter = spot_adapter()

        with pytest.raises(OrderRejectedError) as exc_info:
            await OrderExecutor(adapter, clock).execute_spot("ETHUSDT", OrderSide.BUY, Decimal("2"))

        assert "低于最小要求" in str(exc_info.value)
        assert adapter.orders == []

    @pytest.mark.asyncio
    async def test_missing_fill_fields_use_estimates(self, clock):
        adapter = spot_adapter(report_fill_fields=False)
        report = await OrderExecutor(adapter, clock).execute_spot("BTCUSDT", OrderSide.SELL, Decimal("100"))

        assert report.quantity_confirmed is False
        assert report.price_confirmed is False
        assert report.executed_quantity == Decimal("0.002")
        assert report.average_price == Decimal("50000")

    @pytest.mark.asyncio
    async def test_exchange_error_propagates(self, clock):
        adapter = spot_adapter()
        adapter.fail("place_market_order", "EXC_INSUFFICIENT_BALANCE", "insufficient")

        with pytest.raises(ExchangeError):
            await OrderExecutor(adapter, clock).execute_spot("BTCUSDT", OrderSide.BUY, Decimal("50"))


# ============================================================
# FUTURES
# ============================================================

class TestFuturesExecution:
    """Tests for open_futures / close_futures."""

    @pytest.mark.asyncio
    async def test_open_sets_leverage_first(self, clock):
        adapter = futures_adapter()
        report = await OrderExecutor(adapter, clock).open_futures(
            "BTCUSDT", PositionSide.LONG, Decimal("100"), 10
        )

        assert adapter.leverage["BTCUSDT"] == 10
        assert adapter.calls.index("set_leverage") < adapter.calls.index("place_market_order")
        assert report.executed_quantity == Decimal("0.02")
        assert report.side is OrderSide.BUY
        assert report.position_side is PositionSide.LONG
        assert adapter.positions[("BTCUSDT", PositionSide.LONG)].quantity == Decimal("0.02")

    @pytest.mark.asyncio
    async def test_open_short_sells(self, clock):
        adapter = futures_adapter()
        report = await OrderExecutor(adapter, clock).open_futures(
            "BTCUSDT", PositionSide.SHORT, Decimal("50"), 5
        )

        assert report.side is OrderSide.SELL
        assert ("BTCUSDT", PositionSide.SHORT) in adapter.positions

    @pytest.mark.asyncio
    async def test_close_without_live_position(self, clock):
        with pytest.raises(NoLivePositionError):
            await OrderExecutor(futures_adapter(), clock).close_futures("BTCUSDT", PositionSide.LONG)

    @pytest.mark.asyncio
    async def test_close_capped_at_live_size(self, clock):
        adapter = futures_adapter()
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal("0.02"), Decimal("48000"))

        report = await OrderExecutor(adapter, clock).close_futures(
            "BTCUSDT", PositionSide.LONG, Decimal("500"), 10
        )

        assert report.executed_quantity == Decimal("0.02")
        assert report.reduce_only is True
        assert report.side is OrderSide.SELL
        assert report.pre_trade_position.entry_price == Decimal("48000")
        assert ("BTCUSDT", PositionSide.LONG) not in adapter.positions

    @pytest.mark.asyncio
    async def test_partial_close(self, clock):
        adapter = futures_adapter()
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal("0.1"), Decimal("48000"))

        report = await OrderExecutor(adapter, clock).close_futures(
            "BTCUSDT", PositionSide.LONG, Decimal("100"), 10
        )

        assert report.executed_quantity == Decimal("0.02")
        assert adapter.positions[("BTCUSDT", PositionSide.LONG)].quantity == Decimal("0.08")
