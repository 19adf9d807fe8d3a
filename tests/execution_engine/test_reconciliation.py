"""
Reconciliation Tests.

============================================================
PURPOSE
============================================================
Fills land in the ledger and the ledger follows the exchange.

TEST CATEGORIES:
- Spot trades and realized PnL
- Futures open verified against the live position
- Futures close: full, partial (exchange quantity wins), dust
- Dust threshold and flat-epsilon boundaries
- CLOSED positions never reopen
- Orphan position sync
- Balance snapshots

============================================================
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from execution_engine import (
    MockConfig,
    MockExchangeAdapter,
    OrderExecutor,
    OrderSide,
    PositionSide,
    Reconciler,
    close_orphan_positions,
)
from execution_engine.types import PositionInfo
from storage.models import POSITION_CLOSED, POSITION_OPEN, FuturesPositionModel


def make_adapter(market: str, **overrides) -> MockExchangeAdapter:
    values = dict(
        market=market,
        prices={"BTCUSDT": Decimal("50000")},
        wallet_balance=Decimal("10000"),
    )
    values.update(overrides)
    return MockExchangeAdapter(MockConfig(**values))


# ============================================================
# SPOT
# ============================================================

class TestSpotFills:
    """Spot trades and realized PnL."""

    @pytest.mark.asyncio
    async def test_buy_then_sell_realizes_pnl(self, repository, spot_account, clock):
        adapter = make_adapter("spot")
        executor = OrderExecutor(adapter, clock)
        reconciler = Reconciler(repository, adapter, spot_account.id, clock=clock)

        buy = await reconciler.record_spot_fill(
            await executor.execute_spot("BTCUSDT", OrderSide.BUY, Decimal("100"))
        )
        assert buy.realized_pnl is None

        clock.advance(hours=1)
        adapter.set_price("BTCUSDT", Decimal("55000"))
        sell = await reconciler.record_spot_fill(
            await executor.execute_spot("BTCUSDT", OrderSide.SELL, Decimal("55"))
        )

        assert sell.quantity == Decimal("0.001")
        assert sell.realized_pnl == Decimal("5")
        assert sell.is_dust_close is False

    @pytest.mark.asyncio
    async def test_sell_without_ledger_holding(self, repository, spot_account, clock):
        adapter = make_adapter("spot", spot_balances={"BTC": Decimal("0.01")})
        report = await OrderExecutor(adapter, clock).execute_spot("BTCUSDT", OrderSide.SELL, Decimal("50"))

        trade = await Reconciler(repository, adapter, spot_account.id, clock=clock).record_spot_fill(report)

        assert trade.realized_pnl is None
        assert trade.is_dust_close is True


# ============================================================
# FUTURES OPEN
# ============================================================

class TestFuturesOpen:
    """Opening orders create or grow positions."""

    @pytest.mark.asyncio
    async def test_open_creates_position(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        report = await OrderExecutor(adapter, clock).open_futures(
            "BTCUSDT", PositionSide.LONG, Decimal("100"), 10
        )

        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_open(
            report, stop_loss=Decimal("48000")
        )

        position = await repository.get_open_position(futures_account.id, "BTCUSDT", "LONG")
        assert order.position_id == position.id
        assert position.quantity == Decimal("0.02")
        assert position.entry_price == Decimal("50000")
        assert position.leverage == 10
        assert position.stop_loss == Decimal("48000")

    @pytest.mark.asyncio
    async def test_second_open_grows_position(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        executor = OrderExecutor(adapter, clock)
        reconciler = Reconciler(repository, adapter, futures_account.id, clock=clock)

        await reconciler.record_futures_open(
            await executor.open_futures("BTCUSDT", PositionSide.LONG, Decimal("100"), 10)
        )
        await reconciler.record_futures_open(
            await executor.open_futures("BTCUSDT", PositionSide.LONG, Decimal("100"), 10)
        )

        positions = await repository.list_open_positions(futures_account.id)
        assert len(positions) == 1
        assert positions[0].quantity == Decimal("0.04")
        assert positions[0].margin == Decimal("200")

    @pytest.mark.asyncio
    async def test_open_not_reflected_records_order_only(self, repository, futures_account, clock):
        adapter = make_adapter("futures", apply_opens=False)
        report = await OrderExecutor(adapter, clock).open_futures(
            "BTCUSDT", PositionSide.SHORT, Decimal("100"), 10
        )

        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_open(report)

        assert order.position_id is None
        assert await repository.list_open_positions(futures_account.id) == []
        assert len(await repository.list_futures_orders(futures_account.id)) == 1


# ============================================================
# FUTURES CLOSE
# ============================================================

class TestFuturesClose:
    """Closing orders shrink or close positions."""

    async def _open(self, repository, adapter, account_id, clock, margin="100"):
        report = await OrderExecutor(adapter, clock).open_futures(
            "BTCUSDT", PositionSide.LONG, Decimal(margin), 10
        )
        await Reconciler(repository, adapter, account_id, clock=clock).record_futures_open(report)

    @pytest.mark.asyncio
    async def test_full_close(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        await self._open(repository, adapter, futures_account.id, clock)

        clock.advance(hours=2)
        adapter.set_price("BTCUSDT", Decimal("51000"))
        report = await OrderExecutor(adapter, clock).close_futures("BTCUSDT", PositionSide.LONG)
        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        position = await repository.get_latest_position(futures_account.id, "BTCUSDT", "LONG")
        assert order.pnl == Decimal("20")
        assert order.is_dust_close is False
        assert position.status == POSITION_CLOSED
        assert position.quantity == Decimal("0")
        assert position.realized_pnl == Decimal("20")
        assert position.closed_at == clock.now()

    @pytest.mark.asyncio
    async def test_partial_close_uses_exchange_quantity(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        await self._open(repository, adapter, futures_account.id, clock, margin="500")

        adapter.config.close_residual = Decimal("0.015")
        report = await OrderExecutor(adapter, clock).close_futures(
            "BTCUSDT", PositionSide.LONG, Decimal("100"), 10
        )
        await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        position = await repository.get_open_position(futures_account.id, "BTCUSDT", "LONG")
        assert report.executed_quantity == Decimal("0.02")
        assert position.quantity == Decimal("0.015")
        assert position.status == POSITION_OPEN

    @pytest.mark.asyncio
    async def test_close_without_local_row_is_dust(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal("0.001"), Decimal("49000"))

        report = await OrderExecutor(adapter, clock).close_futures("BTCUSDT", PositionSide.LONG)
        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        assert order.is_dust_close is True
        assert order.position_id is None
        # entry from the pre-trade live position: (50000 - 49000) * 0.001
        assert order.pnl == Decimal("1")
        assert await repository.list_positions(futures_account.id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity,is_dust", [
        ("0.0000198", True),    # $0.99
        ("0.00002", False),     # $1.00
        ("0.0000202", False),   # $1.01
    ])
    async def test_dust_threshold_on_local_value(self, repository, futures_account, clock, quantity, is_dust):
        adapter = make_adapter("futures")
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal(quantity), Decimal("50000"))
        position = await repository.add_position(FuturesPositionModel(
            account_id=futures_account.id,
            symbol="BTCUSDT",
            side="LONG",
            entry_price=Decimal("50000"),
            quantity=Decimal(quantity),
            leverage=10,
            opened_at=clock.now() - timedelta(hours=1),
        ))

        report = await OrderExecutor(adapter, clock).close_futures("BTCUSDT", PositionSide.LONG)
        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        assert order.is_dust_close is is_dust
        if is_dust:
            assert order.position_id is None
            assert position.status == POSITION_OPEN
            assert position.quantity == Decimal(quantity)
        else:
            assert order.position_id == position.id
            assert position.status == POSITION_CLOSED
            assert position.quantity == Decimal("0")

    @pytest.mark.asyncio
    async def test_live_remainder_below_flat_epsilon_closes(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        await self._open(repository, adapter, futures_account.id, clock)

        # 0.000001 BTC at 51000 is $0.051 left on the exchange
        adapter.config.close_residual = Decimal("0.000001")
        adapter.set_price("BTCUSDT", Decimal("51000"))
        report = await OrderExecutor(adapter, clock).close_futures("BTCUSDT", PositionSide.LONG)
        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        position = await repository.get_latest_position(futures_account.id, "BTCUSDT", "LONG")
        assert order.is_dust_close is False
        assert order.pnl == Decimal("20")
        assert position.status == POSITION_CLOSED
        assert position.quantity == Decimal("0")
        assert position.realized_pnl == Decimal("20")

    @pytest.mark.asyncio
    async def test_live_remainder_above_flat_epsilon_stays_open(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        await self._open(repository, adapter, futures_account.id, clock)

        # 0.00001 BTC at 51000 is $0.51 left on the exchange
        adapter.config.close_residual = Decimal("0.00001")
        adapter.set_price("BTCUSDT", Decimal("51000"))
        report = await OrderExecutor(adapter, clock).close_futures("BTCUSDT", PositionSide.LONG)
        order = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_futures_close(report)

        position = await repository.get_open_position(futures_account.id, "BTCUSDT", "LONG")
        assert order.is_dust_close is False
        assert position.quantity == Decimal("0.00001")
        assert position.realized_pnl == Decimal("20")

    @pytest.mark.asyncio
    async def test_closed_position_never_reopens(self, repository, futures_account, clock):
        adapter = make_adapter("futures")
        await self._open(repository, adapter, futures_account.id, clock)
        executor = OrderExecutor(adapter, clock)
        reconciler = Reconciler(repository, adapter, futures_account.id, clock=clock)
        await reconciler.record_futures_close(await executor.close_futures("BTCUSDT", PositionSide.LONG))

        # leftover opened outside the engine
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal("0.001"), Decimal("50000"))
        order = await reconciler.record_futures_close(
            await executor.close_futures("BTCUSDT", PositionSide.LONG)
        )

        position = await repository.get_latest_position(futures_account.id, "BTCUSDT", "LONG")
        assert order.is_dust_close is True
        assert position.status == POSITION_CLOSED
        assert position.quantity == Decimal("0")


# ============================================================
# ORPHAN SYNC
# ============================================================

class TestOrphanSync:
    """Local OPEN rows missing on the exchange are closed."""

    @pytest.mark.asyncio
    async def test_missing_live_position_closed(self, repository, futures_account, clock):
        position = await repository.add_position(FuturesPositionModel(
            account_id=futures_account.id,
            symbol="BTCUSDT",
            side="LONG",
            entry_price=Decimal("50000"),
            quantity=Decimal("0.02"),
            margin=Decimal("100"),
            leverage=10,
            opened_at=clock.now() - timedelta(hours=3),
        ))

        result = await close_orphan_positions(
            repository, futures_account.id, [], clock.now(), clock.now()
        )

        assert result.closed == [position.id]
        assert position.status == POSITION_CLOSED
        assert position.quantity == Decimal("0")

    @pytest.mark.asyncio
    async def test_live_and_newer_rows_untouched(self, repository, futures_account, clock):
        live_row = await repository.add_position(FuturesPositionModel(
            account_id=futures_account.id,
            symbol="BTCUSDT",
            side="LONG",
            entry_price=Decimal("50000"),
            quantity=Decimal("0.02"),
            leverage=10,
            opened_at=clock.now() - timedelta(hours=3),
        ))
        newer_row = await repository.add_position(FuturesPositionModel(
            account_id=futures_account.id,
            symbol="ETHUSDT",
            side="SHORT",
            entry_price=Decimal("3000"),
            quantity=Decimal("0.5"),
            leverage=10,
            opened_at=clock.now() + timedelta(seconds=5),
        ))
        live = [PositionInfo(symbol="BTCUSDT", side=PositionSide.LONG, quantity=Decimal("0.02"))]

        result = await close_orphan_positions(
            repository, futures_account.id, live, clock.now(), clock.now()
        )

        assert result.checked == 2
        assert result.closed == []
        assert result.skipped == 1
        assert live_row.status == POSITION_OPEN
        assert newer_row.status == POSITION_OPEN

    @pytest.mark.asyncio
    async def test_reconciler_sync_skips_spot(self, repository, spot_account, clock):
        adapter = make_adapter("spot")
        result = await Reconciler(repository, adapter, spot_account.id, clock=clock).sync_open_positions()

        assert result.checked == 0
        assert "get_positions" not in adapter.calls


# ============================================================
# SNAPSHOTS
# ============================================================

class TestSnapshots:
    """One balance snapshot per call."""

    @pytest.mark.asyncio
    async def test_spot_snapshot_values_assets(self, repository, spot_account, clock):
        adapter = make_adapter("spot", wallet_balance=Decimal("100"), spot_balances={"BTC": Decimal("0.01")})

        snapshot = await Reconciler(repository, adapter, spot_account.id, clock=clock).record_snapshot()

        assert snapshot.total_value_usdt == Decimal("600")
        assert snapshot.snapshot_at == clock.now()

    @pytest.mark.asyncio
    async def test_futures_snapshot(self, repository, futures_account, clock):
        adapter = make_adapter("futures", wallet_balance=Decimal("1000"))
        adapter.set_position("BTCUSDT", PositionSide.LONG, Decimal("0.02"), Decimal("49000"))

        snapshot = await Reconciler(repository, adapter, futures_account.id, clock=clock).record_snapshot()

        assert snapshot.total_balance == Decimal("1000")
        assert snapshot.unrealized_pnl == Decimal("20")
        assert snapshot.total_value_usdt == Decimal("1020")
