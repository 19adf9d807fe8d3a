"""
Trading Repository Tests.

============================================================
PURPOSE
============================================================
Ledger rules enforced at the model and query level.

TEST CATEGORIES:
- Accounts
- Decision outcome written once
- Position status is monotonic
- Realized loss and last fill queries

============================================================
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from storage import ImmutableRecordError, RecordNotFoundError
from storage.models import (
    POSITION_CLOSED,
    POSITION_OPEN,
    DecisionModel,
    FuturesOrderModel,
    FuturesPositionModel,
    TradeModel,
)
from tests.conftest import FIXED_NOW, make_account


def decision_row(account_id: str) -> DecisionModel:
    return DecisionModel(
        account_id=account_id,
        mode="SPOT",
        action="BUY",
        symbol="BTCUSDT",
        confidence=Decimal("0.8"),
        risk_level="LOW",
        amount=Decimal("50"),
        reasoning="建议：BUY",
    )


def spot_trade(account_id: str, pnl, at) -> TradeModel:
    return TradeModel(
        account_id=account_id,
        symbol="BTCUSDT",
        side="SELL" if pnl is not None else "BUY",
        quantity=Decimal("0.001"),
        price=Decimal("50000"),
        quote_quantity=Decimal("50"),
        realized_pnl=pnl,
        executed_at=at,
    )


# ============================================================
# ACCOUNTS
# ============================================================

class TestAccounts:
    """Account lookups."""

    @pytest.mark.asyncio
    async def test_get_missing_account(self, repository):
        with pytest.raises(RecordNotFoundError):
            await repository.get_account("missing")

    @pytest.mark.asyncio
    async def test_auto_trade_accounts_only(self, repository):
        enabled = await repository.add_account(make_account())
        await repository.add_account(make_account(enable_auto_trade=False))

        accounts = await repository.list_auto_trade_accounts()

        assert [a.id for a in accounts] == [enabled.id]


# ============================================================
# DECISIONS
# ============================================================

class TestDecisionOutcome:
    """Outcome is written exactly once."""

    @pytest.mark.asyncio
    async def test_record_outcome(self, repository, spot_account):
        decision = await repository.add_decision(decision_row(spot_account.id))

        await repository.record_outcome(decision, "SUCCESS", None, True, FIXED_NOW)

        stored = await repository.get_decision(decision.id)
        assert stored.outcome == "SUCCESS"
        assert stored.executed is True
        assert stored.executed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_second_outcome_rejected(self, repository, spot_account):
        decision = await repository.add_decision(decision_row(spot_account.id))
        await repository.record_outcome(decision, "CANCELLED", "信心指数过低 (60%)，已取消交易", False, FIXED_NOW)

        with pytest.raises(ImmutableRecordError):
            await repository.record_outcome(decision, "SUCCESS", None, True, FIXED_NOW)

        assert decision.outcome == "CANCELLED"


# ============================================================
# POSITIONS
# ============================================================

class TestPositionRules:
    """CLOSED is terminal, quantity never negative."""

    def test_closed_never_reopens(self):
        position = FuturesPositionModel(
            symbol="BTCUSDT", side="LONG", entry_price=Decimal("1"), quantity=Decimal("1"),
            leverage=1, status=POSITION_OPEN,
        )
        position.status = POSITION_CLOSED

        with pytest.raises(ImmutableRecordError):
            position.status = POSITION_OPEN

    def test_negative_quantity_rejected(self):
        position = FuturesPositionModel(
            symbol="BTCUSDT", side="LONG", entry_price=Decimal("1"), quantity=Decimal("1"), leverage=1,
        )

        with pytest.raises(ValueError):
            position.quantity = Decimal("-0.1")


# ============================================================
# LOSS / FREQUENCY QUERIES
# ============================================================

class TestLossQueries:
    """Realized loss since a cutoff."""

    @pytest.mark.asyncio
    async def test_spot_realized_loss_since(self, repository, spot_account):
        midnight = FIXED_NOW.replace(hour=0)
        await repository.add_trade(spot_trade(spot_account.id, Decimal("-12.5"), FIXED_NOW - timedelta(hours=1)))
        await repository.add_trade(spot_trade(spot_account.id, Decimal("8"), FIXED_NOW - timedelta(hours=2)))
        await repository.add_trade(spot_trade(spot_account.id, Decimal("-30"), midnight - timedelta(hours=1)))
        await repository.add_trade(spot_trade(spot_account.id, None, FIXED_NOW))

        loss = await repository.get_realized_loss_since(spot_account.id, midnight, futures=False)

        assert loss == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_futures_realized_loss_since(self, repository, futures_account):
        await repository.add_futures_order(FuturesOrderModel(
            account_id=futures_account.id,
            symbol="BTCUSDT",
            side="SELL",
            position_side="LONG",
            requested_quantity=Decimal("0.01"),
            quantity=Decimal("0.01"),
            price=Decimal("49000"),
            pnl=Decimal("-10"),
            executed_at=FIXED_NOW,
        ))

        loss = await repository.get_realized_loss_since(
            futures_account.id, FIXED_NOW.replace(hour=0), futures=True
        )

        assert loss == Decimal("10")

    @pytest.mark.asyncio
    async def test_last_fill_time(self, repository, spot_account):
        assert await repository.get_last_fill_time(spot_account.id, futures=False) is None

        await repository.add_trade(spot_trade(spot_account.id, None, FIXED_NOW - timedelta(hours=3)))
        await repository.add_trade(spot_trade(spot_account.id, None, FIXED_NOW - timedelta(hours=1)))

        assert await repository.get_last_fill_time(spot_account.id, futures=False) == FIXED_NOW - timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_last_fill_time_per_symbol(self, repository, spot_account):
        await repository.add_trade(spot_trade(spot_account.id, None, FIXED_NOW - timedelta(hours=2)))
        eth = spot_trade(spot_account.id, None, FIXED_NOW - timedelta(minutes=5))
        eth.symbol = "ETHUSDT"
        await repository.add_trade(eth)

        btc_last = await repository.get_last_fill_time(spot_account.id, futures=False, symbol="BTCUSDT")
        any_last = await repository.get_last_fill_time(spot_account.id, futures=False)

        assert btc_last == FIXED_NOW - timedelta(hours=2)
        assert any_last == FIXED_NOW - timedelta(minutes=5)
        assert await repository.get_last_fill_time(spot_account.id, False, symbol="SOLUSDT") is None
