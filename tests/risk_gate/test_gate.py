"""
Risk Gate Tests.

============================================================
PURPOSE
============================================================
Every non-HOLD decision passes the gate before any order.

TEST CATEGORIES:
- Confidence floors per mode
- Symbol whitelist
- Daily realized loss
- Amount bounds and the close exemption
- Leverage
- Amount resolution for closes
- Fail-safe behavior
- Context loading from the ledger

============================================================
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from decision_engine import AccountContext, DecisionAction, TradeDecision, TradingMode
from risk_gate import (
    AccountLimits,
    CheckName,
    ConfidenceCheck,
    RiskContext,
    RiskGate,
    RiskGateConfig,
    resolve_amount,
)
from storage.models import TradeModel
from tests.conftest import FIXED_NOW


def spot_decision(**overrides) -> TradeDecision:
    values = dict(
        mode=TradingMode.SPOT,
        action=DecisionAction.BUY,
        confidence=0.8,
        symbol="BTCUSDT",
        amount=Decimal("50"),
    )
    values.update(overrides)
    return TradeDecision(**values)


def futures_decision(**overrides) -> TradeDecision:
    values = dict(
        mode=TradingMode.FUTURES,
        action=DecisionAction.OPEN_LONG,
        confidence=0.7,
        symbol="BTCUSDT",
        amount=Decimal("100"),
        leverage=10,
    )
    values.update(overrides)
    return TradeDecision(**values)


def context(futures: bool = False, **overrides) -> RiskContext:
    limits = AccountLimits(
        futures=futures,
        allowed_symbols=["BTCUSDT", "ETHUSDT"],
        max_trade_amount=Decimal("100"),
        max_position_size=Decimal("200"),
        max_daily_loss=Decimal("50"),
        max_leverage=20,
        default_leverage=10,
    )
    ctx = RiskContext(limits=limits, now=FIXED_NOW)
    for key, value in overrides.items():
        setattr(ctx, key, value)
    return ctx


@pytest.fixture
def gate(clock):
    return RiskGate(RiskGateConfig.for_testing(), clock)


# ============================================================
# APPROVAL
# ============================================================

class TestApproval:
    """Decisions inside every limit pass."""

    def test_spot_buy_approved(self, gate):
        verdict = gate.evaluate(spot_decision(), context())

        assert verdict.approved is True
        assert verdict.reason is None
        assert verdict.amount == Decimal("50")
        assert verdict.leverage is None

    def test_futures_open_approved(self, gate):
        verdict = gate.evaluate(futures_decision(), context(futures=True))

        assert verdict.approved is True
        assert verdict.leverage == 10
        assert CheckName.LEVERAGE in [r.name for r in verdict.results]

    def test_hold_is_rejected(self, gate):
        verdict = gate.evaluate(spot_decision(action=DecisionAction.HOLD), context())

        assert verdict.approved is False
        assert verdict.failed_check is CheckName.ACTION


# ============================================================
# CONFIDENCE
# ============================================================

class TestConfidence:
    """Confidence floors: 0.70 spot, 0.65 futures."""

    def test_spot_below_floor(self, gate):
        verdict = gate.evaluate(spot_decision(confidence=0.6), context())

        assert verdict.approved is False
        assert verdict.failed_check is CheckName.CONFIDENCE
        assert verdict.reason == "信心指数过低 (60%)，已取消交易"

    def test_futures_floor_is_lower(self, gate):
        verdict = gate.evaluate(futures_decision(confidence=0.66), context(futures=True))
        assert verdict.approved is True

    def test_first_failure_stops(self, gate):
        verdict = gate.evaluate(spot_decision(confidence=0.1, symbol="DOGEUSDT"), context())

        assert verdict.failed_check is CheckName.CONFIDENCE
        assert [r.name for r in verdict.results] == [CheckName.ACTION, CheckName.CONFIDENCE]


# ============================================================
# SYMBOL / DAILY LOSS
# ============================================================

class TestSymbolAndLoss:
    """Whitelist and daily loss."""

    def test_symbol_not_whitelisted(self, gate):
        verdict = gate.evaluate(spot_decision(symbol="DOGEUSDT"), context())

        assert verdict.failed_check is CheckName.SYMBOL
        assert verdict.reason == "DOGEUSDT 不在允许交易列表中"

    def test_missing_symbol(self, gate):
        verdict = gate.evaluate(spot_decision(symbol=None), context())
        assert verdict.reason == "AI 未指定交易币种"

    def test_empty_whitelist_allows_nothing(self, gate):
        ctx = context()
        ctx.limits.allowed_symbols = []

        verdict = gate.evaluate(spot_decision(), ctx)

        assert verdict.failed_check is CheckName.SYMBOL

    def test_daily_loss_reached(self, gate):
        verdict = gate.evaluate(spot_decision(), context(realized_loss_today=Decimal("50")))

        assert verdict.failed_check is CheckName.DAILY_LOSS
        assert verdict.reason == "今日亏损 $50.00 已达限额 $50.00"

    def test_daily_loss_blocks_closes_too(self, gate):
        decision = spot_decision(action=DecisionAction.SELL, amount=Decimal("20"))
        verdict = gate.evaluate(decision, context(realized_loss_today=Decimal("75")))

        assert verdict.failed_check is CheckName.DAILY_LOSS


# ============================================================
# AMOUNT
# ============================================================

class TestAmount:
    """Amount presence, minimum and upper bound."""

    def test_zero_amount(self, gate):
        verdict = gate.evaluate(spot_decision(amount=Decimal("0")), context())

        assert verdict.failed_check is CheckName.AMOUNT
        assert verdict.reason == "AI 未给出有效的交易金额"

    def test_spot_below_minimum(self, gate):
        verdict = gate.evaluate(spot_decision(amount=Decimal("3")), context())

        assert verdict.failed_check is CheckName.AMOUNT
        assert verdict.reason == "订单金额 $3.00 低于最小要求 $5.00"

    def test_spot_buy_over_limit(self, gate):
        verdict = gate.evaluate(spot_decision(amount=Decimal("150")), context())

        assert verdict.reason == "AI 建议买入金额 $150.00 超过限额 $100.00"

    def test_spot_sell_exempt_from_limit(self, gate):
        decision = spot_decision(action=DecisionAction.SELL, amount=Decimal("150"))
        assert gate.evaluate(decision, context()).approved is True

    def test_futures_margin_over_limit(self, gate):
        verdict = gate.evaluate(futures_decision(amount=Decimal("250")), context(futures=True))

        assert verdict.failed_check is CheckName.AMOUNT
        assert verdict.reason == "保证金 $250.00 超过限额 $200.00"

    def test_futures_close_exempt_from_limit(self, gate):
        decision = futures_decision(action=DecisionAction.CLOSE_LONG, amount=Decimal("250"))
        assert gate.evaluate(decision, context(futures=True)).approved is True

    def test_futures_minimum_uses_notional(self, gate):
        # 1 USDT margin at 10x is 10 USDT notional
        decision = futures_decision(amount=Decimal("1"))
        assert gate.evaluate(decision, context(futures=True)).approved is True

        decision = futures_decision(amount=Decimal("1"), leverage=2)
        verdict = gate.evaluate(decision, context(futures=True))
        assert verdict.failed_check is CheckName.AMOUNT


# ============================================================
# LEVERAGE
# ============================================================

class TestLeverage:
    """Futures leverage cap."""

    def test_leverage_over_limit(self, gate):
        verdict = gate.evaluate(futures_decision(leverage=25), context(futures=True))

        assert verdict.failed_check is CheckName.LEVERAGE
        assert verdict.reason == "杠杆 25x 超过限额 20x"

    def test_missing_leverage_uses_default(self, gate):
        verdict = gate.evaluate(futures_decision(leverage=None), context(futures=True))

        assert verdict.approved is True
        assert verdict.leverage == 10


# ============================================================
# AMOUNT RESOLUTION
# ============================================================

class TestResolveAmount:
    """Closing actions without an amount use current exposure."""

    def test_spot_sell_uses_holding_value(self):
        decision = spot_decision(action=DecisionAction.SELL, amount=Decimal("0"))
        ctx = context(holding_values={"BTCUSDT": Decimal("42.5")})

        assert resolve_amount(decision, ctx) == Decimal("42.5")

    def test_futures_close_uses_position_margin(self):
        decision = futures_decision(action=DecisionAction.CLOSE_SHORT, amount=Decimal("0"))
        ctx = context(futures=True, position_margins={("BTCUSDT", "SHORT"): Decimal("80")})

        assert resolve_amount(decision, ctx) == Decimal("80")

    def test_open_keeps_zero(self):
        decision = spot_decision(amount=Decimal("0"))
        ctx = context(holding_values={"BTCUSDT": Decimal("42.5")})

        assert resolve_amount(decision, ctx) == Decimal("0")

    def test_sell_without_holding_cancelled(self, gate):
        decision = spot_decision(action=DecisionAction.SELL, amount=Decimal("0"))
        verdict = gate.evaluate(decision, context())

        assert verdict.failed_check is CheckName.AMOUNT


# ============================================================
# FAIL-SAFE
# ============================================================

class TestFailSafe:
    """Errors cancel, never raise."""

    def test_exception_in_check_cancels(self, gate, monkeypatch):
        def boom(self, decision, amount, context):
            raise RuntimeError("broken")

        monkeypatch.setattr(ConfidenceCheck, "_check", boom)

        verdict = gate.evaluate(spot_decision(), context())

        assert verdict.approved is False
        assert verdict.failed_check is CheckName.CONFIDENCE
        assert verdict.reason == "风控检查异常 (CONFIDENCE)，已取消交易"

    def test_frequency_check_when_enabled(self, clock):
        gate = RiskGate(RiskGateConfig(min_trade_interval_minutes=30), clock)
        ctx = context(last_fill_at=FIXED_NOW - timedelta(minutes=10))

        verdict = gate.evaluate(spot_decision(), ctx)

        assert verdict.failed_check is CheckName.TRADE_FREQUENCY
        assert verdict.reason == "距上次交易仅 10 分钟，低于最小间隔 30 分钟"


# ============================================================
# CONTEXT LOADING
# ============================================================

class TestAssess:
    """assess() loads realized loss from the ledger."""

    @pytest.mark.asyncio
    async def test_loss_today_cancels(self, gate, repository, spot_account):
        await repository.add_trade(TradeModel(
            account_id=spot_account.id,
            symbol="BTCUSDT",
            side="SELL",
            quantity=Decimal("0.001"),
            price=Decimal("40000"),
            quote_quantity=Decimal("40"),
            realized_pnl=Decimal("-60"),
            executed_at=FIXED_NOW - timedelta(hours=1),
        ))

        verdict = await gate.assess(
            spot_decision(), spot_account, AccountContext(mode=TradingMode.SPOT), repository
        )

        assert verdict.failed_check is CheckName.DAILY_LOSS

    @pytest.mark.asyncio
    async def test_loss_before_midnight_ignored(self, gate, repository, spot_account):
        await repository.add_trade(TradeModel(
            account_id=spot_account.id,
            symbol="BTCUSDT",
            side="SELL",
            quantity=Decimal("0.001"),
            price=Decimal("40000"),
            quote_quantity=Decimal("40"),
            realized_pnl=Decimal("-60"),
            executed_at=FIXED_NOW - timedelta(days=1),
        ))

        verdict = await gate.assess(
            spot_decision(), spot_account, AccountContext(mode=TradingMode.SPOT), repository
        )

        assert verdict.approved is True

    @pytest.mark.asyncio
    async def test_context_error_cancels(self, gate, spot_account):
        class BrokenRepository:
            async def get_realized_loss_since(self, *args):
                raise RuntimeError("db down")

        verdict = await gate.assess(
            spot_decision(), spot_account, AccountContext(mode=TradingMode.SPOT), BrokenRepository()
        )

        assert verdict.approved is False
        assert verdict.failed_check is CheckName.INTERNAL_ERROR
        assert verdict.reason == "风控检查异常，已取消交易: RuntimeError"

    @pytest.mark.asyncio
    async def test_frequency_is_per_symbol(self, clock, repository, spot_account):
        gate = RiskGate(RiskGateConfig(min_trade_interval_minutes=30), clock)
        await repository.add_trade(TradeModel(
            account_id=spot_account.id,
            symbol="ETHUSDT",
            side="BUY",
            quantity=Decimal("0.02"),
            price=Decimal("2500"),
            quote_quantity=Decimal("50"),
            executed_at=FIXED_NOW - timedelta(minutes=10),
        ))
        exposure = AccountContext(mode=TradingMode.SPOT)

        btc = await gate.assess(spot_decision(), spot_account, exposure, repository)
        eth = await gate.assess(spot_decision(symbol="ETHUSDT"), spot_account, exposure, repository)

        assert btc.approved is True
        assert eth.failed_check is CheckName.TRADE_FREQUENCY
