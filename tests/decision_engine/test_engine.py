"""
Decision Engine Tests.

============================================================
PURPOSE
============================================================
The engine makes exactly one model call per cycle and turns
the reply into a TradeDecision. Failures abort the cycle.

============================================================
"""

from decimal import Decimal

import pytest

from decision_engine import (
    AccountContext,
    DecisionAction,
    DecisionEngine,
    LLMConfig,
    ModelCallError,
    NoMarketDataError,
    TradeDecision,
    TradingMode,
    build_decision_model,
)
from tests.conftest import FUTURES_OPEN_LONG_REPLY, SPOT_BUY_REPLY, ScriptedModelClient
from tests.decision_engine.test_prompts import make_snapshot


# ============================================================
# DECIDE
# ============================================================

class TestDecide:
    """Tests for DecisionEngine.decide."""

    @pytest.mark.asyncio
    async def test_spot_decision(self):
        client = ScriptedModelClient([SPOT_BUY_REPLY])
        engine = DecisionEngine(client, LLMConfig.for_testing())

        decision = await engine.decide(
            [make_snapshot("BTCUSDT", "50000")],
            AccountContext(mode=TradingMode.SPOT),
        )

        assert decision.action is DecisionAction.BUY
        assert len(client.calls) == 1
        assert client.calls[0]["max_tokens"] == 800

    @pytest.mark.asyncio
    async def test_futures_uses_larger_max_tokens(self):
        client = ScriptedModelClient([FUTURES_OPEN_LONG_REPLY])
        engine = DecisionEngine(client, LLMConfig.for_testing())

        decision = await engine.decide(
            [make_snapshot("BTCUSDT", "50000")],
            AccountContext(mode=TradingMode.FUTURES),
        )

        assert decision.action is DecisionAction.OPEN_LONG
        assert client.calls[0]["max_tokens"] == 1000

    @pytest.mark.asyncio
    async def test_no_snapshots_raises_without_calling_model(self):
        client = ScriptedModelClient([SPOT_BUY_REPLY])

        with pytest.raises(NoMarketDataError):
            await DecisionEngine(client).decide([], AccountContext(mode=TradingMode.SPOT))

        assert client.calls == []

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self):
        client = ScriptedModelClient(error=ModelCallError("timeout"))

        with pytest.raises(ModelCallError):
            await DecisionEngine(client).decide(
                [make_snapshot("BTCUSDT", "50000")],
                AccountContext(mode=TradingMode.SPOT),
            )


# ============================================================
# PERSISTENCE MAPPING
# ============================================================

class TestBuildDecisionModel:
    """Tests for build_decision_model."""

    def test_attaches_market_data_and_selected_indicators(self):
        snapshots = [make_snapshot("ETHUSDT", "3000"), make_snapshot("BTCUSDT", "50000")]
        decision = TradeDecision(
            mode=TradingMode.SPOT,
            action=DecisionAction.BUY,
            confidence=0.8,
            symbol="ETHUSDT",
            amount=Decimal("20"),
        )

        model = build_decision_model("acc-1", decision, snapshots, AccountContext(mode=TradingMode.SPOT))

        assert model.account_id == "acc-1"
        assert sorted(model.market_data) == ["BTCUSDT", "ETHUSDT"]
        assert "rsi" in model.technical_indicators
        assert model.executed is False
        assert model.outcome is None

    def test_unknown_symbol_has_no_indicators(self):
        decision = TradeDecision(mode=TradingMode.SPOT)
        model = build_decision_model(
            "acc-1", decision, [make_snapshot("BTCUSDT", "50000")], AccountContext(mode=TradingMode.SPOT)
        )
        assert model.technical_indicators == {}
