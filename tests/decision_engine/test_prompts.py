"""
Prompt Builder Tests.
"""

from decimal import Decimal

from decision_engine import AccountContext, TradingMode, build_user_prompt, system_prompt
from market_data.gatherer import MarketSnapshot
from market_data.indicators import summarize


def make_snapshot(symbol: str, price: str, funding: str = "0") -> MarketSnapshot:
    closes = [float(price) * (1 + 0.001 * i) for i in range(40)]
    return MarketSnapshot(
        symbol=symbol,
        price=Decimal(price),
        change_pct=1.5,
        volume=1234.0,
        indicators=summarize(closes),
        funding_rate=Decimal(funding),
    )


class TestPrompts:
    """Tests for prompt building."""

    def test_same_input_same_text(self):
        context = AccountContext(mode=TradingMode.SPOT, allowed_symbols=["ETHUSDT", "BTCUSDT"])
        snapshots = [make_snapshot("ETHUSDT", "3000"), make_snapshot("BTCUSDT", "50000")]

        first = build_user_prompt(snapshots, context)
        second = build_user_prompt(list(reversed(snapshots)), context)

        assert first == second

    def test_symbols_sorted(self):
        context = AccountContext(mode=TradingMode.SPOT)
        prompt = build_user_prompt(
            [make_snapshot("ETHUSDT", "3000"), make_snapshot("BTCUSDT", "50000")],
            context,
        )
        assert prompt.index("BTCUSDT:") < prompt.index("ETHUSDT:")

    def test_spot_prompt_shows_trade_limit(self):
        context = AccountContext(mode=TradingMode.SPOT, max_trade_amount=Decimal("75"))
        prompt = build_user_prompt([make_snapshot("BTCUSDT", "50000")], context)

        assert "单笔最大买入金额: $75.00 USDT" in prompt
        assert "无持仓" in prompt
        assert "资金费率" not in prompt

    def test_futures_prompt_shows_funding_and_leverage(self):
        context = AccountContext(mode=TradingMode.FUTURES, max_leverage=15)
        prompt = build_user_prompt([make_snapshot("BTCUSDT", "50000", "0.0001")], context)

        assert "资金费率: 0.0100%" in prompt
        assert "最大杠杆倍数: 15x" in prompt

    def test_system_prompt_by_mode(self):
        assert "OPEN_LONG" in system_prompt(TradingMode.FUTURES)
        assert "OPEN_LONG" not in system_prompt(TradingMode.SPOT)
