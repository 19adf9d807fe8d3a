"""
Market Data Gatherer Tests.
"""

from decimal import Decimal

import pytest

from execution_engine.adapters import MockConfig, MockExchangeAdapter
from market_data import MarketDataConfig, MarketDataGatherer


class TestMarketDataGatherer:
    """Tests for MarketDataGatherer."""

    @pytest.mark.asyncio
    async def test_defaults_to_btcusdt(self):
        adapter = MockExchangeAdapter(MockConfig(market="spot"))
        snapshots = await MarketDataGatherer(adapter).gather([])

        assert [s.symbol for s in snapshots] == ["BTCUSDT"]
        assert snapshots[0].funding_rate == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_symbol_is_skipped(self):
        adapter = MockExchangeAdapter(MockConfig(market="futures"))
        snapshots = await MarketDataGatherer(adapter).gather(["BTCUSDT", "NOPEUSDT"])

        assert [s.symbol for s in snapshots] == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_empty_klines_are_skipped(self):
        adapter = MockExchangeAdapter(MockConfig(
            market="spot",
            prices={"BTCUSDT": Decimal("50000"), "ETHUSDT": Decimal("3000")},
            klines={"ETHUSDT": []},
        ))
        snapshots = await MarketDataGatherer(adapter).gather(["BTCUSDT", "ETHUSDT"])

        assert [s.symbol for s in snapshots] == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_spot_zero_last_price_is_skipped(self):
        adapter = MockExchangeAdapter(MockConfig(
            market="spot",
            prices={"BTCUSDT": Decimal("50000"), "ETHUSDT": Decimal("0")},
        ))
        snapshots = await MarketDataGatherer(adapter).gather(["BTCUSDT", "ETHUSDT"])

        assert [s.symbol for s in snapshots] == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_futures_uses_mark_price_and_funding(self):
        adapter = MockExchangeAdapter(MockConfig(
            market="futures",
            prices={"BTCUSDT": Decimal("50000")},
            funding_rates={"BTCUSDT": Decimal("0.0001")},
        ))
        snapshot = (await MarketDataGatherer(adapter).gather(["BTCUSDT"]))[0]

        assert snapshot.price == Decimal("50000")
        assert snapshot.funding_rate == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_recent_candles_limited(self):
        adapter = MockExchangeAdapter(MockConfig(market="spot"))
        config = MarketDataConfig(limit=50, recent_candles=3)
        snapshot = (await MarketDataGatherer(adapter, config).gather(["BTCUSDT"]))[0]

        assert len(snapshot.recent_candles) == 3
