"""
Market Data - Gatherer.

============================================================
PURPOSE
============================================================
Collects the per-symbol market snapshot fed to the decision
engine: klines, indicators and, for futures, mark price and
funding rate.

A symbol whose data is missing or broken is skipped with a
warning; the remaining symbols still produce snapshots.

============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from execution_engine.adapters.base import ExchangeAdapter
from execution_engine.types import Candle, ExchangeError

from .config import MarketDataConfig
from .indicators import IndicatorSet, summarize


logger = logging.getLogger(__name__)


@dataclass
class MarketSnapshot:
    """Market state for one symbol at gather time."""

    symbol: str
    price: Decimal
    change_pct: float
    """Close-to-close change over the kline window, percent."""

    volume: float
    """Summed base volume over the window."""

    indicators: IndicatorSet
    funding_rate: Decimal = Decimal("0")
    recent_candles: List[Candle] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "change_pct": round(self.change_pct, 4),
            "volume": round(self.volume, 4),
            "funding_rate": str(self.funding_rate),
            "indicators": self.indicators.to_dict(),
        }


class MarketDataGatherer:
    """
    Builds MarketSnapshots through an exchange adapter.

    Usage:
        gatherer = MarketDataGatherer(adapter)
        snapshots = await gatherer.gather(account.allowed_symbols)
    """

    def __init__(self, adapter: ExchangeAdapter, config: Optional[MarketDataConfig] = None):
        self._adapter = adapter
        self._config = config or MarketDataConfig()

    async def gather(self, symbols: Optional[Iterable[str]] = None) -> List[MarketSnapshot]:
        wanted = list(symbols or []) or list(self._config.default_symbols)
        snapshots = []
        for symbol in wanted:
            try:
                snapshot = await self.gather_symbol(symbol)
            except ExchangeError as e:
                logger.warning(f"Skipping {symbol}: exchange error {e.code}: {e}")
                continue
            if snapshot is not None:
                snapshots.append(snapshot)
        logger.info(f"Gathered market data for {len(snapshots)}/{len(wanted)} symbols")
        return snapshots

    async def gather_symbol(self, symbol: str) -> Optional[MarketSnapshot]:
        """Snapshot for one symbol, or None when its data is unusable."""
        candles = await self._adapter.get_klines(
            symbol, interval=self._config.interval, limit=self._config.limit
        )
        if not candles:
            logger.warning(f"Skipping {symbol}: no klines")
            return None

        closes = [c.close for c in candles]
        funding_rate = Decimal("0")
        futures = self._adapter.market == "futures"
        if futures:
            price = await self._adapter.get_mark_price(symbol)
        else:
            price = Decimal(str(closes[-1]))
        if price <= 0:
            logger.warning(f"Skipping {symbol}: {'mark' if futures else 'last'} price {price}")
            return None
        if futures:
            funding_rate = await self._adapter.get_funding_rate(symbol) or Decimal("0")

        first = closes[0]
        change_pct = (closes[-1] - first) / first * 100 if first else 0.0

        return MarketSnapshot(
            symbol=symbol,
            price=price,
            change_pct=change_pct,
            volume=sum(c.volume for c in candles),
            indicators=summarize(closes),
            funding_rate=funding_rate,
            recent_candles=candles[-self._config.recent_candles:],
        )
