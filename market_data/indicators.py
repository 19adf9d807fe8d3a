"""
Market Data - Technical Indicators.

============================================================
PURPOSE
============================================================
Pure functions computing technical indicators from a close-price
series (oldest first). No state, no I/O.

- RSI (simple-average variant)
- EMA (SMA-seeded)
- MA
- MACD (line, signal, histogram)
- Bollinger Bands (population standard deviation)

============================================================
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, List, Sequence


@dataclass(frozen=True)
class MACDResult:
    """MACD line, signal line and histogram."""

    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger Bands around a moving average."""

    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class IndicatorSet:
    """All indicators for one symbol."""

    rsi: float
    macd: MACDResult
    ema12: float
    ema26: float
    bollinger: BollingerBands

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _require_prices(prices: Sequence[float]) -> None:
    if not prices:
        raise ValueError("prices must not be empty")


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index over the last `period` changes.

    Returns 50 (neutral) when fewer than period + 1 prices exist.
    """
    _require_prices(prices)
    if len(prices) < period + 1:
        return 50.0

    gains = 0.0
    losses = 0.0
    for i in range(len(prices) - period, len(prices)):
        change = prices[i] - prices[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def _ema_series(prices: Sequence[float], period: int) -> List[float]:
    """EMA values from index period-1 onward, seeded with the SMA."""
    multiplier = 2.0 / (period + 1)
    ema = sum(prices[:period]) / period
    series = [ema]
    for price in prices[period:]:
        ema = (price - ema) * multiplier + ema
        series.append(ema)
    return series


def calculate_ema(prices: Sequence[float], period: int) -> float:
    """
    Exponential moving average.

    Returns the last price when fewer than `period` prices exist.
    """
    _require_prices(prices)
    if len(prices) < period:
        return float(prices[-1])
    return _ema_series(prices, period)[-1]


def calculate_ma(prices: Sequence[float], period: int) -> float:
    """Simple moving average of the last `period` prices."""
    _require_prices(prices)
    window = prices[-period:]
    return sum(window) / len(window)


def calculate_macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    MACD = EMA(fast) - EMA(slow); signal = EMA(signal_period) of MACD.

    With too little history for a signal line, signal is 0 and the
    histogram equals the MACD line.
    """
    _require_prices(prices)
    macd_line = calculate_ema(prices, fast) - calculate_ema(prices, slow)

    if len(prices) < slow + signal_period - 1:
        return MACDResult(macd=macd_line, signal=0.0, histogram=macd_line)

    fast_series = _ema_series(prices, fast)
    slow_series = _ema_series(prices, slow)
    # align: slow series starts (slow - fast) samples later
    offset = slow - fast
    macd_series = [f - s for f, s in zip(fast_series[offset:], slow_series)]
    signal = _ema_series(macd_series, signal_period)[-1]
    return MACDResult(macd=macd_line, signal=signal, histogram=macd_line - signal)


def calculate_bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """Bollinger Bands using population standard deviation."""
    _require_prices(prices)
    window = prices[-period:]
    middle = sum(window) / len(window)
    variance = sum((p - middle) ** 2 for p in window) / len(window)
    deviation = math.sqrt(variance)
    return BollingerBands(
        upper=middle + std_dev * deviation,
        middle=middle,
        lower=middle - std_dev * deviation,
    )


def summarize(prices: Sequence[float]) -> IndicatorSet:
    """Compute the full indicator set used in prompts."""
    return IndicatorSet(
        rsi=calculate_rsi(prices, 14),
        macd=calculate_macd(prices),
        ema12=calculate_ema(prices, 12),
        ema26=calculate_ema(prices, 26),
        bollinger=calculate_bollinger_bands(prices, 20, 2.0),
    )
