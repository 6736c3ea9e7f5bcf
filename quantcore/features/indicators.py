"""
Feature engineering: technical indicators.

Pure functions over an ordered numeric series (plus parallel high/low/volume
series where an indicator needs them). Each returns an `IndicatorSeries` whose
`values` start after the indicator's warm-up period, so
`len(values) == len(input) - warmup`. Inputs shorter than the warm-up yield
an empty series instead of raising.
"""

from __future__ import annotations

import math
from typing import List, Mapping, Sequence, Union

import numpy as np
import pandas as pd
from loguru import logger

from quantcore.core.exceptions import DataValidationError, InvalidConfigurationError
from quantcore.core.models import IndicatorSeries, SignalLabel

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]

RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
STOCH_OVERSOLD = 20.0
STOCH_OVERBOUGHT = 80.0


# -------- Internals --------
def _as_array(data: ArrayLike) -> np.ndarray:
    if data is None:
        return np.empty(0, dtype=float)
    return np.asarray(data, dtype=float).reshape(-1)


def _check_period(name: str, period: float) -> int:
    try:
        if not math.isfinite(period):
            raise ValueError(period)
        as_int = int(period)
    except (TypeError, ValueError, OverflowError):
        raise InvalidConfigurationError(f"{name} period must be an integer, got {period!r}")
    if as_int != period or as_int <= 0:
        raise InvalidConfigurationError(f"{name} period must be a positive integer, got {period!r}")
    return as_int


def _too_short(name: str, n: int, needed: int) -> IndicatorSeries:
    logger.debug("{} input too short (len={} < {})", name, n, needed)
    return IndicatorSeries()


def _ema_array(x: np.ndarray, period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first `period` values; len(x) - period + 1 points."""
    if len(x) < period:
        return np.empty(0, dtype=float)
    alpha = 2.0 / (period + 1)
    out = np.empty(len(x) - period + 1, dtype=float)
    prev = float(x[:period].mean())
    out[0] = prev
    for j, value in enumerate(x[period:], start=1):
        prev = (float(value) - prev) * alpha + prev
        out[j] = prev
    return out


def _wilder_array(x: np.ndarray, period: int) -> np.ndarray:
    """Wilder smoothing seeded with the simple mean of the first `period` values."""
    if len(x) < period:
        return np.empty(0, dtype=float)
    out = np.empty(len(x) - period + 1, dtype=float)
    prev = float(x[:period].mean())
    out[0] = prev
    for j, value in enumerate(x[period:], start=1):
        prev = (prev * (period - 1) + float(value)) / period
        out[j] = prev
    return out


def _rolling(x: np.ndarray, period: int) -> pd.core.window.Rolling:
    return pd.Series(x, dtype=float).rolling(window=period, min_periods=period)


def _cross_signals(price: np.ndarray, line: np.ndarray) -> List[SignalLabel]:
    """BUY when price crosses above `line`, SELL when it crosses below."""
    if len(line) == 0:
        return []
    buy = (price[1:] > line[1:]) & (price[:-1] <= line[:-1])
    sell = (price[1:] < line[1:]) & (price[:-1] >= line[:-1])
    labels = [SignalLabel.HOLD]
    for b, s in zip(buy, sell):
        labels.append(SignalLabel.BUY if b else SignalLabel.SELL if s else SignalLabel.HOLD)
    return labels


def _band_signals(values: np.ndarray, buy_below: float, sell_above: float) -> List[SignalLabel]:
    return [
        SignalLabel.SELL
        if v > sell_above
        else SignalLabel.BUY if v < buy_below else SignalLabel.HOLD
        for v in values
    ]


def _to_list(x: np.ndarray) -> List[float]:
    return [float(v) for v in x]


# -------- Public API --------
def sma(data: ArrayLike, period: int = 20) -> IndicatorSeries:
    """Simple moving average with price-crossover signals."""
    p = _check_period("SMA", period)
    x = _as_array(data)
    if len(x) < p:
        return _too_short("SMA", len(x), p)
    values = _rolling(x, p).mean().to_numpy()[p - 1 :]
    return IndicatorSeries(values=_to_list(values), signals=_cross_signals(x[p - 1 :], values))


def ema(data: ArrayLike, period: int = 20) -> IndicatorSeries:
    """Exponential moving average, SMA-seeded, alpha = 2 / (period + 1)."""
    p = _check_period("EMA", period)
    x = _as_array(data)
    if len(x) < p:
        return _too_short("EMA", len(x), p)
    values = _ema_array(x, p)
    return IndicatorSeries(values=_to_list(values), signals=_cross_signals(x[p - 1 :], values))


def rsi(data: ArrayLike, period: int = 14) -> IndicatorSeries:
    """
    Compute Relative Strength Index (RSI) with Wilder smoothing.

    Parameters
    ----------
    data : array-like
        Price series (e.g., closing prices).
    period : int, default 14
        Lookback period for RSI.

    Returns
    -------
    IndicatorSeries
        RSI values scaled 0-100, first value at input index `period`.
        A window with no losses reads 100. Signals are BUY below 30 and
        SELL above 70.
    """
    p = _check_period("RSI", period)
    x = _as_array(data)
    if len(x) < p + 1:
        return _too_short("RSI", len(x), p + 1)

    delta = np.diff(x)
    avg_gain = _wilder_array(np.clip(delta, 0.0, None), p)
    avg_loss = _wilder_array(np.clip(-delta, 0.0, None), p)

    values = np.full(len(avg_gain), 100.0)
    has_loss = avg_loss > 0
    rs = avg_gain[has_loss] / avg_loss[has_loss]
    values[has_loss] = 100.0 - 100.0 / (1.0 + rs)
    values = np.clip(values, 0.0, 100.0)

    return IndicatorSeries(
        values=_to_list(values),
        signals=_band_signals(values, RSI_OVERSOLD, RSI_OVERBOUGHT),
    )


def macd(
    data: ArrayLike, fast: int = 12, slow: int = 26, signal: int = 9
) -> IndicatorSeries:
    """
    Moving Average Convergence Divergence.

    `values` is the MACD line, starting at input index `slow - 1`; the fast
    EMA is aligned to the slow EMA on the original series index. Metadata
    carries `signal` (EMA of the MACD line) and `histogram`, both starting
    `signal - 1` points into the MACD line and empty until then. Signals mark
    MACD/signal crossovers and are HOLD until the signal line exists.
    """
    f = _check_period("MACD fast", fast)
    s = _check_period("MACD slow", slow)
    g = _check_period("MACD signal", signal)
    if f >= s:
        raise InvalidConfigurationError(f"MACD fast period ({f}) must be below slow ({s})")
    x = _as_array(data)
    if len(x) < s:
        return _too_short("MACD", len(x), s)

    fast_ema = _ema_array(x, f)
    slow_ema = _ema_array(x, s)
    macd_line = fast_ema[s - f :] - slow_ema
    signal_line = _ema_array(macd_line, g)
    histogram = macd_line[g - 1 :] - signal_line
    if not len(histogram):
        logger.debug("MACD signal line needs {} points, have {}", g, len(macd_line))
        return IndicatorSeries(
            values=_to_list(macd_line),
            signals=[SignalLabel.HOLD] * len(macd_line),
            metadata={"signal": [], "histogram": []},
        )

    labels = [SignalLabel.HOLD] * g
    for prev, curr in zip(histogram[:-1], histogram[1:]):
        if prev <= 0 < curr:
            labels.append(SignalLabel.BUY)
        elif prev >= 0 > curr:
            labels.append(SignalLabel.SELL)
        else:
            labels.append(SignalLabel.HOLD)

    return IndicatorSeries(
        values=_to_list(macd_line),
        signals=labels,
        metadata={"signal": _to_list(signal_line), "histogram": _to_list(histogram)},
    )


def bollinger_bands(data: ArrayLike, period: int = 20, k: float = 2.0) -> IndicatorSeries:
    """Middle = SMA, bands = middle +/- k * population stddev of the window."""
    p = _check_period("BOLL", period)
    if k < 0:
        raise InvalidConfigurationError(f"BOLL k must be >= 0, got {k!r}")
    x = _as_array(data)
    if len(x) < p:
        return _too_short("BOLL", len(x), p)

    window = _rolling(x, p)
    middle = window.mean().to_numpy()[p - 1 :]
    sd = window.std(ddof=0).to_numpy()[p - 1 :]
    sd = np.where(sd > 0, sd, 0.0)
    upper = middle + k * sd
    lower = middle - k * sd

    price = x[p - 1 :]
    labels = [
        SignalLabel.SELL if c > u else SignalLabel.BUY if c < lo else SignalLabel.HOLD
        for c, u, lo in zip(price, upper, lower)
    ]
    return IndicatorSeries(
        values=_to_list(middle),
        signals=labels,
        metadata={
            "upper": _to_list(upper),
            "middle": _to_list(middle),
            "lower": _to_list(lower),
        },
    )


def stochastic(
    close: ArrayLike,
    high: ArrayLike | None = None,
    low: ArrayLike | None = None,
    period: int = 14,
) -> IndicatorSeries:
    """
    Stochastic oscillator. `values` is %K over the trailing window; metadata
    `d` is the 3-period SMA of %K. Without high/low the close stands in for
    both. A flat window reads 50.
    """
    p = _check_period("STOCH", period)
    c = _as_array(close)
    h = _as_array(high) if high is not None else c
    lo = _as_array(low) if low is not None else c
    if not (len(c) == len(h) == len(lo)):
        raise DataValidationError("STOCH close/high/low lengths differ")
    if len(c) < p:
        return _too_short("STOCH", len(c), p)

    period_high = _rolling(h, p).max().to_numpy()[p - 1 :]
    period_low = _rolling(lo, p).min().to_numpy()[p - 1 :]
    rng = period_high - period_low
    current = c[p - 1 :]
    k = np.full(len(current), 50.0)
    nonflat = rng > 0
    k[nonflat] = (current[nonflat] - period_low[nonflat]) / rng[nonflat] * 100.0

    d = _rolling(k, 3).mean().to_numpy()[2:] if len(k) >= 3 else np.empty(0)
    return IndicatorSeries(
        values=_to_list(k),
        signals=_band_signals(k, STOCH_OVERSOLD, STOCH_OVERBOUGHT),
        metadata={"d": _to_list(d)},
    )


def atr(
    high: ArrayLike, low: ArrayLike, close: ArrayLike, period: int = 14
) -> IndicatorSeries:
    """
    Average True Range. True range starts at index 1 (it needs the previous
    close); ATR is its Wilder smoothing seeded by the simple mean of the first
    `period` true ranges, so the first value sits at input index `period`.
    """
    p = _check_period("ATR", period)
    h, lo, c = _as_array(high), _as_array(low), _as_array(close)
    if not (len(c) == len(h) == len(lo)):
        raise DataValidationError("ATR close/high/low lengths differ")
    if len(c) < p + 1:
        return _too_short("ATR", len(c), p + 1)

    prev_close = c[:-1]
    tr = np.maximum.reduce(
        [h[1:] - lo[1:], np.abs(h[1:] - prev_close), np.abs(lo[1:] - prev_close)]
    )
    values = _wilder_array(tr, p)
    return IndicatorSeries(values=_to_list(values))


def vwap(
    high: ArrayLike, low: ArrayLike, close: ArrayLike, volume: ArrayLike
) -> IndicatorSeries:
    """Cumulative VWAP over the whole input using the typical price."""
    h, lo, c, v = _as_array(high), _as_array(low), _as_array(close), _as_array(volume)
    if not (len(c) == len(h) == len(lo) == len(v)):
        raise DataValidationError("VWAP high/low/close/volume lengths differ")
    if len(c) == 0:
        return _too_short("VWAP", 0, 1)

    typical = (h + lo + c) / 3.0
    cum_pv = np.cumsum(typical * v)
    cum_v = np.cumsum(v)
    values = typical.copy()
    traded = cum_v > 0
    values[traded] = cum_pv[traded] / cum_v[traded]
    return IndicatorSeries(values=_to_list(values), signals=_cross_signals(c, values))


def momentum(data: ArrayLike, period: int = 10) -> IndicatorSeries:
    """Price change over `period` bars; BUY if positive, SELL if negative."""
    p = _check_period("MOM", period)
    x = _as_array(data)
    if len(x) < p + 1:
        return _too_short("MOM", len(x), p + 1)
    values = x[p:] - x[:-p]
    labels = [
        SignalLabel.BUY if v > 0 else SignalLabel.SELL if v < 0 else SignalLabel.HOLD
        for v in values
    ]
    return IndicatorSeries(values=_to_list(values), signals=labels)


_WARMUP = {
    "SMA": lambda p: int(p.get("period", 20)) - 1,
    "EMA": lambda p: int(p.get("period", 20)) - 1,
    "RSI": lambda p: int(p.get("period", 14)),
    "MACD": lambda p: int(p.get("slow", 26)) - 1,
    "BOLL": lambda p: int(p.get("period", 20)) - 1,
    "STOCH": lambda p: int(p.get("period", 14)) - 1,
    "ATR": lambda p: int(p.get("period", 14)),
    "VWAP": lambda p: 0,
    "MOM": lambda p: int(p.get("period", 10)),
}


def warmup(kind: str, params: Mapping[str, float] | None = None) -> int:
    """
    Number of leading input points with no output value, so that
    `len(values) == max(0, len(input) - warmup(kind, params))`.
    MACD emits nothing below `slow` points; its signal line starts
    `signal - 1` points after the MACD line.
    """
    key = str(kind).strip().upper()
    key = "BOLL" if key == "BB" else key
    fn = _WARMUP.get(key)
    if fn is None:
        raise InvalidConfigurationError(f"Unknown indicator type: {kind}")
    return fn(dict(params or {}))


__all__ = [
    "sma",
    "ema",
    "rsi",
    "macd",
    "bollinger_bands",
    "stochastic",
    "atr",
    "vwap",
    "momentum",
    "warmup",
    "RSI_OVERSOLD",
    "RSI_OVERBOUGHT",
]
