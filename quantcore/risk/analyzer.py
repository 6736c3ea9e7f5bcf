"""
Return-distribution risk statistics.

Everything here works on a plain sequence of periodic returns (fractions,
0.01 == 1%) and annualizes on a 252 trading-day year. That convention is
separate from the simulator's per-trade 365-day Sharpe in
`quantcore.backtest.metrics`.

Degenerate inputs resolve to fixed sentinels: empty input or a zero
denominator yields 0, and Sortino is +inf when no return is negative.
"""

from __future__ import annotations

import math
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from quantcore.core.models import RiskMetrics, Trade
from quantcore.settings import get_risk_settings

TRADING_DAYS = 252
WEEK_DAYS = 5
MONTH_DAYS = 21


def _arr(returns: Sequence[float]) -> np.ndarray:
    a = np.asarray(returns, dtype=float).reshape(-1)
    return a[np.isfinite(a)]


def _risk_free(rate: Optional[float]) -> float:
    return get_risk_settings().risk_free_rate if rate is None else float(rate)


def _confidence(value: Optional[float]) -> float:
    return get_risk_settings().var_confidence if value is None else float(value)


def volatility(returns: Sequence[float]) -> float:
    """Population standard deviation of returns, annualized by sqrt(252)."""
    r = _arr(returns)
    if not len(r):
        return 0.0
    return float(r.std(ddof=0)) * math.sqrt(TRADING_DAYS)


def value_at_risk(returns: Sequence[float], confidence: Optional[float] = None) -> float:
    """Historical VaR: |sorted[floor((1 - c) * n)]|."""
    r = _arr(returns)
    if not len(r):
        return 0.0
    c = _confidence(confidence)
    ordered = np.sort(r)
    idx = max(0, int(math.floor((1.0 - c) * len(ordered))))
    return abs(float(ordered[min(idx, len(ordered) - 1)]))


def expected_shortfall(returns: Sequence[float], confidence: Optional[float] = None) -> float:
    """|mean| of the returns strictly below the VaR cutoff index; 0 if that tail is empty."""
    r = _arr(returns)
    if not len(r):
        return 0.0
    c = _confidence(confidence)
    ordered = np.sort(r)
    cutoff = int(math.floor((1.0 - c) * len(ordered)))
    tail = ordered[:cutoff]
    if not len(tail):
        return 0.0
    return abs(float(tail.mean()))


def drawdowns(returns: Sequence[float]) -> Tuple[float, float]:
    """(max, current) drawdown of value compounded from 1.0."""
    r = _arr(returns)
    if not len(r):
        return 0.0, 0.0
    value = np.cumprod(1.0 + r)
    peak = np.maximum.accumulate(np.concatenate(([1.0], value)))[1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peak > 0, (peak - value) / peak, 0.0)
    return float(dd.max()), float(dd[-1])


def max_drawdown(returns: Sequence[float]) -> float:
    return drawdowns(returns)[0]


def sharpe_ratio(returns: Sequence[float], risk_free_rate: Optional[float] = None) -> float:
    """(mean * 252 - rf) / annualized volatility; 0 when volatility is 0."""
    r = _arr(returns)
    vol = volatility(r)
    if not len(r) or vol == 0:
        return 0.0
    return (float(r.mean()) * TRADING_DAYS - _risk_free(risk_free_rate)) / vol


def sortino_ratio(returns: Sequence[float], risk_free_rate: Optional[float] = None) -> float:
    """
    Same numerator as Sharpe over the downside deviation: root mean square of
    the negative returns against a zero target, annualized by sqrt(252).
    """
    r = _arr(returns)
    if not len(r):
        return 0.0
    downside = r[r < 0]
    if not len(downside):
        return math.inf
    dd = math.sqrt(float(np.mean(downside**2))) * math.sqrt(TRADING_DAYS)
    if dd == 0:
        return 0.0
    return (float(r.mean()) * TRADING_DAYS - _risk_free(risk_free_rate)) / dd


def calmar_ratio(returns: Sequence[float], max_dd: Optional[float] = None) -> float:
    """
    Compounded annual return over max drawdown; 0 with no returns or no
    drawdown, +inf when annualizing a short series overflows.
    """
    r = _arr(returns)
    if not len(r):
        return 0.0
    mdd = max_drawdown(r) if max_dd is None else float(max_dd)
    if mdd == 0:
        return 0.0
    growth = float(np.prod(1.0 + r))
    if growth <= 0:
        return -1.0 / mdd
    try:
        annualized = growth ** (TRADING_DAYS / len(r)) - 1.0
    except OverflowError:
        return math.inf
    return annualized / mdd


def var_break_count(returns: Sequence[float], var_level: float) -> int:
    """Number of returns losing more than `var_level`."""
    r = _arr(returns)
    return int((r < -abs(var_level)).sum())


def returns_from_prices(prices: Sequence[float]) -> np.ndarray:
    """Simple returns p[i] / p[i-1] - 1, skipping steps from a non-positive price."""
    p = np.asarray(prices, dtype=float).reshape(-1)
    if len(p) < 2:
        return np.empty(0, dtype=float)
    prev, curr = p[:-1], p[1:]
    ok = prev > 0
    return (curr[ok] - prev[ok]) / prev[ok]


def returns_from_trades(trades: Sequence[Trade]) -> np.ndarray:
    """Per-trade fractional returns of closed trades, in ledger order."""
    return np.array(
        [t.pnl_pct / 100.0 for t in trades if not t.is_open and t.pnl_pct is not None],
        dtype=float,
    )


def correlation_matrix(
    returns_by_symbol: Mapping[str, Sequence[float]],
) -> Dict[str, Dict[str, float]]:
    """
    Pearson correlation between return series, keyed symbol -> symbol.

    Series are aligned on their most recent common length. The diagonal is 1;
    pairs with fewer than two common points or a constant series read 0.
    """
    symbols = list(returns_by_symbol)
    if not symbols:
        return {}
    arrays = {s: np.asarray(returns_by_symbol[s], dtype=float).reshape(-1) for s in symbols}
    n = min(len(a) for a in arrays.values())
    frame = pd.DataFrame({s: a[len(a) - n :] for s, a in arrays.items()})
    if n >= 2:
        corr = frame.corr(method="pearson")
    else:
        corr = pd.DataFrame(np.nan, index=symbols, columns=symbols)

    out: Dict[str, Dict[str, float]] = {}
    for a in symbols:
        row: Dict[str, float] = {}
        for b in symbols:
            value = float(corr.loc[a, b])
            row[b] = 1.0 if a == b else (value if math.isfinite(value) else 0.0)
        out[a] = row
    return out


def compute_risk_metrics(
    returns: Sequence[float],
    portfolio_value: float = 0.0,
    confidence: Optional[float] = None,
    lookback: Optional[int] = None,
    risk_free_rate: Optional[float] = None,
) -> RiskMetrics:
    """
    Full RiskMetrics for a return series.

    VaR and expected shortfall use the trailing `lookback` returns
    (default `VAR_LOOKBACK_DAYS`); weekly and monthly VaR scale the daily
    figure by sqrt(5) and sqrt(21). Drawdowns and ratios use the whole series.
    """
    r = _arr(returns)
    if not len(r):
        logger.debug("compute_risk_metrics: empty return series")
        return RiskMetrics(portfolio_value=float(portfolio_value))

    settings = get_risk_settings()
    c = settings.var_confidence if confidence is None else float(confidence)
    window = settings.var_lookback_days if lookback is None else int(lookback)
    recent = r[-window:] if window > 0 else r

    daily_var = value_at_risk(recent, c)
    max_dd, current_dd = drawdowns(r)

    metrics = RiskMetrics(
        portfolio_value=float(portfolio_value),
        daily_var=daily_var,
        weekly_var=daily_var * math.sqrt(WEEK_DAYS),
        monthly_var=daily_var * math.sqrt(MONTH_DAYS),
        expected_shortfall=expected_shortfall(recent, c),
        sharpe_ratio=sharpe_ratio(r, risk_free_rate),
        sortino_ratio=sortino_ratio(r, risk_free_rate),
        calmar_ratio=calmar_ratio(r, max_dd),
        max_drawdown=max_dd,
        current_drawdown=current_dd,
        volatility=volatility(r),
        var_break_count=var_break_count(recent, daily_var),
    )
    logger.debug(
        "[risk] n={} var={:.4f} es={:.4f} vol={:.4f} sharpe={:.3f} maxDD={:.4f}",
        len(r),
        metrics.daily_var,
        metrics.expected_shortfall,
        metrics.volatility,
        metrics.sharpe_ratio,
        metrics.max_drawdown,
    )
    return metrics


__all__ = [
    "TRADING_DAYS",
    "volatility",
    "value_at_risk",
    "expected_shortfall",
    "drawdowns",
    "max_drawdown",
    "sharpe_ratio",
    "sortino_ratio",
    "calmar_ratio",
    "var_break_count",
    "returns_from_prices",
    "returns_from_trades",
    "correlation_matrix",
    "compute_risk_metrics",
]
