"""Per-trade performance report over a realized-pnl ledger."""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np
from pydantic import BaseModel

from quantcore.core.models import Trade

STARTING_EQUITY = 10_000.0


class PerformanceReport(BaseModel):
    """
    Summary of a sequence of realized trade pnls (currency units).

    `var95` / `var99` are the loss magnitudes at the 5% / 1% pnl quantiles
    (0 when that quantile is not a loss). `max_drawdown` is a fraction of the
    peak of the equity curve built from `STARTING_EQUITY`.
    """

    model_config = {"ser_json_inf_nan": "strings"}

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    expectancy: float = 0.0
    sharpe_ratio: float = 0.0
    volatility: float = 0.0
    max_drawdown: float = 0.0
    var95: float = 0.0
    var99: float = 0.0
    total_pnl: float = 0.0


def pnls_from_trades(trades: Sequence[Trade]) -> List[float]:
    return [float(t.pnl) for t in trades if not t.is_open and t.pnl is not None]


def equity_curve(pnls: Sequence[float], starting_equity: float = STARTING_EQUITY) -> List[float]:
    """Running equity after each trade, starting from `starting_equity`."""
    return [float(v) for v in starting_equity + np.cumsum(np.asarray(pnls, dtype=float))]


def _quantile_loss(ordered: np.ndarray, q: float) -> float:
    value = float(ordered[int(math.floor(len(ordered) * q))])
    return -value if value < 0 else 0.0


def trade_performance(
    pnls: Sequence[float], starting_equity: float = STARTING_EQUITY
) -> PerformanceReport:
    p = np.asarray(pnls, dtype=float).reshape(-1)
    if not len(p):
        return PerformanceReport()

    wins = p[p > 0]
    losses = p[p < 0]
    gross_win = float(wins.sum())
    gross_loss = float(-losses.sum())
    if gross_loss > 0:
        pf = gross_win / gross_loss
    else:
        pf = math.inf if gross_win > 0 else 0.0

    mean = float(p.mean())
    vol = float(p.std(ddof=0))
    ordered = np.sort(p)

    curve = np.asarray(equity_curve(p, starting_equity))
    peaks = np.maximum.accumulate(np.concatenate(([starting_equity], curve)))[1:]
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peaks > 0, (peaks - curve) / peaks, 0.0)

    return PerformanceReport(
        total_trades=len(p),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(p),
        profit_factor=pf,
        average_win=float(wins.mean()) if len(wins) else 0.0,
        average_loss=gross_loss / len(losses) if len(losses) else 0.0,
        expectancy=mean,
        sharpe_ratio=mean / vol if vol > 0 else 0.0,
        volatility=vol,
        max_drawdown=float(dd.max()),
        var95=_quantile_loss(ordered, 0.05),
        var99=_quantile_loss(ordered, 0.01),
        total_pnl=float(p.sum()),
    )


__all__ = [
    "PerformanceReport",
    "STARTING_EQUITY",
    "equity_curve",
    "pnls_from_trades",
    "trade_performance",
]
