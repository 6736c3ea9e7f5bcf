# quantcore/backtest/metrics.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from loguru import logger

from quantcore.core.models import EquityPoint, Trade

CALENDAR_DAYS = 365


# -------- Data classes --------
@dataclass
class LedgerSummary:
    total_return: float
    annualized_return: float
    max_drawdown: float
    sharpe_ratio: float
    win_rate: float
    profit_factor: float
    total_trades: int
    winning_trades: int
    losing_trades: int


# -------- Internals --------
def _closed_pnls(trades: Sequence[Trade]) -> np.ndarray:
    return np.array([float(t.pnl) for t in trades if not t.is_open and t.pnl is not None])


# -------- Public API --------
def total_return(initial_capital: float, final_capital: float) -> float:
    if initial_capital <= 0:
        return 0.0
    return (final_capital - initial_capital) / initial_capital


def annualized_return(total: float, days: float) -> float:
    """
    `(1 + total)^(365 / days) - 1`; 0 for a non-positive span or a total loss,
    +inf when compounding a short span overflows.
    """
    if days <= 0 or total <= -1.0:
        return 0.0
    try:
        return (1.0 + total) ** (CALENDAR_DAYS / days) - 1.0
    except OverflowError:
        logger.debug("Annualized return overflows: total={} days={}", total, days)
        return math.inf


def win_rate(trades: Sequence[Trade]) -> float:
    pnls = _closed_pnls(trades)
    if not len(pnls):
        return 0.0
    return float((pnls > 0).sum()) / len(pnls)


def profit_factor(trades: Sequence[Trade]) -> float:
    """
    Gross wins over gross losses. +inf with wins and no losses, 0 with
    neither wins nor losses.
    """
    pnls = _closed_pnls(trades)
    gross_win = float(pnls[pnls > 0].sum()) if len(pnls) else 0.0
    gross_loss = float(-pnls[pnls < 0].sum()) if len(pnls) else 0.0
    if gross_loss > 0:
        return gross_win / gross_loss
    return math.inf if gross_win > 0 else 0.0


def trade_sharpe(trades: Sequence[Trade]) -> float:
    """Per-trade percent returns: mean / sample stddev * sqrt(365); 0 when degenerate."""
    rets = np.array(
        [float(t.pnl_pct) for t in trades if not t.is_open and t.pnl_pct is not None]
    )
    if len(rets) < 2:
        return 0.0
    std = float(rets.std(ddof=1))
    if not std > 0:
        return 0.0
    return float(rets.mean()) / std * math.sqrt(CALENDAR_DAYS)


def equity_max_drawdown(curve: Sequence[EquityPoint]) -> float:
    """Largest peak-to-trough fall of mark-to-market equity, as a fraction of the peak."""
    if not curve:
        return 0.0
    s = np.array([p.equity for p in curve], dtype=float)
    peaks = np.maximum.accumulate(s)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peaks > 0, (peaks - s) / peaks, 0.0)
    return float(dd.max())


def summarize_ledger(
    trades: List[Trade],
    curve: List[EquityPoint],
    *,
    initial_capital: float,
    final_capital: float,
    days: float,
) -> LedgerSummary:
    pnls = _closed_pnls(trades)
    tr = total_return(initial_capital, final_capital)
    summary = LedgerSummary(
        total_return=tr,
        annualized_return=annualized_return(tr, days),
        max_drawdown=equity_max_drawdown(curve),
        sharpe_ratio=trade_sharpe(trades),
        win_rate=win_rate(trades),
        profit_factor=profit_factor(trades),
        total_trades=len(pnls),
        winning_trades=int((pnls > 0).sum()) if len(pnls) else 0,
        losing_trades=int((pnls <= 0).sum()) if len(pnls) else 0,
    )
    logger.debug(
        "[metrics] trades={} tot={:.4f} ann={:.4f} maxDD={:.4f} sharpe={:.3f} win={:.3f} pf={}",
        summary.total_trades,
        summary.total_return,
        summary.annualized_return,
        summary.max_drawdown,
        summary.sharpe_ratio,
        summary.win_rate,
        summary.profit_factor,
    )
    return summary


__all__ = [
    "LedgerSummary",
    "total_return",
    "annualized_return",
    "win_rate",
    "profit_factor",
    "trade_sharpe",
    "equity_max_drawdown",
    "summarize_ledger",
]
