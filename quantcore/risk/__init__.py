"""
Risk package

- `analyzer`: return-series statistics (VaR, expected shortfall, drawdown,
  Sharpe, Sortino, Calmar), cross-symbol correlation and the aggregate
  `compute_risk_metrics`
- `limits`: portfolio limit checks and per-position risk
- `performance`: per-trade performance report and equity curve

All functions are pure; nothing here stores alerts or reads market data.
"""

from .analyzer import compute_risk_metrics, correlation_matrix
from .limits import RiskLimits, check_risk_limits, position_risk
from .performance import trade_performance

__all__ = [
    "compute_risk_metrics",
    "correlation_matrix",
    "RiskLimits",
    "check_risk_limits",
    "position_risk",
    "trade_performance",
]
