"""
quantcore: feature engineering package

This package includes:
- `indicators`: pure technical indicators (SMA, EMA, RSI, MACD, Bollinger,
  Stochastic, ATR, VWAP, Momentum)
- `registry`: dispatch from a declared indicator spec to its function
- `series`: the columnar OHLCV container indicators and the simulator share

Usage:
    from quantcore.features import indicators, registry

All modules under this package are deterministic and free of I/O.
"""

from . import indicators, registry, series

__all__ = ["indicators", "registry", "series"]
