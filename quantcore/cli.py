"""
Command-line entry point.

    quantcore backtest --candles btc.csv --strategy rsi.yaml --symbol BTC/USDT --capital 10000
    quantcore indicators --candles btc.csv --indicator MACD --param fast=8 --param slow=21
    quantcore risk --returns daily.csv --confidence 0.99

Results are printed to stdout as JSON; logs go to stderr.
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import yaml
from loguru import logger
from pydantic import ValidationError

from quantcore.backtest.engine import run_backtest
from quantcore.core.exceptions import DataValidationError, QuantCoreError
from quantcore.core.models import (
    BacktestRequest,
    Candle,
    IndicatorSpec,
    StrategyDefinition,
    ms_to_datetime,
)
from quantcore.features.registry import compute_indicator
from quantcore.features.series import PriceSeries, ensure_flat_ohlcv, pick_col
from quantcore.logging_utils import setup_logging
from quantcore.risk.analyzer import compute_risk_metrics, returns_from_prices


def _load_frame(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    if df.empty:
        raise DataValidationError(f"{path} has no rows")
    return df


def load_candles(path: Path) -> List[Candle]:
    """Read an OHLCV CSV into candles; missing open/high/low fall back to the close."""
    df = _load_frame(path)
    series = PriceSeries.from_frame(df)
    opens = pick_col(ensure_flat_ohlcv(df), "open", "o")
    open_arr = opens.astype(float).to_numpy() if opens is not None else series.close
    return [
        Candle(
            timestamp=int(series.timestamps[i]),
            open=float(open_arr[i]),
            high=float(series.high[i]),
            low=float(series.low[i]),
            close=float(series.close[i]),
            volume=float(series.volume[i]),
        )
        for i in range(len(series))
    ]


def load_strategy(path: Path) -> StrategyDefinition:
    """Load a YAML (or JSON) strategy document."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise DataValidationError(f"{path} must contain a mapping")
    return StrategyDefinition.model_validate(data)


def _parse_params(items: Sequence[str]) -> Dict[str, float]:
    params: Dict[str, float] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"--param expects key=value, got {item!r}")
        params[key.strip()] = float(value)
    return params


def _parse_when(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _load_returns(path: Path, from_prices: bool) -> np.ndarray:
    df = ensure_flat_ohlcv(_load_frame(path))
    if from_prices:
        col = pick_col(df, "close", "price", "value")
        if col is None:
            raise DataValidationError(f"No price column in {path}")
        return returns_from_prices(col.astype(float).to_numpy())
    col = pick_col(df, "return", "returns", "ret")
    if col is None:
        numeric = df.select_dtypes(include="number")
        if numeric.empty:
            raise DataValidationError(f"No numeric return column in {path}")
        col = numeric.iloc[:, 0]
    return col.astype(float).to_numpy()


def _cmd_backtest(args: argparse.Namespace) -> int:
    candles = load_candles(Path(args.candles))
    strategy = load_strategy(Path(args.strategy))
    start = _parse_when(args.start) or ms_to_datetime(candles[0].timestamp)
    end = _parse_when(args.end) or ms_to_datetime(candles[-1].timestamp)
    request = BacktestRequest(
        symbol=args.symbol,
        start_date=start,
        end_date=end,
        initial_capital=args.capital,
    )
    result = run_backtest(
        strategy,
        candles,
        request,
        warmup_bars=args.warmup,
        allow_fractional=True if args.fractional else None,
    )
    print(result.model_dump_json(indent=2))
    return 0


def _cmd_indicators(args: argparse.Namespace) -> int:
    series = PriceSeries.from_frame(_load_frame(Path(args.candles)))
    spec = IndicatorSpec(
        name=args.name or args.indicator,
        type=args.indicator,
        params=_parse_params(args.param or []),
    )
    out = compute_indicator(spec, series)
    print(out.model_dump_json(indent=2))
    return 0


def _cmd_risk(args: argparse.Namespace) -> int:
    returns = _load_returns(Path(args.returns), args.prices)
    metrics = compute_risk_metrics(
        returns,
        portfolio_value=args.portfolio_value,
        confidence=args.confidence,
        lookback=args.lookback,
    )
    print(metrics.model_dump_json(indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="quantcore", description="Strategy backtests, indicators and risk metrics"
    )
    ap.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run")
    sub = ap.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Run a strategy over an OHLCV CSV")
    bt.add_argument(
        "--candles", required=True, help="OHLCV CSV (timestamp,open,high,low,close,volume)"
    )
    bt.add_argument("--strategy", required=True, help="Strategy definition (YAML or JSON)")
    bt.add_argument("--symbol", required=True)
    bt.add_argument("--capital", type=float, default=10_000.0, help="Initial capital")
    bt.add_argument("--start", default=None, help="ISO start date (default: first candle)")
    bt.add_argument("--end", default=None, help="ISO end date (default: last candle)")
    bt.add_argument("--warmup", type=int, default=None, help="Warm-up bars before trading")
    bt.add_argument("--fractional", action="store_true", help="Allow fractional quantities")
    bt.set_defaults(func=_cmd_backtest)

    ind = sub.add_parser("indicators", help="Compute one indicator over an OHLCV CSV")
    ind.add_argument("--candles", required=True)
    ind.add_argument(
        "--indicator", required=True, help="SMA, EMA, RSI, MACD, BOLL, STOCH, ATR, VWAP, MOM"
    )
    ind.add_argument("--name", default=None)
    ind.add_argument("--param", action="append", metavar="KEY=VALUE", help="Indicator parameter")
    ind.set_defaults(func=_cmd_indicators)

    rk = sub.add_parser("risk", help="Risk metrics for a return series CSV")
    rk.add_argument(
        "--returns", required=True, help="CSV with a return column (or prices with --prices)"
    )
    rk.add_argument(
        "--prices", action="store_true", help="Treat the file as prices and derive returns"
    )
    rk.add_argument("--confidence", type=float, default=None)
    rk.add_argument("--lookback", type=int, default=None)
    rk.add_argument("--portfolio-value", type=float, default=0.0)
    rk.set_defaults(func=_cmd_risk)
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(force=True, level=args.log_level, stream=sys.stderr)
    try:
        return int(args.func(args))
    except ValidationError as exc:
        logger.error("Invalid input: {}", exc)
        return 2
    except ValueError as exc:
        logger.error("Invalid value: {}", exc)
        return 2
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except (QuantCoreError, OSError) as exc:
        logger.error("{}: {}", type(exc).__name__, exc)
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
