"""Columnar OHLCV container shared by the indicator library and the simulator."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from quantcore.core.exceptions import DataValidationError
from quantcore.core.models import Candle, ms_to_datetime


def _normalize_name(s: str) -> str:
    return re.sub(r"[\s\-]+", "_", str(s)).strip().lower()


def ensure_flat_ohlcv(df: pd.DataFrame) -> pd.DataFrame:
    """
    - Flatten MultiIndex columns (if present)
    - Lowercase col names
    - Drop duplicate columns (keep first)
    """
    out = df.copy()
    cols = out.columns
    if isinstance(cols, pd.MultiIndex):
        flat: list[str] = []
        for tup in cols.to_list():
            parts = [str(x).strip() for x in tup if x is not None and str(x).strip()]
            flat.append("_".join(parts))
        out.columns = pd.Index([_normalize_name(s) for s in flat])
    else:
        out.columns = pd.Index([_normalize_name(c) for c in cols])
    return out.loc[:, ~out.columns.duplicated(keep="first")]


def pick_col(df: pd.DataFrame, *candidates: str) -> pd.Series | None:
    """
    Return the first matching column (case-insensitive, with basic normalization).
    Tries exact, then normalized exact, then prefix/suffix matches.
    """
    cols = list(df.columns)
    lower_map = {_normalize_name(c): c for c in cols}

    for name in candidates:
        if name in df.columns:
            return df[name]

    for name in candidates:
        key = _normalize_name(name)
        if key in lower_map:
            return df[lower_map[key]]

    for name in candidates:
        key = _normalize_name(name)
        for c in cols:
            cc = _normalize_name(c)
            if cc.startswith(key + "_") or cc.endswith("_" + key):
                return df[c]
    return None


def _timestamps_from_index(index: pd.Index) -> np.ndarray:
    if isinstance(index, pd.DatetimeIndex):
        idx = index.tz_localize("UTC") if index.tz is None else index.tz_convert("UTC")
        epoch = pd.Timestamp("1970-01-01", tz="UTC")
        return np.asarray((idx - epoch) // pd.Timedelta(milliseconds=1), dtype=np.int64)
    return np.arange(len(index), dtype=np.int64)


@dataclass(frozen=True)
class PriceSeries:
    """
    Parallel OHLCV arrays in ascending timestamp order.

    Attributes:
        timestamps (np.ndarray): Epoch-millisecond timestamps (int64).
        close (np.ndarray): Close prices.
        high (np.ndarray): High prices.
        low (np.ndarray): Low prices.
        volume (np.ndarray): Traded volume.
    """

    timestamps: np.ndarray
    close: np.ndarray
    high: np.ndarray
    low: np.ndarray
    volume: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.close)
        for name in ("timestamps", "high", "low", "volume"):
            if len(getattr(self, name)) != n:
                raise DataValidationError(
                    f"PriceSeries.{name} has {len(getattr(self, name))} points, close has {n}"
                )

    def __len__(self) -> int:
        return len(self.close)

    @classmethod
    def from_candles(cls, candles: Iterable[Candle]) -> "PriceSeries":
        rows = list(candles)
        return cls(
            timestamps=np.array([c.timestamp for c in rows], dtype=np.int64),
            close=np.array([c.close for c in rows], dtype=float),
            high=np.array([c.high for c in rows], dtype=float),
            low=np.array([c.low for c in rows], dtype=float),
            volume=np.array([c.volume for c in rows], dtype=float),
        )

    @classmethod
    def from_closes(
        cls, closes: Sequence[float], volumes: Sequence[float] | None = None
    ) -> "PriceSeries":
        """Close-only series; high and low mirror the close."""
        close = np.asarray(closes, dtype=float)
        volume = (
            np.asarray(volumes, dtype=float)
            if volumes is not None
            else np.zeros(len(close), dtype=float)
        )
        return cls(
            timestamps=np.arange(len(close), dtype=np.int64),
            close=close,
            high=close.copy(),
            low=close.copy(),
            volume=volume,
        )

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "PriceSeries":
        """
        Build from an OHLCV DataFrame. Column names are matched loosely
        (`Close`, `close_price`, `c`, ...). Timestamps come from a timestamp
        column when present, else from a DatetimeIndex.
        """
        if df is None or df.empty:
            raise DataValidationError("Empty OHLCV frame")
        out = ensure_flat_ohlcv(df)

        close = pick_col(out, "close", "adj_close", "close_price", "c")
        if close is None:
            raise DataValidationError(
                f"No close column in frame. Available: {list(out.columns)[:12]}"
            )
        high = pick_col(out, "high", "h")
        low = pick_col(out, "low", "l")
        volume = pick_col(out, "volume", "vol", "v")
        ts_col = pick_col(out, "timestamp", "ts", "time", "t")

        if ts_col is not None:
            if pd.api.types.is_numeric_dtype(ts_col):
                timestamps = ts_col.to_numpy(dtype=np.int64)
            else:
                parsed = pd.to_datetime(ts_col, utc=True)
                epoch = pd.Timestamp("1970-01-01", tz="UTC")
                timestamps = ((parsed - epoch) // pd.Timedelta(milliseconds=1)).to_numpy(
                    dtype=np.int64
                )
        else:
            timestamps = _timestamps_from_index(out.index)

        close_arr = close.astype(float).to_numpy()
        return cls(
            timestamps=np.asarray(timestamps, dtype=np.int64),
            close=close_arr,
            high=high.astype(float).to_numpy() if high is not None else close_arr.copy(),
            low=low.astype(float).to_numpy() if low is not None else close_arr.copy(),
            volume=(
                volume.astype(float).to_numpy()
                if volume is not None
                else np.zeros(len(close_arr), dtype=float)
            ),
        )

    def head(self, n: int) -> "PriceSeries":
        """The first `n` points (views, no copy)."""
        return PriceSeries(
            timestamps=self.timestamps[:n],
            close=self.close[:n],
            high=self.high[:n],
            low=self.low[:n],
            volume=self.volume[:n],
        )

    def ensure_ascending(self) -> None:
        """Raise DataValidationError unless timestamps strictly increase."""
        if len(self.timestamps) > 1:
            steps = np.diff(self.timestamps)
            if (steps <= 0).any():
                bad = int(np.argmax(steps <= 0)) + 1
                raise DataValidationError(
                    f"Timestamps must strictly increase; violation at index {bad} "
                    f"({int(self.timestamps[bad - 1])} -> {int(self.timestamps[bad])})"
                )

    @property
    def last_price(self) -> float:
        if not len(self.close):
            raise DataValidationError("Empty price series has no last price")
        return float(self.close[-1])

    def time_at(self, i: int):
        return ms_to_datetime(int(self.timestamps[i]))


__all__ = ["PriceSeries", "ensure_flat_ohlcv", "pick_col"]
