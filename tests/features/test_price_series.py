from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from quantcore.core.exceptions import DataValidationError
from quantcore.features.series import PriceSeries, pick_col


def test_from_candles_roundtrips_fields(make_candles):
    candles = make_candles([1.0, 2.0, 3.0], highs=[1.5, 2.5, 3.5], volumes=[10, 20, 30])

    series = PriceSeries.from_candles(candles)

    assert len(series) == 3
    assert series.high.tolist() == [1.5, 2.5, 3.5]
    assert series.volume.tolist() == [10.0, 20.0, 30.0]
    assert series.timestamps[1] - series.timestamps[0] == 86_400_000
    assert series.last_price == 3.0


def test_from_frame_loose_columns():
    idx = pd.date_range("2024-01-01", periods=4, freq="D", tz="UTC")
    df = pd.DataFrame(
        {"Close": [1.0, 2.0, 3.0, 4.0], "High": [2.0] * 4, "Volume": [5, 5, 5, 5]}, index=idx
    )

    series = PriceSeries.from_frame(df)

    assert series.close.tolist() == [1.0, 2.0, 3.0, 4.0]
    assert series.low.tolist() == series.close.tolist()
    assert series.timestamps[0] == int(idx[0].timestamp() * 1000)


def test_from_frame_parses_string_timestamps():
    df = pd.DataFrame({"timestamp": ["2024-01-01", "2024-01-02"], "close": [1.0, 2.0]})

    series = PriceSeries.from_frame(df)

    assert series.timestamps.tolist() == [1704067200000, 1704153600000]


def test_from_frame_requires_close():
    with pytest.raises(DataValidationError):
        PriceSeries.from_frame(pd.DataFrame({"open": [1.0]}))


def test_head_and_ordering(make_candles):
    series = PriceSeries.from_candles(make_candles([1, 2, 3, 4]))

    assert series.head(2).close.tolist() == [1.0, 2.0]
    series.ensure_ascending()

    shuffled = PriceSeries(
        timestamps=np.array([2, 1], dtype=np.int64),
        close=np.array([1.0, 2.0]),
        high=np.array([1.0, 2.0]),
        low=np.array([1.0, 2.0]),
        volume=np.array([0.0, 0.0]),
    )
    with pytest.raises(DataValidationError):
        shuffled.ensure_ascending()


def test_length_mismatch_rejected():
    with pytest.raises(DataValidationError):
        PriceSeries(
            timestamps=np.array([1, 2], dtype=np.int64),
            close=np.array([1.0, 2.0]),
            high=np.array([1.0]),
            low=np.array([1.0, 2.0]),
            volume=np.array([0.0, 0.0]),
        )


def test_pick_col_prefers_exact_then_suffix():
    df = pd.DataFrame({"adj_close": [1.0], "px_close": [2.0]})

    assert pick_col(df, "adj_close").iloc[0] == 1.0
    assert pick_col(df, "volume") is None


def test_from_frame_second_resolution_index():
    idx = pd.date_range("2024-01-01", periods=2, freq="D", tz="UTC", unit="s")
    df = pd.DataFrame({"close": [1.0, 2.0]}, index=idx)

    series = PriceSeries.from_frame(df)

    assert series.timestamps.tolist() == [1704067200000, 1704153600000]
