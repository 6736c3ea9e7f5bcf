from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest
from dotenv import load_dotenv

from quantcore.core.models import Candle, datetime_to_ms
from quantcore.logging_utils import setup_test_logging

os.environ.setdefault("ENV", "test")

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def load_env():
    load_dotenv(override=True)


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    setup_test_logging(level="INFO")
    yield


@pytest.fixture
def make_candles() -> Callable[..., List[Candle]]:
    """Daily candles from 2024-01-01; high/low default to the close."""

    def _make(
        closes: Sequence[float],
        *,
        highs: Optional[Sequence[float]] = None,
        lows: Optional[Sequence[float]] = None,
        volumes: Optional[Sequence[float]] = None,
        start: datetime = START,
    ) -> List[Candle]:
        out = []
        for i, close in enumerate(closes):
            out.append(
                Candle(
                    timestamp=datetime_to_ms(start + timedelta(days=i)),
                    open=float(close),
                    high=float(highs[i]) if highs is not None else float(close),
                    low=float(lows[i]) if lows is not None else float(close),
                    close=float(close),
                    volume=float(volumes[i]) if volumes is not None else 1_000.0,
                )
            )
        return out

    return _make


@pytest.fixture(scope="module")
def random_walk() -> np.ndarray:
    """Deterministic geometric random walk of 250 closes starting at 100."""
    rng = np.random.default_rng(seed=42)
    rets = rng.normal(0.0005, 0.015, 250)
    return 100.0 * np.cumprod(1 + rets)
