"""Indicator dispatch: maps a declared `IndicatorSpec` to the function computing it."""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, Optional

from loguru import logger

from quantcore.core.exceptions import InvalidConfigurationError
from quantcore.core.models import IndicatorSeries, IndicatorSpec
from quantcore.features import indicators as ind
from quantcore.features.series import PriceSeries


class IndicatorType(str, Enum):
    SMA = "SMA"
    EMA = "EMA"
    RSI = "RSI"
    MACD = "MACD"
    BOLL = "BOLL"
    STOCH = "STOCH"
    ATR = "ATR"
    VWAP = "VWAP"
    MOM = "MOM"

    @classmethod
    def _missing_(cls, value: object) -> Optional["IndicatorType"]:
        if isinstance(value, str):
            key = value.strip().upper()
            key = _TYPE_ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        return None


_TYPE_ALIASES = {
    "BB": "BOLL",
    "BOLLINGER": "BOLL",
    "STOCHASTIC": "STOCH",
    "MOMENTUM": "MOM",
}

DEFAULT_PARAMS: Dict[IndicatorType, Dict[str, float]] = {
    IndicatorType.SMA: {"period": 20},
    IndicatorType.EMA: {"period": 20},
    IndicatorType.RSI: {"period": 14},
    IndicatorType.MACD: {"fast": 12, "slow": 26, "signal": 9},
    IndicatorType.BOLL: {"period": 20, "k": 2.0},
    IndicatorType.STOCH: {"period": 14},
    IndicatorType.ATR: {"period": 14},
    IndicatorType.VWAP: {},
    IndicatorType.MOM: {"period": 10},
}

# camelCase / verbose spellings found in stored strategy documents
_PARAM_ALIASES = {
    "fastPeriod": "fast",
    "fast_period": "fast",
    "slowPeriod": "slow",
    "slow_period": "slow",
    "signalPeriod": "signal",
    "signal_period": "signal",
    "stdDev": "k",
    "std_dev": "k",
    "length": "period",
    "window": "period",
}

_INTEGER_PARAMS = {"period", "fast", "slow", "signal"}


def parse_type(value: str) -> IndicatorType:
    try:
        return IndicatorType(value)
    except ValueError:
        raise InvalidConfigurationError(f"Unknown indicator type: {value}")


def resolve_params(kind: IndicatorType, params: Mapping[str, float] | None) -> Dict[str, float]:
    """Defaults for `kind` overlaid with `params` (aliases normalised, unknown keys dropped)."""
    resolved = dict(DEFAULT_PARAMS[kind])
    for key, value in (params or {}).items():
        name = _PARAM_ALIASES.get(key, key)
        if name not in resolved:
            logger.debug("Ignoring unknown {} parameter {!r}", kind.value, key)
            continue
        if not math.isfinite(float(value)):
            raise InvalidConfigurationError(f"{kind.value} {name} must be finite, got {value!r}")
        if name in _INTEGER_PARAMS:
            if float(value) != int(value) or int(value) <= 0:
                raise InvalidConfigurationError(
                    f"{kind.value} {name} must be a positive integer, got {value!r}"
                )
            resolved[name] = int(value)
        else:
            resolved[name] = float(value)
    return resolved


_DISPATCH: Dict[IndicatorType, Callable[[PriceSeries, Dict[str, float]], IndicatorSeries]] = {
    IndicatorType.SMA: lambda s, p: ind.sma(s.close, p["period"]),
    IndicatorType.EMA: lambda s, p: ind.ema(s.close, p["period"]),
    IndicatorType.RSI: lambda s, p: ind.rsi(s.close, p["period"]),
    IndicatorType.MACD: lambda s, p: ind.macd(s.close, p["fast"], p["slow"], p["signal"]),
    IndicatorType.BOLL: lambda s, p: ind.bollinger_bands(s.close, p["period"], p["k"]),
    IndicatorType.STOCH: lambda s, p: ind.stochastic(s.close, s.high, s.low, p["period"]),
    IndicatorType.ATR: lambda s, p: ind.atr(s.high, s.low, s.close, p["period"]),
    IndicatorType.VWAP: lambda s, p: ind.vwap(s.high, s.low, s.close, s.volume),
    IndicatorType.MOM: lambda s, p: ind.momentum(s.close, p["period"]),
}


def validate_spec(spec: IndicatorSpec) -> Dict[str, float]:
    """Raise InvalidConfigurationError unless `spec` names a known type with usable params."""
    kind = parse_type(spec.type)
    params = resolve_params(kind, spec.params)
    if kind is IndicatorType.MACD and params["fast"] >= params["slow"]:
        raise InvalidConfigurationError(
            f"{spec.name}: MACD fast ({params['fast']}) must be below slow ({params['slow']})"
        )
    if kind is IndicatorType.BOLL and params["k"] < 0:
        raise InvalidConfigurationError(f"{spec.name}: BOLL k must be >= 0")
    return params


def compute_indicator(spec: IndicatorSpec, series: PriceSeries) -> IndicatorSeries:
    kind = parse_type(spec.type)
    params = resolve_params(kind, spec.params)
    return _DISPATCH[kind](series, params)


def compute_indicators(
    specs: Iterable[IndicatorSpec], series: PriceSeries
) -> Dict[str, IndicatorSeries]:
    """
    Compute every spec over `series`, keyed by spec name.

    Unknown indicator types are skipped with a warning; other configuration
    errors propagate.
    """
    out: Dict[str, IndicatorSeries] = {}
    for spec in specs:
        try:
            kind = parse_type(spec.type)
        except InvalidConfigurationError:
            logger.warning("Skipping indicator {}: unknown type {!r}", spec.name, spec.type)
            continue
        out[spec.name] = _DISPATCH[kind](series, resolve_params(kind, spec.params))
    return out


def warmup_for(spec: IndicatorSpec) -> int:
    kind = parse_type(spec.type)
    return ind.warmup(kind.value, resolve_params(kind, spec.params))


__all__ = [
    "IndicatorType",
    "DEFAULT_PARAMS",
    "parse_type",
    "resolve_params",
    "validate_spec",
    "compute_indicator",
    "compute_indicators",
    "warmup_for",
]
