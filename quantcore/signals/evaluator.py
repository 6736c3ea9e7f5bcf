from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from quantcore.core.exceptions import ExpressionError, InvalidConfigurationError
from quantcore.core.models import (
    Candle,
    IndicatorSeries,
    Side,
    Signal,
    SignalLabel,
    StrategyDefinition,
)
from quantcore.features.indicators import RSI_OVERBOUGHT, RSI_OVERSOLD
from quantcore.features.registry import (
    IndicatorType,
    compute_indicators,
    validate_spec,
)
from quantcore.features.series import PriceSeries
from quantcore.rules.expression import (
    CompiledCondition,
    compile_condition,
    validate_condition,
)

BASE_CONFIDENCE = 0.5
RSI_BOOST = 0.2
MACD_BOOST = 0.15


@dataclass(slots=True)
class RuleFailure:
    """A rule whose condition could not be parsed or evaluated."""

    rule_index: int
    condition: str
    error: str


@dataclass(slots=True)
class SignalEvaluation:
    candidates: List[Signal] = field(default_factory=list)
    indicators: Dict[str, float] = field(default_factory=dict)
    failures: List[RuleFailure] = field(default_factory=list)


def flatten_latest(computed: Dict[str, IndicatorSeries]) -> Dict[str, float]:
    """
    Latest value per indicator name, plus `<name>_<aux>` entries for the
    latest value of each metadata series (`BB_upper`, `MACD_signal`, ...).
    Empty indicators are left out so rules referencing them fail to resolve.
    """
    flat: Dict[str, float] = {}
    for name, series in computed.items():
        if series.latest is not None:
            flat[name] = float(series.latest)
        for aux, value in series.latest_metadata().items():
            flat[f"{name}_{aux}"] = float(value)
    return flat


def _first_of_type(strategy: StrategyDefinition, kind: IndicatorType) -> Optional[str]:
    for spec in strategy.indicators:
        try:
            if IndicatorType(spec.type) is kind:
                return spec.name
        except ValueError:
            continue
    return None


class SignalEvaluator:
    """
    Evaluates a strategy's rules against the latest indicator values.

    Rule conditions are compiled once at construction. A rule that fails to
    compile is reported as a failure on every evaluation instead of raising,
    so one bad rule cannot stop the others from firing.
    """

    def __init__(self, strategy: StrategyDefinition) -> None:
        self.strategy = strategy
        self._compiled: List[Optional[CompiledCondition]] = []
        self._compile_errors: Dict[int, str] = {}
        for idx, rule in enumerate(strategy.rules):
            try:
                self._compiled.append(compile_condition(rule.condition))
            except ExpressionError as exc:
                logger.warning("Rule {} of {} does not compile: {}", idx, strategy.name, exc)
                self._compiled.append(None)
                self._compile_errors[idx] = str(exc)
        self._rsi_name = _first_of_type(strategy, IndicatorType.RSI)
        self._macd_name = _first_of_type(strategy, IndicatorType.MACD)

    def evaluate(self, series: PriceSeries, price: Optional[float] = None) -> SignalEvaluation:
        computed = compute_indicators(self.strategy.indicators, series)
        flat = flatten_latest(computed)
        if price is None and len(series):
            price = series.last_price

        env: Dict[str, object] = {"indicators": flat}
        if price is not None:
            env["price"] = float(price)

        result = SignalEvaluation(indicators=flat)
        for idx, rule in enumerate(self.strategy.rules):
            compiled = self._compiled[idx]
            if compiled is None:
                result.failures.append(
                    RuleFailure(idx, rule.condition, self._compile_errors[idx])
                )
                continue
            try:
                fired = compiled.evaluate(env)
            except ExpressionError as exc:
                logger.debug("Rule {} ({!r}) failed: {}", idx, rule.condition, exc)
                result.failures.append(RuleFailure(idx, rule.condition, str(exc)))
                continue
            if not fired or rule.action is SignalLabel.HOLD:
                continue
            action = Side(rule.action.value)
            result.candidates.append(
                Signal(
                    action=action,
                    strength=rule.weight,
                    confidence=self.confidence(action, flat),
                    rule_index=idx,
                    condition=rule.condition,
                    price=price,
                    indicators=dict(flat),
                )
            )
        return result

    def confidence(self, action: Side, flat: Dict[str, float]) -> float:
        """Base 0.5, +0.2 when RSI confirms the action, +0.15 when MACD agrees; capped at 1."""
        score = BASE_CONFIDENCE
        rsi_value = flat.get(self._rsi_name) if self._rsi_name else None
        if rsi_value is not None:
            if (action is Side.BUY and rsi_value < RSI_OVERSOLD) or (
                action is Side.SELL and rsi_value > RSI_OVERBOUGHT
            ):
                score += RSI_BOOST
        if self._macd_name:
            line = flat.get(self._macd_name)
            sig = flat.get(f"{self._macd_name}_signal")
            if line is not None and sig is not None:
                if (action is Side.BUY and line > sig) or (action is Side.SELL and line < sig):
                    score += MACD_BOOST
        return min(score, 1.0)


def select_strongest(candidates: Sequence[Signal]) -> Optional[Signal]:
    """Highest strength wins; ties go to the rule declared first."""
    best: Optional[Signal] = None
    for signal in candidates:
        if best is None or signal.strength > best.strength:
            best = signal
    return best


def validate_strategy(strategy: StrategyDefinition) -> None:
    """Raise InvalidConfigurationError if any indicator or rule is unusable."""
    for spec in strategy.indicators:
        try:
            validate_spec(spec)
        except InvalidConfigurationError as exc:
            raise InvalidConfigurationError(f"Indicator {spec.name!r}: {exc}") from exc
    for idx, rule in enumerate(strategy.rules):
        try:
            validate_condition(rule.condition)
        except InvalidConfigurationError as exc:
            raise InvalidConfigurationError(f"Rule {idx}: {exc}") from exc
    if not strategy.rules:
        logger.warning("Strategy {} declares no rules; it will never trade", strategy.name)


def generate_signals(
    strategy: StrategyDefinition, candles: Iterable[Candle], symbol: str
) -> List[Signal]:
    """Evaluate `strategy` on the latest candle and tag candidates for live use."""
    series = PriceSeries.from_candles(candles)
    if not len(series):
        return []
    series.ensure_ascending()
    evaluation = SignalEvaluator(strategy).evaluate(series)
    when = series.time_at(len(series) - 1)
    price = series.last_price
    signals = [
        s.model_copy(update={"symbol": symbol, "price": price, "timestamp": when})
        for s in evaluation.candidates
    ]
    logger.info(
        "Generated {} signal(s) for {} with strategy {} ({} rule failure(s))",
        len(signals),
        symbol,
        strategy.name,
        len(evaluation.failures),
    )
    return signals


__all__ = [
    "RuleFailure",
    "SignalEvaluation",
    "SignalEvaluator",
    "flatten_latest",
    "select_strongest",
    "validate_strategy",
    "generate_signals",
]
