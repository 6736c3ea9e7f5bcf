"""Strategy rule evaluation: indicators in, candidate trading signals out."""

from .evaluator import (
    RuleFailure,
    SignalEvaluation,
    SignalEvaluator,
    generate_signals,
    select_strongest,
    validate_strategy,
)

__all__ = [
    "RuleFailure",
    "SignalEvaluation",
    "SignalEvaluator",
    "generate_signals",
    "select_strongest",
    "validate_strategy",
]
