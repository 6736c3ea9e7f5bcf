"""Rule-condition language used by strategy rules."""

from .expression import (
    CompiledCondition,
    compile_condition,
    evaluate_condition,
    validate_condition,
)

__all__ = [
    "CompiledCondition",
    "compile_condition",
    "evaluate_condition",
    "validate_condition",
]
