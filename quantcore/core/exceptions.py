class QuantCoreError(Exception):
    """Base class for all engine exceptions."""


class InvalidConfigurationError(QuantCoreError):
    """Raised for unknown indicator types, bad parameters or malformed strategies."""


class DataValidationError(QuantCoreError):
    """Raised when candle or series input fails sanity or schema validation."""


class ExpressionError(QuantCoreError):
    """Base class for rule-condition failures."""


class ExpressionSyntaxError(ExpressionError):
    """Raised when a rule condition cannot be tokenized or parsed."""


class ExpressionEvaluationError(ExpressionError):
    """Raised when a parsed rule condition fails while being evaluated."""


class ExpressionBudgetExceeded(ExpressionEvaluationError):
    """Raised when evaluation runs past its step budget."""


__all__ = [
    "QuantCoreError",
    "InvalidConfigurationError",
    "DataValidationError",
    "ExpressionError",
    "ExpressionSyntaxError",
    "ExpressionEvaluationError",
    "ExpressionBudgetExceeded",
]
