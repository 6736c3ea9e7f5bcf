"""Position sizing for the trade simulator: how many units to buy on an entry signal."""

import math

from loguru import logger

from quantcore.core.exceptions import InvalidConfigurationError
from quantcore.core.models import PositionSizingMethod, RiskManagementConfig

FIXED_FRACTION = 0.10

# Kelly inputs are fixed assumptions, not estimates from the ledger.
KELLY_WIN_PROB = 0.6
KELLY_AVG_WIN = 0.02
KELLY_AVG_LOSS = 0.01
KELLY_CAP = 0.25


def kelly_fraction(
    win_prob: float = KELLY_WIN_PROB,
    avg_win: float = KELLY_AVG_WIN,
    avg_loss: float = KELLY_AVG_LOSS,
    cap: float = KELLY_CAP,
) -> float:
    """
    Kelly fraction `(p*w - (1-p)*l) / w`, clamped to `[0, cap]`.

    Args:
        win_prob (float): Probability of a winning trade.
        avg_win (float): Average win as a fraction of the position.
        avg_loss (float): Average loss as a positive fraction of the position.
        cap (float): Upper bound on the committed fraction.

    Returns:
        float: Fraction of capital to commit.
    """
    if avg_win <= 0:
        return 0.0
    raw = (win_prob * avg_win - (1.0 - win_prob) * avg_loss) / avg_win
    return max(0.0, min(raw, cap))


def capital_fraction(config: RiskManagementConfig) -> float:
    method = config.position_sizing_method
    if method is PositionSizingMethod.FIXED:
        return FIXED_FRACTION
    if method is PositionSizingMethod.PERCENTAGE:
        return config.max_position_size / 100.0
    if method is PositionSizingMethod.KELLY:
        return kelly_fraction()
    raise InvalidConfigurationError(f"Unsupported position sizing method: {method!r}")


def position_size(
    capital: float,
    price: float,
    config: RiskManagementConfig,
    allow_fractional: bool = False,
) -> float:
    """
    Units to buy at `price` with `capital` available.

    Whole units (floored) unless `allow_fractional`; 0 for non-positive
    capital or price.
    """
    if capital <= 0 or price <= 0 or not math.isfinite(price):
        logger.debug("Sizing inputs below threshold: capital={} price={}", capital, price)
        return 0.0

    budget = capital * capital_fraction(config)
    raw = budget / price
    size = raw if allow_fractional else float(math.floor(raw))

    logger.debug(
        "Position size computed: capital={:.2f} price={:.4f} method={} size={}",
        capital,
        price,
        config.position_sizing_method.value,
        size,
    )
    return max(size, 0.0)


__all__ = ["position_size", "kelly_fraction", "capital_fraction", "FIXED_FRACTION"]
