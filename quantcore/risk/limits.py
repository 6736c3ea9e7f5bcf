"""Risk-limit checks over computed RiskMetrics and open positions."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from quantcore.core.models import RiskMetrics
from quantcore.risk.analyzer import value_at_risk, volatility


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    VAR_LIMIT = "var_limit"
    DRAWDOWN_LIMIT = "drawdown_limit"
    VOLATILITY_LIMIT = "volatility_limit"
    SHARPE_LIMIT = "sharpe_limit"
    POSITION_LIMIT = "position_limit"


class RiskGrade(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLimits(BaseModel):
    """
    Portfolio risk thresholds. All values are fractions except
    `min_sharpe_ratio` (a ratio) and `lookback_days`.
    """

    max_daily_var: float = Field(0.02, ge=0.0)
    max_weekly_var: float = Field(0.05, ge=0.0)
    max_monthly_var: float = Field(0.10, ge=0.0)
    max_drawdown: float = Field(0.15, ge=0.0)
    max_position_size: float = Field(0.10, ge=0.0)
    min_sharpe_ratio: float = 1.0
    max_volatility: float = Field(0.25, ge=0.0)
    var_confidence: float = Field(0.95, gt=0.0, lt=1.0)
    lookback_days: int = Field(252, gt=0)


class PositionSnapshot(BaseModel):
    position_id: str
    symbol: str
    quantity: float
    current_price: float = Field(ge=0.0)

    @property
    def value(self) -> float:
        return self.quantity * self.current_price


class RiskAlert(BaseModel):
    type: AlertType
    severity: AlertSeverity
    message: str
    current_value: float
    limit_value: float
    position_id: Optional[str] = None


class PositionRisk(BaseModel):
    position_id: str
    symbol: str
    quantity: float
    current_price: float
    position_value: float
    weight: float
    daily_var: float
    volatility: float
    contribution_to_var: float
    risk_grade: RiskGrade


def portfolio_value(positions: Sequence[PositionSnapshot]) -> float:
    return float(sum(p.value for p in positions))


def risk_grade(vol: float, daily_var: float) -> RiskGrade:
    """Score 0.6 * volatility + 0.4 * VaR: below 1% low, below 2.5% medium, else high."""
    score = 0.6 * vol + 0.4 * daily_var
    if score < 0.01:
        return RiskGrade.LOW
    if score < 0.025:
        return RiskGrade.MEDIUM
    return RiskGrade.HIGH


def check_risk_limits(
    metrics: RiskMetrics,
    positions: Sequence[PositionSnapshot] = (),
    limits: Optional[RiskLimits] = None,
) -> List[RiskAlert]:
    """
    Compare `metrics` and each position's portfolio weight against `limits`.

    Returns the alerts that fire, in a fixed order: daily VaR, drawdown,
    volatility, Sharpe, then one per oversized position. Nothing is stored.
    """
    limits = limits or RiskLimits()
    alerts: List[RiskAlert] = []

    if metrics.daily_var > limits.max_daily_var:
        alerts.append(
            RiskAlert(
                type=AlertType.VAR_LIMIT,
                severity=AlertSeverity.HIGH,
                message=(
                    f"Daily VaR above limit: {metrics.daily_var:.2%} > {limits.max_daily_var:.2%}"
                ),
                current_value=metrics.daily_var,
                limit_value=limits.max_daily_var,
            )
        )

    if metrics.current_drawdown > limits.max_drawdown:
        alerts.append(
            RiskAlert(
                type=AlertType.DRAWDOWN_LIMIT,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"Current drawdown above limit: {metrics.current_drawdown:.2%} "
                    f"> {limits.max_drawdown:.2%}"
                ),
                current_value=metrics.current_drawdown,
                limit_value=limits.max_drawdown,
            )
        )

    if metrics.volatility > limits.max_volatility:
        alerts.append(
            RiskAlert(
                type=AlertType.VOLATILITY_LIMIT,
                severity=AlertSeverity.MEDIUM,
                message=(
                    f"Portfolio volatility above limit: {metrics.volatility:.2%} "
                    f"> {limits.max_volatility:.2%}"
                ),
                current_value=metrics.volatility,
                limit_value=limits.max_volatility,
            )
        )

    if metrics.sharpe_ratio < limits.min_sharpe_ratio:
        alerts.append(
            RiskAlert(
                type=AlertType.SHARPE_LIMIT,
                severity=AlertSeverity.LOW,
                message=(
                    f"Sharpe ratio below minimum: {metrics.sharpe_ratio:.2f} "
                    f"< {limits.min_sharpe_ratio:.2f}"
                ),
                current_value=metrics.sharpe_ratio,
                limit_value=limits.min_sharpe_ratio,
            )
        )

    total = metrics.portfolio_value or portfolio_value(positions)
    if total > 0:
        for pos in positions:
            weight = pos.value / total
            if weight > limits.max_position_size:
                alerts.append(
                    RiskAlert(
                        type=AlertType.POSITION_LIMIT,
                        severity=AlertSeverity.MEDIUM,
                        message=(
                            f"Position {pos.symbol} above size limit: {weight:.2%} "
                            f"> {limits.max_position_size:.2%}"
                        ),
                        current_value=weight,
                        limit_value=limits.max_position_size,
                        position_id=pos.position_id,
                    )
                )
    elif positions:
        logger.warning("Portfolio value is zero; position size limits not checked")

    for alert in alerts:
        logger.warning("[risk] {} ({}): {}", alert.type.value, alert.severity.value, alert.message)
    return alerts


def position_risk(
    position: PositionSnapshot,
    returns: Sequence[float],
    portfolio_value: float,
    limits: Optional[RiskLimits] = None,
) -> PositionRisk:
    """VaR, volatility and weight-scaled VaR contribution of one position."""
    limits = limits or RiskLimits()
    value = position.value
    daily_var = value_at_risk(returns, limits.var_confidence)
    vol = volatility(returns)
    weight = value / portfolio_value if portfolio_value > 0 else 0.0
    return PositionRisk(
        position_id=position.position_id,
        symbol=position.symbol,
        quantity=position.quantity,
        current_price=position.current_price,
        position_value=value,
        weight=weight,
        daily_var=daily_var,
        volatility=vol,
        contribution_to_var=weight * daily_var,
        risk_grade=risk_grade(vol, daily_var),
    )


__all__ = [
    "AlertSeverity",
    "AlertType",
    "RiskGrade",
    "RiskLimits",
    "PositionSnapshot",
    "RiskAlert",
    "PositionRisk",
    "portfolio_value",
    "risk_grade",
    "check_risk_limits",
    "position_risk",
]
