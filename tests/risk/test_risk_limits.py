from __future__ import annotations

import pytest

from quantcore.core.models import RiskMetrics
from quantcore.risk.limits import (
    AlertSeverity,
    AlertType,
    PositionSnapshot,
    RiskGrade,
    RiskLimits,
    check_risk_limits,
    portfolio_value,
    position_risk,
    risk_grade,
)

RETURNS = [-0.05, -0.03, -0.01, 0.0, 0.01, 0.02, 0.03, 0.04, 0.05, 0.06]


def _position(pid: str, qty: float, price: float = 100.0) -> PositionSnapshot:
    return PositionSnapshot(position_id=pid, symbol=f"SYM{pid}", quantity=qty, current_price=price)


def test_every_limit_fires_in_order():
    metrics = RiskMetrics(
        portfolio_value=100_000.0,
        daily_var=0.03,
        current_drawdown=0.2,
        volatility=0.3,
        sharpe_ratio=0.5,
    )

    alerts = check_risk_limits(metrics, [_position("A", 200), _position("B", 50)])

    assert [(a.type, a.severity) for a in alerts] == [
        (AlertType.VAR_LIMIT, AlertSeverity.HIGH),
        (AlertType.DRAWDOWN_LIMIT, AlertSeverity.CRITICAL),
        (AlertType.VOLATILITY_LIMIT, AlertSeverity.MEDIUM),
        (AlertType.SHARPE_LIMIT, AlertSeverity.LOW),
        (AlertType.POSITION_LIMIT, AlertSeverity.MEDIUM),
    ]
    assert alerts[-1].position_id == "A"
    assert alerts[-1].current_value == pytest.approx(0.2)
    assert alerts[0].limit_value == 0.02


def test_healthy_portfolio_raises_nothing():
    metrics = RiskMetrics(
        portfolio_value=100_000.0,
        daily_var=0.01,
        max_drawdown=0.4,
        current_drawdown=0.05,
        volatility=0.1,
        sharpe_ratio=1.5,
    )

    assert check_risk_limits(metrics, [_position("A", 50)]) == []


def test_custom_limits():
    metrics = RiskMetrics(daily_var=0.03, sharpe_ratio=2.0)

    assert check_risk_limits(metrics, limits=RiskLimits(max_daily_var=0.05)) == []


def test_position_weights_fall_back_to_position_total():
    metrics = RiskMetrics(sharpe_ratio=2.0)

    alerts = check_risk_limits(metrics, [_position("A", 90), _position("B", 10)])

    assert [a.position_id for a in alerts] == ["A"]
    assert alerts[0].current_value == pytest.approx(0.9)


@pytest.mark.parametrize(
    "vol,var,grade",
    [
        (0.01, 0.0, RiskGrade.LOW),
        (0.02, 0.02, RiskGrade.MEDIUM),
        (0.1, 0.02, RiskGrade.HIGH),
    ],
)
def test_risk_grade(vol, var, grade):
    assert risk_grade(vol, var) is grade


def test_position_risk_contribution():
    pos = _position("A", 250)

    risk = position_risk(pos, RETURNS, 100_000.0, RiskLimits(var_confidence=0.75))

    assert risk.position_value == 25_000.0
    assert risk.weight == pytest.approx(0.25)
    assert risk.daily_var == pytest.approx(0.01)
    assert risk.contribution_to_var == pytest.approx(0.0025)
    assert risk.risk_grade is RiskGrade.HIGH


def test_portfolio_value():
    assert portfolio_value([_position("A", 2, 10.0), _position("B", 3, 5.0)]) == 35.0
    assert portfolio_value([]) == 0.0
