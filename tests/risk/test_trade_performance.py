from __future__ import annotations

import math

import pytest

from quantcore.risk.performance import equity_curve, trade_performance


def test_mixed_ledger():
    report = trade_performance([100.0, -50.0, 200.0, -50.0])

    assert report.total_trades == 4
    assert report.winning_trades == 2
    assert report.losing_trades == 2
    assert report.win_rate == 0.5
    assert report.profit_factor == pytest.approx(3.0)
    assert report.average_win == pytest.approx(150.0)
    assert report.average_loss == pytest.approx(50.0)
    assert report.expectancy == pytest.approx(50.0)
    assert report.total_pnl == pytest.approx(200.0)
    assert report.var95 == pytest.approx(50.0)
    assert report.var99 == pytest.approx(50.0)
    assert report.max_drawdown == pytest.approx(50.0 / 10_100.0)


def test_only_wins_serialise_infinite_profit_factor():
    report = trade_performance([10.0, 20.0])

    assert math.isinf(report.profit_factor)
    assert report.var95 == 0.0
    assert report.max_drawdown == 0.0
    assert '"profit_factor":"Infinity"' in report.model_dump_json()


def test_empty_ledger():
    report = trade_performance([])

    assert report.total_trades == 0
    assert report.profit_factor == 0.0
    assert report.sharpe_ratio == 0.0


def test_equity_curve():
    assert equity_curve([100.0, -50.0], 1_000.0) == [1_100.0, 1_050.0]
    assert equity_curve([]) == []
