from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from quantcore.core.models import (
    BacktestRequest,
    BacktestResult,
    Candle,
    PositionSizingMethod,
    RiskManagementConfig,
    SignalLabel,
    StrategyDefinition,
    StrategyRule,
    Trade,
    TradeStatus,
    datetime_to_ms,
    ms_to_datetime,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_candle_accepts_short_keys_and_rows():
    short = Candle.model_validate({"t": 1, "o": 1.0, "h": 2.0, "l": 0.5, "c": 1.5, "v": 10})
    row = Candle.from_row([1, 1.0, 2.0, 0.5, 1.5])

    assert short.close == 1.5
    assert row.volume == 0.0
    assert row.typical_price == pytest.approx((2.0 + 0.5 + 1.5) / 3)
    with pytest.raises(ValueError):
        Candle.from_row([1, 2, 3])


def test_millisecond_conversions_are_utc():
    assert datetime_to_ms(T0) == 1_704_067_200_000
    assert ms_to_datetime(1_704_067_200_000) == T0
    assert datetime_to_ms(datetime(2024, 1, 1)) == 1_704_067_200_000


def test_rule_action_is_case_insensitive():
    rule = StrategyRule(condition="RSI < 30", action="buy")

    assert rule.action is SignalLabel.BUY
    with pytest.raises(ValidationError):
        StrategyRule(condition="x", action="BUY", weight=-1)


def test_risk_config_aliases_and_sizing_method():
    cfg = RiskManagementConfig.model_validate(
        {"stop_loss_percentage": 3, "position_sizing_method": "kelly_criterion"}
    )

    assert cfg.stop_loss_pct == 3.0
    assert cfg.take_profit_pct == 0.0
    assert cfg.position_sizing_method is PositionSizingMethod.KELLY


def test_duplicate_indicator_names_rejected():
    with pytest.raises(ValidationError):
        StrategyDefinition(indicators=["RSI", {"name": "RSI", "type": "RSI"}])


def test_backtest_request_validation():
    with pytest.raises(ValidationError):
        BacktestRequest(symbol="X", start_date=T0, end_date=T0, initial_capital=0)
    with pytest.raises(ValidationError):
        BacktestRequest(
            symbol="X", start_date=T0, end_date=datetime(2023, 1, 1), initial_capital=100
        )

    naive = BacktestRequest(
        symbol="X", start_date=datetime(2024, 1, 1), end_date=T0, initial_capital=100
    )
    assert naive.start_date.tzinfo is not None


def test_trade_close():
    trade = Trade(symbol="X", entry_price=50.0, quantity=4.0, entry_time=T0)

    assert trade.is_open
    pnl = trade.close(45.0, T0, "Stop loss")

    assert pnl == pytest.approx(-20.0)
    assert trade.pnl_pct == pytest.approx(-10.0)
    assert trade.status is TradeStatus.CLOSED
    assert trade.exit_reason == "Stop loss"


def test_backtest_result_serialises_infinity():
    result = BacktestResult(
        strategy_name="s",
        symbol="X",
        start_date=T0,
        end_date=T0,
        initial_capital=100.0,
        final_capital=110.0,
        total_return=0.1,
        annualized_return=0.0,
        max_drawdown=0.0,
        sharpe_ratio=0.0,
        win_rate=1.0,
        profit_factor=float("inf"),
        total_trades=1,
        winning_trades=1,
        losing_trades=0,
    )

    assert '"profit_factor":"Infinity"' in result.model_dump_json()
    with pytest.raises(ValidationError):
        result.final_capital = 1.0
