from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

import pytest

from quantcore.backtest.engine import (
    EXIT_END,
    EXIT_MAX_DRAWDOWN,
    EXIT_SIGNAL,
    EXIT_STOP_LOSS,
    EXIT_TAKE_PROFIT,
    run_backtest,
)
from quantcore.core.exceptions import DataValidationError, InvalidConfigurationError
from quantcore.core.models import (
    BacktestRequest,
    Candle,
    StrategyDefinition,
    TradeStatus,
    datetime_to_ms,
)

BUY_AT_100 = {"condition": "price <= 100", "action": "BUY"}
SELL_AT_110 = {"condition": "price >= 110", "action": "SELL"}


def _request(days: int, start_day: int = 1, capital: float = 10_000.0) -> BacktestRequest:
    start = datetime(2024, 1, start_day, tzinfo=timezone.utc)
    return BacktestRequest(
        symbol="TEST",
        start_date=start,
        end_date=start + timedelta(days=days - 1),
        initial_capital=capital,
    )


def _strategy(rules, risk=None, indicators=()) -> StrategyDefinition:
    payload = {"name": "unit", "indicators": list(indicators), "rules": rules}
    if risk is not None:
        payload["risk_management"] = risk
    return StrategyDefinition.model_validate(payload)


def test_single_round_trip(make_candles):
    candles = make_candles([100.0, 100.0, 110.0])

    result = run_backtest(
        _strategy([BUY_AT_100, SELL_AT_110]), candles, _request(3), warmup_bars=1
    )

    assert result.total_trades == 1
    trade = result.trades[0]
    assert trade.quantity == 10
    assert trade.pnl == pytest.approx(100.0)
    assert trade.pnl_pct == pytest.approx(10.0)
    assert trade.exit_reason == EXIT_SIGNAL
    assert result.final_capital == pytest.approx(10_100.0)
    assert result.total_return == pytest.approx(0.01)
    assert result.win_rate == 1.0
    assert math.isinf(result.profit_factor)
    assert len(result.equity_curve) == 3
    assert result.equity_curve[-1].equity == pytest.approx(10_100.0)


def test_stop_loss_then_reentry_closed_at_end(make_candles):
    candles = make_candles([100.0, 100.0, 90.0, 95.0])

    result = run_backtest(
        _strategy([BUY_AT_100, SELL_AT_110]), candles, _request(4), warmup_bars=1
    )

    assert [t.exit_reason for t in result.trades] == [EXIT_STOP_LOSS, EXIT_END]
    assert result.trades[0].pnl == pytest.approx(-100.0)
    assert result.trades[0].exit_price == 90.0
    # no re-entry on the bar the stop fired
    assert result.trades[1].entry_price == 95.0
    assert result.trades[1].quantity == 10
    assert result.trades[1].pnl == pytest.approx(0.0)
    assert result.final_capital == pytest.approx(9_900.0)
    assert result.losing_trades == 2
    assert result.profit_factor == 0.0


def test_take_profit(make_candles):
    candles = make_candles([100.0, 100.0, 120.0, 130.0])
    strategy = _strategy([BUY_AT_100], risk={"take_profit_percentage": 10})

    result = run_backtest(strategy, candles, _request(4), warmup_bars=1)

    assert [t.exit_reason for t in result.trades] == [EXIT_TAKE_PROFIT]
    assert result.final_capital == pytest.approx(10_200.0)


def test_drawdown_limit_halts_trading(make_candles):
    candles = make_candles([100.0, 100.0, 70.0, 100.0, 100.0])
    strategy = _strategy(
        [BUY_AT_100], risk={"max_drawdown_pct": 2, "stop_loss_pct": 50}
    )

    result = run_backtest(strategy, candles, _request(5), warmup_bars=1)

    assert len(result.trades) == 1
    assert result.trades[0].exit_reason == EXIT_MAX_DRAWDOWN
    assert result.final_capital == pytest.approx(9_700.0)
    assert result.max_drawdown == pytest.approx(0.03)


def test_sell_while_flat_is_ignored(make_candles):
    candles = make_candles([100.0, 101.0, 102.0])

    result = run_backtest(
        _strategy([{"condition": "price > 0", "action": "SELL"}]),
        candles,
        _request(3),
        warmup_bars=0,
    )

    assert result.trades == []
    assert result.final_capital == 10_000.0
    assert result.profit_factor == 0.0


def test_warmup_blocks_early_decisions(make_candles):
    candles = make_candles([100.0, 100.0, 110.0])

    result = run_backtest(
        _strategy([BUY_AT_100, SELL_AT_110]), candles, _request(3), warmup_bars=3
    )

    assert result.trades == []
    assert [p.equity for p in result.equity_curve] == [10_000.0] * 3


def test_ledger_invariants_on_random_walk(make_candles, random_walk):
    candles = make_candles(random_walk)
    strategy = _strategy(
        [
            {"condition": "RSI < 45", "action": "BUY"},
            {"condition": "RSI > 55 or price < SMA * 0.97", "action": "SELL"},
        ],
        indicators=["RSI", {"name": "SMA", "type": "SMA", "params": {"period": 10}}],
    )

    result = run_backtest(strategy, candles, _request(len(candles)), warmup_bars=20)

    assert result.trades
    for trade in result.trades:
        assert trade.status is TradeStatus.CLOSED
        assert trade.exit_price is not None
        assert trade.exit_time >= trade.entry_time
    assert result.final_capital == pytest.approx(
        result.initial_capital + sum(t.pnl for t in result.trades)
    )
    assert len(result.equity_curve) == len(candles)
    assert 0.0 <= result.max_drawdown < 1.0
    assert result.winning_trades + result.losing_trades == result.total_trades


def test_rule_failures_are_counted(make_candles):
    candles = make_candles([1.0, 2.0, 3.0])

    result = run_backtest(
        _strategy([{"condition": "missing > 1", "action": "BUY"}]),
        candles,
        _request(3),
        warmup_bars=1,
    )

    assert result.rule_failures == 2
    assert result.trades == []


def test_malformed_condition_rejected_up_front(make_candles):
    with pytest.raises(InvalidConfigurationError):
        run_backtest(
            _strategy([{"condition": "price >", "action": "BUY"}]),
            make_candles([1.0, 2.0]),
            _request(2),
        )


def test_negative_warmup_rejected(make_candles):
    with pytest.raises(InvalidConfigurationError):
        run_backtest(_strategy([BUY_AT_100]), make_candles([1.0]), _request(1), warmup_bars=-1)


def test_empty_range_rejected(make_candles):
    candles = make_candles([100.0, 100.0])

    with pytest.raises(DataValidationError):
        run_backtest(_strategy([BUY_AT_100]), candles, _request(3, start_day=20))


def test_out_of_order_candles_rejected(make_candles):
    candles = make_candles([100.0, 101.0, 102.0])

    with pytest.raises(DataValidationError):
        run_backtest(_strategy([BUY_AT_100]), [candles[1], candles[0], candles[2]], _request(3))


def test_fractional_quantities(make_candles):
    candles = make_candles([300.0, 300.0])

    whole = run_backtest(
        _strategy([{"condition": "price > 0", "action": "BUY"}]),
        candles,
        _request(2),
        warmup_bars=0,
    )
    fractional = run_backtest(
        _strategy([{"condition": "price > 0", "action": "BUY"}]),
        candles,
        _request(2),
        warmup_bars=0,
        allow_fractional=True,
    )

    assert whole.trades[0].quantity == 3
    assert fractional.trades[0].quantity == pytest.approx(1_000.0 / 300.0)


def test_warmup_from_environment(monkeypatch, make_candles):
    monkeypatch.setenv("BACKTEST_WARMUP_BARS", "5")
    candles = make_candles([100.0, 100.0, 110.0])

    result = run_backtest(_strategy([BUY_AT_100, SELL_AT_110]), candles, _request(3))

    assert result.trades == []


def test_logs_carry_run_id(make_candles):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = ListHandler(level=logging.INFO)
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        run_backtest(_strategy([BUY_AT_100]), make_candles([100.0]), _request(1), warmup_bars=0)
    finally:
        root.removeHandler(handler)

    starts = [r for r in records if r.getMessage().startswith("Backtest start")]
    assert starts
    assert starts[0].run_id != "-"
    assert len(starts[0].run_id) == 12


def test_stop_loss_wins_over_same_bar_sell(make_candles):
    candles = make_candles([100.0, 100.0, 90.0])
    strategy = _strategy(
        [
            {"condition": "price == 100", "action": "BUY"},
            {"condition": "price < 95", "action": "SELL"},
        ]
    )

    result = run_backtest(strategy, candles, _request(3), warmup_bars=1)

    assert [t.exit_reason for t in result.trades] == [EXIT_STOP_LOSS]
    assert result.final_capital == pytest.approx(9_900.0)


def test_zero_stop_loss_disables_the_stop(make_candles):
    candles = make_candles([100.0, 100.0, 50.0, 40.0])
    strategy = _strategy(
        [{"condition": "price == 100", "action": "BUY"}], risk={"stop_loss_pct": 0}
    )

    result = run_backtest(strategy, candles, _request(4), warmup_bars=1)

    assert [t.exit_reason for t in result.trades] == [EXIT_END]
    assert result.trades[0].exit_price == 40.0
    assert result.final_capital == pytest.approx(9_400.0)


def test_every_equity_point_conserves_capital(make_candles, random_walk):
    candles = make_candles(random_walk)
    strategy = _strategy(
        [
            {"condition": "RSI < 45", "action": "BUY"},
            {"condition": "RSI > 55", "action": "SELL"},
        ],
        indicators=["RSI"],
    )

    result = run_backtest(strategy, candles, _request(len(candles)), warmup_bars=20)

    assert result.trades
    for point in result.equity_curve:
        t = point.timestamp
        at_cost = sum(
            tr.quantity * tr.entry_price
            for tr in result.trades
            if tr.entry_time <= t < tr.exit_time
        )
        realized = sum(tr.pnl for tr in result.trades if tr.exit_time <= t)
        assert point.capital + at_cost == pytest.approx(result.initial_capital + realized)


def test_short_window_annualizes_to_infinity():
    t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
    candles = [
        Candle(
            timestamp=datetime_to_ms(t0 + timedelta(minutes=i)),
            open=close,
            high=close,
            low=close,
            close=close,
        )
        for i, close in enumerate([100.0, 100.0, 130.0])
    ]
    request = BacktestRequest(
        symbol="TEST",
        start_date=t0,
        end_date=t0 + timedelta(minutes=2),
        initial_capital=10_000.0,
    )
    strategy = _strategy(
        [BUY_AT_100],
        risk={"position_sizing_method": "percentage", "max_position_size": 100},
    )

    result = run_backtest(strategy, candles, request, warmup_bars=1)

    assert result.final_capital == pytest.approx(13_000.0)
    assert math.isinf(result.annualized_return)
    assert "Infinity" in result.model_dump_json()
