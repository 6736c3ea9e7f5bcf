from __future__ import annotations

import json

import pytest

from quantcore.cli import load_strategy, main
from quantcore.logging_utils import setup_test_logging

STRATEGY_YAML = """\
name: dip-buyer
indicators:
  - RSI
rules:
  - condition: price <= 100
    action: buy
  - condition: price >= 110
    action: SELL
risk_management:
  stop_loss_percentage: 5
  position_sizing_method: fixed
"""


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    setup_test_logging(level="INFO")


@pytest.fixture
def candles_csv(tmp_path):
    path = tmp_path / "candles.csv"
    path.write_text(
        "timestamp,open,high,low,close,volume\n"
        "2024-01-01,100,101,99,100,1000\n"
        "2024-01-02,100,101,99,100,1000\n"
        "2024-01-03,110,111,109,110,1000\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def strategy_yaml(tmp_path):
    path = tmp_path / "strategy.yaml"
    path.write_text(STRATEGY_YAML, encoding="utf-8")
    return path


def test_load_strategy(strategy_yaml):
    strategy = load_strategy(strategy_yaml)

    assert strategy.name == "dip-buyer"
    assert [s.name for s in strategy.indicators] == ["RSI"]
    assert strategy.risk_management.stop_loss_pct == 5.0


def test_backtest_command(candles_csv, strategy_yaml, capsys):
    code = main(
        [
            "backtest",
            "--candles",
            str(candles_csv),
            "--strategy",
            str(strategy_yaml),
            "--symbol",
            "TEST",
            "--warmup",
            "1",
        ]
    )

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["final_capital"] == pytest.approx(10_100.0)
    assert out["profit_factor"] == "Infinity"
    assert out["trades"][0]["exit_reason"] == "Strategy signal"


def test_indicators_command(candles_csv, capsys):
    code = main(
        ["indicators", "--candles", str(candles_csv), "--indicator", "SMA", "--param", "period=2"]
    )

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["values"] == pytest.approx([100.0, 105.0])


def test_risk_command_from_prices(candles_csv, capsys):
    code = main(
        ["risk", "--returns", str(candles_csv), "--prices", "--confidence", "0.5"]
    )

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["daily_var"] == pytest.approx(0.1)
    assert out["max_drawdown"] == 0.0


def test_invalid_condition_exits_nonzero(candles_csv, tmp_path, capsys):
    bad = tmp_path / "bad.yaml"
    bad.write_text("rules:\n  - condition: 'price >'\n    action: BUY\n", encoding="utf-8")

    code = main(
        ["backtest", "--candles", str(candles_csv), "--strategy", str(bad), "--symbol", "T"]
    )

    assert code == 1
    assert capsys.readouterr().out == ""


def test_malformed_strategy_document(candles_csv, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("rules:\n  - action: BUY\n", encoding="utf-8")

    code = main(
        ["backtest", "--candles", str(candles_csv), "--strategy", str(bad), "--symbol", "T"]
    )

    assert code == 2


def test_bad_param_is_usage_error(candles_csv):
    with pytest.raises(SystemExit) as exc:
        main(["indicators", "--candles", str(candles_csv), "--indicator", "SMA", "--param", "oops"])

    assert exc.value.code == 2


def test_non_numeric_param_exits_2(candles_csv):
    code = main(
        ["indicators", "--candles", str(candles_csv), "--indicator", "SMA", "--param", "period=abc"]
    )

    assert code == 2


def test_unparseable_start_date_exits_2(candles_csv, strategy_yaml, capsys):
    code = main(
        [
            "backtest",
            "--candles",
            str(candles_csv),
            "--strategy",
            str(strategy_yaml),
            "--symbol",
            "T",
            "--start",
            "notadate",
        ]
    )

    assert code == 2
    assert capsys.readouterr().out == ""
