from __future__ import annotations

import uuid
from typing import Iterable, List, Optional

from loguru import logger

from quantcore.backtest.metrics import summarize_ledger
from quantcore.backtest.sizing import position_size
from quantcore.core.exceptions import DataValidationError, InvalidConfigurationError
from quantcore.core.models import (
    BacktestRequest,
    BacktestResult,
    Candle,
    EquityPoint,
    Side,
    StrategyDefinition,
    Trade,
    datetime_to_ms,
)
from quantcore.features.series import PriceSeries
from quantcore.logging_utils import logging_context
from quantcore.settings import get_backtest_settings
from quantcore.signals.evaluator import (
    SignalEvaluator,
    select_strongest,
    validate_strategy,
)

EXIT_SIGNAL = "Strategy signal"
EXIT_STOP_LOSS = "Stop loss"
EXIT_TAKE_PROFIT = "Take profit"
EXIT_MAX_DRAWDOWN = "Max drawdown"
EXIT_END = "Backtest end"


def _in_range(candles: Iterable[Candle], request: BacktestRequest) -> List[Candle]:
    lo = datetime_to_ms(request.start_date)
    hi = datetime_to_ms(request.end_date)
    return [c for c in candles if lo <= c.timestamp <= hi]


def run_backtest(
    strategy: StrategyDefinition,
    candles: Iterable[Candle],
    request: BacktestRequest,
    *,
    warmup_bars: Optional[int] = None,
    allow_fractional: Optional[bool] = None,
) -> BacktestResult:
    """
    A long-only, bar-by-bar backtest of `strategy` over `candles`.

    Args:
        strategy (StrategyDefinition): Indicators, rules and risk policy.
        candles (Iterable[Candle]): Candles in ascending time order; those
            outside the request's date range are dropped.
        request (BacktestRequest): Symbol, date range and starting capital.
        warmup_bars (Optional[int]): Bars observed before the first trading
            decision. Defaults to `BACKTEST_WARMUP_BARS`.
        allow_fractional (Optional[bool]): Permit fractional quantities.
            Defaults to `BACKTEST_ALLOW_FRACTIONAL`.

    Returns:
        BacktestResult: Closed trades, equity curve and summary statistics.

    On every bar from the warm-up onward, an open position is first checked
    against the stop loss, then the take profit, then the equity drawdown
    limit. A forced exit replaces any signal for that bar. Otherwise the
    strongest candidate signal opens a position while flat (BUY) or closes
    it while long (SELL); SELL while flat is ignored. Anything still open at
    the last bar is closed there.
    """
    settings = get_backtest_settings()
    warmup = settings.warmup_bars if warmup_bars is None else int(warmup_bars)
    if warmup < 0:
        raise InvalidConfigurationError(f"warmup_bars must be >= 0, got {warmup}")
    fractional = settings.allow_fractional if allow_fractional is None else bool(allow_fractional)

    validate_strategy(strategy)

    rows = _in_range(candles, request)
    if not rows:
        raise DataValidationError(
            f"No candles for {request.symbol} between "
            f"{request.start_date.isoformat()} and {request.end_date.isoformat()}"
        )
    series = PriceSeries.from_candles(rows)
    series.ensure_ascending()

    rm = strategy.risk_management
    evaluator = SignalEvaluator(strategy)
    initial = float(request.initial_capital)

    capital = initial
    open_trade: Optional[Trade] = None
    trades: List[Trade] = []
    curve: List[EquityPoint] = []
    peak_equity = initial
    halted = False
    rule_failures = 0

    if warmup >= len(series):
        logger.warning(
            "Warm-up ({}) covers all {} bars for {}; no trades possible",
            warmup,
            len(series),
            request.symbol,
        )

    run_id = uuid.uuid4().hex[:12]
    with logging_context(run_id=run_id):
        logger.info(
            "Backtest start: strategy={} symbol={} bars={} warmup={} capital={:.2f}",
            strategy.name,
            request.symbol,
            len(series),
            warmup,
            initial,
        )

        for i in range(len(series)):
            price = float(series.close[i])
            when = series.time_at(i)

            if i >= warmup:
                equity = capital + (open_trade.quantity * price if open_trade else 0.0)
                peak_equity = max(peak_equity, equity)
                drawdown_pct = (
                    (peak_equity - equity) / peak_equity * 100.0 if peak_equity > 0 else 0.0
                )
                breaker = rm.max_drawdown_pct > 0 and drawdown_pct >= rm.max_drawdown_pct

                forced: Optional[str] = None
                if open_trade is not None:
                    pnl_pct = (price - open_trade.entry_price) / open_trade.entry_price * 100.0
                    if rm.stop_loss_pct > 0 and pnl_pct <= -rm.stop_loss_pct:
                        forced = EXIT_STOP_LOSS
                    elif rm.take_profit_pct > 0 and pnl_pct >= rm.take_profit_pct:
                        forced = EXIT_TAKE_PROFIT
                    elif breaker:
                        forced = EXIT_MAX_DRAWDOWN

                if forced is not None:
                    capital += open_trade.quantity * price
                    open_trade.close(price, when, forced)
                    logger.debug("{} exit at {:.4f} pnl={:.2f}", forced, price, open_trade.pnl)
                    open_trade = None

                if breaker and not halted:
                    halted = True
                    logger.warning(
                        "Drawdown {:.2f}% reached limit {:.2f}%; trading halted",
                        drawdown_pct,
                        rm.max_drawdown_pct,
                    )

                if forced is None and not halted:
                    evaluation = evaluator.evaluate(series.head(i + 1), price)
                    rule_failures += len(evaluation.failures)
                    best = select_strongest(evaluation.candidates)

                    if best is not None and best.action is Side.BUY and open_trade is None:
                        qty = position_size(capital, price, rm, fractional)
                        cost = qty * price
                        if qty > 0 and cost <= capital:
                            capital -= cost
                            open_trade = Trade(
                                symbol=request.symbol,
                                side=Side.BUY,
                                entry_price=price,
                                quantity=qty,
                                entry_time=when,
                            )
                            trades.append(open_trade)
                            logger.debug("Entry at {:.4f} qty={}", price, qty)
                    elif best is not None and best.action is Side.SELL and open_trade is not None:
                        capital += open_trade.quantity * price
                        open_trade.close(price, when, EXIT_SIGNAL)
                        logger.debug("Signal exit at {:.4f} pnl={:.2f}", price, open_trade.pnl)
                        open_trade = None

            equity = capital + (open_trade.quantity * price if open_trade else 0.0)
            curve.append(EquityPoint(timestamp=when, capital=capital, equity=equity))

        if open_trade is not None:
            last = len(series) - 1
            price = float(series.close[last])
            capital += open_trade.quantity * price
            open_trade.close(price, series.time_at(last), EXIT_END)
            open_trade = None
            curve[-1] = EquityPoint(timestamp=curve[-1].timestamp, capital=capital, equity=capital)

        days = (request.end_date - request.start_date).total_seconds() / 86_400.0
        summary = summarize_ledger(
            trades,
            curve,
            initial_capital=initial,
            final_capital=capital,
            days=days,
        )

        logger.info(
            "Backtest done: trades={} final={:.2f} return={:.4f} rule_failures={}",
            summary.total_trades,
            capital,
            summary.total_return,
            rule_failures,
        )

    return BacktestResult(
        strategy_name=strategy.name,
        symbol=request.symbol,
        start_date=request.start_date,
        end_date=request.end_date,
        initial_capital=initial,
        final_capital=capital,
        total_return=summary.total_return,
        annualized_return=summary.annualized_return,
        max_drawdown=summary.max_drawdown,
        sharpe_ratio=summary.sharpe_ratio,
        win_rate=summary.win_rate,
        profit_factor=summary.profit_factor,
        total_trades=summary.total_trades,
        winning_trades=summary.winning_trades,
        losing_trades=summary.losing_trades,
        trades=trades,
        equity_curve=curve,
        rule_failures=rule_failures,
    )


__all__ = [
    "run_backtest",
    "EXIT_SIGNAL",
    "EXIT_STOP_LOSS",
    "EXIT_TAKE_PROFIT",
    "EXIT_MAX_DRAWDOWN",
    "EXIT_END",
]
