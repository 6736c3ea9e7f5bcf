from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.fields import AliasChoices


class SignalLabel(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PositionSizingMethod(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    KELLY = "kelly"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PositionSizingMethod"]:
        if isinstance(value, str):
            key = value.strip().lower()
            if key in ("kelly_criterion", "kelly-criterion"):
                return cls.KELLY
            for member in cls:
                if member.value == key:
                    return member
        return None


def ms_to_datetime(ms: int) -> datetime:
    """Convert an epoch-millisecond timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(round(value.timestamp() * 1000))


class _ReportModel(BaseModel):
    """Result aggregates; infinite sentinels serialise as "Infinity"."""

    model_config = {
        "extra": "ignore",
        "ser_json_inf_nan": "strings",
    }


class Candle(BaseModel):
    """
    A Pydantic model for one OHLCV interval.

    Attributes:
        timestamp (int): Interval open time in epoch milliseconds.
        open (float): The open price.
        high (float): The high price.
        low (float): The low price.
        close (float): The close price.
        volume (float): The traded volume.
    """

    timestamp: int = Field(validation_alias=AliasChoices("timestamp", "t", "ts", "time"))
    open: float = Field(validation_alias=AliasChoices("open", "o"))
    high: float = Field(validation_alias=AliasChoices("high", "h"))
    low: float = Field(validation_alias=AliasChoices("low", "l", "lo"))
    close: float = Field(validation_alias=AliasChoices("close", "c"))
    volume: float = Field(0.0, validation_alias=AliasChoices("volume", "v"))

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
        "frozen": True,
    }

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Candle":
        """Build a candle from an exchange-style `[ts, o, h, l, c, v]` row."""
        if len(row) < 5:
            raise ValueError(f"OHLCV row needs at least 5 fields, got {len(row)}")
        volume = row[5] if len(row) > 5 else 0.0
        return cls(
            timestamp=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(volume),
        )

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0

    @property
    def time(self) -> datetime:
        return ms_to_datetime(self.timestamp)

    def __repr__(self) -> str:
        return (
            f"Candle(t={self.timestamp}, o={self.open:.2f}, h={self.high:.2f}, "
            f"l={self.low:.2f}, c={self.close:.2f}, v={self.volume:.2f})"
        )


class IndicatorSeries(BaseModel):
    """
    Output of one indicator over an input series.

    Attributes:
        values (List[float]): One value per input index after the warm-up period.
        signals (List[SignalLabel]): Optional labels parallel to `values`.
        metadata (Dict[str, List[float]]): Named auxiliary series (bands, signal line, ...).
    """

    values: List[float] = Field(default_factory=list)
    signals: List[SignalLabel] = Field(default_factory=list)
    metadata: Dict[str, List[float]] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.values

    @property
    def latest(self) -> Optional[float]:
        """The most recent value, or None when the series is empty."""
        return self.values[-1] if self.values else None

    @property
    def latest_signal(self) -> Optional[SignalLabel]:
        return self.signals[-1] if self.signals else None

    def latest_metadata(self) -> Dict[str, float]:
        return {key: series[-1] for key, series in self.metadata.items() if series}


class IndicatorSpec(BaseModel):
    """A named indicator request: `name` is how rules refer to its output."""

    name: str
    type: str
    params: Dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_name(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data, "type": data}
        if isinstance(data, dict) and "type" not in data and "name" in data:
            return {**data, "type": data["name"]}
        return data


class StrategyRule(BaseModel):
    condition: str
    action: SignalLabel
    weight: float = Field(1.0, ge=0.0)
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class RiskManagementConfig(BaseModel):
    """
    Per-strategy risk policy.

    Attributes:
        max_position_size (float): Percent of capital committed by `percentage` sizing.
        stop_loss_pct (float): Loss in percent of entry that forces an exit. 0
            disables the stop instead of exiting on any pnl <= 0.
        take_profit_pct (float): Gain in percent of entry that forces an exit; 0 disables.
        max_drawdown_pct (float): Equity drawdown in percent that halts trading; 0 disables.
        position_sizing_method (PositionSizingMethod): fixed, percentage or kelly.
    """

    max_position_size: float = Field(10.0, ge=0.0, le=100.0)
    stop_loss_pct: float = Field(
        5.0,
        ge=0.0,
        validation_alias=AliasChoices("stop_loss_pct", "stop_loss_percentage"),
        description="Stop distance in percent of entry; 0 disables the stop.",
    )
    take_profit_pct: float = Field(
        0.0,
        ge=0.0,
        validation_alias=AliasChoices("take_profit_pct", "take_profit_percentage"),
    )
    max_drawdown_pct: float = Field(
        0.0,
        ge=0.0,
        le=100.0,
        validation_alias=AliasChoices("max_drawdown_pct", "max_drawdown_percentage"),
    )
    position_sizing_method: PositionSizingMethod = PositionSizingMethod.FIXED

    model_config = {"populate_by_name": True}


class StrategyDefinition(BaseModel):
    name: str = "strategy"
    indicators: List[IndicatorSpec] = Field(default_factory=list)
    rules: List[StrategyRule] = Field(default_factory=list)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)

    model_config = {"extra": "ignore"}

    @field_validator("indicators")
    @classmethod
    def _unique_indicator_names(cls, value: List[IndicatorSpec]) -> List[IndicatorSpec]:
        seen: set[str] = set()
        for spec in value:
            if spec.name in seen:
                raise ValueError(f"duplicate indicator name: {spec.name}")
            seen.add(spec.name)
        return value


class BacktestRequest(BaseModel):
    symbol: str
    start_date: datetime
    end_date: datetime
    initial_capital: float = Field(gt=0.0)

    @model_validator(mode="after")
    def _ordered_range(self) -> "BacktestRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date precedes start_date")
        return self

    @field_validator("start_date", "end_date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Trade(BaseModel):
    """
    One simulated round trip.

    Created OPEN on entry; mutated to CLOSED by an opposing signal, a forced
    exit (stop loss, take profit, drawdown limit) or the end of the backtest.
    """

    symbol: str
    side: Side = Side.BUY
    entry_price: float = Field(gt=0.0)
    exit_price: Optional[float] = None
    quantity: float
    entry_time: datetime
    exit_time: Optional[datetime] = None
    pnl: Optional[float] = None
    pnl_pct: Optional[float] = None
    status: TradeStatus = TradeStatus.OPEN
    exit_reason: str = "Strategy signal"

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    def close(self, price: float, when: datetime, reason: str) -> float:
        """Close the trade at `price` and return the realized pnl."""
        self.exit_price = float(price)
        self.exit_time = when
        self.pnl = (self.exit_price - self.entry_price) * self.quantity
        self.pnl_pct = (self.exit_price - self.entry_price) / self.entry_price * 100.0
        self.status = TradeStatus.CLOSED
        self.exit_reason = reason
        return self.pnl


class EquityPoint(BaseModel):
    timestamp: datetime
    capital: float
    equity: float


class BacktestResult(_ReportModel):
    strategy_name: str
    symbol: str
    start_date: datetime
    end_date: datetime
    initial_capital: float
    final_capital: float
    total_return: float
    annualized_return: float
    max_drawdown: float
    sharpe_ratio: float
    win_rate: float
    profit_factor: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    trades: List[Trade] = Field(default_factory=list)
    equity_curve: List[EquityPoint] = Field(default_factory=list)
    rule_failures: int = 0

    model_config = {**_ReportModel.model_config, "frozen": True}


class Signal(_ReportModel):
    action: Side
    strength: float
    confidence: float
    rule_index: int
    condition: str
    symbol: Optional[str] = None
    price: Optional[float] = None
    timestamp: Optional[datetime] = None
    indicators: Dict[str, float] = Field(default_factory=dict)


class RiskMetrics(_ReportModel):
    portfolio_value: float = 0.0
    daily_var: float = 0.0
    weekly_var: float = 0.0
    monthly_var: float = 0.0
    expected_shortfall: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    current_drawdown: float = 0.0
    volatility: float = 0.0
    var_break_count: int = 0


__all__ = [
    "SignalLabel",
    "Side",
    "TradeStatus",
    "PositionSizingMethod",
    "Candle",
    "IndicatorSeries",
    "IndicatorSpec",
    "StrategyRule",
    "RiskManagementConfig",
    "StrategyDefinition",
    "BacktestRequest",
    "Trade",
    "EquityPoint",
    "BacktestResult",
    "Signal",
    "RiskMetrics",
    "ms_to_datetime",
    "datetime_to_ms",
]
