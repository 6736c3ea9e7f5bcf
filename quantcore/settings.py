"""Centralized engine settings powered by Pydantic.

Environment matrix:

| Section  | Environment Variable          | Default | Purpose                                     |
|----------|-------------------------------|---------|---------------------------------------------|
| Backtest | `BACKTEST_WARMUP_BARS`        | `50`    | Bars skipped before the simulator trades    |
| Backtest | `BACKTEST_ALLOW_FRACTIONAL`   | `false` | Allow fractional position quantities        |
| Risk     | `RISK_FREE_RATE`              | `0.02`  | Annual risk-free rate (Sharpe / Sortino)    |
| Risk     | `VAR_CONFIDENCE`              | `0.95`  | Default VaR / Expected Shortfall confidence |
| Risk     | `VAR_LOOKBACK_DAYS`           | `252`   | Trailing window used for VaR / ES           |
| Rules    | `RULE_MAX_LENGTH`             | `512`   | Max characters in a rule condition          |
| Rules    | `RULE_MAX_DEPTH`              | `32`    | Max nesting depth of a parsed condition     |
| Rules    | `RULE_MAX_STEPS`              | `10000` | Max evaluation steps per condition          |
| Logging  | `LOG_LEVEL`                   | `INFO`  | Default log level for `setup_logging`       |

The settings objects below source environment variables when instantiated and
are intended to be treated as read-only. Core functions accept explicit values
and only fall back to these settings when a caller leaves them unset.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _SettingsBase(BaseSettings):
    """Common configuration for BaseSettings subclasses."""

    model_config = SettingsConfigDict(
        env_prefix="",
        populate_by_name=True,
        extra="ignore",
        case_sensitive=True,
        frozen=True,
    )


class BacktestSettings(_SettingsBase):
    """Trade simulator defaults."""

    warmup_bars: int = Field(default=50, alias="BACKTEST_WARMUP_BARS", ge=0)
    allow_fractional: bool = Field(default=False, alias="BACKTEST_ALLOW_FRACTIONAL")


class RiskSettings(_SettingsBase):
    """Performance & risk analyzer defaults."""

    risk_free_rate: float = Field(default=0.02, alias="RISK_FREE_RATE")
    var_confidence: float = Field(default=0.95, alias="VAR_CONFIDENCE")
    var_lookback_days: int = Field(default=252, alias="VAR_LOOKBACK_DAYS", gt=0)

    @field_validator("var_confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, value: float) -> float:
        if not 0.0 < value < 1.0:
            raise ValueError("VAR_CONFIDENCE must be in (0, 1)")
        return value


class RuleSettings(_SettingsBase):
    """Execution budget for user-authored rule conditions."""

    max_length: int = Field(default=512, alias="RULE_MAX_LENGTH", gt=0)
    max_depth: int = Field(default=32, alias="RULE_MAX_DEPTH", gt=0)
    max_steps: int = Field(default=10_000, alias="RULE_MAX_STEPS", gt=0)


class LoggingSettings(_SettingsBase):
    level: str = Field(default="INFO", alias="LOG_LEVEL")

    @computed_field
    @property
    def normalized_level(self) -> str:
        return (self.level or "INFO").strip().upper()


class Settings(BaseModel):
    """Aggregate accessor for domain-specific settings."""

    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    rules: RuleSettings = Field(default_factory=RuleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "frozen": True,
    }


def get_settings() -> Settings:
    """Instantiate settings from the current environment."""
    return Settings()


def reload_settings() -> Settings:
    """Alias for get_settings to maintain a consistent API."""
    return get_settings()


def get_backtest_settings() -> BacktestSettings:
    return get_settings().backtest


def get_risk_settings() -> RiskSettings:
    return get_settings().risk


def get_rule_settings() -> RuleSettings:
    return get_settings().rules


def get_logging_settings() -> LoggingSettings:
    return get_settings().logging


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "get_backtest_settings",
    "get_risk_settings",
    "get_rule_settings",
    "get_logging_settings",
    "BacktestSettings",
    "RiskSettings",
    "RuleSettings",
    "LoggingSettings",
]
