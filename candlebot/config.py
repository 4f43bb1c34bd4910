from __future__ import annotations

from datetime import time
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, model_validator

from candlebot.clock import SERVER_TIMEZONE, parse_hhmm
from candlebot.strategy.drawdown import DrawdownBase, MaxDrawdownBase
from candlebot.strategy.indicators import MovingAverageType
from candlebot.strategy.risk import RiskUnit
from candlebot.strategy.signal import EntryMode


class TimingConfig(BaseModel):
    first_candle_time: str = "01:00"
    close_time: str = "23:00"
    close_at_time: bool = True
    tolerance_seconds: int = 60

    @model_validator(mode="after")
    def validate_times(self) -> "TimingConfig":
        first = parse_hhmm(self.first_candle_time)
        close = parse_hhmm(self.close_time)
        self.first_candle_time = f"{first.hour:02d}:{first.minute:02d}"
        self.close_time = f"{close.hour:02d}:{close.minute:02d}"
        if self.tolerance_seconds <= 0:
            raise ValueError("timing.tolerance_seconds must be > 0")
        return self

    @property
    def first_candle(self) -> time:
        return parse_hhmm(self.first_candle_time)

    @property
    def close(self) -> time:
        return parse_hhmm(self.close_time)


class EntryConfig(BaseModel):
    mode: EntryMode = EntryMode.TREND_SLOPE
    ma_period: int = 200
    ma_type: MovingAverageType = MovingAverageType.SIMPLE

    @model_validator(mode="after")
    def validate_period(self) -> "EntryConfig":
        if self.ma_period < 1:
            raise ValueError("entry.ma_period must be >= 1")
        return self


class BracketConfig(BaseModel):
    margin_pips: float = 0.0
    min_stop_pips: float = 100.0
    risk_reward: float = 4.0

    @model_validator(mode="after")
    def validate_values(self) -> "BracketConfig":
        if self.margin_pips < 0:
            raise ValueError("bracket.margin_pips must be >= 0")
        if self.min_stop_pips < 1:
            raise ValueError("bracket.min_stop_pips must be >= 1")
        if self.risk_reward < 0.1:
            raise ValueError("bracket.risk_reward must be >= 0.1")
        return self


class RiskConfig(BaseModel):
    value: float = 1.0
    unit: RiskUnit = RiskUnit.PERCENT_BALANCE
    max_lot_size: float = 5.0

    @model_validator(mode="after")
    def validate_risk(self) -> "RiskConfig":
        if self.value < 0.01:
            raise ValueError("risk.value must be >= 0.01")
        if self.unit is not RiskUnit.FIXED_AMOUNT and self.value > 100.0:
            raise ValueError("risk.value cannot exceed 100 percent")
        if self.max_lot_size < 0.01:
            raise ValueError("risk.max_lot_size must be >= 0.01")
        return self


class TrailingConfig(BaseModel):
    enabled: bool = False
    start_pct: float = 50.0
    distance_pct: float = 25.0

    @model_validator(mode="after")
    def validate_values(self) -> "TrailingConfig":
        if self.start_pct <= 0:
            raise ValueError("trailing.start_pct must be > 0")
        if self.distance_pct <= 0:
            raise ValueError("trailing.distance_pct must be > 0")
        return self


class DrawdownConfig(BaseModel):
    protection_enabled: bool = True
    base: DrawdownBase = DrawdownBase.BALANCE
    start_protect_pct: float = 5.0
    reduce_risk_by_pct: float = 50.0
    stay_protected_until_pct: float = 2.0
    max_drawdown_enabled: bool = True
    max_drawdown_pct: float = 10.0
    max_drawdown_base: MaxDrawdownBase = MaxDrawdownBase.DYNAMIC
    starting_account_value: float | None = None

    @model_validator(mode="after")
    def validate_thresholds(self) -> "DrawdownConfig":
        if self.start_protect_pct <= 0:
            raise ValueError("drawdown.start_protect_pct must be > 0")
        if self.stay_protected_until_pct < 0:
            raise ValueError("drawdown.stay_protected_until_pct must be >= 0")
        if self.stay_protected_until_pct >= self.start_protect_pct:
            raise ValueError("drawdown.stay_protected_until_pct must be < start_protect_pct")
        if not (0 <= self.reduce_risk_by_pct <= 100):
            raise ValueError("drawdown.reduce_risk_by_pct must be in [0,100]")
        if not (0 < self.max_drawdown_pct <= 100):
            raise ValueError("drawdown.max_drawdown_pct must be in (0,100]")
        if self.starting_account_value is not None and self.starting_account_value <= 0:
            raise ValueError("drawdown.starting_account_value must be > 0 when provided")
        return self


class SymbolConfig(BaseModel):
    name: str = "EURUSD"
    pip_size: float = 0.0001
    pip_value: float = 0.0001
    min_volume: float = 1000.0
    volume_step: float = 1000.0
    lot_size: float = 100000.0

    @model_validator(mode="after")
    def normalize(self) -> "SymbolConfig":
        self.name = self.name.strip().upper()
        if not self.name:
            raise ValueError("symbol.name must not be empty")
        for field_name in ("pip_size", "pip_value", "min_volume", "volume_step", "lot_size"):
            if getattr(self, field_name) <= 0:
                raise ValueError(f"symbol.{field_name} must be > 0")
        return self


class BacktestConfig(BaseModel):
    initial_balance: float = 10000.0
    currency: str = "USD"
    spread_pips: float = 1.0

    @model_validator(mode="after")
    def validate_values(self) -> "BacktestConfig":
        if self.initial_balance <= 0:
            raise ValueError("backtest.initial_balance must be > 0")
        if self.spread_pips < 0:
            raise ValueError("backtest.spread_pips must be >= 0")
        self.currency = str(self.currency or "USD").strip().upper() or "USD"
        return self


class AppConfig(BaseModel):
    timezone: str = SERVER_TIMEZONE
    label: str = "FirstCandleEA"
    timing: TimingConfig = Field(default_factory=TimingConfig)
    entry: EntryConfig = Field(default_factory=EntryConfig)
    bracket: BracketConfig = Field(default_factory=BracketConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    trailing: TrailingConfig = Field(default_factory=TrailingConfig)
    drawdown: DrawdownConfig = Field(default_factory=DrawdownConfig)
    symbol: SymbolConfig = Field(default_factory=SymbolConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)

    @model_validator(mode="after")
    def normalize(self) -> "AppConfig":
        self.timezone = str(self.timezone or SERVER_TIMEZONE).strip() or SERVER_TIMEZONE
        if self.timezone.lower() == SERVER_TIMEZONE:
            self.timezone = SERVER_TIMEZONE
        else:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValueError(f"timezone '{self.timezone}' is not a known IANA zone") from exc
        self.label = self.label.strip()
        if not self.label:
            raise ValueError("label must not be empty")
        return self


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
