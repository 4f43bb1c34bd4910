from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from candlebot.data.candles import Candle
from candlebot.execution.sizing import floor_to_step
from candlebot.strategy.signal import TradeDirection


class VenueError(RuntimeError):
    """A market-data, account or execution call failed for this cycle."""


class InsufficientHistoryError(VenueError):
    """Not enough completed bars to evaluate the signal."""


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    balance: float
    equity: float
    currency: str = "USD"


@dataclass(frozen=True, slots=True)
class SymbolInfo:
    name: str
    pip_size: float
    pip_value: float        # account currency per pip per one unit of volume
    min_volume: float
    volume_step: float
    lot_size: float = 100000.0

    @property
    def pip_value_per_min_volume(self) -> float:
        return self.pip_value * self.min_volume

    def normalize_volume(self, volume: float) -> float:
        return round(floor_to_step(volume, self.volume_step), 8)

    def lots(self, volume: float) -> float:
        return volume / self.lot_size


@dataclass(slots=True)
class PositionRecord:
    position_id: str
    direction: TradeDirection
    entry_price: float
    stop_loss: float | None
    take_profit: float | None
    volume: float
    label: str
    opened_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class OrderResult:
    ok: bool
    position_id: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, position_id: str | None = None) -> "OrderResult":
        return cls(ok=True, position_id=position_id)

    @classmethod
    def failure(cls, error: str) -> "OrderResult":
        return cls(ok=False, error=error)


class Venue(Protocol):
    def current_time(self) -> datetime:
        ...

    def bar_count(self) -> int:
        ...

    def get_bar(self, index_from_end: int) -> Candle:
        ...

    def trend_value(self, index_from_end: int, period: int) -> float | None:
        ...

    def quote(self) -> tuple[float, float]:
        ...

    def account(self) -> AccountSnapshot:
        ...

    def symbol(self) -> SymbolInfo:
        ...

    def submit_market_order(
        self,
        *,
        direction: TradeDirection,
        volume: float,
        label: str,
        stop_pips: float,
        take_profit_pips: float,
    ) -> OrderResult:
        ...

    def modify_stop_loss(self, position_id: str, stop_loss: float) -> OrderResult:
        ...

    def close_position(self, position_id: str) -> OrderResult:
        ...

    def find_open_positions(self, label: str) -> list[PositionRecord]:
        ...
