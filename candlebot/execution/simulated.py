"""In-memory venue replaying a candle series.

The cursor points at the forming bar: everything before it is complete, the
forming bar only exposes its open. Market orders fill at the forming bar's
open (ask for longs, bid for shorts). Stops and targets are checked against
each bar's extremes as it completes; when both are touched inside one bar the
stop wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from candlebot.data.candles import Candle
from candlebot.execution.venue import (
    AccountSnapshot,
    InsufficientHistoryError,
    OrderResult,
    PositionRecord,
    SymbolInfo,
    VenueError,
)
from candlebot.strategy.indicators import MovingAverageType, moving_average
from candlebot.strategy.signal import TradeDirection

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClosedTrade:
    position_id: str
    direction: TradeDirection
    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    initial_stop: float | None
    volume: float
    pnl: float
    reason: str
    equity_before: float
    equity_after: float


class SimulatedVenue:
    def __init__(
        self,
        candles: list[Candle],
        *,
        symbol: SymbolInfo,
        initial_balance: float,
        currency: str = "USD",
        spread: float = 0.0,
        ma_type: MovingAverageType = MovingAverageType.SIMPLE,
    ):
        if not candles:
            raise ValueError("SimulatedVenue needs at least one candle")
        self.candles = candles
        self._symbol = symbol
        self.balance = float(initial_balance)
        self.currency = currency
        self.spread = max(0.0, float(spread))
        self.ma_type = MovingAverageType(ma_type)
        self.cursor = 0
        self.positions: dict[str, PositionRecord] = {}
        self.closed_trades: list[ClosedTrade] = []
        self.reject_orders = False
        self._next_id = 1
        self._ma_cache: dict[int, list[float | None]] = {}

    # ------------------------------------------------------------------
    # replay control
    # ------------------------------------------------------------------
    def has_next(self) -> bool:
        return self.cursor + 1 < len(self.candles)

    def step(self) -> Candle:
        """Complete the forming bar and move the cursor to the next one."""
        if not self.has_next():
            raise IndexError("no more candles to replay")
        completed = self.candles[self.cursor]
        for position in list(self.positions.values()):
            self._check_exit(position, completed)
        self.cursor += 1
        return completed

    # ------------------------------------------------------------------
    # Venue protocol
    # ------------------------------------------------------------------
    def current_time(self) -> datetime:
        return self.candles[self.cursor].timestamp

    def bar_count(self) -> int:
        return self.cursor + 1

    def get_bar(self, index_from_end: int) -> Candle:
        if index_from_end < 0:
            raise ValueError("index_from_end must be >= 0")
        idx = self.cursor - index_from_end
        if idx < 0:
            raise InsufficientHistoryError(f"bar {index_from_end} back is not available")
        candle = self.candles[idx]
        if index_from_end == 0:
            return Candle(
                timestamp=candle.timestamp,
                open=candle.open,
                high=candle.open,
                low=candle.open,
                close=candle.open,
            )
        return candle

    def trend_value(self, index_from_end: int, period: int) -> float | None:
        idx = self.cursor - index_from_end
        if idx < 0:
            return None
        series = self._ma_cache.get(period)
        if series is None:
            series = moving_average([c.close for c in self.candles], period, self.ma_type)
            self._ma_cache[period] = series
        return series[idx]

    def quote(self) -> tuple[float, float]:
        candle = self.candles[self.cursor]
        bid = candle.bid if candle.bid is not None else candle.open
        ask = candle.ask if candle.ask is not None else bid + self.spread
        return float(bid), float(ask)

    def account(self) -> AccountSnapshot:
        return AccountSnapshot(balance=self.balance, equity=self.equity(), currency=self.currency)

    def symbol(self) -> SymbolInfo:
        return self._symbol

    def submit_market_order(
        self,
        *,
        direction: TradeDirection,
        volume: float,
        label: str,
        stop_pips: float,
        take_profit_pips: float,
    ) -> OrderResult:
        if self.reject_orders:
            return OrderResult.failure("ORDER_REJECTED_BY_VENUE")
        if direction is TradeDirection.NONE:
            raise VenueError("market order needs a direction")
        volume = self._symbol.normalize_volume(volume)
        if volume < self._symbol.min_volume:
            return OrderResult.failure(f"volume {volume} below minimum {self._symbol.min_volume}")
        bid, ask = self.quote()
        pip = self._symbol.pip_size
        sign = direction.sign
        entry = ask if direction is TradeDirection.LONG else bid
        stop = entry - sign * stop_pips * pip if stop_pips > 0 else None
        take_profit = entry + sign * take_profit_pips * pip if take_profit_pips > 0 else None
        position_id = f"SIM-{self._next_id}"
        self._next_id += 1
        self.positions[position_id] = PositionRecord(
            position_id=position_id,
            direction=direction,
            entry_price=entry,
            stop_loss=stop,
            take_profit=take_profit,
            volume=volume,
            label=label,
            opened_at=self.current_time(),
            metadata={"initial_stop": stop},
        )
        LOGGER.debug("Simulated fill %s %s %s @ %.5f", position_id, direction.value, volume, entry)
        return OrderResult.success(position_id)

    def modify_stop_loss(self, position_id: str, stop_loss: float) -> OrderResult:
        position = self.positions.get(position_id)
        if position is None:
            return OrderResult.failure(f"unknown position {position_id}")
        position.stop_loss = stop_loss
        return OrderResult.success(position_id)

    def close_position(self, position_id: str) -> OrderResult:
        position = self.positions.get(position_id)
        if position is None:
            return OrderResult.failure(f"unknown position {position_id}")
        bid, ask = self.quote()
        exit_price = bid if position.direction is TradeDirection.LONG else ask
        self._close(position, exit_price, self.current_time(), "TIME_CLOSE")
        return OrderResult.success(position_id)

    def find_open_positions(self, label: str) -> list[PositionRecord]:
        return [position for position in self.positions.values() if position.label == label]

    # ------------------------------------------------------------------
    # accounting
    # ------------------------------------------------------------------
    def position_pnl(self, position: PositionRecord, price: float) -> float:
        pips = position.direction.sign * (price - position.entry_price) / self._symbol.pip_size
        return pips * self._symbol.pip_value * position.volume

    def equity(self) -> float:
        if not self.positions:
            return self.balance
        bid, ask = self.quote()
        unrealized = 0.0
        for position in self.positions.values():
            price = bid if position.direction is TradeDirection.LONG else ask
            unrealized += self.position_pnl(position, price)
        return self.balance + unrealized

    def _check_exit(self, position: PositionRecord, candle: Candle) -> None:
        if position.direction is TradeDirection.LONG:
            low, high = candle.low, candle.high
            stop_hit = position.stop_loss is not None and low <= position.stop_loss
            tp_hit = position.take_profit is not None and high >= position.take_profit
        else:
            low, high = candle.low + self.spread, candle.high + self.spread
            stop_hit = position.stop_loss is not None and high >= position.stop_loss
            tp_hit = position.take_profit is not None and low <= position.take_profit
        if stop_hit:
            self._close(position, float(position.stop_loss), candle.timestamp, "STOP")
        elif tp_hit:
            self._close(position, float(position.take_profit), candle.timestamp, "TAKE_PROFIT")

    def _close(self, position: PositionRecord, exit_price: float, when: datetime, reason: str) -> None:
        pnl = self.position_pnl(position, exit_price)
        equity_before = self.balance
        self.balance += pnl
        self.positions.pop(position.position_id, None)
        self.closed_trades.append(
            ClosedTrade(
                position_id=position.position_id,
                direction=position.direction,
                entry_time=position.opened_at,
                exit_time=when,
                entry_price=position.entry_price,
                exit_price=exit_price,
                initial_stop=position.metadata.get("initial_stop"),
                volume=position.volume,
                pnl=pnl,
                reason=reason,
                equity_before=equity_before,
                equity_after=self.balance,
            )
        )
        LOGGER.debug("Simulated close %s %s @ %.5f pnl=%.2f", position.position_id, reason, exit_price, pnl)
