from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from candlebot.config import AppConfig
from candlebot.data.candles import Candle
from candlebot.engine import CycleStatus, TradingEngine
from candlebot.execution.venue import (
    AccountSnapshot,
    InsufficientHistoryError,
    OrderResult,
    PositionRecord,
    SymbolInfo,
    VenueError,
)
from candlebot.strategy.signal import TradeDirection

BULLISH = Candle(timestamp=datetime(2026, 3, 10, 0, 0), open=1.0990, high=1.1005, low=1.0985, close=1.1000)
BEARISH = Candle(timestamp=datetime(2026, 3, 10, 0, 0), open=1.1000, high=1.1005, low=1.0985, close=1.0990)
DOJI = Candle(timestamp=datetime(2026, 3, 10, 0, 0), open=1.1000, high=1.1005, low=1.0985, close=1.1000)


class FakeVenue:
    def __init__(self, now: datetime, *, balance: float = 10000.0, completed: list[Candle] | None = None):
        self.now = now
        self.balance = balance
        self.equity: float | None = None
        self.completed = list(completed) if completed is not None else [BULLISH]
        self.trend: dict[int, float] = {}
        self.bid = 1.1000
        self.ask = 1.1001
        self.reject = False
        self.account_error = False
        self.orders: list[dict[str, Any]] = []
        self.positions: dict[str, PositionRecord] = {}
        self.closed: list[str] = []
        self.modified: list[tuple[str, float]] = []
        self._symbol = SymbolInfo(name="EURUSD", pip_size=0.0001, pip_value=0.0001, min_volume=1000, volume_step=1000)

    def current_time(self) -> datetime:
        return self.now

    def bar_count(self) -> int:
        return len(self.completed) + 1

    def get_bar(self, index_from_end: int) -> Candle:
        if index_from_end > len(self.completed):
            raise InsufficientHistoryError("not enough bars")
        return self.completed[-index_from_end]

    def trend_value(self, index_from_end: int, period: int) -> float | None:
        return self.trend.get(index_from_end)

    def quote(self) -> tuple[float, float]:
        return self.bid, self.ask

    def account(self) -> AccountSnapshot:
        if self.account_error:
            raise VenueError("account endpoint down")
        equity = self.balance if self.equity is None else self.equity
        return AccountSnapshot(balance=self.balance, equity=equity)

    def symbol(self) -> SymbolInfo:
        return self._symbol

    def submit_market_order(self, *, direction, volume, label, stop_pips, take_profit_pips) -> OrderResult:
        self.orders.append(
            {
                "direction": direction,
                "volume": volume,
                "label": label,
                "stop_pips": stop_pips,
                "take_profit_pips": take_profit_pips,
            }
        )
        if self.reject:
            return OrderResult.failure("rejected")
        position_id = f"P{len(self.orders)}"
        entry = self.ask if direction is TradeDirection.LONG else self.bid
        sign = direction.sign
        self.positions[position_id] = PositionRecord(
            position_id=position_id,
            direction=direction,
            entry_price=entry,
            stop_loss=entry - sign * stop_pips * 0.0001,
            take_profit=entry + sign * take_profit_pips * 0.0001,
            volume=volume,
            label=label,
            opened_at=self.now,
        )
        return OrderResult.success(position_id)

    def modify_stop_loss(self, position_id: str, stop_loss: float) -> OrderResult:
        self.modified.append((position_id, stop_loss))
        self.positions[position_id].stop_loss = stop_loss
        return OrderResult.success(position_id)

    def close_position(self, position_id: str) -> OrderResult:
        self.positions.pop(position_id)
        self.closed.append(position_id)
        return OrderResult.success(position_id)

    def find_open_positions(self, label: str) -> list[PositionRecord]:
        return [p for p in self.positions.values() if p.label == label]


def _config(**sections: Any) -> AppConfig:
    raw: dict[str, Any] = {"entry": {"mode": "first_candle"}}
    raw.update(sections)
    return AppConfig.model_validate(raw)


def _started(config: AppConfig, venue: FakeVenue) -> TradingEngine:
    engine = TradingEngine(config, venue)
    engine.start()
    return engine


def test_first_candle_long_order_is_sized_and_bracketed() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)

    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()

    assert outcome is not None
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert outcome.direction is TradeDirection.LONG
    assert outcome.volume == 10000.0
    assert outcome.plan.entry_price == 1.1001
    assert outcome.plan.stop_loss == pytest.approx(1.0901)
    assert outcome.plan.take_profit == pytest.approx(1.1401)
    assert len(venue.orders) == 1
    assert venue.orders[0]["label"] == "FirstCandleEA"
    assert venue.orders[0]["stop_pips"] == pytest.approx(100.0)
    assert venue.orders[0]["take_profit_pips"] == pytest.approx(400.0)
    assert engine.session.state.trade_taken_today is True


def test_mid_day_start_waits_for_next_day_and_fires_once() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 14, 0))
    engine = _started(_config(), venue)

    venue.now = datetime(2026, 3, 10, 15, 0)
    assert engine.on_bar() is None
    venue.now = datetime(2026, 3, 11, 0, 0)
    assert engine.on_bar() is None

    venue.now = datetime(2026, 3, 11, 1, 0)
    outcome = engine.on_bar()
    assert outcome is not None
    assert outcome.status is CycleStatus.ORDER_PLACED

    venue.now = datetime(2026, 3, 11, 1, 0, 30)
    assert engine.on_bar() is None
    assert len(venue.orders) == 1


def test_bar_outside_tolerance_runs_no_cycle() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)
    venue.now = datetime(2026, 3, 10, 1, 1, 0)
    assert engine.on_bar() is None
    assert venue.orders == []
    assert engine.session.state.trade_taken_today is False


def test_doji_gives_no_signal_and_consumes_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0), completed=[DOJI])
    engine = _started(_config(), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.NO_SIGNAL
    assert venue.orders == []
    assert engine.session.state.trade_taken_today is True


def test_trend_slope_short_uses_bid_and_minimum_stop() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0), completed=[BULLISH, BULLISH])
    venue.trend = {1: 1.0950, 2: 1.0960}
    engine = _started(_config(entry={"mode": "trend_slope", "ma_period": 200}), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert outcome.direction is TradeDirection.SHORT
    assert outcome.plan.entry_price == 1.1000
    assert outcome.plan.stop_loss == pytest.approx(1.1100)
    assert outcome.plan.take_profit == pytest.approx(1.0600)


def test_missing_trend_history_keeps_day_eligible() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0), completed=[BULLISH, BULLISH])
    engine = _started(_config(entry={"mode": "trend_slope"}), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.INSUFFICIENT_DATA
    assert engine.session.state.trade_taken_today is False

    venue.trend = {1: 1.2, 2: 1.1}
    venue.now = datetime(2026, 3, 10, 1, 0, 30)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert outcome.direction is TradeDirection.LONG


def test_no_completed_bar_is_insufficient_data() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0), completed=[])
    engine = _started(_config(), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.INSUFFICIENT_DATA
    assert "INSUFFICIENT_HISTORY" in outcome.reason_codes


def test_kill_switch_blocks_order_for_the_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)
    venue.balance = 8900.0
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.HALTED
    assert outcome.reason_codes == ["MAX_DRAWDOWN_REACHED"]
    assert venue.orders == []
    assert engine.session.state.trade_taken_today is True


def test_protected_mode_halves_risk() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)
    venue.balance = 9400.0
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert outcome.drawdown.protected is True
    assert outcome.metadata["risk_amount"] == pytest.approx(47.0)
    assert outcome.volume == 4000.0


def test_size_below_minimum_consumes_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(risk={"value": 5, "unit": "fixed_amount"}), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.SIZE_BELOW_MIN
    assert venue.orders == []
    assert engine.session.state.trade_taken_today is True


def test_rejected_order_consumes_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    venue.reject = True
    engine = _started(_config(), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_REJECTED
    assert outcome.metadata["error"] == "rejected"
    assert engine.session.state.trade_taken_today is True

    venue.now = datetime(2026, 3, 10, 1, 0, 30)
    assert engine.on_bar() is None
    assert len(venue.orders) == 1


def test_account_failure_does_not_consume_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)
    venue.account_error = True
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.VENUE_ERROR
    assert engine.session.state.trade_taken_today is False


def test_close_on_tick_runs_once_per_day() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    engine.on_bar()

    venue.now = datetime(2026, 3, 10, 22, 58, 0)
    assert engine.on_tick() == []
    venue.now = datetime(2026, 3, 10, 22, 59, 30)
    assert engine.on_tick() == ["P1"]
    assert engine.session.state.positions_closed_today is True

    venue.now = datetime(2026, 3, 10, 23, 30)
    assert engine.on_tick() == []
    assert venue.closed == ["P1"]


def test_close_disabled_keeps_positions_open() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(timing={"close_at_time": False}), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    engine.on_bar()
    venue.now = datetime(2026, 3, 10, 23, 0)
    assert engine.on_tick() == []
    assert "P1" in venue.positions


def test_trailing_moves_stop_on_bar() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(trailing={"enabled": True, "start_pct": 50, "distance_pct": 25}), venue)
    venue.now = datetime(2026, 3, 10, 1, 0)
    engine.on_bar()

    venue.bid, venue.ask = 1.1260, 1.1261
    venue.now = datetime(2026, 3, 10, 2, 0)
    engine.on_bar()
    assert engine.session.state.trailing_activated is True
    assert venue.modified[0][0] == "P1"
    assert venue.modified[0][1] == pytest.approx(1.1160)

    venue.bid, venue.ask = 1.1200, 1.1201
    venue.now = datetime(2026, 3, 10, 3, 0)
    engine.on_bar()
    assert len(venue.modified) == 1


def test_engine_time_follows_configured_zone() -> None:
    venue = FakeVenue(datetime(2026, 1, 14, 23, 0, tzinfo=timezone.utc))
    engine = _started(_config(timezone="Europe/Warsaw"), venue)
    assert engine.session.state.last_trade_date == datetime(2026, 1, 15).date()

    venue.now = datetime(2026, 1, 15, 0, 0, tzinfo=timezone.utc)
    outcome = engine.on_bar()
    assert outcome is not None
    assert outcome.at.hour == 1


def test_close_before_first_candle_does_not_close_same_day_entry() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    engine = _started(_config(timing={"first_candle_time": "01:00", "close_time": "00:30"}), venue)

    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert venue.closed == []

    venue.now = datetime(2026, 3, 10, 23, 59)
    assert engine.on_tick() == []
    assert "P1" in venue.positions

    venue.now = datetime(2026, 3, 11, 0, 30)
    assert engine.on_bar() is None
    assert venue.closed == ["P1"]


def test_start_survives_account_failure_and_seeds_on_first_cycle() -> None:
    venue = FakeVenue(datetime(2026, 3, 10, 0, 0))
    venue.account_error = True
    engine = _started(_config(), venue)
    assert engine.started is True
    assert engine.drawdown.state.initialized is False

    venue.account_error = False
    venue.now = datetime(2026, 3, 10, 1, 0)
    outcome = engine.on_bar()
    assert outcome.status is CycleStatus.ORDER_PLACED
    assert engine.drawdown.state.initialized is True
    assert engine.drawdown.state.high_watermark == 10000.0
