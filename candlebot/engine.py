from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from candlebot.clock import SessionTracker, to_engine_time
from candlebot.config import AppConfig
from candlebot.data.candles import Candle, format_ohlc
from candlebot.execution.orders import OrderExecutor
from candlebot.execution.position_manager import PositionManager
from candlebot.execution.sizing import position_size_from_risk
from candlebot.execution.trailing import TrailingStopController
from candlebot.execution.venue import AccountSnapshot, InsufficientHistoryError, Venue, VenueError
from candlebot.strategy.bracket import BracketPlan, bracket_from_pips
from candlebot.strategy.drawdown import DrawdownCheck, DrawdownGuard
from candlebot.strategy.risk import RiskEngine
from candlebot.strategy.signal import EntryMode, TradeDirection, generate_signal

LOGGER = logging.getLogger(__name__)

VERSION = "1.1.0"


class CycleStatus(str, Enum):
    ORDER_PLACED = "ORDER_PLACED"
    NO_SIGNAL = "NO_SIGNAL"
    HALTED = "HALTED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    SIZE_BELOW_MIN = "SIZE_BELOW_MIN"
    ORDER_REJECTED = "ORDER_REJECTED"
    VENUE_ERROR = "VENUE_ERROR"


@dataclass(slots=True)
class CycleOutcome:
    status: CycleStatus
    at: datetime
    reason_codes: list[str] = field(default_factory=list)
    direction: TradeDirection = TradeDirection.NONE
    plan: BracketPlan | None = None
    volume: float = 0.0
    position_id: str | None = None
    drawdown: DrawdownCheck | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EngineContext:
    """Single-writer state threaded through every decision: session and drawdown."""

    session: SessionTracker
    drawdown: DrawdownGuard

    @classmethod
    def from_config(cls, config: AppConfig) -> "EngineContext":
        return cls(
            session=SessionTracker(
                first_candle_time=config.timing.first_candle,
                close_time=config.timing.close,
                tolerance=timedelta(seconds=config.timing.tolerance_seconds),
            ),
            drawdown=DrawdownGuard(config.drawdown),
        )


class TradingEngine:
    def __init__(
        self,
        config: AppConfig,
        venue: Venue,
        *,
        context: EngineContext | None = None,
    ):
        self.config = config
        self.venue = venue
        self.context = context or EngineContext.from_config(config)
        self.risk_engine = RiskEngine(config.risk)
        self.order_executor = OrderExecutor(venue=venue, label=config.label)
        trailing = None
        if config.trailing.enabled:
            trailing = TrailingStopController(
                start_pct=config.trailing.start_pct,
                distance_pct=config.trailing.distance_pct,
            )
        self.position_manager = PositionManager(venue=venue, label=config.label, trailing=trailing)
        self.started = False

    @property
    def session(self) -> SessionTracker:
        return self.context.session

    @property
    def drawdown(self) -> DrawdownGuard:
        return self.context.drawdown

    def now(self) -> datetime:
        return to_engine_time(self.venue.current_time(), self.config.timezone)

    def start(self) -> None:
        now = self.now()
        if self.session.state.last_trade_date is None:
            self.session.start(now)
        if not self.drawdown.state.initialized:
            try:
                self.drawdown.start(self.venue.account())
            except VenueError as exc:
                LOGGER.error("Account snapshot unavailable at start, drawdown guard seeds on first cycle: %s", exc)
        self._log_banner()
        self.started = True

    def stop(self) -> None:
        LOGGER.info("=== %s stopped ===", self.config.label)
        self.started = False

    def on_bar(self) -> CycleOutcome | None:
        """Handle a newly completed bar. Returns the decision outcome if a cycle ran."""
        now = self.now()
        self.session.on_new_bar(now)
        if self.config.trailing.enabled:
            self.position_manager.update_trailing(self.session)

        outcome: CycleOutcome | None = None
        if self.session.signal_pending(now.time()):
            LOGGER.info("First candle detected at %s", now.isoformat())
            outcome = self.run_decision_cycle(now)
        self._check_close(now)
        return outcome

    def on_tick(self) -> list[str]:
        return self._check_close(self.now())

    def _check_close(self, now: datetime) -> list[str]:
        if not self.config.timing.close_at_time:
            return []
        if self.session.state.positions_closed_today:
            return []
        if not self.session.is_close_due(now.time()):
            return []
        closed = self.position_manager.close_all(now)
        self.session.mark_positions_closed()
        return closed

    def run_decision_cycle(self, now: datetime) -> CycleOutcome:
        try:
            snapshot = self.venue.account()
        except VenueError as exc:
            LOGGER.error("Account snapshot unavailable: %s", exc)
            return CycleOutcome(status=CycleStatus.VENUE_ERROR, at=now, reason_codes=["ACCOUNT_UNAVAILABLE"])

        check = self.drawdown.evaluate(snapshot)
        if check.halted:
            self.session.mark_trade_decided()
            LOGGER.warning(
                "Trading halted: drawdown %.2f%% from %.2f reaches max %.2f%%",
                check.max_drawdown_pct,
                check.max_dd_reference,
                self.config.drawdown.max_drawdown_pct,
            )
            return CycleOutcome(
                status=CycleStatus.HALTED,
                at=now,
                reason_codes=["MAX_DRAWDOWN_REACHED"],
                drawdown=check,
            )

        try:
            candle, trend_current, trend_previous = self._signal_inputs()
        except InsufficientHistoryError as exc:
            LOGGER.error("Not enough bars to process: %s", exc)
            return CycleOutcome(
                status=CycleStatus.INSUFFICIENT_DATA,
                at=now,
                reason_codes=["INSUFFICIENT_HISTORY"],
                drawdown=check,
            )
        except VenueError as exc:
            LOGGER.error("Market data unavailable: %s", exc)
            return CycleOutcome(
                status=CycleStatus.VENUE_ERROR,
                at=now,
                reason_codes=["MARKET_DATA_UNAVAILABLE"],
                drawdown=check,
            )

        self.session.mark_trade_decided()
        LOGGER.info("First candle - %s", format_ohlc(candle))
        direction = generate_signal(
            self.config.entry.mode,
            candle,
            trend_current=trend_current,
            trend_previous=trend_previous,
        )
        if direction is TradeDirection.NONE:
            LOGGER.info("No trade signal")
            return CycleOutcome(status=CycleStatus.NO_SIGNAL, at=now, reason_codes=["NO_SIGNAL"], drawdown=check)
        LOGGER.info("Signal: %s", direction.value)

        try:
            return self._execute(now, direction, candle, snapshot, check)
        except VenueError as exc:
            LOGGER.error("Venue error during execution: %s", exc)
            return CycleOutcome(
                status=CycleStatus.VENUE_ERROR,
                at=now,
                reason_codes=["VENUE_ERROR"],
                direction=direction,
                drawdown=check,
            )

    def _signal_inputs(self) -> tuple[Candle, float | None, float | None]:
        if self.venue.bar_count() < 2:
            raise InsufficientHistoryError("no completed bar available")
        candle = self.venue.get_bar(1)
        mode = EntryMode(self.config.entry.mode)
        if not mode.needs_trend:
            return candle, None, None
        period = self.config.entry.ma_period
        trend_current = self.venue.trend_value(1, period)
        trend_previous = self.venue.trend_value(2, period) if mode is EntryMode.TREND_SLOPE else None
        if trend_current is None or (mode is EntryMode.TREND_SLOPE and trend_previous is None):
            raise InsufficientHistoryError(f"moving average({period}) not yet available")
        return candle, trend_current, trend_previous

    def _execute(
        self,
        now: datetime,
        direction: TradeDirection,
        candle: Candle,
        snapshot: AccountSnapshot,
        check: DrawdownCheck,
    ) -> CycleOutcome:
        symbol = self.venue.symbol()
        bid, ask = self.venue.quote()
        entry_price = bid if direction is TradeDirection.SHORT else ask
        plan = bracket_from_pips(
            direction=direction,
            high=candle.high,
            low=candle.low,
            entry_price=entry_price,
            margin_pips=self.config.bracket.margin_pips,
            min_stop_pips=self.config.bracket.min_stop_pips,
            risk_reward=self.config.bracket.risk_reward,
            pip_size=symbol.pip_size,
        )

        budget = self.risk_engine.budget(snapshot, check)
        sizing = position_size_from_risk(
            risk_amount=budget.amount,
            entry_price=plan.entry_price,
            stop_price=plan.stop_loss,
            pip_size=symbol.pip_size,
            pip_value_per_min_volume=symbol.pip_value_per_min_volume,
            min_volume=symbol.min_volume,
            volume_step=symbol.volume_step,
            max_volume=self.risk_engine.max_volume(symbol),
        )
        LOGGER.info(
            "Position size | risk=%.2f %s (scale %.2f) sl=%.1f pips volume=%s units (%.2f lots)",
            budget.amount,
            snapshot.currency,
            budget.scale,
            sizing.stop_pips,
            sizing.volume,
            symbol.lots(sizing.volume),
        )
        metadata = {
            "risk_amount": budget.amount,
            "risk_scale": budget.scale,
            "stop_pips": sizing.stop_pips,
            "capped": sizing.capped,
        }
        if not sizing.accepted:
            LOGGER.error(
                "Calculated volume %s is below minimum %s",
                sizing.volume,
                symbol.min_volume,
            )
            return CycleOutcome(
                status=CycleStatus.SIZE_BELOW_MIN,
                at=now,
                reason_codes=list(sizing.reason_codes),
                direction=direction,
                plan=plan,
                volume=sizing.volume,
                drawdown=check,
                metadata=metadata,
            )

        result = self.order_executor.place_market_order(plan, sizing.volume, symbol)
        if not result.ok:
            return CycleOutcome(
                status=CycleStatus.ORDER_REJECTED,
                at=now,
                reason_codes=["ORDER_REJECTED"],
                direction=direction,
                plan=plan,
                volume=sizing.volume,
                drawdown=check,
                metadata={**metadata, "error": result.error},
            )
        return CycleOutcome(
            status=CycleStatus.ORDER_PLACED,
            at=now,
            reason_codes=list(sizing.reason_codes),
            direction=direction,
            plan=plan,
            volume=sizing.volume,
            position_id=result.position_id,
            drawdown=check,
            metadata=metadata,
        )

    def _log_banner(self) -> None:
        cfg = self.config
        try:
            symbol_name = self.venue.symbol().name
        except VenueError:
            symbol_name = cfg.symbol.name
        LOGGER.info("=== %s started ===", cfg.label)
        LOGGER.info("Version: %s", VERSION)
        LOGGER.info("Symbol: %s | timezone=%s", symbol_name, cfg.timezone)
        LOGGER.info(
            "First candle time: %s | close time: %s (close at time=%s)",
            cfg.timing.first_candle_time,
            cfg.timing.close_time,
            cfg.timing.close_at_time,
        )
        LOGGER.info("Entry mode: %s | MA period: %d", EntryMode(cfg.entry.mode).value, cfg.entry.ma_period)
        LOGGER.info("Risk: %s %s | max lot size: %s", cfg.risk.value, cfg.risk.unit.value, cfg.risk.max_lot_size)
        LOGGER.info("Min SL: %s pips | margin: %s pips | target RR: %s", cfg.bracket.min_stop_pips, cfg.bracket.margin_pips, cfg.bracket.risk_reward)
        LOGGER.info(
            "Drawdown: base=%s protect>=%.2f%% until<=%.2f%% reduce=%.1f%% max=%.2f%% (%s)",
            cfg.drawdown.base.value,
            cfg.drawdown.start_protect_pct,
            cfg.drawdown.stay_protected_until_pct,
            cfg.drawdown.reduce_risk_by_pct,
            cfg.drawdown.max_drawdown_pct,
            cfg.drawdown.max_drawdown_base.value,
        )
        if cfg.trailing.enabled:
            LOGGER.info("Trailing: start=%.1f%% distance=%.1f%% of TP distance", cfg.trailing.start_pct, cfg.trailing.distance_pct)
