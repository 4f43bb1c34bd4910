from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from candlebot.config import AppConfig
from candlebot.data.candles import Candle
from candlebot.engine import CycleOutcome, TradingEngine
from candlebot.execution.simulated import ClosedTrade, SimulatedVenue
from candlebot.execution.sizing import r_multiple
from candlebot.execution.venue import SymbolInfo
from candlebot.reporting.metrics import compute_metrics

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BacktestReport:
    symbol: str
    bars: int
    trades: list[dict[str, Any]] = field(default_factory=list)
    equity_curve: list[dict[str, Any]] = field(default_factory=list)
    outcomes: list[dict[str, Any]] = field(default_factory=list)
    outcome_counts: dict[str, int] = field(default_factory=dict)
    open_positions: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bars": self.bars,
            "trades": list(self.trades),
            "outcomes": list(self.outcomes),
            "outcome_counts": dict(self.outcome_counts),
            "open_positions": self.open_positions,
            "metrics": dict(self.metrics),
        }


def symbol_from_config(config: AppConfig) -> SymbolInfo:
    cfg = config.symbol
    return SymbolInfo(
        name=cfg.name,
        pip_size=cfg.pip_size,
        pip_value=cfg.pip_value,
        min_volume=cfg.min_volume,
        volume_step=cfg.volume_step,
        lot_size=cfg.lot_size,
    )


def _trade_row(trade: ClosedTrade) -> dict[str, Any]:
    r_value = None
    if trade.initial_stop is not None:
        r_value = r_multiple(trade.direction.sign, trade.entry_price, trade.initial_stop, trade.exit_price)
    return {
        "position_id": trade.position_id,
        "side": trade.direction.value,
        "entry_time": trade.entry_time.isoformat(),
        "exit_time": trade.exit_time.isoformat(),
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "volume": trade.volume,
        "pnl": trade.pnl,
        "r_multiple": r_value,
        "reason": trade.reason,
        "equity_before": trade.equity_before,
        "equity_after": trade.equity_after,
    }


def _outcome_row(outcome: CycleOutcome) -> dict[str, Any]:
    return {
        "ts": outcome.at.isoformat(),
        "status": outcome.status.value,
        "direction": outcome.direction.value,
        "volume": outcome.volume,
        "reason_codes": list(outcome.reason_codes),
    }


def run_backtest(config: AppConfig, candles: list[Candle]) -> BacktestReport:
    symbol = symbol_from_config(config)
    report = BacktestReport(symbol=symbol.name, bars=len(candles))
    if len(candles) < 2:
        LOGGER.warning("Backtest needs at least two candles, got %d", len(candles))
        return report

    venue = SimulatedVenue(
        candles,
        symbol=symbol,
        initial_balance=config.backtest.initial_balance,
        currency=config.backtest.currency,
        spread=config.backtest.spread_pips * symbol.pip_size,
        ma_type=config.entry.ma_type,
    )
    engine = TradingEngine(config, venue)
    engine.start()

    outcomes: list[CycleOutcome] = []
    equity_curve: list[dict[str, Any]] = [
        {"ts": venue.current_time().isoformat(), "equity": venue.equity(), "balance": venue.balance}
    ]
    while venue.has_next():
        venue.step()
        outcome = engine.on_bar()
        engine.on_tick()
        if outcome is not None:
            outcomes.append(outcome)
        equity_curve.append(
            {"ts": venue.current_time().isoformat(), "equity": venue.equity(), "balance": venue.balance}
        )
    engine.stop()

    report.trades = [_trade_row(trade) for trade in venue.closed_trades]
    report.equity_curve = equity_curve
    report.outcomes = [_outcome_row(outcome) for outcome in outcomes]
    report.outcome_counts = dict(Counter(outcome.status.value for outcome in outcomes))
    report.open_positions = len(venue.positions)
    report.metrics = compute_metrics(report.trades, equity_curve)
    LOGGER.info(
        "Backtest done | bars=%d trades=%d pnl=%.2f max_dd=%.2f%%",
        report.bars,
        report.metrics["trades_count"],
        report.metrics["total_pnl"],
        report.metrics["max_drawdown_pct"],
    )
    return report
