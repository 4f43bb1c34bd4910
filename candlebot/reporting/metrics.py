from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def max_drawdown(equity_values: Sequence[float]) -> tuple[float, float]:
    """Largest peak-to-trough fall as ``(amount, percent of peak)``."""
    peak: float | None = None
    worst = 0.0
    worst_pct = 0.0
    for value in equity_values:
        if peak is None or value > peak:
            peak = value
        fall = peak - value
        if fall > worst:
            worst = fall
            worst_pct = fall * 100.0 / peak if peak > 0 else 0.0
    return worst, worst_pct


def compute_metrics(trades: Sequence[Mapping[str, Any]], equity: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    pnls = [float(trade["pnl"]) for trade in trades]
    r_values = [float(trade["r_multiple"]) for trade in trades if trade.get("r_multiple") is not None]
    wins = sum(1 for pnl in pnls if pnl > 0)
    gross_profit = sum(pnl for pnl in pnls if pnl > 0)
    gross_loss = sum(pnl for pnl in pnls if pnl < 0)
    equity_values = [float(point["equity"]) for point in equity]
    dd_amount, dd_pct = max_drawdown(equity_values)

    return {
        "trades_count": len(pnls),
        "wins": wins,
        "losses": sum(1 for pnl in pnls if pnl < 0),
        "win_rate_pct": wins * 100.0 / len(pnls) if pnls else 0.0,
        "total_pnl": sum(pnls),
        "profit_factor": gross_profit / abs(gross_loss) if gross_loss < 0 else 0.0,
        "avg_r": sum(r_values) / len(r_values) if r_values else 0.0,
        "equity_end": equity_values[-1] if equity_values else 0.0,
        "max_drawdown": dd_amount,
        "max_drawdown_pct": dd_pct,
    }
