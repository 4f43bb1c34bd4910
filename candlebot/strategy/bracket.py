from __future__ import annotations

from dataclasses import dataclass

from candlebot.strategy.signal import TradeDirection


@dataclass(frozen=True, slots=True)
class BracketPlan:
    direction: TradeDirection
    entry_price: float
    stop_loss: float
    take_profit: float

    @property
    def stop_distance(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    @property
    def take_profit_distance(self) -> float:
        return abs(self.take_profit - self.entry_price)

    def stop_pips(self, pip_size: float) -> float:
        return self.stop_distance / pip_size

    def take_profit_pips(self, pip_size: float) -> float:
        return self.take_profit_distance / pip_size


def compute_bracket(
    *,
    direction: TradeDirection,
    high: float,
    low: float,
    entry_price: float,
    margin: float,
    min_stop_distance: float,
    risk_reward: float,
) -> BracketPlan:
    """Stop beyond the candle extreme plus margin, never tighter than the floor.

    All distances are in price units. Take-profit sits ``risk_reward`` stop
    distances away on the profitable side.
    """
    if margin < 0:
        raise ValueError("margin must be >= 0")
    if min_stop_distance <= 0:
        raise ValueError("min_stop_distance must be > 0")
    if risk_reward <= 0:
        raise ValueError("risk_reward must be > 0")

    if direction is TradeDirection.SHORT:
        stop_loss = max(high + margin, entry_price + min_stop_distance)
        take_profit = entry_price - (stop_loss - entry_price) * risk_reward
    elif direction is TradeDirection.LONG:
        stop_loss = min(low - margin, entry_price - min_stop_distance)
        take_profit = entry_price + (entry_price - stop_loss) * risk_reward
    else:
        raise ValueError("Cannot bracket a trade without direction")

    return BracketPlan(
        direction=direction,
        entry_price=entry_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
    )


def bracket_from_pips(
    *,
    direction: TradeDirection,
    high: float,
    low: float,
    entry_price: float,
    margin_pips: float,
    min_stop_pips: float,
    risk_reward: float,
    pip_size: float,
) -> BracketPlan:
    if pip_size <= 0:
        raise ValueError("pip_size must be > 0")
    return compute_bracket(
        direction=direction,
        high=high,
        low=low,
        entry_price=entry_price,
        margin=margin_pips * pip_size,
        min_stop_distance=min_stop_pips * pip_size,
        risk_reward=risk_reward,
    )
