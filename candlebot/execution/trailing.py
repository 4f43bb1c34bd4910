from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from candlebot.execution.venue import PositionRecord
from candlebot.strategy.signal import TradeDirection


@dataclass(slots=True)
class TrailingState:
    armed: bool = False
    trail_distance: float | None = None


class TrailingAction(str, Enum):
    SKIP = "SKIP"
    WAIT = "WAIT"
    ARMED = "ARMED"
    MOVE = "MOVE"
    HOLD = "HOLD"


@dataclass(slots=True)
class TrailingDecision:
    action: TrailingAction
    new_stop: float | None = None
    current_price: float = 0.0
    profit_distance: float = 0.0
    trigger_distance: float = 0.0


def is_better_stop(direction: TradeDirection, candidate: float, current: float | None) -> bool:
    if current is None:
        return True
    if direction is TradeDirection.LONG:
        return candidate > current
    return candidate < current


class TrailingStopController:
    """Arms once profit covers ``start_pct`` of the TP distance, then ratchets.

    The trail distance is fixed at arming time as ``distance_pct`` of the TP
    distance. The stop only ever moves in the position's favour.
    """

    def __init__(self, *, start_pct: float, distance_pct: float):
        if start_pct <= 0 or distance_pct <= 0:
            raise ValueError("start_pct and distance_pct must be > 0")
        self.start_pct = float(start_pct)
        self.distance_pct = float(distance_pct)

    def update(
        self,
        position: PositionRecord,
        *,
        bid: float,
        ask: float,
        state: TrailingState,
    ) -> TrailingDecision:
        if position.take_profit is None or position.direction is TradeDirection.NONE:
            return TrailingDecision(action=TrailingAction.SKIP)

        is_long = position.direction is TradeDirection.LONG
        current_price = bid if is_long else ask
        if is_long:
            profit = current_price - position.entry_price
        else:
            profit = position.entry_price - current_price

        if not state.armed:
            tp_distance = abs(position.take_profit - position.entry_price)
            trigger = tp_distance * self.start_pct / 100.0
            if tp_distance <= 0 or profit < trigger:
                return TrailingDecision(
                    action=TrailingAction.WAIT,
                    current_price=current_price,
                    profit_distance=profit,
                    trigger_distance=trigger,
                )
            state.armed = True
            state.trail_distance = tp_distance * self.distance_pct / 100.0
            action = TrailingAction.ARMED
        else:
            trigger = 0.0
            action = TrailingAction.MOVE

        trail = float(state.trail_distance or 0.0)
        candidate = current_price - trail if is_long else current_price + trail
        if not is_better_stop(position.direction, candidate, position.stop_loss):
            return TrailingDecision(
                action=action if action is TrailingAction.ARMED else TrailingAction.HOLD,
                current_price=current_price,
                profit_distance=profit,
                trigger_distance=trigger,
            )
        return TrailingDecision(
            action=action,
            new_stop=candidate,
            current_price=current_price,
            profit_distance=profit,
            trigger_distance=trigger,
        )
