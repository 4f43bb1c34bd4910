"""Risk-based position sizing in venue volume units.

The risk incurred by one minimum-volume unit over the stop distance is the
denominator; the resulting multiple is scaled back by the minimum volume so
instruments with coarse volume granularity size consistently.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

_STEP_EPSILON = 1e-9


def floor_to_step(value: float, step: float) -> float:
    if step <= 0:
        raise ValueError("step must be > 0")
    return math.floor(value / step + _STEP_EPSILON) * step


@dataclass(slots=True)
class SizingResult:
    volume: float
    accepted: bool
    risk_amount: float
    stop_pips: float
    risk_per_min_volume: float
    capped: bool = False
    reason_codes: list[str] = field(default_factory=list)


def position_size_from_risk(
    *,
    risk_amount: float,
    entry_price: float,
    stop_price: float,
    pip_size: float,
    pip_value_per_min_volume: float,
    min_volume: float,
    volume_step: float,
    max_volume: float,
) -> SizingResult:
    if pip_size <= 0:
        raise ValueError("pip_size must be > 0")
    if min_volume <= 0:
        raise ValueError("min_volume must be > 0")

    stop_pips = abs(entry_price - stop_price) / pip_size
    risk_per_min_volume = stop_pips * pip_value_per_min_volume
    if stop_pips <= 0 or risk_per_min_volume <= 0 or risk_amount <= 0:
        return SizingResult(
            volume=0.0,
            accepted=False,
            risk_amount=max(0.0, risk_amount),
            stop_pips=stop_pips,
            risk_per_min_volume=risk_per_min_volume,
            reason_codes=["SIZE_BELOW_MIN"],
        )

    raw = risk_amount / risk_per_min_volume * min_volume
    capped = False
    if max_volume > 0 and raw > max_volume:
        raw = max_volume
        capped = True
    volume = round(floor_to_step(raw, volume_step), 8)

    reasons: list[str] = []
    if capped:
        reasons.append("MAX_LOT_CAP")
    accepted = volume >= min_volume
    if not accepted:
        reasons.append("SIZE_BELOW_MIN")
    return SizingResult(
        volume=volume,
        accepted=accepted,
        risk_amount=risk_amount,
        stop_pips=stop_pips,
        risk_per_min_volume=risk_per_min_volume,
        capped=capped,
        reason_codes=reasons,
    )


def r_multiple(direction_sign: int, entry_price: float, stop_price: float, current_price: float) -> float:
    risk = abs(entry_price - stop_price)
    if risk == 0:
        return 0.0
    return direction_sign * (current_price - entry_price) / risk
