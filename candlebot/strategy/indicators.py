from __future__ import annotations

from enum import Enum


class MovingAverageType(str, Enum):
    SIMPLE = "sma"
    EXPONENTIAL = "ema"


def sma(values: list[float], period: int) -> list[float | None]:
    if period <= 0:
        raise ValueError("period must be > 0")
    output: list[float | None] = [None] * len(values)
    if len(values) < period:
        return output
    window_sum = sum(values[:period])
    output[period - 1] = window_sum / period
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        output[i] = window_sum / period
    return output


def ema(values: list[float], period: int) -> list[float | None]:
    if not values:
        return []
    if period <= 0:
        raise ValueError("period must be > 0")
    output: list[float | None] = [None] * len(values)
    if len(values) < period:
        return output
    seed = sum(values[:period]) / period
    output[period - 1] = seed
    alpha = 2 / (period + 1)
    prev = seed
    for i in range(period, len(values)):
        prev = (values[i] - prev) * alpha + prev
        output[i] = prev
    return output


def moving_average(values: list[float], period: int, ma_type: MovingAverageType = MovingAverageType.SIMPLE) -> list[float | None]:
    if MovingAverageType(ma_type) is MovingAverageType.EXPONENTIAL:
        return ema(values, period)
    return sma(values, period)
