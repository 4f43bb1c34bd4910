from __future__ import annotations

import logging
from enum import Enum

from candlebot.data.candles import Candle

LOGGER = logging.getLogger(__name__)


class TradeDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NONE = "NONE"

    @property
    def sign(self) -> int:
        if self is TradeDirection.LONG:
            return 1
        if self is TradeDirection.SHORT:
            return -1
        return 0


class EntryMode(str, Enum):
    FIRST_CANDLE = "first_candle"
    TREND_SLOPE = "trend_slope"
    PRICE_VS_MA = "price_vs_ma"

    @property
    def needs_trend(self) -> bool:
        return self is not EntryMode.FIRST_CANDLE


def candle_direction(candle: Candle) -> TradeDirection:
    if candle.is_bullish:
        return TradeDirection.LONG
    if candle.is_bearish:
        return TradeDirection.SHORT
    return TradeDirection.NONE


def trend_slope_direction(current: float, previous: float) -> TradeDirection:
    slope = current - previous
    if slope > 0:
        return TradeDirection.LONG
    if slope < 0:
        return TradeDirection.SHORT
    return TradeDirection.NONE


def price_vs_ma_direction(close: float, ma_value: float) -> TradeDirection:
    if close > ma_value:
        return TradeDirection.LONG
    if close < ma_value:
        return TradeDirection.SHORT
    return TradeDirection.NONE


def generate_signal(
    mode: EntryMode,
    candle: Candle,
    *,
    trend_current: float | None = None,
    trend_previous: float | None = None,
) -> TradeDirection:
    """Direction for the opening candle under *mode*.

    Comparisons are exact: a doji, a flat trend or a close sitting on the
    average all give ``TradeDirection.NONE``.
    """
    mode = EntryMode(mode)
    if mode is EntryMode.FIRST_CANDLE:
        direction = candle_direction(candle)
        LOGGER.info(
            "First candle is %s",
            {TradeDirection.LONG: "BULLISH", TradeDirection.SHORT: "BEARISH"}.get(direction, "DOJI"),
        )
        return direction

    if mode is EntryMode.TREND_SLOPE:
        if trend_current is None or trend_previous is None:
            raise ValueError("trend_slope mode needs the current and previous trend values")
        LOGGER.info("Trend slope: %.5f -> %.5f", trend_previous, trend_current)
        return trend_slope_direction(trend_current, trend_previous)

    if mode is EntryMode.PRICE_VS_MA:
        if trend_current is None:
            raise ValueError("price_vs_ma mode needs the current trend value")
        LOGGER.info("MA: %.5f, Close: %.5f", trend_current, candle.close)
        return price_vs_ma_direction(candle.close, trend_current)

    raise ValueError(f"Unknown entry mode: {mode}")
