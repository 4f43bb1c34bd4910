from __future__ import annotations

from datetime import datetime, timezone

import pytest

from candlebot.data.candles import Candle
from candlebot.strategy.indicators import MovingAverageType, ema, moving_average, sma
from candlebot.strategy.signal import EntryMode, TradeDirection, generate_signal


def _candle(open_: float, close: float) -> Candle:
    return Candle(
        timestamp=datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc),
        open=open_,
        high=max(open_, close) + 0.0005,
        low=min(open_, close) - 0.0005,
        close=close,
    )


def test_first_candle_mode_follows_candle_colour() -> None:
    assert generate_signal(EntryMode.FIRST_CANDLE, _candle(1.1000, 1.1010)) is TradeDirection.LONG
    assert generate_signal(EntryMode.FIRST_CANDLE, _candle(1.1010, 1.1000)) is TradeDirection.SHORT
    assert generate_signal(EntryMode.FIRST_CANDLE, _candle(1.1000, 1.1000)) is TradeDirection.NONE


def test_trend_slope_mode_ignores_candle_colour() -> None:
    bearish = _candle(1.1010, 1.1000)
    assert generate_signal(EntryMode.TREND_SLOPE, bearish, trend_current=1.2, trend_previous=1.1) is TradeDirection.LONG
    assert generate_signal(EntryMode.TREND_SLOPE, bearish, trend_current=1.1, trend_previous=1.2) is TradeDirection.SHORT
    assert generate_signal(EntryMode.TREND_SLOPE, bearish, trend_current=1.1, trend_previous=1.1) is TradeDirection.NONE


def test_price_vs_ma_mode_compares_close_with_average() -> None:
    candle = _candle(1.1000, 1.1010)
    assert generate_signal("price_vs_ma", candle, trend_current=1.1005) is TradeDirection.LONG
    assert generate_signal("price_vs_ma", candle, trend_current=1.1020) is TradeDirection.SHORT
    assert generate_signal("price_vs_ma", candle, trend_current=1.1010) is TradeDirection.NONE


def test_missing_trend_values_raise() -> None:
    candle = _candle(1.1000, 1.1010)
    with pytest.raises(ValueError):
        generate_signal(EntryMode.TREND_SLOPE, candle, trend_current=1.1)
    with pytest.raises(ValueError):
        generate_signal(EntryMode.PRICE_VS_MA, candle)


def test_direction_sign_and_mode_trend_needs() -> None:
    assert TradeDirection.LONG.sign == 1
    assert TradeDirection.SHORT.sign == -1
    assert TradeDirection.NONE.sign == 0
    assert EntryMode.FIRST_CANDLE.needs_trend is False
    assert EntryMode.TREND_SLOPE.needs_trend is True
    assert EntryMode.PRICE_VS_MA.needs_trend is True


def test_moving_averages() -> None:
    values = [1.0, 2.0, 3.0, 4.0]
    assert sma(values, 2) == [None, 1.5, 2.5, 3.5]
    assert moving_average(values, 2, MovingAverageType.SIMPLE) == sma(values, 2)

    smoothed = ema(values, 2)
    assert smoothed[0] is None
    assert smoothed[1] == pytest.approx(1.5)
    assert smoothed[2] == pytest.approx(1.5 + (3.0 - 1.5) * 2 / 3)
    assert moving_average(values, 2, "ema") == smoothed

    assert sma(values, 5) == [None] * 4
