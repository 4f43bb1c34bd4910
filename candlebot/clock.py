from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from candlebot.execution.trailing import TrailingState

LOGGER = logging.getLogger(__name__)

SERVER_TIMEZONE = "server"
DEFAULT_TOLERANCE = timedelta(minutes=1)


def _get_zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(
            f"Timezone '{timezone_name}' is not available. "
            "Install tzdata in your environment: pip install tzdata"
        ) from exc


def to_engine_time(dt: datetime, timezone_name: str = SERVER_TIMEZONE) -> datetime:
    """Express a venue timestamp in the configured engine time zone.

    ``"server"`` keeps venue time untouched. Any other value is an IANA zone
    name; naive timestamps are taken as UTC before conversion.
    """
    if timezone_name.strip().lower() == SERVER_TIMEZONE:
        return dt
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_get_zone(timezone_name))


def parse_hhmm(raw: str) -> time:
    item = str(raw).strip()
    parts = item.split(":")
    if len(parts) != 2 or not all(part.strip().isdigit() for part in parts):
        raise ValueError(f"Invalid time '{raw}'. Use HH:MM")
    hh = int(parts[0])
    mm = int(parts[1])
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"Invalid time '{raw}'. Use HH:MM")
    return time(hour=hh, minute=mm)


def seconds_of_day(value: time) -> float:
    return value.hour * 3600 + value.minute * 60 + value.second + value.microsecond / 1_000_000


def within_tolerance(time_of_day: time, target: time, tolerance: timedelta = DEFAULT_TOLERANCE) -> bool:
    # strict on both sides, no wrap across midnight
    delta = abs(seconds_of_day(time_of_day) - seconds_of_day(target))
    return delta < tolerance.total_seconds()


@dataclass(slots=True)
class SessionState:
    last_trade_date: date | None = None
    trade_taken_today: bool = False
    positions_closed_today: bool = False
    trailing: dict[str, TrailingState] = field(default_factory=dict)

    @property
    def trailing_activated(self) -> bool:
        return any(state.armed for state in self.trailing.values())


class SessionTracker:
    """Owns the per-day flags: signal decided, positions closed, trailing state."""

    def __init__(
        self,
        *,
        first_candle_time: time,
        close_time: time,
        tolerance: timedelta = DEFAULT_TOLERANCE,
        state: SessionState | None = None,
    ):
        self.first_candle_time = first_candle_time
        self.close_time = close_time
        self.tolerance = tolerance
        self.state = state or SessionState()

    def start(self, now: datetime) -> bool:
        """Seed the session at engine start. Returns True for a mid-day start.

        A start at or after the opening of today's signal window cannot have
        observed the session cleanly, so today's trade is suppressed.
        """
        window_open = seconds_of_day(self.first_candle_time) - self.tolerance.total_seconds()
        mid_day = seconds_of_day(now.time()) >= window_open
        self.state.last_trade_date = now.date()
        if mid_day:
            self.state.trade_taken_today = True
            LOGGER.info(
                "Mid-day start at %s: no trade until next trading day",
                now.strftime("%Y-%m-%d %H:%M"),
            )
        return mid_day

    def on_new_bar(self, now: datetime) -> bool:
        current = now.date()
        last = self.state.last_trade_date
        if last is not None and current <= last:
            return False
        self.state.trade_taken_today = False
        self.state.positions_closed_today = False
        self.state.trailing.clear()
        self.state.last_trade_date = current
        LOGGER.info("New trading day: %s", current.isoformat())
        return True

    def is_signal_window(self, time_of_day: time) -> bool:
        return within_tolerance(time_of_day, self.first_candle_time, self.tolerance)

    def is_close_window(self, time_of_day: time) -> bool:
        return within_tolerance(time_of_day, self.close_time, self.tolerance)

    def is_close_due(self, time_of_day: time) -> bool:
        if self.is_close_window(time_of_day):
            return True
        # at-or-past only holds when the close comes after the first candle
        if self.close_time <= self.first_candle_time:
            return False
        return time_of_day >= self.close_time

    def signal_pending(self, time_of_day: time) -> bool:
        return self.is_signal_window(time_of_day) and not self.state.trade_taken_today

    def mark_trade_decided(self) -> None:
        self.state.trade_taken_today = True

    def mark_positions_closed(self) -> None:
        self.state.positions_closed_today = True

    def trailing_state(self, position_id: str) -> TrailingState:
        state = self.state.trailing.get(position_id)
        if state is None:
            state = TrailingState()
            self.state.trailing[position_id] = state
        return state
