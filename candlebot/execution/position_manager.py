from __future__ import annotations

import logging
from datetime import datetime

from candlebot.clock import SessionTracker
from candlebot.execution.trailing import TrailingStopController
from candlebot.execution.venue import PositionRecord, Venue, VenueError

LOGGER = logging.getLogger(__name__)


class PositionManager:
    def __init__(
        self,
        *,
        venue: Venue,
        label: str,
        trailing: TrailingStopController | None = None,
    ):
        self.venue = venue
        self.label = label
        self.trailing = trailing

    def get_open_positions(self) -> list[PositionRecord]:
        try:
            return self.venue.find_open_positions(self.label)
        except VenueError as exc:
            LOGGER.warning("Could not list open positions: %s", exc)
            return []

    def close_all(self, now: datetime) -> list[str]:
        positions = self.get_open_positions()
        if not positions:
            return []
        LOGGER.info("Closing %d position(s) at %s", len(positions), now.isoformat())
        closed: list[str] = []
        for position in positions:
            try:
                result = self.venue.close_position(position.position_id)
            except VenueError as exc:
                LOGGER.warning("Close failed for %s: %s", position.position_id, exc)
                continue
            if result.ok:
                closed.append(position.position_id)
            else:
                LOGGER.warning("Close rejected for %s: %s", position.position_id, result.error)
        return closed

    def update_trailing(self, session: SessionTracker) -> int:
        if self.trailing is None:
            return 0
        positions = self.get_open_positions()
        if not positions:
            return 0
        try:
            bid, ask = self.venue.quote()
        except VenueError as exc:
            LOGGER.warning("Trailing skipped, no quote: %s", exc)
            return 0

        moved = 0
        for position in positions:
            state = session.trailing_state(position.position_id)
            was_armed = state.armed
            decision = self.trailing.update(position, bid=bid, ask=ask, state=state)
            if state.armed and not was_armed:
                LOGGER.info(
                    "Trailing armed for %s: profit=%.5f trail=%.5f",
                    position.position_id,
                    decision.profit_distance,
                    state.trail_distance or 0.0,
                )
            if decision.new_stop is None:
                continue
            try:
                result = self.venue.modify_stop_loss(position.position_id, decision.new_stop)
            except VenueError as exc:
                LOGGER.warning("Trailing update failed for %s: %s", position.position_id, exc)
                continue
            if not result.ok:
                LOGGER.warning("Trailing update rejected for %s: %s", position.position_id, result.error)
                continue
            LOGGER.info(
                "Trailing stop %s: %s -> %.5f",
                position.position_id,
                position.stop_loss,
                decision.new_stop,
            )
            moved += 1
        return moved
