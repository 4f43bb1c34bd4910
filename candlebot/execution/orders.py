from __future__ import annotations

import logging

from candlebot.execution.venue import OrderResult, SymbolInfo, Venue, VenueError
from candlebot.strategy.bracket import BracketPlan

LOGGER = logging.getLogger(__name__)


class OrderExecutor:
    def __init__(self, *, venue: Venue, label: str):
        self.venue = venue
        self.label = label

    def place_market_order(self, plan: BracketPlan, volume: float, symbol: SymbolInfo) -> OrderResult:
        stop_pips = plan.stop_pips(symbol.pip_size)
        take_profit_pips = plan.take_profit_pips(symbol.pip_size)
        LOGGER.info(
            "Executing %s order | entry=%s sl=%s (%.1f pips) tp=%s (%.1f pips) volume=%s units (%.2f lots)",
            plan.direction.value,
            plan.entry_price,
            plan.stop_loss,
            stop_pips,
            plan.take_profit,
            take_profit_pips,
            volume,
            symbol.lots(volume),
        )
        try:
            result = self.venue.submit_market_order(
                direction=plan.direction,
                volume=volume,
                label=self.label,
                stop_pips=stop_pips,
                take_profit_pips=take_profit_pips,
            )
        except VenueError as exc:
            LOGGER.error("Order submission failed: %s", exc)
            return OrderResult.failure(str(exc))

        if result.ok:
            LOGGER.info("Trade executed successfully - position id=%s", result.position_id)
        else:
            LOGGER.error("Trade execution failed - %s", result.error)
        return result
