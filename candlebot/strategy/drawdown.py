"""Drawdown protection: watermark bookkeeping, risk hysteresis and kill switch.

Two orthogonal outputs per decision cycle
-----------------------------------------
* **protected** : hysteresis flag. Entered at ``start_protect_pct`` drawdown
  from the high watermark, left only once drawdown is back at or below
  ``stay_protected_until_pct``. While protected the risk budget is scaled by
  ``1 - reduce_risk_by_pct / 100``.
* **halted** : kill switch. Drawdown from the max-drawdown reference at or
  beyond ``max_drawdown_pct`` suppresses the signal for the cycle. It is
  evaluated fresh every cycle and never latches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from candlebot.execution.venue import AccountSnapshot

if TYPE_CHECKING:
    from candlebot.config import DrawdownConfig

LOGGER = logging.getLogger(__name__)


class DrawdownBase(str, Enum):
    BALANCE = "balance"
    EQUITY = "equity"
    STARTING_BALANCE = "starting_balance"


class MaxDrawdownBase(str, Enum):
    DYNAMIC = "dynamic"
    FIXED = "fixed"


@dataclass(slots=True)
class DrawdownState:
    high_watermark: float = 0.0
    max_dd_reference: float = 0.0
    starting_value: float = 0.0
    in_protected_mode: bool = False
    initialized: bool = False


@dataclass(slots=True)
class DrawdownCheck:
    current_value: float
    high_watermark: float
    max_dd_reference: float
    current_drawdown_pct: float
    max_drawdown_pct: float
    protected: bool
    halted: bool
    risk_scale: float
    transition: str | None = None


def drawdown_pct(reference: float, value: float) -> float:
    if reference <= 0:
        return 0.0
    return max(0.0, (reference - value) * 100.0 / reference)


def classify_protection(
    *,
    currently_protected: bool,
    current_drawdown_pct: float,
    start_protect_pct: float,
    stay_protected_until_pct: float,
) -> bool:
    if current_drawdown_pct >= start_protect_pct:
        return True
    if current_drawdown_pct <= stay_protected_until_pct:
        return False
    return currently_protected


class DrawdownGuard:
    def __init__(self, config: DrawdownConfig, state: DrawdownState | None = None):
        self.config = config
        self.state = state or DrawdownState()

    def current_value(self, snapshot: AccountSnapshot) -> float:
        base = DrawdownBase(self.config.base)
        if base is DrawdownBase.EQUITY:
            return float(snapshot.equity)
        return float(snapshot.balance)

    def start(self, snapshot: AccountSnapshot) -> DrawdownState:
        value = self.current_value(snapshot)
        self.state.starting_value = value
        self.state.high_watermark = value
        if MaxDrawdownBase(self.config.max_drawdown_base) is MaxDrawdownBase.FIXED:
            configured = self.config.starting_account_value
            self.state.max_dd_reference = float(configured) if configured is not None else value
        else:
            self.state.max_dd_reference = value
        self.state.in_protected_mode = False
        self.state.initialized = True
        LOGGER.info(
            "Drawdown guard started: base=%s watermark=%.2f max_dd_reference=%.2f",
            DrawdownBase(self.config.base).value,
            self.state.high_watermark,
            self.state.max_dd_reference,
        )
        return self.state

    def risk_scale(self, protected: bool) -> float:
        if not protected:
            return 1.0
        return max(0.0, 1.0 - float(self.config.reduce_risk_by_pct) / 100.0)

    def evaluate(self, snapshot: AccountSnapshot) -> DrawdownCheck:
        if not self.state.initialized:
            self.start(snapshot)
        cfg = self.config
        state = self.state
        value = self.current_value(snapshot)

        if DrawdownBase(cfg.base) is not DrawdownBase.STARTING_BALANCE:
            state.high_watermark = max(state.high_watermark, value)
        if MaxDrawdownBase(cfg.max_drawdown_base) is MaxDrawdownBase.DYNAMIC:
            state.max_dd_reference = max(state.max_dd_reference, state.high_watermark)

        current_dd = drawdown_pct(state.high_watermark, value)
        max_dd = drawdown_pct(state.max_dd_reference, value)
        halted = bool(cfg.max_drawdown_enabled) and max_dd >= cfg.max_drawdown_pct

        previous = state.in_protected_mode
        if cfg.protection_enabled:
            protected = classify_protection(
                currently_protected=previous,
                current_drawdown_pct=current_dd,
                start_protect_pct=cfg.start_protect_pct,
                stay_protected_until_pct=cfg.stay_protected_until_pct,
            )
        else:
            protected = False
        state.in_protected_mode = protected

        transition: str | None = None
        if protected and not previous:
            transition = "ENTER_PROTECTED"
            LOGGER.warning(
                "Entering protected mode: drawdown %.2f%% >= %.2f%%, risk reduced by %.1f%%",
                current_dd,
                cfg.start_protect_pct,
                cfg.reduce_risk_by_pct,
            )
        elif previous and not protected:
            transition = "EXIT_PROTECTED"
            LOGGER.info(
                "Leaving protected mode: drawdown %.2f%% <= %.2f%%",
                current_dd,
                cfg.stay_protected_until_pct,
            )

        return DrawdownCheck(
            current_value=value,
            high_watermark=state.high_watermark,
            max_dd_reference=state.max_dd_reference,
            current_drawdown_pct=current_dd,
            max_drawdown_pct=max_dd,
            protected=protected,
            halted=halted,
            risk_scale=self.risk_scale(protected),
            transition=transition,
        )
