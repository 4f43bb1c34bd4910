from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from candlebot.execution.venue import AccountSnapshot, SymbolInfo
from candlebot.strategy.drawdown import DrawdownCheck

if TYPE_CHECKING:
    from candlebot.config import RiskConfig


class RiskUnit(str, Enum):
    PERCENT_BALANCE = "percent_balance"
    PERCENT_EQUITY = "percent_equity"
    FIXED_AMOUNT = "fixed_amount"


@dataclass(frozen=True, slots=True)
class RiskBudget:
    base_amount: float
    scale: float
    protected: bool

    @property
    def amount(self) -> float:
        return self.base_amount * self.scale


class RiskEngine:
    def __init__(self, risk: RiskConfig):
        self.risk = risk

    def base_risk_amount(self, snapshot: AccountSnapshot) -> float:
        unit = RiskUnit(self.risk.unit)
        if unit is RiskUnit.PERCENT_BALANCE:
            return snapshot.balance * (self.risk.value / 100.0)
        if unit is RiskUnit.PERCENT_EQUITY:
            return snapshot.equity * (self.risk.value / 100.0)
        if unit is RiskUnit.FIXED_AMOUNT:
            return float(self.risk.value)
        raise ValueError(f"Unknown risk unit: {self.risk.unit}")

    def budget(self, snapshot: AccountSnapshot, check: DrawdownCheck | None = None) -> RiskBudget:
        base = max(0.0, self.base_risk_amount(snapshot))
        if check is None:
            return RiskBudget(base_amount=base, scale=1.0, protected=False)
        return RiskBudget(base_amount=base, scale=check.risk_scale, protected=check.protected)

    def max_volume(self, symbol: SymbolInfo) -> float:
        return float(self.risk.max_lot_size) * symbol.lot_size
