from __future__ import annotations

import pytest

from candlebot.config import DrawdownConfig
from candlebot.execution.venue import AccountSnapshot
from candlebot.strategy.drawdown import DrawdownGuard, classify_protection, drawdown_pct


def _snap(balance: float, equity: float | None = None) -> AccountSnapshot:
    return AccountSnapshot(balance=balance, equity=balance if equity is None else equity)


def _guard(**overrides) -> DrawdownGuard:
    guard = DrawdownGuard(DrawdownConfig(**overrides))
    guard.start(_snap(10000.0))
    return guard


def test_drawdown_pct_is_clamped() -> None:
    assert drawdown_pct(10000.0, 9400.0) == pytest.approx(6.0)
    assert drawdown_pct(10000.0, 10500.0) == 0.0
    assert drawdown_pct(0.0, 100.0) == 0.0


def test_classify_protection_band() -> None:
    kwargs = dict(start_protect_pct=5.0, stay_protected_until_pct=2.0)
    assert classify_protection(currently_protected=False, current_drawdown_pct=5.0, **kwargs) is True
    assert classify_protection(currently_protected=True, current_drawdown_pct=3.0, **kwargs) is True
    assert classify_protection(currently_protected=False, current_drawdown_pct=3.0, **kwargs) is False
    assert classify_protection(currently_protected=True, current_drawdown_pct=2.0, **kwargs) is False


class TestHysteresis:
    def test_enter_hold_exit_sequence(self) -> None:
        guard = _guard()

        check = guard.evaluate(_snap(9400.0))
        assert check.current_drawdown_pct == pytest.approx(6.0)
        assert check.protected is True
        assert check.risk_scale == pytest.approx(0.5)
        assert check.transition == "ENTER_PROTECTED"
        assert check.halted is False

        check = guard.evaluate(_snap(9700.0))
        assert check.protected is True
        assert check.transition is None

        check = guard.evaluate(_snap(9850.0))
        assert check.protected is False
        assert check.risk_scale == 1.0
        assert check.transition == "EXIT_PROTECTED"

        check = guard.evaluate(_snap(9700.0))
        assert check.protected is False
        assert check.transition is None

    def test_protection_disabled_never_scales_risk(self) -> None:
        guard = _guard(protection_enabled=False)
        check = guard.evaluate(_snap(9000.0))
        assert check.protected is False
        assert check.risk_scale == 1.0
        assert check.halted is True

    def test_equity_base_reads_equity(self) -> None:
        guard = _guard(base="equity")
        check = guard.evaluate(_snap(10000.0, equity=9400.0))
        assert check.current_value == 9400.0
        assert check.protected is True


class TestWatermark:
    def test_watermark_only_rises(self) -> None:
        guard = _guard()
        seen = []
        for balance in (10500.0, 10200.0, 10800.0, 9000.0, 10100.0):
            seen.append(guard.evaluate(_snap(balance)).high_watermark)
        assert seen == [10500.0, 10500.0, 10800.0, 10800.0, 10800.0]
        assert all(b >= a for a, b in zip(seen, seen[1:]))

    def test_dynamic_reference_follows_watermark(self) -> None:
        guard = _guard()
        guard.evaluate(_snap(12000.0))
        check = guard.evaluate(_snap(10800.0))
        assert check.max_dd_reference == 12000.0
        assert check.max_drawdown_pct == pytest.approx(10.0)
        assert check.halted is True

    def test_starting_balance_base_keeps_fixed_watermark(self) -> None:
        guard = _guard(base="starting_balance")
        check = guard.evaluate(_snap(11000.0))
        assert check.high_watermark == 10000.0
        assert check.current_drawdown_pct == 0.0

        check = guard.evaluate(_snap(9400.0))
        assert check.high_watermark == 10000.0
        assert check.protected is True


class TestKillSwitch:
    def test_fixed_reference_halts_at_threshold(self) -> None:
        guard = _guard(
            max_drawdown_base="fixed",
            starting_account_value=10000.0,
            max_drawdown_pct=9.0,
        )
        check = guard.evaluate(_snap(9100.0))
        assert check.max_drawdown_pct == pytest.approx(9.0)
        assert check.halted is True

    def test_fixed_reference_ignores_new_highs(self) -> None:
        guard = _guard(max_drawdown_base="fixed")
        guard.evaluate(_snap(12000.0))
        check = guard.evaluate(_snap(9500.0))
        assert check.max_dd_reference == 10000.0
        assert check.max_drawdown_pct == pytest.approx(5.0)
        assert check.halted is False
        assert check.current_drawdown_pct == pytest.approx(2500.0 * 100.0 / 12000.0)

    def test_halt_is_not_sticky(self) -> None:
        guard = _guard()
        assert guard.evaluate(_snap(8900.0)).halted is True
        assert guard.evaluate(_snap(9500.0)).halted is False

    def test_kill_switch_can_be_disabled(self) -> None:
        guard = _guard(max_drawdown_enabled=False)
        assert guard.evaluate(_snap(5000.0)).halted is False


def test_evaluate_starts_guard_lazily() -> None:
    guard = DrawdownGuard(DrawdownConfig())
    check = guard.evaluate(_snap(8000.0))
    assert guard.state.initialized is True
    assert check.high_watermark == 8000.0
    assert check.current_drawdown_pct == 0.0
