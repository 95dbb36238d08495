"""
Unit tests for the risk module.

Tests risk budgets, exposure aggregation, position sizing, adjustment
suggestions and the allocator facade.
"""

import pytest

from trade_decision_engine.core.data_types import MarketRegime
from trade_decision_engine.core.exceptions import InvalidConfigError, RiskError, ValidationError
from trade_decision_engine.risk.allocator import (
    OpenPosition,
    PortfolioRiskAllocator,
    SectorExposure,
    calculate_kelly_size,
    calculate_risk_adjusted_size,
    compute_exposure,
    size_position,
    suggest_adjustments,
)
from trade_decision_engine.risk.budget import (
    AGGRESSIVE_RISK_BUDGET,
    CONSERVATIVE_RISK_BUDGET,
    DEFAULT_RISK_BUDGET,
    RiskBudget,
    RiskPreset,
    get_risk_budget,
)

EQUITY = 100_000.0


def position(ticker, risk_dollars, sector="Technology", stop_gap=10.0, **kwargs):
    """Position at 100 whose risk to the stop is ``risk_dollars``."""
    return OpenPosition(
        ticker=ticker,
        quantity=risk_dollars / stop_gap,
        entry_price=100.0,
        current_price=100.0,
        stop_loss=100.0 - stop_gap,
        sector=sector,
        **kwargs,
    )


# ============================================================================
# Budgets
# ============================================================================


class TestRiskBudget:
    """Tests for RiskBudget and presets."""

    def test_default_preset(self):
        budget = DEFAULT_RISK_BUDGET
        assert budget.max_risk_per_trade == 0.01
        assert budget.max_total_risk == 0.06
        assert budget.max_per_sector == 0.02
        assert budget.max_positions_per_sector == 3
        assert budget.max_correlated_risk == 0.03
        assert budget.regime_limit(MarketRegime.BULL) == 0.08
        assert budget.regime_limit("choppy") == 0.05
        assert budget.regime_limit(MarketRegime.CRASH) == 0.02

    def test_presets_ordered(self):
        """Test conservative < default < aggressive on every limit."""
        for field in ("max_risk_per_trade", "max_total_risk", "max_per_sector", "max_correlated_risk"):
            values = [getattr(b, field) for b in (CONSERVATIVE_RISK_BUDGET, DEFAULT_RISK_BUDGET, AGGRESSIVE_RISK_BUDGET)]
            assert values == sorted(values)
        assert CONSERVATIVE_RISK_BUDGET.regime_limit("CRASH") == 0.01
        assert AGGRESSIVE_RISK_BUDGET.regime_limit("BULL") == 0.12

    def test_get_risk_budget(self):
        assert get_risk_budget() is DEFAULT_RISK_BUDGET
        assert get_risk_budget("Conservative") is CONSERVATIVE_RISK_BUDGET
        assert get_risk_budget(RiskPreset.AGGRESSIVE) is AGGRESSIVE_RISK_BUDGET

    def test_unknown_preset(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            get_risk_budget("reckless")
        assert exc_info.value.config_key == "risk.preset"

    def test_regime_keys_parsed(self):
        budget = RiskBudget(
            max_risk_per_trade=0.01,
            max_total_risk=0.05,
            max_per_sector=0.02,
            max_positions_per_sector=2,
            max_correlated_risk=0.03,
            max_per_regime={"bull": 0.05, "choppy": 0.04, "crash": 0.01},
        )
        assert budget.regime_limit(MarketRegime.CHOPPY) == 0.04

    def test_missing_regime(self):
        with pytest.raises(InvalidConfigError):
            RiskBudget(
                max_risk_per_trade=0.01,
                max_total_risk=0.05,
                max_per_sector=0.02,
                max_positions_per_sector=2,
                max_correlated_risk=0.03,
                max_per_regime={"BULL": 0.05},
            )

    def test_fraction_bounds(self):
        with pytest.raises(InvalidConfigError):
            RiskBudget(
                max_risk_per_trade=1.5,
                max_total_risk=0.05,
                max_per_sector=0.02,
                max_positions_per_sector=2,
                max_correlated_risk=0.03,
                max_per_regime={"BULL": 0.05, "CHOPPY": 0.04, "CRASH": 0.01},
            )


# ============================================================================
# Positions and exposure
# ============================================================================


class TestOpenPosition:
    """Tests for OpenPosition."""

    def test_defaults(self):
        """Test current price defaults to entry and stop to 7% below entry."""
        pos = OpenPosition(ticker="aapl", quantity=10, entry_price=200.0)
        assert pos.ticker == "AAPL"
        assert pos.current_price == 200.0
        assert pos.stop_loss == pytest.approx(186.0)
        assert pos.sector == "Unknown"
        assert pos.risk_dollars == pytest.approx(140.0)

    def test_risk_uses_current_price(self):
        pos = OpenPosition(ticker="MSFT", quantity=10, entry_price=100.0, current_price=120.0, stop_loss=110.0)
        assert pos.risk_dollars == pytest.approx(100.0)
        assert not pos.is_stopped

    def test_regime_parsed(self):
        pos = OpenPosition(ticker="X", quantity=1, entry_price=10.0, regime_at_entry="crash")
        assert pos.regime_at_entry == MarketRegime.CRASH

    def test_invalid_quantity(self):
        with pytest.raises(ValueError):
            OpenPosition(ticker="X", quantity=0, entry_price=10.0)


class TestComputeExposure:
    """Tests for compute_exposure."""

    def test_empty_portfolio(self):
        exposure = compute_exposure([], EQUITY, MarketRegime.BULL)
        assert exposure.total_risk == 0.0
        assert exposure.open_positions == 0
        assert exposure.available_risk_budget == pytest.approx(0.06)

    def test_aggregation(self):
        positions = [
            position("AAPL", 1000, correlation_group="mega_tech"),
            position("MSFT", 500, correlation_group="mega_tech", regime_at_entry=MarketRegime.CHOPPY),
            position("XOM", 1500, sector="Energy"),
        ]
        exposure = compute_exposure(positions, EQUITY, "BULL")
        assert exposure.total_risk == pytest.approx(0.03)
        assert exposure.by_sector["Technology"].risk == pytest.approx(0.015)
        assert exposure.by_sector["Technology"].count == 2
        assert exposure.by_sector["Energy"].count == 1
        assert exposure.by_regime[MarketRegime.BULL] == pytest.approx(0.025)
        assert exposure.by_regime[MarketRegime.CHOPPY] == pytest.approx(0.005)
        assert exposure.by_correlation_group == pytest.approx({"mega_tech": 0.015})

    def test_available_uses_tighter_limit(self):
        """Test the regime ceiling binds below the total budget."""
        positions = [position("AAPL", 1000)]
        assert compute_exposure(positions, EQUITY, "BULL").available_risk_budget == pytest.approx(0.05)
        assert compute_exposure(positions, EQUITY, "CHOPPY").available_risk_budget == pytest.approx(0.04)
        assert compute_exposure(positions, EQUITY, "CRASH").available_risk_budget == pytest.approx(0.01)

    def test_available_floored_at_zero(self):
        positions = [position("A", 2000), position("B", 2000, sector="Energy")]
        assert compute_exposure(positions, EQUITY, "CRASH").available_risk_budget == 0.0

    def test_non_positive_equity(self):
        with pytest.raises(ValidationError):
            compute_exposure([], 0.0, "BULL")

    def test_to_dict(self):
        data = compute_exposure([position("AAPL", 1000)], EQUITY, "BULL").to_dict()
        assert data["regime"] == "BULL"
        assert data["by_sector"]["Technology"]["count"] == 1
        assert set(data["by_regime"]) == {"BULL", "CHOPPY", "CRASH"}


# ============================================================================
# Sizing
# ============================================================================


class TestSizePosition:
    """Tests for size_position."""

    def _size(self, positions=(), regime="BULL", entry=50.0, stop=48.0, sector="Technology", equity=EQUITY):
        exposure = compute_exposure(positions, equity, regime)
        return size_position(entry, stop, sector, DEFAULT_RISK_BUDGET, exposure)

    def test_full_size(self):
        decision = self._size()
        assert decision.approved
        assert decision.shares == 500
        assert decision.dollar_risk == pytest.approx(1000.0)
        assert decision.portfolio_risk_fraction == pytest.approx(0.01)
        assert decision.position_value == pytest.approx(25_000.0)
        assert decision.risk_adjustment == 1.0
        assert decision.warnings == []

    def test_large_notional_warning(self):
        decision = self._size(entry=100.0, stop=98.0)
        assert decision.approved
        assert decision.shares == 500
        assert "Position exceeds 25% of portfolio - consider reducing" in decision.warnings

    def test_invalid_stop(self):
        decision = self._size(entry=50.0, stop=50.0)
        assert not decision.approved
        assert decision.shares == 0
        assert decision.rejection_reason == "Invalid stop loss - must be below entry price"

    def test_sector_at_maximum_risk(self):
        positions = [position("AAPL", 1000), position("MSFT", 1000)]
        decision = self._size(positions)
        assert not decision.approved
        assert decision.rejection_reason == "Sector Technology at maximum risk (2.0%)"

    def test_sector_position_count(self):
        positions = [position(t, 10, stop_gap=1.0) for t in ("AAPL", "MSFT", "NVDA")]
        decision = self._size(positions)
        assert not decision.approved
        assert decision.rejection_reason == "Maximum positions in sector Technology (3)"

    def test_sector_concentration_scales_down(self):
        decision = self._size([position("AAPL", 1500)])
        assert decision.approved
        assert decision.risk_adjustment == pytest.approx(0.5)
        assert decision.shares == 250
        assert "Sector concentration reducing size" in decision.warnings

    def test_other_sector_unaffected(self):
        decision = self._size([position("AAPL", 1500)], sector="Healthcare")
        assert decision.shares == 500
        assert decision.warnings == []

    def test_no_sector(self):
        decision = self._size([position("AAPL", 1000), position("MSFT", 1000)], sector=None)
        assert decision.approved
        assert decision.shares == 500

    def test_regime_and_portfolio_scaling(self):
        """Test regime and portfolio scale-downs multiply."""
        decision = self._size([position("XOM", 1500, sector="Energy")], regime="CRASH")
        assert decision.approved
        assert decision.risk_adjustment == pytest.approx(0.25)
        assert decision.shares == 125
        assert decision.warnings[0] == "Regime (CRASH) limits reducing size to 50%"
        assert "Near maximum portfolio risk, reducing size" in decision.warnings

    def test_portfolio_at_capacity(self):
        positions = [position(t, 2000, sector=s) for t, s in (("A", "Energy"), ("B", "Utilities"), ("C", "Materials"))]
        decision = self._size(positions, sector="Healthcare")
        assert not decision.approved
        assert decision.rejection_reason == "Portfolio at maximum risk capacity"

    def test_position_too_small(self):
        decision = self._size(entry=100.0, stop=50.0, equity=1000.0)
        assert not decision.approved
        assert decision.rejection_reason == "Calculated position too small"

    def test_rejection_keeps_scaling_warnings(self):
        """Test warnings gathered before a too-small rejection are kept."""
        decision = self._size([position("AAPL", 1500)], entry=1000.0, stop=1.0)
        assert decision.rejection_reason == "Calculated position too small"
        assert "Sector concentration reducing size" in decision.warnings

    @pytest.mark.parametrize(
        "positions,regime,entry,stop",
        [
            ((), "BULL", 50.0, 48.0),
            ((), "CHOPPY", 37.3, 35.1),
            ((position("AAPL", 1500),), "BULL", 101.7, 99.9),
            ((position("XOM", 1500, sector="Energy"),), "CRASH", 12.34, 11.02),
            ((position("A", 3000, sector="Energy"), position("B", 1700, sector="Utilities")), "CHOPPY", 250.0, 231.0),
        ],
    )
    def test_risk_conservation(self, positions, regime, entry, stop):
        """Test approved risk never exceeds the per-trade budget or headroom."""
        exposure = compute_exposure(positions, EQUITY, regime)
        decision = size_position(entry, stop, "Technology", DEFAULT_RISK_BUDGET, exposure)
        assert decision.dollar_risk <= EQUITY * DEFAULT_RISK_BUDGET.max_risk_per_trade + 1e-9
        assert decision.dollar_risk == pytest.approx(decision.shares * (entry - stop))
        assert decision.portfolio_risk_fraction <= exposure.available_risk_budget + 1e-12
        assert exposure.total_risk + decision.portfolio_risk_fraction <= DEFAULT_RISK_BUDGET.regime_limit(regime) + 1e-12

    def test_to_dict(self):
        data = self._size().to_dict()
        assert data["approved"] is True
        assert data["rejection_reason"] is None


# ============================================================================
# Adjustments
# ============================================================================


class TestSuggestAdjustments:
    """Tests for suggest_adjustments."""

    def test_within_limits(self):
        plan = suggest_adjustments([position("AAPL", 1000)], EQUITY, "BULL")
        assert plan.is_empty

    def test_trims_largest_risk_first(self):
        positions = [
            OpenPosition(ticker="BBB", quantity=100, entry_price=50.0, current_price=50.0, stop_loss=30.0),
            OpenPosition(ticker="AAA", quantity=100, entry_price=100.0, current_price=100.0, stop_loss=70.0),
            OpenPosition(ticker="CCC", quantity=50, entry_price=20.0, current_price=20.0, stop_loss=10.0),
        ]
        plan = suggest_adjustments(positions, EQUITY, MarketRegime.CHOPPY)

        assert plan.recommendations == ["Portfolio 0.5% over risk limit for CHOPPY regime"]
        assert len(plan.trim_positions) == 1
        trim = plan.trim_positions[0]
        assert trim.ticker == "AAA"
        assert trim.current_shares == 100
        assert trim.suggested_trim == 17
        assert plan.close_positions == []

    def test_trim_capped_at_half(self):
        positions = [
            OpenPosition(ticker="AAA", quantity=10, entry_price=100.0, current_price=100.0, stop_loss=50.0),
            OpenPosition(ticker="BBB", quantity=100, entry_price=100.0, current_price=100.0, stop_loss=96.0),
        ]
        # 900 of risk on 20k equity is 4.5% against the 2% CRASH ceiling
        plan = suggest_adjustments(positions, 20_000.0, "CRASH")
        trims = {t.ticker: t.suggested_trim for t in plan.trim_positions}
        assert trims["AAA"] == 5
        assert trims["BBB"] == 50

    def test_close_stopped_positions(self):
        positions = [
            OpenPosition(ticker="AAA", quantity=10, entry_price=100.0, current_price=91.0, stop_loss=92.0),
            OpenPosition(ticker="BBB", quantity=10, entry_price=100.0, current_price=105.0, stop_loss=92.0),
        ]
        plan = suggest_adjustments(positions, EQUITY, "BULL")
        assert [c.ticker for c in plan.close_positions] == ["AAA"]
        assert plan.close_positions[0].reason == "At or below stop loss ($92.00)"

    def test_to_dict(self):
        positions = [OpenPosition(ticker="AAA", quantity=10, entry_price=100.0, current_price=90.0, stop_loss=92.0)]
        data = suggest_adjustments(positions, EQUITY, "BULL").to_dict()
        assert data["close_positions"][0]["ticker"] == "AAA"


# ============================================================================
# Allocator facade and helpers
# ============================================================================


class TestPortfolioRiskAllocator:
    """Tests for PortfolioRiskAllocator."""

    def test_size_position(self):
        allocator = PortfolioRiskAllocator(EQUITY, regime="BULL")
        assert allocator.size_position(50.0, 48.0, "Technology").shares == 500

    def test_default_regime_is_choppy(self):
        assert PortfolioRiskAllocator(EQUITY).regime == MarketRegime.CHOPPY

    def test_non_positive_equity_rejected(self):
        decision = PortfolioRiskAllocator(0.0).size_position(50.0, 48.0)
        assert not decision.approved
        assert decision.rejection_reason == "Equity must be positive"

    def test_update_state(self):
        allocator = PortfolioRiskAllocator(EQUITY, regime="BULL")
        allocator.update_state(50_000.0, [position("AAPL", 500)])
        assert allocator.regime == MarketRegime.BULL
        assert allocator.calculate_exposure().total_risk == pytest.approx(0.01)
        allocator.update_state(50_000.0, [], regime="CRASH")
        assert allocator.regime == MarketRegime.CRASH

    def test_analyze_trade_risk(self):
        allocator = PortfolioRiskAllocator(EQUITY, [position("AAPL", 1000)], regime="CHOPPY")
        analysis = allocator.analyze_trade_risk(50.0, 48.0, "Technology")
        assert analysis.can_enter
        assert analysis.trade_risk == pytest.approx(0.01)
        assert analysis.new_total_risk == pytest.approx(0.02)
        assert analysis.sector_risk == pytest.approx(0.02)
        assert analysis.regime_adjustment == 0.75

    def test_analyze_rejected_trade(self):
        allocator = PortfolioRiskAllocator(EQUITY, regime="CRASH")
        analysis = allocator.analyze_trade_risk(50.0, 51.0)
        assert not analysis.can_enter
        assert analysis.reason == "Invalid stop loss - must be below entry price"
        assert analysis.regime_adjustment == 0.5

    def test_risk_summary(self):
        positions = [
            position("AAPL", 1000, correlation_group="semis"),
            position("NVDA", 700, correlation_group="semis"),
            position("AMD", 1800, sector="Semiconductors", correlation_group="semis"),
        ]
        summary = PortfolioRiskAllocator(EQUITY, positions, regime="CHOPPY").risk_summary()
        assert summary.utilization_percent == pytest.approx(70.0)
        assert summary.risk_capacity == "MODERATE"
        assert "Choppy market - be selective, require higher conviction" in summary.recommendations
        assert "High concentration in Technology - avoid adding" in summary.recommendations
        assert "High concentration in Semiconductors - avoid adding" in summary.recommendations
        assert any(r.startswith("Correlated group semis at 3.5% risk") for r in summary.recommendations)

    def test_risk_capacity_bands(self):
        assert PortfolioRiskAllocator(EQUITY, regime="BULL").risk_summary().risk_capacity == "HIGH"
        crash = PortfolioRiskAllocator(EQUITY, [position("A", 1800, sector="Energy")], regime="CRASH").risk_summary()
        assert crash.risk_capacity == "LOW"
        assert "Consider reducing position sizes or closing trades" in crash.recommendations
        assert "Market in CRASH regime - minimize new positions" in crash.recommendations

    def test_suggest_adjustments(self):
        allocator = PortfolioRiskAllocator(EQUITY, [position("A", 3000, sector="Energy")], regime="CRASH")
        plan = allocator.suggest_adjustments()
        assert plan.trim_positions[0].ticker == "A"


class TestSizingHelpers:
    """Tests for Kelly and probability-adjusted sizing."""

    def test_quarter_kelly(self):
        assert calculate_kelly_size(60.0, 2.0) == pytest.approx(0.1)

    def test_negative_edge_floored(self):
        assert calculate_kelly_size(20.0, 1.0) == 0.0
        assert calculate_kelly_size(60.0, 0.0) == 0.0

    def test_kelly_invalid_win_rate(self):
        with pytest.raises(RiskError):
            calculate_kelly_size(120.0, 2.0)

    def test_risk_adjusted_size(self):
        shares, risk = calculate_risk_adjusted_size(EQUITY, 100.0, 95.0, 0.01, 65.0, "CHOPPY")
        assert shares == 112
        assert risk == pytest.approx(560.0)

    def test_risk_adjusted_size_high_conviction_bull(self):
        shares, risk = calculate_risk_adjusted_size(EQUITY, 100.0, 95.0, 0.01, 75.0, MarketRegime.BULL)
        assert shares == 200
        assert risk == pytest.approx(1000.0)

    def test_risk_adjusted_size_low_conviction_crash(self):
        shares, _ = calculate_risk_adjusted_size(EQUITY, 100.0, 95.0, 0.01, 55.0, "CRASH")
        assert shares == 50

    def test_risk_adjusted_invalid_stop(self):
        assert calculate_risk_adjusted_size(EQUITY, 100.0, 100.0, 0.01, 75.0, "BULL") == (0, 0.0)

    def test_sector_exposure_default(self):
        assert SectorExposure() == SectorExposure(risk=0.0, count=0)
