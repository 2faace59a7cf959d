"""
Tests for weight redistribution under partial availability.

Verifies:
1. Usable weights are scaled so the total configured mass is conserved
2. Data quality is 100 only with full availability, 0 with none
3. Prediction gating on form and the quality threshold
4. Degradation warnings list heavy unusable factors only
"""

import random
from datetime import datetime, timezone

import pytest

from scoreline.features.context import PredictionContext
from scoreline.features.weights import (
    can_make_prediction,
    calculate_effective_weights,
    get_degradation_warning,
    redistribute,
    unavailable_factors,
)
from scoreline.models import Factor

from factories import make_match

SCENARIO_WEIGHTS = {
    Factor.FORM: 0.30,
    Factor.EXPECTED_GOALS: 0.30,
    Factor.ODDS: 0.20,
    Factor.HOME_ADVANTAGE: 0.20,
}


def _context(weights, available) -> PredictionContext:
    return PredictionContext(
        match=make_match(1, 10, 20),
        configured_weights=weights,
        availability={f: f in available for f in Factor},
        built_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


class TestRedistribution:
    """Test conservation of configured weight mass."""

    def test_expected_goals_unavailable(self):
        """Losing xG spreads its 0.30 over the remaining factors."""
        availability = {f: f != Factor.EXPECTED_GOALS for f in SCENARIO_WEIGHTS}
        effective = redistribute(SCENARIO_WEIGHTS, availability)

        assert effective.get(Factor.FORM) == pytest.approx(0.4286, abs=1e-4)
        assert effective.get(Factor.ODDS) == pytest.approx(0.2857, abs=1e-4)
        assert effective.get(Factor.HOME_ADVANTAGE) == pytest.approx(0.2857, abs=1e-4)
        assert effective.get(Factor.EXPECTED_GOALS) == 0.0
        assert effective.total == pytest.approx(1.0)
        assert effective.data_quality_score == pytest.approx(70.0)

    def test_conservation_random_configs(self):
        """Sum of effective weights equals configured total whenever anything is usable."""
        rng = random.Random(7)
        factors = list(Factor)
        for _ in range(200):
            configured = {f: rng.choice([0.0, rng.uniform(0.01, 1.0)]) for f in factors}
            availability = {f: rng.random() < 0.6 for f in factors}
            effective = redistribute(configured, availability)

            if effective.total_available > 0:
                assert effective.total == pytest.approx(effective.total_configured)
            else:
                assert effective.total == 0.0
            for factor in factors:
                if not availability[factor]:
                    assert effective.get(factor) == 0.0

    def test_nothing_available_all_zero(self):
        """No usable factor keeps scale 1.0 and zeroes every weight."""
        effective = redistribute(SCENARIO_WEIGHTS, {f: False for f in SCENARIO_WEIGHTS})
        assert effective.scale == 1.0
        assert effective.total == 0.0
        assert effective.data_quality_score == 0.0

    def test_zero_weight_factor_ignored(self):
        """Zero-weight factors count neither as configured nor as available."""
        configured = {Factor.FORM: 0.5, Factor.ELO: 0.0, Factor.ODDS: 0.5}
        effective = redistribute(configured, {Factor.FORM: True, Factor.ELO: True, Factor.ODDS: True})
        assert effective.configured_sources == 2
        assert effective.available_sources == 2
        assert effective.get(Factor.ELO) == 0.0

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            redistribute({Factor.FORM: -0.1}, {Factor.FORM: True})


class TestDataQuality:
    """Test the 100 / 0 equivalences of the quality score."""

    def test_full_availability_is_100(self):
        effective = redistribute(SCENARIO_WEIGHTS, {f: True for f in SCENARIO_WEIGHTS})
        assert effective.data_quality_score == pytest.approx(100.0)

    def test_one_missing_below_100(self):
        availability = {f: True for f in SCENARIO_WEIGHTS}
        availability[Factor.ODDS] = False
        effective = redistribute(SCENARIO_WEIGHTS, availability)
        assert effective.data_quality_score < 100.0

    def test_nothing_configured_is_100(self):
        effective = redistribute({f: 0.0 for f in Factor}, {})
        assert effective.data_quality_score == 100.0


class TestPredictionGate:
    """Test can_make_prediction."""

    def test_form_required(self):
        """Quality 100 is not enough without form."""
        weights = {Factor.HOME_ADVANTAGE: 0.5, Factor.ODDS: 0.5}
        context = _context(weights, {Factor.HOME_ADVANTAGE, Factor.ODDS})
        effective = calculate_effective_weights(context)
        assert effective.data_quality_score == pytest.approx(100.0)
        assert can_make_prediction(context, effective) is False

    def test_threshold_boundary(self):
        """Exactly 50 passes, just below fails."""
        weights = {Factor.FORM: 0.5, Factor.ODDS: 0.5}
        context = _context(weights, {Factor.FORM})
        effective = calculate_effective_weights(context)
        assert effective.data_quality_score == pytest.approx(50.0)
        assert can_make_prediction(context, effective, threshold=50.0) is True
        assert can_make_prediction(context, effective, threshold=50.01) is False


class TestDegradationWarning:
    """Test reporting of unusable factors."""

    def test_names_heavy_missing_factors(self):
        context = _context(SCENARIO_WEIGHTS, {Factor.FORM, Factor.HOME_ADVANTAGE})
        assert unavailable_factors(context) == [Factor.EXPECTED_GOALS, Factor.ODDS]
        assert get_degradation_warning(context) == (
            "Degraded prediction: expected_goals data unavailable, odds data unavailable"
        )

    def test_light_factor_not_reported(self):
        """A factor at exactly 0.10 stays quiet."""
        weights = {Factor.FORM: 0.9, Factor.ELO: 0.10}
        context = _context(weights, {Factor.FORM})
        assert get_degradation_warning(context) is None

    def test_none_when_everything_usable(self):
        context = _context(SCENARIO_WEIGHTS, set(Factor))
        assert get_degradation_warning(context) is None
