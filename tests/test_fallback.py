"""Tests for the fallback policy."""

import numpy as np
import pytest
from pydantic import ValidationError

from scoreline.config import FallbackParameters, ModelParameters
from scoreline.ml.fallback import FallbackPolicy

from factories import make_match


@pytest.fixture
def policy():
    return FallbackPolicy(FallbackParameters(), ModelParameters())


class TestOutcomeDistribution:
    """Test the home-leaning outcome draw."""

    def test_pick_outcome_boundaries(self, policy):
        assert policy.pick_outcome(0.0) == "home"
        assert policy.pick_outcome(0.4499) == "home"
        assert policy.pick_outcome(0.45) == "draw"
        assert policy.pick_outcome(0.7199) == "draw"
        assert policy.pick_outcome(0.75) == "away"

    def test_frequencies_follow_parameters(self, policy):
        rng = np.random.default_rng(11)
        outcomes = [policy.pick_outcome(v) for v in rng.random(20000)]
        assert outcomes.count("home") / 20000 == pytest.approx(0.45, abs=0.02)
        assert outcomes.count("draw") / 20000 == pytest.approx(0.27, abs=0.02)

    def test_away_probability_derived(self):
        assert FallbackParameters().away_win_probability == pytest.approx(0.28)


class TestPredict:
    """Test the scoreline produced."""

    def test_same_match_same_answer(self, policy):
        match = make_match(77, 1, 2)
        assert policy.predict(match) == policy.predict(match)

    def test_scoreline_matches_outcome(self, policy):
        for match_id in range(1, 50):
            result = policy.predict(make_match(match_id, 1, 2))
            score = (result.predicted_home_score, result.predicted_away_score)
            expected = {"home": (2, 1), "draw": (1, 1), "away": (1, 2)}[result.outcome]
            assert score == expected
            assert (result.expected_home_goals, result.expected_away_goals) == expected

    def test_negative_match_id(self, policy):
        negative = policy.predict(make_match(-7, 1, 2))
        assert negative == policy.predict(make_match(-7, 1, 2))
        assert negative.outcome in ("home", "draw", "away")

    def test_scoreline_capped_by_model_limits(self):
        capped = FallbackPolicy(
            FallbackParameters(home_win_probability=1.0, draw_probability=0.0, home_win_score=(4, 0)),
            ModelParameters(max_home_goals=2),
        )
        result = capped.predict(make_match(1, 1, 2))
        assert (result.predicted_home_score, result.predicted_away_score) == (2, 0)
        assert result.expected_home_goals == 2.0

    def test_injected_generator(self, policy):
        class Always:
            def random(self):
                return 0.99

        result = policy.predict(make_match(1, 1, 2), rng=Always())
        assert result.outcome == "away"


class TestParameters:
    """Test fallback parameter validation."""

    def test_probabilities_over_one_rejected(self):
        with pytest.raises(ValidationError):
            FallbackParameters(home_win_probability=0.8, draw_probability=0.3)

    def test_draw_score_must_be_draw(self):
        with pytest.raises(ValidationError):
            FallbackParameters(draw_score=(2, 1))

    def test_home_win_score_must_be_home_win(self):
        with pytest.raises(ValidationError):
            FallbackParameters(home_win_score=(1, 1))
