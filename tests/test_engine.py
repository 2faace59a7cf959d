"""Tests for the prediction engine (context -> model or fallback)."""

from datetime import timedelta

import pytest

from scoreline.health import IntegrationHealthMonitor
from scoreline.ml.engine import MatchNotFound, PredictionEngine
from scoreline.models import Provider, SourceType, match_key, team_key
from scoreline.reference import InMemoryMatchDirectory
from scoreline.registry import CapabilityRegistry
from scoreline.snapshots import SnapshotCache

from factories import NOW, elo, form, injuries, make_match, odds, xg


@pytest.fixture
def engine_parts(settings, clock):
    match = make_match(1001, 33, 40)
    directory = InMemoryMatchDirectory([match])
    cache = SnapshotCache(settings.TTLS)
    monitor = IntegrationHealthMonitor(clock=clock)
    registry = CapabilityRegistry(list(Provider))
    engine = PredictionEngine(settings, cache, monitor, registry, directory, clock=clock)
    return engine, cache, monitor, match


def _fill(cache, match, fetched_at=NOW):
    for team in (match.home, match.away):
        key = team_key(team.team_id)
        cache.put(SourceType.FORM, key, form(), fetched_at=fetched_at)
        cache.put(SourceType.EXPECTED_GOALS, key, xg(), fetched_at=fetched_at)
        cache.put(SourceType.ELO, key, elo(), fetched_at=fetched_at)
        cache.put(SourceType.INJURIES, key, injuries(), fetched_at=fetched_at)
    cache.put(SourceType.ODDS, match_key(match.match_id), odds(), fetched_at=fetched_at)


class TestPredictScores:
    """Test end-to-end prediction from cached snapshots."""

    def test_full_data_uses_model(self, engine_parts):
        engine, cache, _, match = engine_parts
        _fill(cache, match)
        result = engine.predict_scores(match.match_id)
        assert result.used_fallback is False
        assert result.data_quality_score == pytest.approx(100.0)
        assert result.degradation_warning is None
        assert 0 <= result.predicted_home_score <= 6
        assert 0 <= result.predicted_away_score <= 5

    def test_empty_cache_falls_back(self, engine_parts):
        engine, _, _, match = engine_parts
        result = engine.predict_scores(match.match_id)
        assert result.used_fallback is True
        assert result.data_quality_score == pytest.approx(10.0)  # home advantage only
        assert "form data unavailable" in result.degradation_warning

    def test_form_provider_down_falls_back(self, engine_parts):
        """High quality does not help when form is unusable."""
        engine, cache, monitor, match = engine_parts
        _fill(cache, match)
        for _ in range(5):
            monitor.record_failure(Provider.FOOTBALL_DATA, "HTTP 503")
        result = engine.predict_scores(match.match_id)
        assert result.used_fallback is True
        assert result.data_quality_score == pytest.approx(75.0)

    def test_partial_data_reports_degradation(self, engine_parts):
        engine, cache, _, match = engine_parts
        _fill(cache, match)
        cache.put(
            SourceType.ODDS, match_key(match.match_id), odds(),
            fetched_at=NOW - timedelta(days=8),
        )
        result = engine.predict_scores(match.match_id)
        assert result.used_fallback is False
        assert result.data_quality_score == pytest.approx(80.0)
        assert result.degradation_warning == "Degraded prediction: odds data unavailable"
        assert result.effective_weights.total == pytest.approx(1.0)

    def test_unknown_match(self, engine_parts):
        engine = engine_parts[0]
        with pytest.raises(MatchNotFound):
            engine.predict_scores(999)

    def test_result_serializes(self, engine_parts):
        engine, cache, _, match = engine_parts
        _fill(cache, match)
        payload = engine.predict_scores(match.match_id).to_dict()
        assert payload["match_id"] == 1001
        assert payload["effective_weights"]["weights"]["form"] == pytest.approx(0.25)
        assert payload["predicted_at"] == NOW.isoformat()
