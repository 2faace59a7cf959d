"""Tests for per-factor usability in the prediction context."""

from datetime import timedelta

import pytest

from scoreline.config import FactorWeights, SourceTTLs
from scoreline.features.context import build_prediction_context
from scoreline.features.weights import calculate_effective_weights
from scoreline.health import IntegrationHealthMonitor
from scoreline.models import Factor, Provider, SourceType, match_key, team_key
from scoreline.registry import CapabilityRegistry
from scoreline.snapshots import SnapshotCache

from factories import NOW, elo, form, injuries, lineup, make_match, odds, xg


@pytest.fixture
def cache():
    return SnapshotCache(SourceTTLs())


@pytest.fixture
def monitor(clock):
    return IntegrationHealthMonitor(clock=clock)


@pytest.fixture
def registry():
    return CapabilityRegistry(list(Provider))


def _fill(cache, match, fetched_at=NOW):
    home, away = team_key(match.home.team_id), team_key(match.away.team_id)
    for key in (home, away):
        cache.put(SourceType.FORM, key, form(), fetched_at=fetched_at)
        cache.put(SourceType.EXPECTED_GOALS, key, xg(), fetched_at=fetched_at)
        cache.put(SourceType.ELO, key, elo(), fetched_at=fetched_at)
        cache.put(SourceType.INJURIES, key, injuries(), fetched_at=fetched_at)
    cache.put(SourceType.ODDS, match_key(match.match_id), odds(), fetched_at=fetched_at)


def _build(match, cache, monitor, registry, now=NOW):
    return build_prediction_context(
        match, FactorWeights().as_dict(), cache, monitor, registry, now
    )


class TestAvailability:
    """Test usability rules per factor."""

    def test_everything_fresh(self, cache, monitor, registry):
        match = make_match(1, 10, 20)
        _fill(cache, match)
        context = _build(match, cache, monitor, registry)
        assert all(context.can_use(f) for f in Factor)
        assert calculate_effective_weights(context).data_quality_score == pytest.approx(100.0)

    def test_one_side_stale_kills_symmetric_factor(self, cache, monitor, registry):
        """xG 50h old for the away side only: the whole factor goes."""
        match = make_match(1, 10, 20)
        _fill(cache, match)
        cache.put(
            SourceType.EXPECTED_GOALS, team_key(20), xg(),
            fetched_at=NOW - timedelta(hours=50),
        )
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.EXPECTED_GOALS) is False
        assert "stale" in context.reasons[Factor.EXPECTED_GOALS]

        effective = calculate_effective_weights(context)
        assert effective.get(Factor.EXPECTED_GOALS) == 0.0
        assert effective.total == pytest.approx(1.0)

    def test_home_advantage_always_usable(self, cache, monitor, registry):
        context = _build(make_match(1, 10, 20), cache, monitor, registry)
        assert context.can_use(Factor.HOME_ADVANTAGE) is True
        assert context.can_use(Factor.FORM) is False

    def test_down_provider_unusable_despite_fresh_data(self, cache, monitor, registry):
        match = make_match(1, 10, 20)
        _fill(cache, match)
        for _ in range(5):
            monitor.record_failure(Provider.CLUBELO, "HTTP 503")
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.ELO) is False
        assert context.reasons[Factor.ELO] == "clubelo down"

    def test_disabled_provider_unusable(self, cache, monitor, registry):
        match = make_match(1, 10, 20)
        _fill(cache, match)
        monitor.disable(Provider.FOOTBALL_DATA_UK, disabled_by="ops", reason="licence")
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.ODDS) is False

    def test_provider_not_in_registry(self, cache, monitor):
        match = make_match(1, 10, 20)
        _fill(cache, match)
        registry = CapabilityRegistry([p for p in Provider if p != Provider.UNDERSTAT])
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.EXPECTED_GOALS) is False
        assert context.reasons[Factor.EXPECTED_GOALS] == "understat not enabled"


class TestSquadStrength:
    """Test lineup / injury sources for squad strength."""

    def test_lineup_alone_is_enough(self, cache, monitor, registry):
        match = make_match(1, 10, 20)
        cache.put(
            SourceType.LINEUPS, match_key(1), lineup(),
            fetched_at=NOW, valid_until=match.kickoff_utc,
        )
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.SQUAD_STRENGTH) is True

    def test_injuries_for_one_side_only(self, cache, monitor, registry):
        match = make_match(1, 10, 20)
        cache.put(SourceType.INJURIES, team_key(10), injuries("X"), fetched_at=NOW)
        context = _build(match, cache, monitor, registry)
        assert context.can_use(Factor.SQUAD_STRENGTH) is False

    def test_expired_lineup_falls_back_to_injuries(self, cache, monitor, registry):
        match = make_match(1, 10, 20, kickoff_in=timedelta(minutes=30))
        cache.put(
            SourceType.LINEUPS, match_key(1), lineup(),
            fetched_at=NOW, valid_until=match.kickoff_utc,
        )
        for key in (team_key(10), team_key(20)):
            cache.put(SourceType.INJURIES, key, injuries(), fetched_at=NOW)
        context = _build(match, cache, monitor, registry, now=NOW + timedelta(hours=1))
        assert context.lineup is None
        assert context.can_use(Factor.SQUAD_STRENGTH) is True
