"""Per-match prediction context.

A PredictionContext is an immutable view of every snapshot relevant to one
match plus a usability flag per factor. A factor is usable when its
snapshot(s):
- belong to a provider enabled in the capability registry,
- whose integration is operational (not down, not disabled),
- exist in the cache,
- and are fresh (or stale within the configured grace window).

Symmetric factors need both teams to pass. Home advantage needs no feed.

Building a context reads the cache and health monitor only; it never triggers
a fetch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from scoreline.health import IntegrationHealthMonitor
from scoreline.models import (
    SOURCE_PROVIDERS,
    EloRating,
    Factor,
    InjuryReport,
    MatchLineup,
    MatchOdds,
    MatchRef,
    SourceType,
    SuspensionReport,
    TeamForm,
    TeamXg,
    match_key,
    team_key,
)
from scoreline.registry import CapabilityRegistry
from scoreline.snapshots import SnapshotCache
from scoreline.utils.clock import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionContext:
    match: MatchRef
    configured_weights: Mapping[Factor, float]
    availability: Mapping[Factor, bool]
    built_at: datetime
    home_form: Optional[TeamForm] = None
    away_form: Optional[TeamForm] = None
    home_xg: Optional[TeamXg] = None
    away_xg: Optional[TeamXg] = None
    home_elo: Optional[EloRating] = None
    away_elo: Optional[EloRating] = None
    odds: Optional[MatchOdds] = None
    lineup: Optional[MatchLineup] = None
    home_injuries: Optional[InjuryReport] = None
    away_injuries: Optional[InjuryReport] = None
    home_suspensions: Optional[SuspensionReport] = None
    away_suspensions: Optional[SuspensionReport] = None
    # Why a factor is unusable, for diagnostics
    reasons: Mapping[Factor, str] = field(default_factory=dict)

    def can_use(self, factor: Factor) -> bool:
        return bool(self.availability.get(factor, False))

    @property
    def can_use_form(self) -> bool:
        return self.can_use(Factor.FORM)


class _SnapshotReader:
    """Resolves usable payloads for one context build."""

    def __init__(
        self,
        cache: SnapshotCache,
        monitor: IntegrationHealthMonitor,
        registry: CapabilityRegistry,
        now: datetime,
    ):
        self.cache = cache
        self.monitor = monitor
        self.registry = registry
        self.now = now

    def read(self, source_type: SourceType, key: str) -> tuple[Optional[Any], Optional[str]]:
        """Return (payload, None) when usable, else (None, reason)."""
        provider = SOURCE_PROVIDERS[source_type]
        if not self.registry.is_enabled(provider):
            return None, f"{provider.value} not enabled"
        if not self.monitor.is_operational(provider):
            status = self.monitor.get_status(provider)
            if status.disabled:
                return None, f"{provider.value} disabled"
            return None, f"{provider.value} {status.state.value}"
        snapshot, found = self.cache.get(source_type, key)
        if not found:
            return None, f"{source_type.value} missing for {key}"
        if not self.cache.is_within_grace(snapshot, self.now):
            return None, f"{source_type.value} stale for {key}"
        return snapshot.payload, None


def build_prediction_context(
    match: MatchRef,
    configured_weights: Mapping[Factor, float],
    cache: SnapshotCache,
    monitor: IntegrationHealthMonitor,
    registry: CapabilityRegistry,
    now: datetime,
) -> PredictionContext:
    now = ensure_utc(now)
    reader = _SnapshotReader(cache, monitor, registry, now)
    home_key, away_key = team_key(match.home.team_id), team_key(match.away.team_id)

    availability: dict[Factor, bool] = {}
    reasons: dict[Factor, str] = {}

    def pair(source_type: SourceType, factor: Optional[Factor]):
        home, home_reason = reader.read(source_type, home_key)
        away, away_reason = reader.read(source_type, away_key)
        if factor is not None:
            availability[factor] = home is not None and away is not None
            if not availability[factor]:
                reasons[factor] = home_reason or away_reason
        return home, away

    home_form, away_form = pair(SourceType.FORM, Factor.FORM)
    home_xg, away_xg = pair(SourceType.EXPECTED_GOALS, Factor.EXPECTED_GOALS)
    home_elo, away_elo = pair(SourceType.ELO, Factor.ELO)

    odds, odds_reason = reader.read(SourceType.ODDS, match_key(match.match_id))
    availability[Factor.ODDS] = odds is not None
    if odds is None:
        reasons[Factor.ODDS] = odds_reason

    availability[Factor.HOME_ADVANTAGE] = True

    lineup, lineup_reason = reader.read(SourceType.LINEUPS, match_key(match.match_id))
    home_injuries, away_injuries = pair(SourceType.INJURIES, None)
    home_suspensions, away_suspensions = pair(SourceType.SUSPENSIONS, None)

    home_lineup_ok = lineup is not None and bool(lineup.home.starting_xi)
    away_lineup_ok = lineup is not None and bool(lineup.away.starting_xi)
    home_squad = home_lineup_ok or home_injuries is not None
    away_squad = away_lineup_ok or away_injuries is not None
    availability[Factor.SQUAD_STRENGTH] = home_squad and away_squad
    if not availability[Factor.SQUAD_STRENGTH]:
        reasons[Factor.SQUAD_STRENGTH] = lineup_reason or "injury report missing for one side"

    context = PredictionContext(
        match=match,
        configured_weights=dict(configured_weights),
        availability=availability,
        built_at=now,
        home_form=home_form,
        away_form=away_form,
        home_xg=home_xg,
        away_xg=away_xg,
        home_elo=home_elo,
        away_elo=away_elo,
        odds=odds,
        lineup=lineup,
        home_injuries=home_injuries,
        away_injuries=away_injuries,
        home_suspensions=home_suspensions,
        away_suspensions=away_suspensions,
        reasons=reasons,
    )
    if reasons:
        logger.debug(
            f"[CONTEXT] match={match.match_id} unusable: "
            + ", ".join(f"{f.value} ({r})" for f, r in reasons.items())
        )
    return context
