"""Service facade: wires the engine's components from Settings.

    service = build_service(settings, directory)
    service.scheduler.start()
    result = service.predict_scores(1001)
    status = service.get_integration_status(Provider.API_FOOTBALL)
    await service.force_refresh(Provider.API_FOOTBALL, "match:1001")
    await service.close()
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

import numpy as np

from scoreline.config import Settings
from scoreline.etl.api_football import (
    ApiFootballInjuriesFetcher,
    ApiFootballLineupsFetcher,
    ApiFootballSuspensionsFetcher,
)
from scoreline.etl.base import FeedFetcher
from scoreline.etl.clubelo_provider import ClubEloFetcher
from scoreline.etl.football_data import FootballDataFormFetcher
from scoreline.etl.http import HttpFeedFetcher
from scoreline.etl.odds_provider import FootballDataUkOddsFetcher
from scoreline.etl.rate_limiter import SlidingWindowRateLimiter
from scoreline.etl.understat_provider import UnderstatXgFetcher
from scoreline.health import IntegrationHealthMonitor
from scoreline.ml.engine import PredictionEngine, PredictionResult
from scoreline.models import Provider, sources_for_provider
from scoreline.quota import QuotaBudgetManager
from scoreline.reference import MatchDirectory
from scoreline.registry import CapabilityRegistry
from scoreline.scheduler import AcquisitionScheduler
from scoreline.snapshots import SnapshotCache
from scoreline.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


def build_default_fetchers(settings: Settings) -> list[FeedFetcher]:
    """One HTTP fetcher per feed of every enabled provider.

    Feeds of one provider share a rate limiter so the per-minute limit
    applies to the provider, not to each feed.
    """
    enabled = set(settings.ENABLED_PROVIDERS)
    http = {
        "timeout": settings.HTTP_TIMEOUT_SECONDS,
        "retry_delay_base": settings.HTTP_RETRY_DELAY_BASE,
    }

    def limiter(provider: Provider) -> SlidingWindowRateLimiter:
        return SlidingWindowRateLimiter(
            max_requests=settings.quota_for(provider).requests_per_minute,
            window_seconds=60.0,
            name=provider.value,
        )

    fetchers: list[FeedFetcher] = []

    if Provider.API_FOOTBALL in enabled:
        if not settings.API_FOOTBALL_KEY:
            logger.warning("API_FOOTBALL_KEY not set; API-Football calls will fail")
        shared = limiter(Provider.API_FOOTBALL)
        for cls in (ApiFootballLineupsFetcher, ApiFootballInjuriesFetcher, ApiFootballSuspensionsFetcher):
            # Retries stay off: every retry is another request against the daily plan
            fetchers.append(cls(
                api_key=settings.API_FOOTBALL_KEY,
                host=settings.API_FOOTBALL_HOST,
                rate_limiter=shared,
                max_retries=0,
                **http,
            ))

    if Provider.FOOTBALL_DATA in enabled:
        fetchers.append(FootballDataFormFetcher(
            token=settings.FOOTBALL_DATA_TOKEN,
            window=settings.FORM_WINDOW,
            rate_limiter=limiter(Provider.FOOTBALL_DATA),
            max_retries=settings.HTTP_MAX_RETRIES,
            **http,
        ))

    if Provider.UNDERSTAT in enabled:
        fetchers.append(UnderstatXgFetcher(
            window=settings.XG_WINDOW,
            rate_limiter=limiter(Provider.UNDERSTAT),
            max_retries=settings.HTTP_MAX_RETRIES,
            **http,
        ))

    if Provider.CLUBELO in enabled:
        fetchers.append(ClubEloFetcher(
            rate_limiter=limiter(Provider.CLUBELO),
            max_retries=settings.HTTP_MAX_RETRIES,
            **http,
        ))

    if Provider.FOOTBALL_DATA_UK in enabled:
        fetchers.append(FootballDataUkOddsFetcher(
            rate_limiter=limiter(Provider.FOOTBALL_DATA_UK),
            max_retries=settings.HTTP_MAX_RETRIES,
            **http,
        ))

    return fetchers


@dataclass
class ScorelineService:
    settings: Settings
    cache: SnapshotCache
    monitor: IntegrationHealthMonitor
    quota: QuotaBudgetManager
    registry: CapabilityRegistry
    directory: MatchDirectory
    scheduler: AcquisitionScheduler
    engine: PredictionEngine
    clock: Clock

    def predict_scores(self, match_id: int) -> PredictionResult:
        return self.engine.predict_scores(match_id)

    def get_integration_status(self, provider: Provider) -> dict:
        """Health, quota and snapshot freshness for one provider."""
        status = self.monitor.get_status(provider).to_dict()
        status["enabled"] = self.registry.is_enabled(provider)
        status["quota"] = self.quota.get_state(provider).to_dict()
        freshness = self.cache.describe(self.clock.now())
        status["snapshots"] = {
            source.value: freshness.get(source.value, {"fresh": 0, "stale": 0})
            for source in sources_for_provider(provider)
        }
        return status

    def get_all_integration_statuses(self) -> dict[str, dict]:
        return {p.value: self.get_integration_status(p) for p in Provider}

    def get_data_availability(self) -> dict:
        """Which feeds can currently back predictions, and how much is cached."""
        now = self.clock.now()
        freshness = self.cache.describe(now)
        summary = {}
        for provider in Provider:
            usable = self.registry.is_enabled(provider) and self.monitor.is_operational(provider)
            for source in sources_for_provider(provider):
                counts = freshness.get(source.value, {"fresh": 0, "stale": 0})
                summary[source.value] = {
                    "provider": provider.value,
                    "usable": usable,
                    **counts,
                }
        return {"checked_at": now.isoformat(), "sources": summary}

    async def force_refresh(self, provider: Provider, key: str) -> dict:
        return await self.scheduler.force_refresh(provider, key)

    async def close(self) -> None:
        if self.scheduler.running:
            await self.scheduler.stop()
        for fetcher in self.scheduler.fetchers.values():
            await fetcher.close()


def build_service(
    settings: Settings,
    directory: MatchDirectory,
    fetchers: Optional[list[FeedFetcher]] = None,
    clock: Optional[Clock] = None,
    rng: Optional[np.random.Generator] = None,
) -> ScorelineService:
    clock = clock or SystemClock()
    cache = SnapshotCache(settings.TTLS)
    monitor = IntegrationHealthMonitor(
        degraded_after=settings.HEALTH_DEGRADED_AFTER,
        down_after=settings.HEALTH_DOWN_AFTER,
        clock=clock,
    )
    quota = QuotaBudgetManager(settings.QUOTAS, clock=clock)
    registry = CapabilityRegistry(settings.ENABLED_PROVIDERS)
    if fetchers is None:
        fetchers = build_default_fetchers(settings)
    for fetcher in fetchers:
        if isinstance(fetcher, HttpFeedFetcher):
            # Retries spend the same daily budget as first attempts
            fetcher.retry_guard = partial(quota.try_reserve, fetcher.provider, fetcher.tier)

    scheduler = AcquisitionScheduler(
        settings=settings,
        cache=cache,
        monitor=monitor,
        quota=quota,
        registry=registry,
        directory=directory,
        fetchers=fetchers,
        clock=clock,
    )
    engine = PredictionEngine(
        settings=settings,
        cache=cache,
        monitor=monitor,
        registry=registry,
        directory=directory,
        clock=clock,
        rng=rng,
    )
    logger.info(
        f"Scoreline service ready: providers={[p.value for p in registry.enabled]}, "
        f"feeds={[f.source_type.value for f in fetchers]}"
    )
    return ScorelineService(
        settings=settings,
        cache=cache,
        monitor=monitor,
        quota=quota,
        registry=registry,
        directory=directory,
        scheduler=scheduler,
        engine=engine,
        clock=clock,
    )
