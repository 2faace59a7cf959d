"""
Acquisition scheduler: one periodic job per feed.

Each run of a feed job:
1. Rolls the provider's quota day forward (clears exhaustion after a reset)
   and skips the run when the provider is disabled or exhausted.
2. Recounts primary-tier demand for the provider so secondary feeds cannot
   eat the budget the primary feed still needs today.
3. Lists entities needed within the feed's lookahead window whose snapshot
   is missing or stale, soonest kickoff first.
4. Works through them in batches sized by the provider's per-minute rate
   limit, with at most max_concurrency fetches in flight.
5. Per item: reserve quota (refusal = skip), fetch, validate, write, and
   record the outcome with the health monitor.

A failing item never aborts its batch or its run, and nothing is written for
it. stop() aborts the remaining items; snapshots already written stay.

Usage:
    scheduler = AcquisitionScheduler(settings, cache, monitor, quota, registry,
                                     directory, fetchers)
    scheduler.start()               # inside a running event loop
    ...
    await scheduler.stop()

    # or a single pass
    results = await scheduler.run_all()
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scoreline.config import Settings
from scoreline.etl.base import FeedFetcher, FetchRequest, MalformedPayload, ProviderError
from scoreline.health import IntegrationHealthMonitor
from scoreline.models import (
    SOURCE_PAYLOADS,
    SOURCE_PROVIDERS,
    SOURCE_TIERS,
    TEAM_KEYED_SOURCES,
    MatchRef,
    Provider,
    SourceType,
    Tier,
    match_key,
    sources_for_provider,
    team_key,
)
from scoreline.quota import QuotaBudgetManager
from scoreline.reference import MatchDirectory
from scoreline.registry import CapabilityRegistry
from scoreline.snapshots import SnapshotCache
from scoreline.telemetry import record_acquisition, record_job_run
from scoreline.telemetry.sentry import sentry_job_context
from scoreline.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Seconds stop() waits for in-flight runs before cancelling them
STOP_GRACE_SECONDS = 10.0

# Item outcome -> metrics counter
_OUTCOME_COUNTERS = {
    "ok": "fetched",
    "no_data": "no_data",
    "expired": "no_data",
    "skipped_quota": "skipped_quota",
    "error": "failed",
    "malformed": "failed",
    "cancelled": "cancelled",
}


def job_id_for(source_type: SourceType) -> str:
    return f"acquire_{source_type.value}"


class AcquisitionScheduler:
    def __init__(
        self,
        settings: Settings,
        cache: SnapshotCache,
        monitor: IntegrationHealthMonitor,
        quota: QuotaBudgetManager,
        registry: CapabilityRegistry,
        directory: MatchDirectory,
        fetchers: Iterable[FeedFetcher],
        clock: Optional[Clock] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.monitor = monitor
        self.quota = quota
        self.registry = registry
        self.directory = directory
        self.clock = clock or SystemClock()
        self.fetchers: dict[SourceType, FeedFetcher] = {}
        for fetcher in fetchers:
            if fetcher.source_type in self.fetchers:
                raise ValueError(f"duplicate fetcher for {fetcher.source_type.value}")
            self.fetchers[fetcher.source_type] = fetcher

        self._stop = asyncio.Event()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._scheduler_started = False
        self._in_flight: set[asyncio.Task] = set()

        # Exhaustion lives on the health record so status views show it
        quota.add_exhausted_listener(monitor.mark_exhausted)
        quota.add_reset_listener(monitor.clear_exhausted)

    # =========================================================================
    # CANDIDATES
    # =========================================================================

    def collect_candidates(self, source_type: SourceType, now: datetime) -> list[FetchRequest]:
        """Entities needing a refresh within the feed's lookahead, soonest match first."""
        lookahead = self.settings.SCHEDULE.lookahead_for(source_type)
        matches = self.directory.upcoming_matches(now, now + lookahead)
        return self._stale_requests(source_type, matches, now)

    def _stale_requests(
        self,
        source_type: SourceType,
        matches: list[MatchRef],
        now: datetime,
    ) -> list[FetchRequest]:
        requests: list[FetchRequest] = []
        seen: set[str] = set()
        for match in matches:
            if source_type in TEAM_KEYED_SOURCES:
                targets = [(team_key(t.team_id), t) for t in (match.home, match.away)]
            else:
                targets = [(match_key(match.match_id), None)]
            for key, team in targets:
                # A team playing twice in the window is fetched for its soonest match
                if key in seen:
                    continue
                seen.add(key)
                if self.cache.needs_refresh(source_type, key, now):
                    requests.append(FetchRequest(source_type=source_type, key=key, match=match, team=team))
        return requests

    def _refresh_primary_demand(self, provider: Provider, now: datetime) -> int:
        horizon = timedelta(hours=self.settings.SCHEDULE.primary_demand_hours)
        matches = self.directory.upcoming_matches(now, now + horizon)
        needed = 0
        for source_type in sources_for_provider(provider):
            if SOURCE_TIERS[source_type] != Tier.PRIMARY or source_type not in self.fetchers:
                continue
            if not self.registry.supports(source_type):
                continue
            needed += len(self._stale_requests(source_type, matches, now))
        self.quota.update_primary_demand(provider, needed)
        return needed

    # =========================================================================
    # ACQUISITION
    # =========================================================================

    async def _acquire_one(self, fetcher: FeedFetcher, request: FetchRequest) -> str:
        """Acquire one entity. Returns the outcome; never raises for provider errors."""
        source = request.source_type.value
        provider = fetcher.provider

        if self._stop.is_set():
            return "cancelled"
        if not self.quota.try_reserve(provider, fetcher.tier):
            record_acquisition(provider.value, source, "skipped_quota")
            return "skipped_quota"

        start = time.monotonic()
        try:
            payload = await fetcher.fetch(request)
            expected = SOURCE_PAYLOADS[request.source_type]
            if payload is not None and not isinstance(payload, expected):
                raise MalformedPayload(
                    f"{source} fetcher returned {type(payload).__name__}, expected {expected.__name__}"
                )
        except ProviderError as e:
            duration_ms = (time.monotonic() - start) * 1000
            outcome = "malformed" if isinstance(e, MalformedPayload) else "error"
            self.monitor.record_failure(provider, str(e), duration_ms)
            record_acquisition(provider.value, source, outcome, duration_ms)
            logger.warning(f"[ACQUIRE:{source}] {request.key} failed: {e}")
            return outcome
        except Exception as e:
            # Parser bugs count against the provider like any other failure
            duration_ms = (time.monotonic() - start) * 1000
            self.monitor.record_failure(provider, f"{type(e).__name__}: {e}", duration_ms)
            record_acquisition(provider.value, source, "error", duration_ms)
            logger.error(f"[ACQUIRE:{source}] {request.key} unexpected error: {e}", exc_info=True)
            return "error"

        duration_ms = (time.monotonic() - start) * 1000
        self.monitor.record_success(provider, duration_ms)

        if payload is None:
            record_acquisition(provider.value, source, "no_data", duration_ms)
            logger.debug(f"[ACQUIRE:{source}] {request.key} no data yet")
            return "no_data"

        valid_until = request.match.kickoff_utc if request.source_type == SourceType.LINEUPS else None
        try:
            self.cache.put(
                request.source_type,
                request.key,
                payload,
                fetched_at=self.clock.now(),
                valid_until=valid_until,
            )
        except ValueError as e:
            # Kickoff passed while the call was in flight
            record_acquisition(provider.value, source, "no_data", duration_ms)
            logger.info(f"[ACQUIRE:{source}] {request.key} not stored: {e}")
            return "expired"

        record_acquisition(provider.value, source, "ok", duration_ms)
        return "ok"

    async def _acquire_batches(
        self,
        fetcher: FeedFetcher,
        candidates: list[FetchRequest],
        metrics: dict,
    ) -> None:
        quota = self.settings.quota_for(fetcher.provider)
        batch_size = quota.requests_per_minute
        semaphore = asyncio.Semaphore(quota.max_concurrency)

        async def guarded(request: FetchRequest) -> str:
            async with semaphore:
                return await self._acquire_one(fetcher, request)

        for offset in range(0, len(candidates), batch_size):
            batch = candidates[offset:offset + batch_size]
            if self._stop.is_set():
                metrics["cancelled"] += len(batch)
                continue
            outcomes = await asyncio.gather(*(guarded(r) for r in batch))
            for outcome in outcomes:
                metrics[_OUTCOME_COUNTERS[outcome]] += 1

    async def run_feed(self, source_type: SourceType) -> dict:
        """
        Run one acquisition cycle for a feed.

        Returns:
            Metrics dict: status ("ok", "partial", "skipped", "cancelled",
            "error"), candidates, fetched, no_data, skipped_quota, failed,
            cancelled, duration_ms.
        """
        job = job_id_for(source_type)
        start_time = time.time()
        metrics = {
            "status": "ok",
            "source": source_type.value,
            "candidates": 0,
            "fetched": 0,
            "no_data": 0,
            "skipped_quota": 0,
            "failed": 0,
            "cancelled": 0,
            "duration_ms": 0.0,
        }

        fetcher = self.fetchers.get(source_type)
        if fetcher is None or not self.registry.supports(source_type):
            metrics["status"] = "skipped"
            metrics["reason"] = "not_enabled"
            return metrics

        provider = fetcher.provider
        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)

        try:
            with sentry_job_context(job, provider=provider.value, source=source_type.value):
                now = self.clock.now()
                # Touching the budget rolls the UTC day and clears exhaustion
                self.quota.get_state(provider)
                if not self.monitor.is_acquirable(provider):
                    status = self.monitor.get_status(provider)
                    metrics["status"] = "skipped"
                    metrics["reason"] = "disabled" if status.disabled else "quota_exhausted"
                    logger.info(f"[ACQUIRE:{source_type.value}] {provider.value} {metrics['reason']}, skipping run")
                    return metrics

                self._refresh_primary_demand(provider, now)
                candidates = self.collect_candidates(source_type, now)
                metrics["candidates"] = len(candidates)
                if candidates:
                    await self._acquire_batches(fetcher, candidates, metrics)

            if metrics["cancelled"]:
                metrics["status"] = "cancelled"
            elif metrics["failed"]:
                metrics["status"] = "partial"

            metrics["duration_ms"] = round((time.time() - start_time) * 1000, 1)
            record_job_run(job=job, status=metrics["status"], duration_ms=metrics["duration_ms"])
            if metrics["candidates"]:
                logger.info(
                    f"[ACQUIRE:{source_type.value}] candidates={metrics['candidates']} "
                    f"fetched={metrics['fetched']} no_data={metrics['no_data']} "
                    f"skipped_quota={metrics['skipped_quota']} failed={metrics['failed']} "
                    f"cancelled={metrics['cancelled']} ({metrics['duration_ms']:.0f}ms)"
                )
            return metrics

        except asyncio.CancelledError:
            metrics["status"] = "cancelled"
            metrics["duration_ms"] = round((time.time() - start_time) * 1000, 1)
            record_job_run(job=job, status="cancelled", duration_ms=metrics["duration_ms"])
            logger.info(f"[ACQUIRE:{source_type.value}] run cancelled")
            raise
        except Exception as e:
            metrics["status"] = "error"
            metrics["error"] = str(e)
            metrics["duration_ms"] = round((time.time() - start_time) * 1000, 1)
            record_job_run(job=job, status="error", duration_ms=metrics["duration_ms"])
            logger.error(f"[ACQUIRE:{source_type.value}] run failed: {e}", exc_info=True)
            return metrics
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def run_all(self) -> dict[str, dict]:
        """One cycle of every enabled feed, concurrently."""
        sources = [s for s in self.fetchers if self.registry.supports(s)]
        results = await asyncio.gather(*(self.run_feed(s) for s in sources))
        return {s.value: r for s, r in zip(sources, results)}

    async def force_refresh(self, provider: Provider, key: str) -> dict:
        """
        Refresh `key` for every feed the provider owns, ignoring freshness.

        Quota and health are applied exactly as in a scheduled run. Feeds
        whose key kind does not match (team vs match) are reported as
        "not_applicable".

        Returns:
            {"provider", "key", "results": {source: outcome}}
        """
        now = self.clock.now()
        results: dict[str, str] = {}
        self.quota.get_state(provider)

        for source_type in sources_for_provider(provider):
            fetcher = self.fetchers.get(source_type)
            if fetcher is None or not self.registry.supports(source_type):
                results[source_type.value] = "not_enabled"
                continue
            if not self.monitor.is_acquirable(provider):
                results[source_type.value] = "not_acquirable"
                continue
            request = self._request_for_key(source_type, key, now)
            if request is None:
                results[source_type.value] = "not_applicable"
                continue
            results[source_type.value] = await self._acquire_one(fetcher, request)

        logger.info(f"[ACQUIRE] force_refresh {provider.value} {key}: {results}")
        return {"provider": provider.value, "key": key, "results": results}

    def _request_for_key(self, source_type: SourceType, key: str, now: datetime) -> Optional[FetchRequest]:
        kind, _, raw_id = key.partition(":")
        try:
            entity_id = int(raw_id)
        except ValueError:
            return None
        team_keyed = source_type in TEAM_KEYED_SOURCES

        if kind == "match" and not team_keyed:
            match = self.directory.get_match(entity_id)
            if match is None:
                return None
            return FetchRequest(source_type=source_type, key=key, match=match)

        if kind == "team" and team_keyed:
            lookahead = max(
                self.settings.SCHEDULE.lookahead_for(s) for s in SOURCE_PROVIDERS
            )
            for match in self.directory.upcoming_matches(now, now + lookahead):
                for team in (match.home, match.away):
                    if team.team_id == entity_id:
                        return FetchRequest(source_type=source_type, key=key, match=match, team=team)
        return None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Register one interval job per enabled feed and start APScheduler.

        Must be called with a running event loop. Calling it twice is a no-op.
        """
        if self._scheduler_started:
            logger.warning("Scheduler already started, skipping duplicate initialization")
            return

        self._stop.clear()
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        first_run = datetime.now(timezone.utc) + timedelta(seconds=5)

        for source_type in self.fetchers:
            if not self.registry.supports(source_type):
                logger.info(f"[SCHEDULER] {source_type.value} provider not enabled, no job")
                continue
            minutes = self.settings.SCHEDULE.interval_for(source_type)
            self._scheduler.add_job(
                self.run_feed,
                trigger=IntervalTrigger(minutes=minutes),
                args=[source_type],
                id=job_id_for(source_type),
                name=f"Acquire {source_type.value} (every {minutes} min)",
                replace_existing=True,
                next_run_time=first_run,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=minutes * 60,
            )

        self._scheduler.start()
        self._scheduler_started = True
        logger.info(
            "Scheduler started:\n"
            + "\n".join(
                f"  - {job.name}" for job in self._scheduler.get_jobs()
            )
        )

    async def stop(self, grace_seconds: float = STOP_GRACE_SECONDS) -> None:
        """Stop scheduling, abort remaining items and wait for in-flight runs."""
        self._stop.set()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler_started = False

        pending = {t for t in self._in_flight if t is not asyncio.current_task()}
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler_started

    def get_jobs(self) -> list[dict]:
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]
