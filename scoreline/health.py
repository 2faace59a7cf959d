"""Per-provider integration health.

State machine (k = degraded_after, m = down_after):
    HEALTHY  --k consecutive failures-->  DEGRADED
    DEGRADED --m consecutive failures-->  DOWN      (count is cumulative)
    any      --one success------------->  HEALTHY   (failures reset to 0)

HEALTHY and DEGRADED are operational; DOWN and manually disabled providers
are not. A quota-exhausted provider is skipped by acquisition until the next
UTC day but its snapshots stay usable. Health says nothing about cache
freshness; prediction checks both independently.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from scoreline.models import Provider
from scoreline.telemetry import record_integration_state
from scoreline.telemetry.sentry import capture_message
from scoreline.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

COUNTER_WINDOW = timedelta(hours=24)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class IntegrationStatus:
    provider: Provider
    state: HealthState = HealthState.HEALTHY
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    avg_duration_ms: Optional[float] = None
    total_runs: int = 0
    timed_runs: int = 0
    disabled: bool = False
    disabled_by: Optional[str] = None
    disabled_reason: Optional[str] = None
    exhausted: bool = False
    success_times: deque = field(default_factory=deque, repr=False)
    failure_times: deque = field(default_factory=deque, repr=False)

    @property
    def is_operational(self) -> bool:
        # Exhaustion only stops acquisition; snapshots already fetched stay usable
        return self.state in (HealthState.HEALTHY, HealthState.DEGRADED) and not self.disabled

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "state": self.state.value,
            "operational": self.is_operational,
            "consecutive_failures": self.consecutive_failures,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "last_error": self.last_error,
            "successes_24h": len(self.success_times),
            "failures_24h": len(self.failure_times),
            "avg_duration_ms": round(self.avg_duration_ms, 1) if self.avg_duration_ms is not None else None,
            "disabled": self.disabled,
            "disabled_by": self.disabled_by,
            "disabled_reason": self.disabled_reason,
            "exhausted": self.exhausted,
        }


class IntegrationHealthMonitor:
    def __init__(
        self,
        degraded_after: int = 3,
        down_after: int = 5,
        clock: Optional[Clock] = None,
    ):
        if down_after < degraded_after:
            raise ValueError("down_after must be >= degraded_after")
        self.degraded_after = degraded_after
        self.down_after = down_after
        self.clock = clock or SystemClock()
        self._statuses: dict[Provider, IntegrationStatus] = {}
        self._lock = threading.Lock()

    def _status(self, provider: Provider) -> IntegrationStatus:
        status = self._statuses.get(provider)
        if status is None:
            status = IntegrationStatus(provider=provider)
            self._statuses[provider] = status
        return status

    def _trim(self, status: IntegrationStatus, now: datetime) -> None:
        cutoff = now - COUNTER_WINDOW
        while status.success_times and status.success_times[0] < cutoff:
            status.success_times.popleft()
        while status.failure_times and status.failure_times[0] < cutoff:
            status.failure_times.popleft()

    def _record_duration(self, status: IntegrationStatus, duration_ms: Optional[float]) -> None:
        status.total_runs += 1
        if duration_ms is None:
            return
        status.timed_runs += 1
        if status.avg_duration_ms is None:
            status.avg_duration_ms = float(duration_ms)
        else:
            # Running mean over calls that reported a duration
            status.avg_duration_ms += (duration_ms - status.avg_duration_ms) / status.timed_runs

    @staticmethod
    def _copy(status: IntegrationStatus) -> IntegrationStatus:
        return replace(
            status,
            success_times=deque(status.success_times),
            failure_times=deque(status.failure_times),
        )

    def record_success(self, provider: Provider, duration_ms: Optional[float] = None) -> IntegrationStatus:
        now = self.clock.now()
        with self._lock:
            status = self._status(provider)
            previous = status.state
            status.state = HealthState.HEALTHY
            status.consecutive_failures = 0
            status.last_success_at = now
            status.success_times.append(now)
            self._trim(status, now)
            self._record_duration(status, duration_ms)
            snapshot = self._copy(status)

        if previous != HealthState.HEALTHY:
            logger.info(f"[HEALTH] {provider.value} recovered: {previous.value} -> healthy")
        record_integration_state(provider.value, snapshot.state.value, 0)
        return snapshot

    def record_failure(
        self,
        provider: Provider,
        error: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> IntegrationStatus:
        now = self.clock.now()
        with self._lock:
            status = self._status(provider)
            previous = status.state
            status.consecutive_failures += 1
            status.last_failure_at = now
            status.last_error = (error or "")[:500] or None
            status.failure_times.append(now)
            self._trim(status, now)
            self._record_duration(status, duration_ms)

            if status.consecutive_failures >= self.down_after:
                status.state = HealthState.DOWN
            elif status.consecutive_failures >= self.degraded_after:
                status.state = HealthState.DEGRADED
            snapshot = self._copy(status)

        if snapshot.state != previous:
            logger.warning(
                f"[HEALTH] {provider.value}: {previous.value} -> {snapshot.state.value} "
                f"after {snapshot.consecutive_failures} consecutive failures (last error: {error})"
            )
            if snapshot.state == HealthState.DOWN:
                capture_message(
                    f"Integration {provider.value} is down",
                    level="warning",
                    provider=provider.value,
                    consecutive_failures=snapshot.consecutive_failures,
                    last_error=snapshot.last_error,
                )
        record_integration_state(provider.value, snapshot.state.value, snapshot.consecutive_failures)
        return snapshot

    def disable(self, provider: Provider, disabled_by: str, reason: str) -> IntegrationStatus:
        """Take a provider out of service until enable() is called."""
        with self._lock:
            status = self._status(provider)
            status.disabled = True
            status.disabled_by = disabled_by
            status.disabled_reason = reason
            snapshot = self._copy(status)
        logger.warning(f"[HEALTH] {provider.value} disabled by {disabled_by}: {reason}")
        return snapshot

    def enable(self, provider: Provider) -> IntegrationStatus:
        with self._lock:
            status = self._status(provider)
            status.disabled = False
            status.disabled_by = None
            status.disabled_reason = None
            snapshot = self._copy(status)
        logger.info(f"[HEALTH] {provider.value} re-enabled")
        return snapshot

    def mark_exhausted(self, provider: Provider) -> None:
        with self._lock:
            status = self._status(provider)
            already = status.exhausted
            status.exhausted = True
        if not already:
            logger.warning(f"[HEALTH] {provider.value} daily quota exhausted")

    def clear_exhausted(self, provider: Provider) -> None:
        with self._lock:
            status = self._status(provider)
            was_exhausted = status.exhausted
            status.exhausted = False
        if was_exhausted:
            logger.info(f"[HEALTH] {provider.value} eligible again after quota reset")

    def get_status(self, provider: Provider) -> IntegrationStatus:
        """Copy of the provider's status (created on first use)."""
        with self._lock:
            status = self._status(provider)
            self._trim(status, self.clock.now())
            return self._copy(status)

    def is_operational(self, provider: Provider) -> bool:
        with self._lock:
            status = self._statuses.get(provider)
            return status is None or status.is_operational

    def is_acquirable(self, provider: Provider) -> bool:
        """Whether the scheduler may call the provider at all.

        Down providers are still called so a single success can bring them back;
        only manual disable and quota exhaustion stop acquisition.
        """
        with self._lock:
            status = self._statuses.get(provider)
            return status is None or (not status.disabled and not status.exhausted)

    def get_all_statuses(self) -> dict[str, dict]:
        return {p.value: self.get_status(p).to_dict() for p in Provider}
