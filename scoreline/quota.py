"""Daily request budgets per provider with a reserved primary tier.

Each provider has:
- hard_limit: requests the upstream plan allows per UTC day
- operational_cap: guard band below hard_limit; primary reservations stop here
- safety_margin: extra requests held back for the primary tier
- secondary_cap: the secondary tier's own daily ceiling

Secondary reservations (e.g. injuries) are refused once
    remaining <= primary_demand + safety_margin
and stay refused for the rest of the UTC day, so a cheap optional feed can
never eat the budget a costlier primary feed (lineups) still needs.

All mutation happens under one threading.Lock, which is safe for concurrent
asyncio jobs and for worker threads alike; no await happens while it is held.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Optional

from scoreline.config import ProviderQuota
from scoreline.models import Provider, Tier
from scoreline.telemetry import record_quota_refusal, set_quota_usage
from scoreline.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class QuotaExhausted(RuntimeError):
    """Raised by reserve_or_raise when a provider's budget refuses a reservation."""


@dataclass
class QuotaState:
    provider: Provider
    date_utc: date
    hard_limit: int
    operational_cap: int
    safety_margin: int
    secondary_cap: int
    used: int = 0
    primary_demand: int = 0
    secondary_used: int = 0
    secondary_locked: bool = False
    exhausted: bool = False

    @property
    def remaining(self) -> int:
        return self.hard_limit - self.used

    @property
    def reserved_for_priority_tier(self) -> int:
        return self.primary_demand + self.safety_margin

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "budget_day": self.date_utc.isoformat(),
            "budget_used": self.used,
            "budget_total": self.hard_limit,
            "budget_remaining": self.remaining,
            "operational_cap": self.operational_cap,
            "reserved_for_primary": self.reserved_for_priority_tier,
            "secondary_used": self.secondary_used,
            "secondary_cap": self.secondary_cap,
            "secondary_locked": self.secondary_locked,
            "exhausted": self.exhausted,
        }


class QuotaBudgetManager:
    def __init__(
        self,
        quotas: dict[Provider, ProviderQuota],
        clock: Optional[Clock] = None,
    ):
        self.quotas = dict(quotas)
        self.clock = clock or SystemClock()
        self._states: dict[Provider, QuotaState] = {}
        self._lock = threading.Lock()
        self._reset_listeners: list[Callable[[Provider], None]] = []
        self._exhausted_listeners: list[Callable[[Provider], None]] = []

    def add_reset_listener(self, callback: Callable[[Provider], None]) -> None:
        """Called (outside the lock) when a provider's day rolls over."""
        self._reset_listeners.append(callback)

    def add_exhausted_listener(self, callback: Callable[[Provider], None]) -> None:
        """Called (outside the lock) when a provider first refuses its primary tier."""
        self._exhausted_listeners.append(callback)

    def _new_state(self, provider: Provider, today: date) -> QuotaState:
        quota = self.quotas[provider]
        return QuotaState(
            provider=provider,
            date_utc=today,
            hard_limit=quota.hard_limit,
            operational_cap=quota.operational_cap,
            safety_margin=quota.safety_margin,
            secondary_cap=quota.secondary_cap,
        )

    def _state(self, provider: Provider) -> tuple[QuotaState, bool]:
        """Current state for provider; second item is True when the day rolled over.

        Caller must hold self._lock.
        """
        today = self.clock.now().date()
        state = self._states.get(provider)
        if state is None:
            state = self._new_state(provider, today)
            self._states[provider] = state
            return state, False
        if state.date_utc != today:
            demand = state.primary_demand
            state = self._new_state(provider, today)
            # Demand is re-counted every cycle; carry it until then
            state.primary_demand = demand
            self._states[provider] = state
            logger.info(f"[QUOTA] {provider.value} budget reset for {today.isoformat()}")
            return state, True
        return state, False

    def _notify(self, listeners: list[Callable[[Provider], None]], provider: Provider) -> None:
        for callback in listeners:
            callback(provider)

    def try_reserve(self, provider: Provider, tier: Tier, cost: int = 1) -> bool:
        """Atomically reserve `cost` requests. Returns False when refused."""
        became_exhausted = False
        with self._lock:
            state, rolled_over = self._state(provider)
            allowed, reason = self._check(state, tier, cost)
            if allowed:
                state.used += cost
                if tier == Tier.SECONDARY:
                    state.secondary_used += cost
            elif tier == Tier.PRIMARY and not state.exhausted:
                state.exhausted = True
                became_exhausted = True
            used, hard_limit = state.used, state.hard_limit

        if rolled_over:
            self._notify(self._reset_listeners, provider)
        set_quota_usage(provider.value, used, hard_limit)
        if not allowed:
            record_quota_refusal(provider.value, tier.value)
            logger.info(f"[QUOTA] {provider.value} refused {tier.value} reservation: {reason}")
        if became_exhausted:
            self._notify(self._exhausted_listeners, provider)
        return allowed

    def _check(self, state: QuotaState, tier: Tier, cost: int) -> tuple[bool, str]:
        if state.used + cost > state.hard_limit:
            return False, f"hard limit reached (used={state.used}, limit={state.hard_limit})"
        if state.used >= state.operational_cap:
            return False, f"operational cap reached (used={state.used}, cap={state.operational_cap})"
        if tier == Tier.PRIMARY:
            return True, ""

        if state.secondary_locked:
            return False, "secondary tier locked for the day"
        reserved = state.reserved_for_priority_tier
        if state.remaining <= reserved:
            state.secondary_locked = True
            return False, f"remaining={state.remaining} <= reserved={reserved}"
        if state.secondary_used + cost > state.secondary_cap:
            return False, f"secondary cap reached ({state.secondary_used}/{state.secondary_cap})"
        return True, ""

    def reserve_or_raise(self, provider: Provider, tier: Tier, cost: int = 1) -> None:
        if not self.try_reserve(provider, tier, cost):
            state = self.get_state(provider)
            raise QuotaExhausted(
                f"{provider.value} budget refused {tier.value} reservation: "
                f"used={state.used}, remaining={state.remaining}, "
                f"reserved={state.reserved_for_priority_tier}"
            )

    def update_primary_demand(self, provider: Provider, needed: int) -> None:
        """Record how many primary-tier refreshes are still expected in the demand horizon."""
        rolled_over = False
        with self._lock:
            state, rolled_over = self._state(provider)
            state.primary_demand = max(0, int(needed))
        if rolled_over:
            self._notify(self._reset_listeners, provider)

    def get_state(self, provider: Provider) -> QuotaState:
        """Copy of the provider's quota state for today."""
        with self._lock:
            state, rolled_over = self._state(provider)
            snapshot = replace(state)
        if rolled_over:
            self._notify(self._reset_listeners, provider)
        return snapshot

    def remaining(self, provider: Provider) -> int:
        return self.get_state(provider).remaining

    def get_budget_status(self) -> dict[str, dict]:
        """Expose current budget status for monitoring/logging."""
        return {p.value: self.get_state(p).to_dict() for p in self.quotas}
