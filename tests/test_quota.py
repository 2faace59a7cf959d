"""
Tests for daily quota budgets.

Verifies:
1. The secondary tier stops at primary demand + safety margin
2. The secondary refusal latches for the rest of the UTC day
3. Primary reservations stop at the operational cap and mark exhaustion
4. Day rollover resets usage and notifies listeners
5. Concurrent reservations never exceed the hard limit
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from scoreline.config import ProviderQuota
from scoreline.models import Provider, Tier
from scoreline.quota import QuotaBudgetManager, QuotaExhausted

P = Provider.API_FOOTBALL


def _manager(clock, **overrides) -> QuotaBudgetManager:
    quota = ProviderQuota(**{
        "hard_limit": 100,
        "operational_cap": 95,
        "safety_margin": 10,
        "secondary_cap": 50,
        **overrides,
    })
    return QuotaBudgetManager({P: quota}, clock=clock)


class TestSecondaryTier:
    """Test the reserved allocation for the primary tier."""

    def test_secondary_consumes_only_surplus(self, clock):
        """remaining=60, reserved=40+10 -> 10 secondary calls, then refusal."""
        manager = _manager(clock)
        for _ in range(40):
            assert manager.try_reserve(P, Tier.PRIMARY)
        manager.update_primary_demand(P, 40)

        state = manager.get_state(P)
        assert state.remaining == 60
        assert state.reserved_for_priority_tier == 50

        granted = 0
        while manager.try_reserve(P, Tier.SECONDARY):
            granted += 1
        assert granted == 10
        assert manager.get_state(P).secondary_locked is True

    def test_secondary_cap_applies(self, clock):
        manager = _manager(clock, secondary_cap=3)
        results = [manager.try_reserve(P, Tier.SECONDARY) for _ in range(5)]
        assert results == [True, True, True, False, False]

    def test_latch_holds_after_demand_drops(self, clock):
        """Once refused for reservation, secondary stays refused until the day ends."""
        manager = _manager(clock)
        manager.update_primary_demand(P, 95)
        assert manager.try_reserve(P, Tier.SECONDARY) is False

        manager.update_primary_demand(P, 0)
        assert manager.try_reserve(P, Tier.SECONDARY) is False
        assert manager.try_reserve(P, Tier.PRIMARY) is True

    def test_primary_unaffected_by_secondary_latch(self, clock):
        manager = _manager(clock)
        manager.update_primary_demand(P, 90)
        assert manager.try_reserve(P, Tier.SECONDARY) is False
        assert manager.try_reserve(P, Tier.PRIMARY) is True


class TestPrimaryTier:
    """Test the operational cap."""

    def test_refused_at_operational_cap(self, clock):
        manager = _manager(clock)
        granted = sum(manager.try_reserve(P, Tier.PRIMARY) for _ in range(120))
        assert granted == 95
        state = manager.get_state(P)
        assert state.used == 95
        assert state.exhausted is True

    def test_exhausted_listener_called_once(self, clock):
        manager = _manager(clock, hard_limit=2, operational_cap=2)
        exhausted = []
        manager.add_exhausted_listener(exhausted.append)
        for _ in range(5):
            manager.try_reserve(P, Tier.PRIMARY)
        assert exhausted == [P]

    def test_reserve_or_raise(self, clock):
        manager = _manager(clock, hard_limit=1, operational_cap=1)
        manager.reserve_or_raise(P, Tier.PRIMARY)
        with pytest.raises(QuotaExhausted):
            manager.reserve_or_raise(P, Tier.PRIMARY)

    def test_cost_cannot_cross_hard_limit(self, clock):
        manager = _manager(clock, hard_limit=10, operational_cap=10)
        assert manager.try_reserve(P, Tier.PRIMARY, cost=8) is True
        assert manager.try_reserve(P, Tier.PRIMARY, cost=3) is False
        assert manager.remaining(P) == 2


class TestDayRollover:
    """Test the UTC day boundary."""

    def test_reset_clears_usage_and_latch(self, clock):
        manager = _manager(clock)
        resets = []
        manager.add_reset_listener(resets.append)
        manager.update_primary_demand(P, 95)
        manager.try_reserve(P, Tier.SECONDARY)
        for _ in range(96):
            manager.try_reserve(P, Tier.PRIMARY)
        assert manager.get_state(P).exhausted is True

        clock.advance(hours=12)  # 2026-03-02 00:00 UTC
        state = manager.get_state(P)
        assert state.date_utc.isoformat() == "2026-03-02"
        assert state.used == 0
        assert state.secondary_locked is False
        assert state.exhausted is False
        assert resets == [P]

    def test_demand_carries_over(self, clock):
        manager = _manager(clock)
        manager.update_primary_demand(P, 30)
        clock.advance(days=1)
        assert manager.get_state(P).primary_demand == 30

    def test_no_reset_within_same_day(self, clock):
        manager = _manager(clock)
        manager.try_reserve(P, Tier.PRIMARY)
        clock.advance(hours=11, minutes=59)
        assert manager.get_state(P).used == 1


class TestConcurrency:
    """Test the hard limit under concurrent reservations."""

    def test_threads_never_exceed_hard_limit(self, clock):
        manager = _manager(clock, hard_limit=100, operational_cap=100, secondary_cap=100, safety_margin=0)

        def reserve(i: int) -> bool:
            tier = Tier.PRIMARY if i % 2 else Tier.SECONDARY
            return manager.try_reserve(P, tier)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(reserve, range(1000)))

        assert sum(results) == 100
        assert manager.get_state(P).used == 100

    def test_budget_status_shape(self, clock):
        manager = _manager(clock)
        manager.try_reserve(P, Tier.PRIMARY)
        status = manager.get_budget_status()["api_football"]
        assert status["budget_used"] == 1
        assert status["budget_remaining"] == 99
        assert status["budget_day"] == "2026-03-01"
