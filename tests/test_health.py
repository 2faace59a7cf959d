"""Tests for the per-provider health state machine."""

import pytest

from scoreline.health import HealthState, IntegrationHealthMonitor
from scoreline.models import Provider

P = Provider.API_FOOTBALL


@pytest.fixture
def monitor(clock):
    return IntegrationHealthMonitor(degraded_after=3, down_after=5, clock=clock)


class TestStateMachine:
    """Healthy -> Degraded -> Down -> Healthy."""

    def test_full_cycle(self, monitor):
        for _ in range(3):
            status = monitor.record_failure(P, "HTTP 500")
        assert status.state == HealthState.DEGRADED
        assert monitor.is_operational(P) is True

        for _ in range(2):
            status = monitor.record_failure(P, "HTTP 500")
        assert status.state == HealthState.DOWN
        assert status.consecutive_failures == 5
        assert monitor.is_operational(P) is False

        status = monitor.record_success(P, duration_ms=120)
        assert status.state == HealthState.HEALTHY
        assert status.consecutive_failures == 0
        assert monitor.is_operational(P) is True

    def test_unknown_provider_is_healthy(self, monitor):
        """Status is created on first use."""
        assert monitor.is_operational(Provider.CLUBELO) is True
        assert monitor.get_status(Provider.CLUBELO).state == HealthState.HEALTHY

    def test_two_failures_stay_healthy(self, monitor):
        monitor.record_failure(P, "timeout")
        status = monitor.record_failure(P, "timeout")
        assert status.state == HealthState.HEALTHY
        assert status.last_error == "timeout"

    def test_success_between_failures_resets_count(self, monitor):
        monitor.record_failure(P)
        monitor.record_failure(P)
        monitor.record_success(P)
        status = monitor.record_failure(P)
        assert status.consecutive_failures == 1
        assert status.state == HealthState.HEALTHY

    def test_down_provider_still_acquirable(self, monitor):
        """Down does not stop calls; a single success must be able to recover it."""
        for _ in range(5):
            monitor.record_failure(P)
        assert monitor.is_acquirable(P) is True

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            IntegrationHealthMonitor(degraded_after=5, down_after=3)


class TestManualControls:
    """Test disable / enable and quota exhaustion flags."""

    def test_disable_blocks_usage_and_acquisition(self, monitor):
        status = monitor.disable(P, disabled_by="ops", reason="plan expired")
        assert status.disabled_reason == "plan expired"
        assert monitor.is_operational(P) is False
        assert monitor.is_acquirable(P) is False

        monitor.enable(P)
        assert monitor.is_operational(P) is True
        assert monitor.get_status(P).disabled_by is None

    def test_exhaustion_blocks_acquisition_only(self, monitor):
        """Snapshots from an exhausted provider stay usable."""
        monitor.mark_exhausted(P)
        assert monitor.is_acquirable(P) is False
        assert monitor.is_operational(P) is True
        assert monitor.get_status(P).exhausted is True

        monitor.clear_exhausted(P)
        assert monitor.is_acquirable(P) is True


class TestCounters:
    """Test 24h counters and duration averaging."""

    def test_counters_roll_off_after_24h(self, monitor, clock):
        monitor.record_failure(P)
        monitor.record_success(P)
        clock.advance(hours=23)
        monitor.record_success(P)
        assert monitor.get_status(P).to_dict()["successes_24h"] == 2

        clock.advance(hours=2)
        summary = monitor.get_status(P).to_dict()
        assert summary["successes_24h"] == 1
        assert summary["failures_24h"] == 0

    def test_average_duration(self, monitor):
        monitor.record_success(P, duration_ms=100)
        monitor.record_success(P, duration_ms=300)
        assert monitor.get_status(P).avg_duration_ms == pytest.approx(200.0)

    def test_untimed_calls_left_out_of_average(self, monitor):
        monitor.record_success(P, duration_ms=100)
        monitor.record_failure(P, "HTTP 503")
        monitor.record_success(P, duration_ms=300)
        status = monitor.get_status(P)
        assert status.avg_duration_ms == pytest.approx(200.0)
        assert status.total_runs == 3

    def test_recorded_snapshots_do_not_share_counters(self, monitor):
        returned = monitor.record_success(P)
        returned.success_times.clear()
        monitor.record_failure(P, "HTTP 500").failure_times.clear()
        monitor.disable(P, disabled_by="ops", reason="maintenance").success_times.clear()

        summary = monitor.get_status(P).to_dict()
        assert summary["successes_24h"] == 1
        assert summary["failures_24h"] == 1

    def test_get_status_returns_copy(self, monitor):
        status = monitor.get_status(P)
        status.consecutive_failures = 99
        assert monitor.get_status(P).consecutive_failures == 0

    def test_all_statuses(self, monitor):
        statuses = monitor.get_all_statuses()
        assert set(statuses) == {p.value for p in Provider}
        assert statuses["understat"]["state"] == "healthy"
