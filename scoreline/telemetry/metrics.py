"""
Prometheus metrics for feed acquisition, quota and prediction quality.

Design principles:
- Provider and feed labels on acquisition metrics
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

=============================================================================
CARDINALITY CONTROL
=============================================================================

ALLOWED LABELS (bounded sets):
- provider:  "api_football", "understat", "clubelo", "football_data", "football_data_uk"
- source:    "form", "expected_goals", "elo", "odds", "injuries", "suspensions", "lineups"
- status:    "ok", "no_data", "error", "malformed", "skipped_quota"
- tier:      "primary", "secondary"
- state:     "healthy", "degraded", "down"
- mode:      "fused", "fallback"
- job:       "acquire_<source>"

FORBIDDEN AS LABELS: match ids, team ids, entity keys, URLs, error messages.
Use logs for per-entity debugging.
=============================================================================
"""

import logging
import time
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

logger = logging.getLogger(__name__)

# =============================================================================
# ACQUISITION METRICS
# =============================================================================

acquisition_requests_total = Counter(
    "scoreline_acquisition_requests_total",
    "Feed fetch attempts by outcome",
    ["provider", "source", "status"],
)

acquisition_latency_ms = Histogram(
    "scoreline_acquisition_latency_ms",
    "Feed fetch latency in milliseconds",
    ["provider", "source"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

provider_http_requests_total = Counter(
    "scoreline_provider_http_requests_total",
    "HTTP requests sent to providers by status code",
    ["provider", "status_code"],
)

provider_rate_limited_total = Counter(
    "scoreline_provider_rate_limited_total",
    "Rate-limited (429) responses from providers",
    ["provider"],
)

# =============================================================================
# QUOTA METRICS
# =============================================================================

quota_used_gauge = Gauge(
    "scoreline_quota_used",
    "Requests reserved today per provider",
    ["provider"],
)

quota_remaining_gauge = Gauge(
    "scoreline_quota_remaining",
    "Requests left before the hard limit per provider",
    ["provider"],
)

quota_refusals_total = Counter(
    "scoreline_quota_refusals_total",
    "Reservations refused by tier",
    ["provider", "tier"],
)

# =============================================================================
# HEALTH METRICS
# =============================================================================

_STATE_VALUES = {"healthy": 0, "degraded": 1, "down": 2}

integration_state_gauge = Gauge(
    "scoreline_integration_state",
    "Integration state (0=healthy, 1=degraded, 2=down)",
    ["provider"],
)

integration_consecutive_failures = Gauge(
    "scoreline_integration_consecutive_failures",
    "Consecutive failures per provider",
    ["provider"],
)

# =============================================================================
# PREDICTION METRICS
# =============================================================================

predictions_total = Counter(
    "scoreline_predictions_total",
    "Predictions served by mode",
    ["mode"],
)

prediction_data_quality = Histogram(
    "scoreline_prediction_data_quality",
    "Data quality score of served predictions",
    buckets=[10, 25, 40, 50, 60, 75, 90, 100],
)

# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "scoreline_job_runs_total",
    "Scheduler job runs by status",
    ["job", "status"],
)

job_duration_ms = Histogram(
    "scoreline_job_duration_ms",
    "Scheduler job duration in milliseconds",
    ["job"],
    buckets=[100, 500, 1000, 5000, 15000, 60000, 300000],
)

job_last_success_timestamp = Gauge(
    "scoreline_job_last_success_timestamp",
    "Unix timestamp of the last successful job run",
    ["job"],
)


# =============================================================================
# HELPERS
# =============================================================================


def record_acquisition(
    provider: str,
    source: str,
    status: str,
    latency_ms: Optional[float] = None,
) -> None:
    """
    Record one feed fetch attempt.

    Args:
        provider: Provider value (low cardinality)
        source: Feed value
        status: "ok", "no_data", "error", "malformed", "skipped_quota"
        latency_ms: Fetch latency, if a call was made
    """
    try:
        acquisition_requests_total.labels(provider=provider, source=source, status=status).inc()
        if latency_ms is not None:
            acquisition_latency_ms.labels(provider=provider, source=source).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record acquisition metric: {e}")


def record_http_request(provider: str, status_code: int, is_rate_limited: bool = False) -> None:
    try:
        provider_http_requests_total.labels(provider=provider, status_code=str(status_code)).inc()
        if is_rate_limited:
            provider_rate_limited_total.labels(provider=provider).inc()
    except Exception as e:
        logger.warning(f"Failed to record HTTP request metric: {e}")


def set_quota_usage(provider: str, used: int, hard_limit: int) -> None:
    try:
        quota_used_gauge.labels(provider=provider).set(used)
        quota_remaining_gauge.labels(provider=provider).set(max(0, hard_limit - used))
    except Exception as e:
        logger.warning(f"Failed to set quota metric: {e}")


def record_quota_refusal(provider: str, tier: str) -> None:
    try:
        quota_refusals_total.labels(provider=provider, tier=tier).inc()
    except Exception as e:
        logger.warning(f"Failed to record quota refusal metric: {e}")


def record_integration_state(provider: str, state: str, consecutive_failures: int) -> None:
    try:
        integration_state_gauge.labels(provider=provider).set(_STATE_VALUES.get(state, -1))
        integration_consecutive_failures.labels(provider=provider).set(consecutive_failures)
    except Exception as e:
        logger.warning(f"Failed to set integration state metric: {e}")


def record_prediction(mode: str, data_quality_score: float) -> None:
    try:
        predictions_total.labels(mode=mode).inc()
        prediction_data_quality.observe(data_quality_score)
    except Exception as e:
        logger.warning(f"Failed to record prediction metric: {e}")


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier (acquire_lineups, acquire_form, ...)
        status: "ok", "partial", "error", "cancelled"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status in ("ok", "partial"):
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def get_metrics_text() -> tuple[bytes, str]:
    """Return (body, content_type) for a /metrics endpoint."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Serve the default registry at http://<addr>:<port>/metrics from a daemon thread."""
    start_http_server(port, addr=addr, registry=REGISTRY)
    logger.info(f"[METRICS] Prometheus endpoint listening on {addr}:{port}")
