"""
Telemetry Module

Provides Prometheus metrics for:
- Feed acquisition (attempts, latency, HTTP status codes)
- Quota usage and refusals
- Integration health state
- Prediction mode and data quality

Sentry helpers live in scoreline.telemetry.sentry.
"""

from scoreline.telemetry.metrics import (
    acquisition_requests_total,
    acquisition_latency_ms,
    quota_used_gauge,
    quota_refusals_total,
    integration_state_gauge,
    predictions_total,
    # Helpers
    record_acquisition,
    record_http_request,
    set_quota_usage,
    record_quota_refusal,
    record_integration_state,
    record_prediction,
    record_job_run,
    get_metrics_text,
    start_metrics_server,
)

__all__ = [
    "acquisition_requests_total",
    "acquisition_latency_ms",
    "quota_used_gauge",
    "quota_refusals_total",
    "integration_state_gauge",
    "predictions_total",
    "record_acquisition",
    "record_http_request",
    "set_quota_usage",
    "record_quota_refusal",
    "record_integration_state",
    "record_prediction",
    "record_job_run",
    "get_metrics_text",
    "start_metrics_server",
]
