"""
Tests for Prometheus exposition.

Verifies:
1. Recorded acquisition and quota metrics appear in the scrape body
2. The metrics server is started on the requested port with the default registry
"""

from unittest.mock import patch

from prometheus_client import REGISTRY

from scoreline.telemetry import get_metrics_text, record_acquisition, set_quota_usage, start_metrics_server


class TestExposition:
    """Test the text served at /metrics."""

    def test_recorded_metrics_scrapeable(self):
        record_acquisition("clubelo", "elo", "ok", latency_ms=42.0)
        set_quota_usage("clubelo", 3, 1000)

        body, content_type = get_metrics_text()
        text = body.decode("utf-8")

        assert content_type.startswith("text/plain")
        assert 'scoreline_acquisition_requests_total{provider="clubelo",source="elo",status="ok"}' in text
        assert 'scoreline_quota_used{provider="clubelo"} 3.0' in text
        assert 'scoreline_quota_remaining{provider="clubelo"} 997.0' in text


class TestMetricsServer:
    """Test start_metrics_server."""

    def test_serves_default_registry(self):
        with patch("scoreline.telemetry.metrics.start_http_server") as server:
            start_metrics_server(9108)

        server.assert_called_once_with(9108, addr="0.0.0.0", registry=REGISTRY)

    def test_custom_address(self):
        with patch("scoreline.telemetry.metrics.start_http_server") as server:
            start_metrics_server(9200, addr="127.0.0.1")

        assert server.call_args.kwargs["addr"] == "127.0.0.1"
