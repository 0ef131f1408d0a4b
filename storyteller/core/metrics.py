"""Prometheus metrics for the StoryTeller server."""

from prometheus_client import Counter, Histogram


def _safe_counter(*args, **kwargs):
    try:
        return Counter(*args, **kwargs)
    except ValueError:
        # Already registered (module re-imported under test); return a no-op
        class DummyMetric:
            def labels(self, *args, **kwargs):
                return self

            def inc(self, *args, **kwargs):
                pass

        return DummyMetric()


def _safe_histogram(*args, **kwargs):
    try:
        return Histogram(*args, **kwargs)
    except ValueError:

        class DummyMetric:
            def labels(self, *args, **kwargs):
                return self

            def observe(self, *args, **kwargs):
                pass

        return DummyMetric()


# HTTP
http_requests_total = _safe_counter(
    "storyteller_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
http_request_duration_seconds = _safe_histogram(
    "storyteller_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
)

# Session backend
session_requests_total = _safe_counter(
    "storyteller_session_requests_total",
    "Session creation requests sent to the session backend",
    ["kind", "outcome"],
)
upstream_latency_seconds = _safe_histogram(
    "storyteller_upstream_latency_seconds",
    "Session backend call latency",
    ["kind"],
)
