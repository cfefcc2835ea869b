"""Prometheus metric definitions for the checkout service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Outbound gateway calls by endpoint and outcome",
    ["endpoint", "outcome"],
)
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Outbound gateway call duration seconds",
    ["endpoint"],
)
orders_created_total = Counter("orders_created_total", "Orders accepted by the gateway")
webhooks_received_total = Counter(
    "webhooks_received_total",
    "Inbound payment webhooks by handling result",
    ["result"],
)
terminal_events_dispatched_total = Counter(
    "terminal_events_dispatched_total",
    "Terminal payment events handed to business handlers",
    ["status", "source"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Terminal events skipped because they were already dispatched",
    ["source"],
)
poll_attempts_total = Counter("poll_attempts_total", "Status queries issued by the polling loop")
poll_outcomes_total = Counter("poll_outcomes_total", "Polling loop results", ["outcome"])


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
