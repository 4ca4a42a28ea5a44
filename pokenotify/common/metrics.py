"""Prometheus metric definitions for the notify service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


pokes_created_total = Counter("pokes_created_total", "Total pokes created", ["service", "tunnel"])
sends_total = Counter(
    "sends_total",
    "Send attempts by tunnel and resulting delivery status",
    ["service", "tunnel", "status"],
)
archived_total = Counter("archived_total", "Pokes moved to the archive", ["service", "expired"])
record_write_failures_total = Counter(
    "record_write_failures_total",
    "Audit records that could not be persisted after all retries",
    ["service"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
dispatch_pass_seconds = Histogram(
    "dispatch_pass_seconds",
    "Duration of one dispatcher pass (send due + archive expired)",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
