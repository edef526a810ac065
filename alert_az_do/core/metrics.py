"""
Prometheus 指标
"""
from prometheus_client import CollectorRegistry, Counter, generate_latest, CONTENT_TYPE_LATEST

REGISTRY = CollectorRegistry()

REQUEST_TOTAL = Counter(
    "alert_az_do_requests_total",
    "Requests processed, by receiver and HTTP status code.",
    ["receiver", "code"],
    registry=REGISTRY,
)


def record_request(receiver: str, code: int) -> None:
    REQUEST_TOTAL.labels(receiver=receiver, code=str(code)).inc()


def render_metrics() -> bytes:
    return generate_latest(REGISTRY)


__all__ = ["REGISTRY", "REQUEST_TOTAL", "record_request", "render_metrics", "CONTENT_TYPE_LATEST"]
