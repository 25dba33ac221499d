"""
Prometheus metrics for the TinkerTank booking backend.

Metrics live in a private registry so test runs and multiple app instances
in one process never collide with the default global registry.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tinkertank_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tinkertank_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

reconcile_items_total = Counter(
    "tinkertank_reconcile_items_total",
    "Order items processed by reconciliation, by outcome",
    ["outcome"],
    registry=REGISTRY,
)

events_generated_total = Counter(
    "tinkertank_events_generated_total",
    "Calendar events materialised from recurring templates",
    ["outcome"],
    registry=REGISTRY,
)

order_lock_total = Counter(
    "tinkertank_order_lock_total",
    "Order reconciliation lock operations",
    ["action", "outcome"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "tinkertank_webhook_events_total",
    "Inbound payment webhook events",
    ["event_type", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin recording facade so call sites never touch label plumbing."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

    @staticmethod
    def record_reconcile_item(outcome: str) -> None:
        reconcile_items_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_event_generation(outcome: str, count: int = 1) -> None:
        if count:
            events_generated_total.labels(outcome=outcome).inc(count)

    @staticmethod
    def record_order_lock(action: str, outcome: str) -> None:
        order_lock_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def render() -> tuple[bytes, str]:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
