"""
Metrics Collection with Prometheus.

Exposes entitlement, usage-gate and webhook metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from entitlement_service.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    SOURCE = "source"
    RESOURCE = "resource"
    PROVIDER = "provider"


class EntitlementMetrics:
    """
    Centralized metrics for the entitlement service.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Entitlement resolutions by granting source and per-source failures
    - Usage gate decisions, including fail-open passes
    - Webhook events by provider, type and outcome
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "entitlement_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "entitlement_http_requests_total",
            "Total HTTP requests",
            [
                MetricLabels.ENDPOINT.value,
                MetricLabels.METHOD.value,
                MetricLabels.STATUS_CODE.value,
            ],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlement_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT.value, MetricLabels.METHOD.value],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlement_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD.value],
        )

        # ====================================================================
        # Entitlement Metrics
        # ====================================================================
        self.entitlement_resolutions_total = Counter(
            "entitlement_resolutions_total",
            "Entitlement resolutions by granting source",
            [MetricLabels.SOURCE.value],
        )

        self.entitlement_source_failures_total = Counter(
            "entitlement_source_failures_total",
            "Entitlement source checks that failed and were treated as not entitled",
            [MetricLabels.SOURCE.value, MetricLabels.ERROR_TYPE.value],
        )

        self.entitlement_resolution_duration_seconds = Histogram(
            "entitlement_resolution_duration_seconds",
            "Entitlement resolution duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Usage Gate Metrics
        # ====================================================================
        self.usage_decisions_total = Counter(
            "entitlement_usage_decisions_total",
            "Usage gate decisions",
            [MetricLabels.RESOURCE.value, "tier", "allowed"],
        )

        self.usage_fail_open_total = Counter(
            "entitlement_usage_fail_open_total",
            "Usage gate checks allowed because the counter store was unavailable",
            [MetricLabels.RESOURCE.value],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "entitlement_webhook_events_total",
            "Webhook events received",
            [MetricLabels.PROVIDER.value, "event_type", "outcome"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlement_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE.value, MetricLabels.OPERATION.value],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_resolution(self, source: str, duration: float) -> None:
        """Record a completed entitlement resolution."""
        self.entitlement_resolutions_total.labels(source=source).inc()
        self.entitlement_resolution_duration_seconds.observe(duration)

    def record_source_failure(self, source: str, error_type: str) -> None:
        """Record an entitlement source that failed closed."""
        self.entitlement_source_failures_total.labels(source=source, error_type=error_type).inc()

    def record_usage_decision(self, resource: str, is_pro: bool, allowed: bool) -> None:
        """Record a usage gate decision."""
        self.usage_decisions_total.labels(
            resource=resource, tier="pro" if is_pro else "free", allowed=str(allowed)
        ).inc()

    def record_usage_fail_open(self, resource: str) -> None:
        """Record a usage gate pass caused by a counter store failure."""
        self.usage_fail_open_total.labels(resource=resource).inc()

    def record_webhook(self, provider: str, event_type: str, outcome: str) -> None:
        """Record a webhook event outcome."""
        self.webhook_events_total.labels(
            provider=provider, event_type=event_type, outcome=outcome
        ).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
