"""
Observability module - Logging, Metrics, and Tracing.
"""

from entitlement_service.observability.logging import get_logger, setup_logging
from entitlement_service.observability.metrics import metrics
from entitlement_service.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
