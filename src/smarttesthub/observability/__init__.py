"""Public observability primitives: category logging, metrics, and health reporting."""

from smarttesthub.observability.health import (
    HealthReporter,
    HealthStatus,
    ResourceSnapshot,
    SystemMetricsProvider,
    collect_metrics,
    evaluate_health,
    monitor_resources,
    write_health_file,
)
from smarttesthub.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from smarttesthub.observability.metrics import MetricsRegistry

__all__ = [
    "HealthReporter",
    "HealthStatus",
    "LoggingConfig",
    "MetricsRegistry",
    "ResourceSnapshot",
    "StructuredLoggingHandle",
    "SystemMetricsProvider",
    "collect_metrics",
    "configure_structlog",
    "correlation_scope",
    "evaluate_health",
    "monitor_resources",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
    "write_health_file",
]
