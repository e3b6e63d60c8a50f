"""
Observability module.
Structured logging, Prometheus metrics and OpenTelemetry tracing for the
API, workers and reaper.
"""

from jobqueue.observability.logging import bind_context, job_log_context, setup_logging
from jobqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from jobqueue.observability.tracing import (
    get_tracer,
    job_span,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    "setup_logging",
    "bind_context",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "shutdown_tracing",
    "get_tracer",
    "job_span",
]
