"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_SUBMITTED,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_DEPTH,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth
    - Job submissions, claims and attempt outcomes
    - Job execution duration
    - Lease expiry and store connectivity errors
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of pending or waiting jobs",
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            registry=self._registry,
        )

        # outcome is completed, retried or failed
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of job attempts by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of in-progress jobs requeued after lease expiry",
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of store connectivity errors seen by workers",
            ["worker_id"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    def record_job_submitted(self) -> None:
        """Record a job submission."""
        self.jobs_submitted.inc()

    def record_job_finished(self, outcome: str, duration_seconds: float) -> None:
        """Record the outcome of one execution attempt."""
        self.jobs_finished.labels(outcome=outcome).inc()
        self.job_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_leases_expired(self, count: int) -> None:
        """Record jobs recovered by the reaper."""
        self.lease_expired.inc(count)

    def record_store_error(self, worker_id: str) -> None:
        """Record a store connectivity error."""
        self.store_errors.labels(worker_id=worker_id).inc()

    def update_queue_depth(self, depth: int) -> None:
        """Update the queue depth gauge."""
        self.queue_depth.set(depth)

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
