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

from extraction_queue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_PURGED,
    METRIC_QUEUE_DEPTH,
    METRIC_STALE_CLAIMS,
    JobStatus,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the extraction queue.

    Collects metrics for:
    - Job counts by status
    - Enqueues, claims and completions
    - Job execution duration
    - Stale claim recovery and purges
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
            "Number of jobs by status",
            ["status"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["type"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs that reached a terminal status",
            ["type", "status"],
            registry=self._registry,
        )

        # Extraction jobs run for minutes, hence the long tail
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["type", "status"],
            buckets=(0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0),
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of claims acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.stale_claims = Counter(
            METRIC_STALE_CLAIMS,
            "Total number of stale claims taken over by another worker",
            registry=self._registry,
        )

        self.jobs_purged = Counter(
            METRIC_JOBS_PURGED,
            "Total number of completed jobs purged",
            registry=self._registry,
        )

    def record_job_enqueued(self, job_type: str) -> None:
        """Record a newly created job."""
        self.jobs_enqueued.labels(type=job_type).inc()

    def record_job_completed(
        self,
        job_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job reaching a terminal status."""
        self.jobs_completed.labels(type=job_type, status=status).inc()
        self.job_duration.labels(type=job_type, status=status).observe(duration_seconds)

    def record_job_claimed(self, worker_id: str, stale: bool = False) -> None:
        """Record a claim, counting stale takeovers separately."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()
        if stale:
            self.stale_claims.inc()

    def record_jobs_purged(self, count: int) -> None:
        self.jobs_purged.inc(count)

    def update_queue_depth(self, counts: dict[JobStatus, int]) -> None:
        """Set the per-status gauge from a status -> count mapping."""
        for status, count in counts.items():
            self.queue_depth.labels(status=str(status)).set(count)

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
