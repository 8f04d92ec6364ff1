"""
Prometheus metrics for the document intake scheduler
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
import os

# Build info
BUILD_INFO = Gauge(
    'docintake_build_info',
    'Build information',
    ['version', 'image_tag']
)

# Request counters
REQUESTS_TOTAL = Counter(
    'docintake_requests_total',
    'Total number of requests',
    ['status_class', 'path_group']
)

# Job submission
JOBS_CREATED_TOTAL = Counter(
    'docintake_jobs_created_total',
    'Jobs accepted and persisted',
    ['job_type']
)

JOBS_REJECTED_TOTAL = Counter(
    'docintake_jobs_rejected_total',
    'Job submissions refused before persisting',
    ['reason']
)

JOBS_FINISHED_TOTAL = Counter(
    'docintake_jobs_finished_total',
    'Jobs that reached a terminal status',
    ['job_type', 'status']
)

ADMISSION_DECISIONS_TOTAL = Counter(
    'docintake_admission_decisions_total',
    'Tenant admission decisions',
    ['decision']
)

# Batch dispatch
DISPATCH_DOCUMENTS_TOTAL = Counter(
    'docintake_dispatch_documents_total',
    'Documents dispatched for extraction by outcome',
    ['outcome']  # success, timeout, failed
)

DISPATCH_WAVE_SECONDS = Histogram(
    'docintake_dispatch_wave_seconds',
    'Wall time of one dispatch wave',
    buckets=[0.1, 0.5, 1, 5, 15, 30, 60, 120, 300]
)

DISPATCH_INFLIGHT = Gauge(
    'docintake_dispatch_inflight',
    'Extraction calls currently awaited by the dispatcher'
)

# Export bookkeeping
EXPORT_TIMEOUTS_TOTAL = Counter(
    'docintake_export_timeouts_total',
    'Exports failed by the stale export sweep'
)

# Offline replay queue
REPLAY_ACTIONS_TOTAL = Counter(
    'docintake_replay_actions_total',
    'Replayed offline actions by outcome',
    ['outcome']  # synced, retry, dropped
)

REPLAY_PENDING = Gauge(
    'docintake_replay_pending',
    'Offline actions waiting to be replayed'
)


class PrometheusMetrics:
    """Service for managing Prometheus metrics."""

    def __init__(self):
        self._setup_build_info()

    def _setup_build_info(self):
        version = os.getenv("APP_VERSION", "dev")
        image_tag = os.getenv("IMAGE_TAG", "latest")
        BUILD_INFO.labels(version=version, image_tag=image_tag).set(1)

    def increment_requests(self, status_code: int, path: str = "/unknown"):
        """Increment request counter."""
        if 200 <= status_code < 300:
            status_class = "2xx"
        elif 400 <= status_code < 500:
            status_class = "4xx"
        elif 500 <= status_code < 600:
            status_class = "5xx"
        else:
            status_class = "other"

        if "/v1/jobs" in path:
            path_group = "jobs"
        elif "/v1/batches" in path:
            path_group = "batches"
        elif "/v1/entities" in path:
            path_group = "entities"
        else:
            path_group = "other"

        REQUESTS_TOTAL.labels(status_class=status_class, path_group=path_group).inc()

    def increment_jobs_created(self, job_type: str):
        JOBS_CREATED_TOTAL.labels(job_type=job_type).inc()

    def increment_jobs_rejected(self, reason: str):
        JOBS_REJECTED_TOTAL.labels(reason=reason).inc()

    def increment_jobs_finished(self, job_type: str, status: str):
        JOBS_FINISHED_TOTAL.labels(job_type=job_type, status=status).inc()

    def increment_admission(self, decision: str):
        ADMISSION_DECISIONS_TOTAL.labels(decision=decision).inc()

    def increment_dispatch_documents(self, outcome: str, count: int = 1):
        """Increment dispatched documents counter."""
        DISPATCH_DOCUMENTS_TOTAL.labels(outcome=outcome).inc(count)

    def observe_dispatch_wave(self, seconds: float):
        DISPATCH_WAVE_SECONDS.observe(seconds)

    def inc_dispatch_inflight(self, count: int = 1):
        DISPATCH_INFLIGHT.inc(count)

    def dec_dispatch_inflight(self, count: int = 1):
        DISPATCH_INFLIGHT.dec(count)

    def increment_export_timeouts(self, count: int = 1):
        EXPORT_TIMEOUTS_TOTAL.inc(count)

    def increment_replay(self, outcome: str, count: int = 1):
        """Increment replay outcome counter."""
        REPLAY_ACTIONS_TOTAL.labels(outcome=outcome).inc(count)

    def set_replay_pending(self, count: int):
        REPLAY_PENDING.set(count)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest()

    def get_content_type(self) -> str:
        """Get the content type for Prometheus metrics."""
        return CONTENT_TYPE_LATEST

# Global metrics instance
prometheus_metrics = PrometheusMetrics()
