"""
Job Submission Service: validate, admit, persist and trigger work
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..config import JOB_TRIGGER_ENABLED
from ..errors import AdmissionDenied, JobRejected, Unauthenticated
from ..models.job import PRIORITY_RANK
from ..utils.timeutil import isoformat
from .events import EventBroker, broker, job_topic
from .job_store import JobStore
from .prometheus_metrics import prometheus_metrics
from .ratelimit import AdmissionDecision, TenantRateLimiter

logger = logging.getLogger("jobs")

Trigger = Callable[[], Awaitable[Any]]


class JobSubmissionService:

    def __init__(self, job_store: JobStore, rate_limiter: TenantRateLimiter,
                 trigger: Optional[Trigger] = None, event_broker: EventBroker = broker,
                 trigger_enabled: bool = JOB_TRIGGER_ENABLED):
        self._jobs = job_store
        self._limiter = rate_limiter
        self._trigger = trigger
        self._broker = event_broker
        self.trigger_enabled = trigger_enabled
        # Strong references so fire-and-forget tasks are not collected mid-flight
        self._background: Set[asyncio.Task] = set()

    def create_job(self, job_type: str, payload: Optional[Dict[str, Any]] = None,
                   customer_id: Optional[str] = None, priority: str = "normal",
                   caller: Optional[str] = None) -> str:
        """Returns the new job id or raises JobRejected. Never waits for dispatch."""
        if not job_type or not str(job_type).strip():
            raise self._reject(JobRejected(JobRejected.VALIDATION_ERROR, "job_type is required"))
        if priority not in PRIORITY_RANK:
            raise self._reject(JobRejected(JobRejected.VALIDATION_ERROR, f"Invalid priority: {priority}"))

        # Check-then-insert is not atomic; concurrent submissions may overshoot a ceiling slightly
        if customer_id:
            decision = self._limiter.check_admission(customer_id, job_type)
            prometheus_metrics.increment_admission(decision.value)
            if decision is AdmissionDecision.DENY:
                raise self._reject(AdmissionDenied(customer_id))

        if not caller:
            raise self._reject(Unauthenticated())

        job_id = self._jobs.insert(job_type, payload or {}, user_id=caller,
                                   customer_id=customer_id, priority=priority)
        prometheus_metrics.increment_jobs_created(job_type)
        self._fire_trigger(job_id)
        return job_id

    def _reject(self, error: JobRejected) -> JobRejected:
        prometheus_metrics.increment_jobs_rejected(error.reason)
        logger.info(f"Job rejected: {error.reason}", extra={"component": "jobs", "reason": error.reason})
        return error

    def _fire_trigger(self, job_id: str):
        if not self.trigger_enabled or self._trigger is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; job {job_id} left for the next worker pass")
            return
        task = loop.create_task(self._trigger())
        self._background.add(task)
        task.add_done_callback(self._trigger_done)

    def _trigger_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Job trigger failed: {exc}")

    @property
    def pending_triggers(self) -> int:
        return len(self._background)

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        return {
            "jobId": job.id,
            "jobType": job.job_type,
            "status": job.status,
            "result": job.result,
            "errorMessage": job.error_message,
            "completedAt": isoformat(job.completed_at),
        }

    def subscribe_to_job(self, job_id: str, on_update: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """Deliver every status transition of job_id, in order, until unsubscribed"""
        return self._broker.subscribe(job_topic(job_id), on_update)
