"""
Wiring of the scheduler services; one instance per application
"""

from dataclasses import dataclass
from typing import Any, Optional

from ..db import SessionLocal
from .batch_tracker import BatchStateTracker
from .dispatcher import BatchDispatcher
from .entities import SqlEntityRepository, default_repository
from .events import EventBroker, broker
from .extraction import ExtractionClient
from .job_store import JobStore
from .jobs import JobSubmissionService
from .ratelimit import TenantRateLimiter
from .worker import JobWorker


@dataclass
class Services:
    broker: EventBroker
    job_store: JobStore
    rate_limiter: TenantRateLimiter
    tracker: BatchStateTracker
    dispatcher: BatchDispatcher
    worker: JobWorker
    jobs: JobSubmissionService
    entities: SqlEntityRepository


def build_services(session_factory=SessionLocal, extractor: Optional[Any] = None,
                   event_broker: EventBroker = broker, trigger_enabled: Optional[bool] = None) -> Services:
    """extractor: anything with ``async extract(document_id, options)``; defaults to the HTTP client"""
    job_store = JobStore(session_factory, event_broker)
    rate_limiter = TenantRateLimiter(job_store, session_factory)
    tracker = BatchStateTracker(session_factory, event_broker)
    dispatcher = BatchDispatcher(extractor or ExtractionClient(), tracker, session_factory)
    worker = JobWorker(job_store, dispatcher, tracker)
    jobs = JobSubmissionService(job_store, rate_limiter, trigger=worker.run_once, event_broker=event_broker)
    if trigger_enabled is not None:
        jobs.trigger_enabled = trigger_enabled
    return Services(
        broker=event_broker,
        job_store=job_store,
        rate_limiter=rate_limiter,
        tracker=tracker,
        dispatcher=dispatcher,
        worker=worker,
        jobs=jobs,
        entities=default_repository(session_factory),
    )
