"""
Tests for job admission, persistence and the fire-and-forget trigger
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docintake.errors import AdmissionDenied, JobRejected, Unauthenticated
from docintake.services.job_store import JobStore
from docintake.services.jobs import JobSubmissionService
from docintake.services.ratelimit import TenantRateLimiter


@pytest.fixture
def store(session_factory, broker):
    return JobStore(session_factory, broker)


@pytest.fixture
def service(store, session_factory, broker):
    return JobSubmissionService(store, TenantRateLimiter(store, session_factory), event_broker=broker)


def test_create_job_persists_pending(service, store):
    job_id = service.create_job("extraction", {"documentId": "d1"}, customer_id="acme", caller="key-1")
    status = service.get_job_status(job_id)
    assert status["status"] == "pending"
    assert status["completedAt"] is None
    assert store.get(job_id).user_id == "key-1"


def test_concurrency_ceiling_rejects_without_insert(service, store, set_limits):
    set_limits("acme", concurrent=3)
    for _ in range(3):
        service.create_job("extraction", {}, customer_id="acme", caller="key-1")
    before = store.count()

    with pytest.raises(AdmissionDenied) as exc:
        service.create_job("extraction", {}, customer_id="acme", caller="key-1")

    assert exc.value.reason == JobRejected.RATE_LIMITED
    assert store.count() == before


def test_per_minute_ceiling_rejects_without_insert(service, store, set_limits):
    set_limits("acme", per_minute=5)
    for _ in range(5):
        service.create_job("extraction", {}, customer_id="acme", caller="key-1")
    assert store.count() == 5

    with pytest.raises(JobRejected) as exc:
        service.create_job("extraction", {}, customer_id="acme", caller="key-1")

    assert exc.value.reason == "rate_limited"
    assert store.count() == 5


def test_missing_caller_is_unauthenticated(service, store):
    with pytest.raises(Unauthenticated) as exc:
        service.create_job("extraction", {}, customer_id="acme")
    assert exc.value.reason == JobRejected.UNAUTHENTICATED
    assert store.count() == 0


def test_rate_limit_is_checked_before_identity(service, set_limits, store):
    set_limits("acme", concurrent=0)
    with pytest.raises(AdmissionDenied):
        service.create_job("extraction", {}, customer_id="acme", caller=None)


def test_no_customer_skips_admission(store, session_factory, broker):
    limiter = MagicMock(spec=TenantRateLimiter)
    service = JobSubmissionService(store, limiter, event_broker=broker)
    service.create_job("extraction", {}, caller="key-1")
    limiter.check_admission.assert_not_called()


@pytest.mark.parametrize("job_type,priority", [("", "normal"), ("   ", "normal"), ("extraction", "asap")])
def test_validation_errors(service, store, job_type, priority):
    with pytest.raises(JobRejected) as exc:
        service.create_job(job_type, {}, caller="key-1", priority=priority)
    assert exc.value.reason == JobRejected.VALIDATION_ERROR
    assert store.count() == 0


def test_unknown_job_status_is_none(service):
    assert service.get_job_status("missing") is None


def test_create_job_without_running_loop_skips_trigger(store, session_factory, broker):
    trigger = AsyncMock()
    service = JobSubmissionService(store, TenantRateLimiter(store, session_factory),
                                   trigger=trigger, event_broker=broker, trigger_enabled=True)
    job_id = service.create_job("extraction", {}, caller="key-1")
    assert job_id
    trigger.assert_not_called()


@pytest.mark.asyncio
async def test_trigger_is_fire_and_forget(store, session_factory, broker):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_trigger():
        started.set()
        await release.wait()

    service = JobSubmissionService(store, TenantRateLimiter(store, session_factory),
                                   trigger=slow_trigger, event_broker=broker, trigger_enabled=True)

    job_id = service.create_job("extraction", {}, caller="key-1")

    # Returned before the trigger ran to completion
    assert job_id
    assert service.pending_triggers == 1
    await asyncio.wait_for(started.wait(), 1)
    release.set()
    for _ in range(10):
        await asyncio.sleep(0)
    assert service.pending_triggers == 0


@pytest.mark.asyncio
async def test_failing_trigger_does_not_affect_job(store, session_factory, broker):
    async def broken_trigger():
        raise RuntimeError("dispatcher down")

    service = JobSubmissionService(store, TenantRateLimiter(store, session_factory),
                                   trigger=broken_trigger, event_broker=broker, trigger_enabled=True)
    job_id = service.create_job("extraction", {}, caller="key-1")
    await asyncio.sleep(0.01)
    assert service.get_job_status(job_id)["status"] == "pending"
    assert service.pending_triggers == 0


def test_subscription_receives_transitions_in_order(service, store):
    job_id = service.create_job("extraction", {}, caller="key-1")
    seen = []
    unsubscribe = service.subscribe_to_job(job_id, lambda event: seen.append(event["status"]))

    store.mark_processing(job_id)
    store.mark_completed(job_id, {"pages": 3})
    assert seen == ["processing", "completed"]

    unsubscribe()
    unsubscribe()  # idempotent


def test_subscription_is_per_job(service, store):
    first = service.create_job("extraction", {}, caller="key-1")
    second = service.create_job("extraction", {}, caller="key-1")
    seen = []
    service.subscribe_to_job(first, seen.append)
    store.mark_processing(second)
    assert seen == []
