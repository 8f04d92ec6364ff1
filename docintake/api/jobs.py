"""
Jobs API: submission, status polling and status event streams
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..auth import get_caller, require_key
from ..errors import JobRejected
from ..schemas.job import JobCreate, JobCreated, JobStatusOut
from ..services.container import Services
from ..services.events import job_topic
from .deps import get_services
from .sse import sse_response

logger = logging.getLogger("api.jobs")

router = APIRouter(tags=["Jobs"])

_REJECTION_STATUS = {
    JobRejected.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    JobRejected.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    JobRejected.VALIDATION_ERROR: 422,
}


@router.post("/jobs", status_code=status.HTTP_201_CREATED, response_model=JobCreated)
async def create_job(body: JobCreate, request: Request, services: Services = Depends(get_services)):
    """
    Create a job. Returns immediately; dispatch is triggered in the background.

    Rejections carry a machine-readable reason: rate_limited, unauthenticated
    or validation_error.
    """
    try:
        job_id = services.jobs.create_job(
            body.jobType,
            body.payload,
            customer_id=body.customerId,
            priority=body.priority,
            caller=get_caller(request),
        )
    except JobRejected as e:
        raise HTTPException(
            status_code=_REJECTION_STATUS.get(e.reason, status.HTTP_400_BAD_REQUEST),
            detail={"reason": e.reason, "message": str(e)},
        )
    return {"jobId": job_id}


@router.get("/jobs/{job_id}", response_model=JobStatusOut)
async def get_job_status(job_id: str, _: str = Depends(require_key),
                         services: Services = Depends(get_services)):
    job = services.jobs.get_job_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/jobs/{job_id}/events")
async def stream_job_events(job_id: str, _: str = Depends(require_key),
                            services: Services = Depends(get_services)):
    """Server-sent events, one per status transition of this job"""
    if services.job_store.get(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return sse_response(services.broker.stream(job_topic(job_id)))
