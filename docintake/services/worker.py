"""
Job worker: claims pending jobs (fair share across tenants) and runs them
"""

import logging
from typing import Any, Dict, Optional

from ..config import DISPATCH_MAX_PARALLEL
from ..errors import InvalidTransition, SchedulerError, SelectionFailure
from ..models.job import Job
from .batch_tracker import BatchStateTracker
from .dispatcher import BatchDispatcher, DispatchSummary
from .job_store import JobStore
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("worker")


class UnknownJobType(SchedulerError):
    pass


class JobWorker:

    def __init__(self, job_store: JobStore, dispatcher: BatchDispatcher, tracker: BatchStateTracker):
        self._jobs = job_store
        self._dispatcher = dispatcher
        self._tracker = tracker

    async def run_once(self) -> Optional[str]:
        """Claim and execute a single pending job. Returns its id, or None when idle."""
        job = self._jobs.claim_next()
        if job is None:
            return None

        try:
            result = await self._execute(job)
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", extra={
                "component": "worker",
                "job_id": job.id,
                "job_type": job.job_type
            })
            self._finish(job, "failed", error_message=str(e) or e.__class__.__name__)
        else:
            self._finish(job, "completed", result=result)
        return job.id

    async def run_pending(self, limit: int = 100) -> int:
        """Drain up to limit pending jobs; returns how many ran"""
        ran = 0
        while ran < limit:
            if await self.run_once() is None:
                break
            ran += 1
        return ran

    def _finish(self, job: Job, status: str, **fields):
        try:
            if status == "completed":
                self._jobs.mark_completed(job.id, fields.get("result"))
            else:
                self._jobs.mark_failed(job.id, fields.get("error_message", ""))
            prometheus_metrics.increment_jobs_finished(job.job_type, status)
        except InvalidTransition as e:
            logger.warning(f"Job {job.id} already finished: {e}")

    async def _execute(self, job: Job) -> Dict[str, Any]:
        payload = job.payload or {}
        if job.job_type == "batch_dispatch":
            return await self._run_batch_dispatch(payload)
        if job.job_type == "extraction":
            return await self._run_extraction(payload)
        raise UnknownJobType(f"Unknown job type: {job.job_type}")

    async def _run_batch_dispatch(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        batch_id = payload.get("batchId")
        if not batch_id:
            raise ValueError("batch_dispatch job requires batchId")
        summary = await self._dispatcher.dispatch_batch(
            batch_id,
            max_parallel=int(payload.get("maxParallel") or DISPATCH_MAX_PARALLEL),
            prioritize_simple=payload.get("prioritizeSimple", True),
            skip_processed=payload.get("skipProcessed", True),
        )
        return summary.to_dict()

    async def _run_extraction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        document_id = payload.get("documentId")
        if not document_id:
            raise ValueError("extraction job requires documentId")
        result = await self._dispatcher.extract_document(document_id)
        self._tracker.record_extraction_completed(document_id, result.confidence, result.metadata)
        return {"documentId": document_id, "confidence": result.confidence}

    async def resume_batch(self, batch_id: str, max_parallel: int = DISPATCH_MAX_PARALLEL) -> Optional[DispatchSummary]:
        """Re-dispatch only the batch's unfinished documents"""
        try:
            summary = await self._dispatcher.dispatch_batch(batch_id, max_parallel=max_parallel,
                                                            prioritize_simple=True, skip_processed=True)
        except SelectionFailure as e:
            self._tracker.fail_batch(batch_id, str(e))
            return None
        logger.info(f"Resumed batch {batch_id}: {summary.successful} ok, {summary.failed} failed")
        return summary
