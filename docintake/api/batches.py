"""
Batch dispatch, progress and export bookkeeping endpoints
"""

import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from ..auth import require_key
from ..config import DISPATCH_MAX_PARALLEL
from ..errors import PersistenceFailure, SelectionFailure
from ..schemas.batch import DispatchRequest, ExportFailure, ExportTimeoutSweep, ResumeRequest
from ..services.batch_tracker import batch_phase
from ..services.container import Services
from ..services.events import BATCHES_TOPIC, batch_topic
from .deps import get_services
from .sse import sse_response

logger = logging.getLogger("api.batches")

router = APIRouter(tags=["Batches"], dependencies=[Depends(require_key)])


def _batch_out(batch):
    out = batch.to_dict()
    out["phase"] = batch_phase(batch)
    return out


def _or_404(batch):
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return _batch_out(batch)


@router.post("/batches/dispatch")
async def dispatch_batch(body: DispatchRequest, services: Services = Depends(get_services)):
    """Run the batch's unfinished documents through extraction in bounded waves"""
    try:
        summary = await services.dispatcher.dispatch_batch(
            body.batchId,
            max_parallel=body.maxParallel or DISPATCH_MAX_PARALLEL,
            prioritize_simple=body.prioritizeSimple,
            skip_processed=body.skipProcessed,
        )
    except SelectionFailure as e:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e.cause), "durationMs": e.duration_ms},
        )
    return summary.to_dict()


@router.post("/batches/export-timeouts")
async def fail_stale_exports(body: Optional[ExportTimeoutSweep] = None,
                             services: Services = Depends(get_services)):
    minutes = body.olderThanMinutes if body else None
    failed = services.tracker.fail_stale_exports(minutes)
    return {"success": True, "timedOut": len(failed), "batchIds": failed}


@router.get("/batches/events")
async def stream_all_batch_events(services: Services = Depends(get_services)):
    return sse_response(services.broker.stream(BATCHES_TOPIC))


@router.get("/batches/{batch_id}")
async def get_batch(batch_id: str, services: Services = Depends(get_services)):
    return _or_404(services.tracker.get_batch(batch_id))


@router.get("/batches/{batch_id}/events")
async def stream_batch_events(batch_id: str, services: Services = Depends(get_services)):
    if services.tracker.get_batch(batch_id) is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return sse_response(services.broker.stream(batch_topic(batch_id)))


@router.post("/batches/{batch_id}/resume", status_code=status.HTTP_202_ACCEPTED)
async def resume_batch(batch_id: str, background: BackgroundTasks,
                       body: Optional[ResumeRequest] = None,
                       services: Services = Depends(get_services)):
    """Re-dispatch the batch's unfinished documents in the background"""
    if services.tracker.get_batch(batch_id) is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    max_parallel = (body.maxParallel if body else None) or DISPATCH_MAX_PARALLEL
    background.add_task(services.worker.resume_batch, batch_id, max_parallel)
    logger.info(f"Resume requested for batch {batch_id}")
    return {"success": True, "batchId": batch_id, "message": "Batch processing resumed"}


def _export_step(fn, batch_id: str, *args):
    try:
        return _or_404(fn(batch_id, *args))
    except PersistenceFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/batches/{batch_id}/export/start")
async def start_export(batch_id: str, services: Services = Depends(get_services)):
    return _export_step(services.tracker.begin_export, batch_id)


@router.post("/batches/{batch_id}/export/complete")
async def complete_export(batch_id: str, services: Services = Depends(get_services)):
    return _export_step(services.tracker.complete_export, batch_id)


@router.post("/batches/{batch_id}/export/fail")
async def fail_export(batch_id: str, body: Optional[ExportFailure] = None,
                      services: Services = Depends(get_services)):
    return _export_step(services.tracker.fail_export, batch_id, (body or ExportFailure()).error)
