from fastapi import APIRouter, Depends, Query
from typing import Optional

from ..auth import require_key
from ..logging_config import get_memory_handler

router = APIRouter(tags=["Logs"], dependencies=[Depends(require_key)])


@router.get("/logs")
def get_logs(limit: int = Query(100, ge=1, le=5000),
             component: Optional[str] = Query(None, description="Only records from this component"),
             batch_id: Optional[str] = None):
    """Recent log records from the in-memory ring buffer, oldest first"""
    logs = get_memory_handler().get_logs(limit=0)
    if component:
        logs = [r for r in logs if r.get("component") == component]
    if batch_id:
        logs = [r for r in logs if r.get("batch_id") == batch_id]
    logs = logs[-limit:]
    return {"logs": logs, "count": len(logs)}
