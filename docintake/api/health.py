"""
Health check endpoints - no authentication required
"""

from fastapi import APIRouter, Depends

from ..config import API_VERSION
from ..services.container import Services
from .deps import get_services

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    db_ok = services.job_store.ping()
    return {"status": "ok" if db_ok else "degraded", "database": db_ok, "version": API_VERSION}


# Unauthenticated liveness probe for container HEALTHCHECKs
@router.get("/healthz", include_in_schema=False)
async def healthz():
    return {"status": "ok"}
