"""
Generic entity mutations, the replay target for offline clients
"""

import logging
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..auth import require_key
from ..services.container import Services
from ..services.entities import EntityNotFound, UnknownEntityKind
from .deps import get_services

logger = logging.getLogger("api.entities")

router = APIRouter(tags=["Entities"], dependencies=[Depends(require_key)])


def _run(fn, *args):
    try:
        return fn(*args)
    except UnknownEntityKind as e:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {e.args[0]}")
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=f"Not found: {e.args[0]}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/entities/{kind}", status_code=status.HTTP_201_CREATED)
async def insert_entity(kind: str, data: Dict[str, Any] = Body(...),
                        services: Services = Depends(get_services)):
    return _run(services.entities.insert, kind, data)


@router.patch("/entities/{kind}/{entity_id}")
async def update_entity(kind: str, entity_id: str, patch: Dict[str, Any] = Body(...),
                        services: Services = Depends(get_services)):
    return _run(services.entities.update, kind, entity_id, patch)


@router.delete("/entities/{kind}/{entity_id}")
async def delete_entity(kind: str, entity_id: str, services: Services = Depends(get_services)):
    # Deleting a missing row succeeds so replays stay idempotent
    deleted = _run(services.entities.delete, kind, entity_id)
    return {"deleted": deleted}
