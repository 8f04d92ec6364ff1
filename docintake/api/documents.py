"""
Document progress signals from the extraction collaborator and validators
"""

from fastapi import APIRouter, Depends, HTTPException

from ..auth import require_key
from ..errors import PersistenceFailure
from ..schemas.batch import ExtractionCompleted
from ..services.batch_tracker import batch_phase
from ..services.container import Services
from .deps import get_services

router = APIRouter(tags=["Documents"], dependencies=[Depends(require_key)])


@router.post("/documents/{document_id}/extraction-complete")
async def extraction_complete(document_id: str, body: ExtractionCompleted,
                              services: Services = Depends(get_services)):
    """Completion event; may arrive after the dispatcher recorded a soft timeout"""
    batch = services.tracker.record_extraction_completed(document_id, body.confidence, body.metadata)
    if batch is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"batchId": batch.id, "processedDocuments": batch.processed_documents, "phase": batch_phase(batch)}


@router.post("/documents/{document_id}/validated")
async def document_validated(document_id: str, services: Services = Depends(get_services)):
    try:
        batch = services.tracker.record_document_validated(document_id)
    except PersistenceFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    if batch is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"batchId": batch.id, "validatedDocuments": batch.validated_documents, "phase": batch_phase(batch)}
