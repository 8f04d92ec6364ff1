"""
Batch State Tracker: persists batch progress counters and derives the display phase
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..config import EXPORT_TIMEOUT_MINUTES
from ..db import SessionLocal, session_scope
from ..errors import PersistenceFailure
from ..models.batch import Batch
from ..models.document import Document
from ..utils.timeutil import utcnow
from .events import BATCHES_TOPIC, EventBroker, batch_topic, broker
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("batch_tracker")

PHASE_QUEUED = "queued"
PHASE_EXTRACTING = "extracting"
PHASE_READY_FOR_VALIDATION = "ready_for_validation"
PHASE_COMPLETE = "complete"
PHASE_FAILED = "failed"


def derive_phase(status: str, total: int, processed: int, validated: int) -> str:
    """Display phase computed from stored status and counters; never persisted"""
    if status == "error":
        return PHASE_FAILED
    if status in ("complete", "exported"):
        return PHASE_COMPLETE
    if total > 0 and validated >= total:
        return PHASE_COMPLETE
    if status == "new":
        return PHASE_QUEUED
    if processed < total:
        return PHASE_EXTRACTING
    return PHASE_READY_FOR_VALIDATION


def batch_phase(batch: Batch) -> str:
    return derive_phase(batch.status, batch.total_documents or 0,
                        batch.processed_documents or 0, batch.validated_documents or 0)


def batch_event(batch: Batch) -> Dict[str, Any]:
    return {
        "batchId": batch.id,
        "status": batch.status,
        "phase": batch_phase(batch),
        "totalDocuments": batch.total_documents,
        "processedDocuments": batch.processed_documents,
        "validatedDocuments": batch.validated_documents,
        "errorCount": batch.error_count,
    }


def _clamp(value: int, total: int) -> int:
    return max(0, min(value, total))


class BatchStateTracker:

    def __init__(self, session_factory=SessionLocal, event_broker: EventBroker = broker,
                 export_timeout_minutes: int = EXPORT_TIMEOUT_MINUTES):
        self._session_factory = session_factory
        self._broker = event_broker
        self.export_timeout_minutes = export_timeout_minutes

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        db = self._session_factory()
        try:
            batch = db.get(Batch, batch_id)
            if batch is not None:
                db.expunge(batch)
            return batch
        finally:
            db.close()

    def phase(self, batch_id: str) -> Optional[str]:
        batch = self.get_batch(batch_id)
        return batch_phase(batch) if batch is not None else None

    def _publish(self, batch: Batch):
        event = batch_event(batch)
        self._broker.publish(batch_topic(batch.id), event)
        self._broker.publish(BATCHES_TOPIC, event)

    def _mutate(self, batch_id: str, action: str, fn: Callable, strict: bool = False) -> Optional[Batch]:
        try:
            with session_scope(self._session_factory) as db:
                batch = db.get(Batch, batch_id)
                if batch is None:
                    logger.warning(f"Batch {batch_id} not found for {action}")
                    return None
                fn(db, batch)
                db.flush()
                db.expunge(batch)
        except SQLAlchemyError as e:
            logger.error("Batch progress write failed", extra={
                "component": "batch_tracker",
                "batch_id": batch_id,
                "action": action,
                "error": str(e)
            })
            if strict:
                raise PersistenceFailure(f"{action} failed for batch {batch_id}: {e}") from e
            return None

        self._publish(batch)
        return batch

    # ---------------- Dispatch progress ----------------

    def begin_dispatch(self, batch_id: str) -> Optional[Batch]:
        def apply(db, batch):
            if batch.status in ("complete", "exported"):
                return
            batch.status = "scanning"
            batch.started_at = utcnow()
            batch.error_message = None
            # Each dispatch run counts its own failures
            batch.error_count = 0
        return self._mutate(batch_id, "begin_dispatch", apply)

    def record_wave(self, batch_id: str, results: Iterable[Any]) -> Optional[Batch]:
        """Apply one wave of per-document dispatch outcomes"""
        results = list(results)
        if not results:
            return self.get_batch(batch_id)

        def apply(db, batch):
            failed = 0
            for r in results:
                if not r.success:
                    failed += 1
                    continue
                if r.confidence is not None and r.metadata is not None:
                    doc = db.get(Document, r.document_id)
                    if doc is not None:
                        doc.confidence_score = r.confidence
                        doc.extracted_metadata = r.metadata
            total = batch.total_documents or 0
            batch.processed_documents = _clamp((batch.processed_documents or 0) + len(results), total)
            batch.error_count = _clamp((batch.error_count or 0) + failed, total)
        return self._mutate(batch_id, "record_wave", apply)

    def finish_dispatch(self, batch_id: str) -> Optional[Batch]:
        def apply(db, batch):
            if batch.status == "scanning":
                batch.status = "indexing"
        return self._mutate(batch_id, "finish_dispatch", apply)

    def fail_batch(self, batch_id: str, error: str) -> Optional[Batch]:
        def apply(db, batch):
            batch.status = "error"
            batch.error_message = error
            batch.export_started_at = None
        return self._mutate(batch_id, "fail_batch", apply)

    def record_extraction_completed(self, document_id: str, confidence: Optional[float],
                                    metadata: Optional[Dict[str, Any]]) -> Optional[Batch]:
        """Asynchronous completion event from the extraction service (may follow a soft timeout)"""
        db = self._session_factory()
        try:
            doc = db.get(Document, document_id)
            batch_id = doc.batch_id if doc is not None else None
        finally:
            db.close()
        if batch_id is None:
            logger.warning(f"Completion event for unknown document {document_id}")
            return None

        def apply(db, batch):
            doc = db.get(Document, document_id)
            if doc is None:
                return
            doc.confidence_score = confidence
            doc.extracted_metadata = metadata if metadata is not None else {}
            db.flush()
            finished = db.query(func.count(Document.id)).filter(
                Document.batch_id == batch.id,
                Document.confidence_score.isnot(None),
                Document.extracted_metadata.isnot(None),
            ).scalar() or 0
            total = batch.total_documents or 0
            # Counters only move forward; dispatch may already have counted this document
            batch.processed_documents = _clamp(max(batch.processed_documents or 0, finished), total)
        return self._mutate(batch_id, "record_extraction_completed", apply)

    def record_document_validated(self, document_id: str) -> Optional[Batch]:
        db = self._session_factory()
        try:
            doc = db.get(Document, document_id)
            batch_id = doc.batch_id if doc is not None else None
        finally:
            db.close()
        if batch_id is None:
            return None

        def apply(db, batch):
            doc = db.get(Document, document_id)
            if doc is None:
                return
            if doc.validation_status == "validated":
                return
            doc.validation_status = "validated"
            total = batch.total_documents or 0
            batch.validated_documents = _clamp((batch.validated_documents or 0) + 1, total)
            if batch.status == "indexing":
                batch.status = "validation"
            if batch.validated_documents >= total and batch.status == "validation":
                batch.status = "complete"
                batch.completed_at = utcnow()
        return self._mutate(batch_id, "record_document_validated", apply, strict=True)

    # ---------------- Export marker ----------------

    def begin_export(self, batch_id: str) -> Optional[Batch]:
        def apply(db, batch):
            batch.export_started_at = utcnow()
        return self._mutate(batch_id, "begin_export", apply, strict=True)

    def complete_export(self, batch_id: str) -> Optional[Batch]:
        def apply(db, batch):
            batch.status = "exported"
            batch.export_started_at = None
            batch.completed_at = batch.completed_at or utcnow()
        return self._mutate(batch_id, "complete_export", apply, strict=True)

    def fail_export(self, batch_id: str, error: str = "Export failed") -> Optional[Batch]:
        def apply(db, batch):
            batch.status = "error"
            batch.error_message = error
            batch.export_started_at = None
        return self._mutate(batch_id, "fail_export", apply, strict=True)

    def fail_stale_exports(self, older_than_minutes: Optional[int] = None) -> List[str]:
        """Fail exports that have been in flight longer than the export timeout"""
        minutes = older_than_minutes if older_than_minutes is not None else self.export_timeout_minutes
        cutoff = utcnow() - timedelta(minutes=minutes)
        db = self._session_factory()
        try:
            stale = [row[0] for row in db.query(Batch.id).filter(
                Batch.export_started_at.isnot(None),
                Batch.export_started_at < cutoff,
            ).all()]
        finally:
            db.close()

        failed = []
        for batch_id in stale:
            msg = f"Export operation exceeded {minutes} minute timeout"
            if self.fail_export(batch_id, msg) is not None:
                failed.append(batch_id)
        if failed:
            prometheus_metrics.increment_export_timeouts(len(failed))
            logger.warning(f"Marked {len(failed)} batch(es) as export timed out")
        return failed
