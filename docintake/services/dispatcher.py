"""
Batch Parallel Dispatcher

Fetches a batch's unfinished documents, orders them cheapest-first and runs
extraction calls in sequential waves of at most ``max_parallel`` concurrent
calls. A per-document soft timeout stops waiting without cancelling the
remote call; its late result is forwarded to the batch tracker.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ..config import (
    COMPLEX_FILE_TYPES, DISPATCH_MAX_PARALLEL, EXTRACT_TIMEOUT_COMPLEX_MS, EXTRACT_TIMEOUT_SIMPLE_MS
)
from ..db import SessionLocal
from ..errors import ExtractionTimeout, SelectionFailure
from ..models.document import Document
from .batch_tracker import BatchStateTracker
from .extraction import ExtractionOptions
from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("dispatcher")

TIMEOUT_WARNING = "timeout but processing continues"


@dataclass
class DocumentRef:
    id: str
    file_type: str = ""
    processing_priority: int = 0


@dataclass
class DocumentResult:
    document_id: str
    success: bool
    confidence: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"documentId": self.document_id, "success": self.success}
        if self.confidence is not None:
            out["confidence"] = self.confidence
        if self.warning:
            out["warning"] = self.warning
        if self.error:
            out["error"] = self.error
        out["durationMs"] = self.duration_ms
        return out


@dataclass
class DispatchSummary:
    batch_id: str
    processed: int = 0
    successful: int = 0
    failed: int = 0
    duration_ms: int = 0
    avg_doc_time_ms: int = 0
    wave_durations_ms: List[int] = field(default_factory=list)
    results: List[DocumentResult] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "success": True,
            "batchId": self.batch_id,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "durationMs": self.duration_ms,
            "avgDocTimeMs": self.avg_doc_time_ms,
            "waves": len(self.wave_durations_ms),
            "results": [r.to_dict() for r in self.results],
        }
        if self.message:
            out["message"] = self.message
        return out


def is_complex(file_type: Optional[str], complex_types: Iterable[str] = COMPLEX_FILE_TYPES) -> bool:
    """Paginated formats (pdf, tiff) cost more than single-page images"""
    return (file_type or "").lower().lstrip(".") in set(complex_types)


def schedule_order(documents: Sequence[DocumentRef], prioritize_simple: bool = True,
                   complex_types: Iterable[str] = COMPLEX_FILE_TYPES) -> List[DocumentRef]:
    """Simple documents before complex ones, then processing_priority descending.

    The sort is stable, so documents equal on both keys keep selection order.
    """
    if not prioritize_simple:
        return list(documents)
    complex_types = set(complex_types)
    return sorted(documents, key=lambda d: (is_complex(d.file_type, complex_types), -(d.processing_priority or 0)))


def chunk_waves(documents: Sequence[DocumentRef], max_parallel: int) -> List[List[DocumentRef]]:
    if max_parallel < 1:
        raise ValueError("max_parallel must be >= 1")
    return [list(documents[i:i + max_parallel]) for i in range(0, len(documents), max_parallel)]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class BatchDispatcher:

    def __init__(self, extractor, tracker: Optional[BatchStateTracker] = None,
                 session_factory=SessionLocal,
                 simple_timeout_ms: int = EXTRACT_TIMEOUT_SIMPLE_MS,
                 complex_timeout_ms: int = EXTRACT_TIMEOUT_COMPLEX_MS,
                 complex_types: Iterable[str] = COMPLEX_FILE_TYPES,
                 options: Optional[ExtractionOptions] = None):
        self._extractor = extractor
        self._tracker = tracker
        self._session_factory = session_factory
        self.simple_timeout_ms = simple_timeout_ms
        self.complex_timeout_ms = complex_timeout_ms
        self.complex_types = set(complex_types)
        self.options = options or ExtractionOptions()
        # Extraction calls that outlived their soft timeout
        self._late: Set[asyncio.Task] = set()

    def timeout_for(self, doc: DocumentRef) -> float:
        ms = self.complex_timeout_ms if is_complex(doc.file_type, self.complex_types) else self.simple_timeout_ms
        return ms / 1000.0

    def select_documents(self, batch_id: str, skip_processed: bool = True) -> List[DocumentRef]:
        db = self._session_factory()
        try:
            query = db.query(Document).filter(Document.batch_id == batch_id)
            if skip_processed:
                query = query.filter(
                    (Document.confidence_score.is_(None)) | (Document.extracted_metadata.is_(None))
                )
            rows = query.order_by(Document.processing_priority.desc(), Document.created_at.asc()).all()
            return [DocumentRef(id=d.id, file_type=d.file_type, processing_priority=d.processing_priority)
                    for d in rows]
        finally:
            db.close()

    async def dispatch_batch(self, batch_id: str, max_parallel: int = DISPATCH_MAX_PARALLEL,
                             prioritize_simple: bool = True, skip_processed: bool = True) -> DispatchSummary:
        started = time.perf_counter()
        try:
            documents = self.select_documents(batch_id, skip_processed)
        except Exception as e:
            duration_ms = _elapsed_ms(started)
            logger.error("Document selection failed", extra={
                "component": "dispatcher",
                "batch_id": batch_id,
                "error": str(e),
                "duration_ms": duration_ms
            })
            raise SelectionFailure(batch_id, e, duration_ms) from e

        summary = DispatchSummary(batch_id=batch_id)
        if not documents:
            summary.message = "No documents to process"
            summary.duration_ms = _elapsed_ms(started)
            return summary

        ordered = schedule_order(documents, prioritize_simple, self.complex_types)
        waves = chunk_waves(ordered, max_parallel)
        logger.info(f"Dispatching batch {batch_id}: {len(ordered)} documents in {len(waves)} waves "
                    f"(max_parallel={max_parallel})")
        if self._tracker is not None:
            self._tracker.begin_dispatch(batch_id)

        for index, wave in enumerate(waves, start=1):
            wave_started = time.perf_counter()
            wave_results = await asyncio.gather(*(self._run_one(doc) for doc in wave))
            wave_ms = _elapsed_ms(wave_started)
            summary.wave_durations_ms.append(wave_ms)
            summary.results.extend(wave_results)
            prometheus_metrics.observe_dispatch_wave(wave_ms / 1000.0)
            if self._tracker is not None:
                self._tracker.record_wave(batch_id, wave_results)
            logger.info(f"Completed wave {index}/{len(waves)} for batch {batch_id} in {wave_ms}ms")

        if self._tracker is not None:
            self._tracker.finish_dispatch(batch_id)

        summary.processed = len(summary.results)
        summary.successful = sum(1 for r in summary.results if r.success)
        summary.failed = summary.processed - summary.successful
        summary.duration_ms = _elapsed_ms(started)
        summary.avg_doc_time_ms = round(summary.duration_ms / summary.processed) if summary.processed else 0
        logger.info("Batch dispatch complete", extra={
            "component": "dispatcher",
            "batch_id": batch_id,
            "processed": summary.processed,
            "successful": summary.successful,
            "failed": summary.failed,
            "duration_ms": summary.duration_ms
        })
        return summary

    async def extract_document(self, document_id: str):
        """Single extraction outside of a wave; errors propagate to the caller"""
        return await self._extractor.extract(document_id, self.options)

    async def _run_one(self, doc: DocumentRef) -> DocumentResult:
        started = time.perf_counter()
        task = asyncio.ensure_future(self._extractor.extract(doc.id, self.options))
        prometheus_metrics.inc_dispatch_inflight()
        task.add_done_callback(lambda _t: prometheus_metrics.dec_dispatch_inflight())
        try:
            result = await self._await_soft(doc, task)
        except ExtractionTimeout as e:
            logger.warning(str(e), extra={"component": "dispatcher", "document_id": doc.id})
            self._watch_late_completion(doc, task)
            prometheus_metrics.increment_dispatch_documents("timeout")
            return DocumentResult(doc.id, True, warning=TIMEOUT_WARNING, duration_ms=_elapsed_ms(started))
        except Exception as e:
            logger.error(f"Error processing document {doc.id}: {e}")
            prometheus_metrics.increment_dispatch_documents("failed")
            return DocumentResult(doc.id, False, error=str(e) or e.__class__.__name__,
                                  duration_ms=_elapsed_ms(started))

        prometheus_metrics.increment_dispatch_documents("success")
        return DocumentResult(doc.id, True, confidence=result.confidence, metadata=result.metadata,
                              duration_ms=_elapsed_ms(started))

    async def _await_soft(self, doc: DocumentRef, task: asyncio.Future):
        timeout = self.timeout_for(doc)
        try:
            # shield: expiry stops the wait, not the call
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            raise ExtractionTimeout(
                f"Extraction of {doc.id} exceeded {timeout:.0f}s; processing continues") from None

    def _watch_late_completion(self, doc: DocumentRef, task: asyncio.Future):
        self._late.add(task)

        def _done(t: asyncio.Future):
            self._late.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(f"Late extraction for {doc.id} failed: {exc}")
                return
            result = t.result()
            logger.info(f"Late extraction result arrived for {doc.id}")
            if self._tracker is not None:
                self._tracker.record_extraction_completed(doc.id, result.confidence, result.metadata)

        task.add_done_callback(_done)

    @property
    def pending_late_completions(self) -> int:
        return len(self._late)

    async def drain(self):
        """Wait for extraction calls that outlived their soft timeout"""
        if self._late:
            await asyncio.gather(*list(self._late), return_exceptions=True)
