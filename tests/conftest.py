# tests/conftest.py
import asyncio
import os
from typing import Dict, List, Optional, Sequence, Tuple

os.environ.setdefault("BACKGROUND_LOOPS_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docintake import config
from docintake.db import init_db, session_scope
from docintake.models.batch import Batch
from docintake.models.document import Document
from docintake.models.tenant import TenantLimits
from docintake.services.events import EventBroker
from docintake.services.extraction import ExtractionResult
from docintake.utils.timeutil import new_id


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def broker():
    return EventBroker()


class FakeExtractor:
    """Stand-in for the extraction collaborator.

    Per-document behaviour: a float delay in seconds (then succeed), or an
    Exception instance to raise. Tracks call order and peak concurrency.
    """

    def __init__(self, delays: Optional[Dict[str, float]] = None,
                 failures: Optional[Dict[str, Exception]] = None,
                 default_delay: float = 0.0):
        self.delays = delays or {}
        self.failures = failures or {}
        self.default_delay = default_delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def extract(self, document_id, options=None):
        self.calls.append(document_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(document_id, self.default_delay))
            if document_id in self.failures:
                raise self.failures[document_id]
            return ExtractionResult(confidence=0.9, metadata={"document": document_id})
        finally:
            self.in_flight -= 1


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def extractor_factory():
    return FakeExtractor


@pytest.fixture
def make_batch(session_factory):
    """Create a batch with documents given as (file_type, processing_priority[, finished])"""

    def _make(documents: Sequence[Tuple], **fields) -> Tuple[str, List[str]]:
        batch_id = new_id()
        doc_ids = []
        with session_scope(session_factory) as db:
            db.add(Batch(id=batch_id, batch_name=fields.pop("batch_name", "test batch"),
                         total_documents=fields.pop("total_documents", len(documents)), **fields))
            db.flush()
            for i, entry in enumerate(documents):
                file_type, priority = entry[0], entry[1]
                finished = len(entry) > 2 and entry[2]
                doc_id = f"{batch_id[:8]}-doc{i}"
                db.add(Document(
                    id=doc_id,
                    batch_id=batch_id,
                    file_name=f"scan{i}.{file_type}",
                    file_type=file_type,
                    processing_priority=priority,
                    confidence_score=0.95 if finished else None,
                    extracted_metadata={"done": True} if finished else None,
                ))
                doc_ids.append(doc_id)
        return batch_id, doc_ids

    return _make


@pytest.fixture
def set_limits(session_factory):
    def _set(customer_id: str, concurrent=None, per_minute=None, per_hour=None):
        with session_scope(session_factory) as db:
            db.merge(TenantLimits(
                customer_id=customer_id,
                max_concurrent_jobs=concurrent,
                max_jobs_per_minute=per_minute,
                max_jobs_per_hour=per_hour,
            ))
    return _set


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {config.API_KEY}"}


@pytest.fixture
def app(session_factory, extractor):
    from docintake.main import create_app
    return create_app(session_factory=session_factory, extractor=extractor,
                      background_loops=False, trigger_enabled=False)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client

