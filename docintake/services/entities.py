"""
Generic per-kind data access used to replay client mutations
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Type

from ..db import Base, SessionLocal, session_scope
from ..models.batch import BATCH_STATUSES, Batch
from ..models.document import Document
from ..utils.timeutil import new_id

logger = logging.getLogger("entities")


class UnknownEntityKind(KeyError):
    pass


class EntityNotFound(KeyError):
    pass


@dataclass
class EntityHandler:
    model: Type[Base]
    # Columns clients may never write directly
    read_only: FrozenSet[str] = field(default_factory=lambda: frozenset({"id", "created_at"}))
    # Row-level check run after values are applied; raises ValueError
    check: Optional[Callable[[Any], None]] = None

    @property
    def writable(self) -> FrozenSet[str]:
        return frozenset(c.name for c in self.model.__table__.columns) - self.read_only

    def clean(self, data: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(data) - self.writable
        if unknown:
            raise ValueError(f"Unknown or read-only fields for {self.model.__tablename__}: {sorted(unknown)}")
        return dict(data)


# Progress counters, status and timestamps belong to BatchStateTracker
BATCH_TRACKER_FIELDS = frozenset({
    "id", "created_at", "status", "processed_documents", "validated_documents",
    "error_count", "error_message", "started_at", "completed_at", "export_started_at",
})


def check_batch(batch: Batch):
    if batch.status is not None and batch.status not in BATCH_STATUSES:
        raise ValueError(f"Invalid batch status: {batch.status}")
    total = batch.total_documents or 0
    if total < 0:
        raise ValueError("total_documents must not be negative")
    for name in ("processed_documents", "validated_documents"):
        if (getattr(batch, name) or 0) > total:
            raise ValueError(f"total_documents {total} is below {name}")


class SqlEntityRepository:
    """Insert/update/delete keyed by entity kind via a kind -> handler registry"""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory
        self._handlers: Dict[str, EntityHandler] = {}

    def register(self, kind: str, handler: EntityHandler):
        self._handlers[kind] = handler

    def kinds(self):
        return sorted(self._handlers)

    def _handler(self, kind: str) -> EntityHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownEntityKind(kind) from None

    def insert(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._handler(kind)
        data = dict(data)
        entity_id = data.pop("id", None) or new_id()
        values = handler.clean(data)
        with session_scope(self._session_factory) as db:
            row = handler.model(id=entity_id, **values)
            if handler.check:
                handler.check(row)
            db.add(row)
            db.flush()
            out = row.to_dict()
        logger.info(f"Inserted {kind}/{entity_id}")
        return out

    def update(self, kind: str, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._handler(kind)
        values = handler.clean(patch)
        with session_scope(self._session_factory) as db:
            row = db.get(handler.model, entity_id)
            if row is None:
                raise EntityNotFound(f"{kind}/{entity_id}")
            for key, value in values.items():
                setattr(row, key, value)
            if handler.check:
                handler.check(row)
            db.flush()
            out = row.to_dict()
        logger.info(f"Updated {kind}/{entity_id}: {sorted(values)}")
        return out

    def delete(self, kind: str, entity_id: str) -> bool:
        handler = self._handler(kind)
        with session_scope(self._session_factory) as db:
            row = db.get(handler.model, entity_id)
            if row is None:
                return False
            db.delete(row)
        logger.info(f"Deleted {kind}/{entity_id}")
        return True


def default_repository(session_factory=None) -> SqlEntityRepository:
    repo = SqlEntityRepository(session_factory or SessionLocal)
    repo.register("documents", EntityHandler(Document))
    repo.register("batches", EntityHandler(Batch, read_only=BATCH_TRACKER_FIELDS, check=check_batch))
    return repo
