"""
Job Store: durable record of submitted work items
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import case, func, text
from sqlalchemy.exc import SQLAlchemyError

from ..db import SessionLocal, session_scope
from ..errors import InvalidTransition
from ..models.job import Job, ACTIVE_STATUSES, PRIORITY_RANK, TERMINAL_STATUSES
from ..utils.timeutil import isoformat, new_id, utcnow
from .events import EventBroker, broker, job_topic

logger = logging.getLogger("job_store")

# pending -> processing -> {completed|failed}
_STATUS_RANK = {"pending": 0, "processing": 1, "completed": 2, "failed": 2}


def job_event(job: Job) -> Dict[str, Any]:
    return {
        "jobId": job.id,
        "status": job.status,
        "result": job.result,
        "errorMessage": job.error_message,
        "completedAt": isoformat(job.completed_at),
    }


class JobStore:
    """Pure data access over the jobs table"""

    def __init__(self, session_factory=SessionLocal, event_broker: EventBroker = broker):
        self._session_factory = session_factory
        self._broker = event_broker

    def insert(self, job_type: str, payload: Dict[str, Any], user_id: str,
               customer_id: Optional[str] = None, priority: str = "normal") -> str:
        job_id = new_id()
        now = utcnow()
        with session_scope(self._session_factory) as db:
            db.add(Job(
                id=job_id,
                job_type=job_type,
                payload=payload or {},
                customer_id=customer_id,
                user_id=user_id,
                priority=priority,
                status="pending",
                attempts=0,
                created_at=now,
                updated_at=now,
            ))
        logger.info(f"Created job {job_id} of type {job_type}")
        return job_id

    def get(self, job_id: str) -> Optional[Job]:
        db = self._session_factory()
        try:
            job = db.get(Job, job_id)
            if job is not None:
                db.expunge(job)
            return job
        finally:
            db.close()

    def ping(self) -> bool:
        db = self._session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database probe failed: {e}")
            return False
        finally:
            db.close()

    def count(self) -> int:
        db = self._session_factory()
        try:
            return db.query(func.count(Job.id)).scalar() or 0
        finally:
            db.close()

    def count_active(self, customer_id: str) -> int:
        db = self._session_factory()
        try:
            return db.query(func.count(Job.id)).filter(
                Job.customer_id == customer_id,
                Job.status.in_(ACTIVE_STATUSES),
            ).scalar() or 0
        finally:
            db.close()

    def count_created_since(self, customer_id: str, since: datetime) -> int:
        db = self._session_factory()
        try:
            return db.query(func.count(Job.id)).filter(
                Job.customer_id == customer_id,
                Job.created_at > since,
            ).scalar() or 0
        finally:
            db.close()

    # ---------------- Status transitions ----------------

    def mark_processing(self, job_id: str) -> Job:
        return self._transition(job_id, "processing")

    def mark_completed(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> Job:
        return self._transition(job_id, "completed", result=result)

    def mark_failed(self, job_id: str, error_message: str) -> Job:
        return self._transition(job_id, "failed", error_message=error_message)

    def _transition(self, job_id: str, target: str, **fields) -> Job:
        now = utcnow()
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            if job is None:
                raise KeyError(job_id)
            if _STATUS_RANK[target] <= _STATUS_RANK[job.status]:
                raise InvalidTransition("job", job.status, target)

            old_status = job.status
            job.status = target
            job.updated_at = now
            if target == "processing" and job.started_at is None:
                job.started_at = now
            if target in TERMINAL_STATUSES:
                job.completed_at = now
            for key, value in fields.items():
                setattr(job, key, value)
            db.flush()
            db.expunge(job)

        logger.info(f"Job {job_id}: {old_status} -> {target}")
        self._broker.publish(job_topic(job_id), job_event(job))
        return job

    def claim_next(self) -> Optional[Job]:
        """
        Claim one pending job using fair-share scheduling:
        - tenant with the fewest processing jobs first (ties broken randomly)
        - within that tenant, highest priority first, then oldest
        """
        now = utcnow()
        with session_scope(self._session_factory) as db:
            candidates = [row[0] for row in db.query(Job.customer_id).filter(
                Job.status == "pending").distinct().all()]
            if not candidates:
                return None

            load = dict(db.query(Job.customer_id, func.count(Job.id)).filter(
                Job.status == "processing").group_by(Job.customer_id).all())
            random.shuffle(candidates)
            customer_id = min(candidates, key=lambda c: load.get(c, 0))

            rank = case(PRIORITY_RANK, value=Job.priority, else_=PRIORITY_RANK["normal"])
            query = db.query(Job).filter(Job.status == "pending")
            if customer_id is None:
                query = query.filter(Job.customer_id.is_(None))
            else:
                query = query.filter(Job.customer_id == customer_id)
            job = query.order_by(rank.desc(), Job.created_at.asc()).first()
            if job is None:
                return None

            updated = db.query(Job).filter(Job.id == job.id, Job.status == "pending").update({
                Job.status: "processing",
                Job.started_at: now,
                Job.updated_at: now,
                Job.attempts: Job.attempts + 1,
            }, synchronize_session=False)
            if updated != 1:
                return None  # lost the race to another worker
            db.flush()
            db.refresh(job)
            db.expunge(job)

        logger.info(f"Job {job.id}: pending -> processing (claimed, customer={customer_id})")
        self._broker.publish(job_topic(job.id), job_event(job))
        return job
