from sqlalchemy import Column, String, DateTime, JSON, Integer, Text, Index
from docintake.db import Base
from docintake.utils.timeutil import utcnow

JOB_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")
ACTIVE_STATUSES = ("pending", "processing")

# Higher rank is scheduled first
PRIORITY_RANK = {"low": 0, "normal": 1, "high": 2, "urgent": 3}


class Job(Base):
    __tablename__ = "jobs"
    id = Column(String(36), primary_key=True)  # uuid4
    job_type = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False, default={})
    customer_id = Column(String(64), index=True, nullable=True)
    user_id = Column(String(64), nullable=False)
    priority = Column(String(16), nullable=False, default="normal")  # low|normal|high|urgent
    status = Column(String(16), nullable=False, default="pending")  # pending|processing|completed|failed
    attempts = Column(Integer, nullable=False, default=0)
    result = Column(JSON(none_as_null=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_jobs_customer_status", "customer_id", "status"),
        Index("ix_jobs_customer_created", "customer_id", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "job_type": self.job_type,
            "payload": self.payload,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "priority": self.priority,
            "status": self.status,
            "attempts": self.attempts,
            "result": self.result,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
