from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from docintake.db import Base
from docintake.utils.timeutil import utcnow

BATCH_STATUSES = ("new", "scanning", "indexing", "validation", "complete", "exported", "error")


class Batch(Base):
    __tablename__ = "batches"

    id = Column(String(36), primary_key=True)
    batch_name = Column(String(128), nullable=False, default="")
    status = Column(String(16), nullable=False, default="new")  # see BATCH_STATUSES
    total_documents = Column(Integer, nullable=False, default=0)
    processed_documents = Column(Integer, nullable=False, default=0)
    validated_documents = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    priority = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    # Non-null only while an export is in flight
    export_started_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_batches_status", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "batch_name": self.batch_name,
            "status": self.status,
            "total_documents": self.total_documents,
            "processed_documents": self.processed_documents,
            "validated_documents": self.validated_documents,
            "error_count": self.error_count,
            "priority": self.priority,
            "error_message": self.error_message,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "export_started_at": self.export_started_at,
        }
