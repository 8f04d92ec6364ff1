from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, ForeignKey, Index
from docintake.db import Base
from docintake.utils.timeutil import utcnow


class Document(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True)
    batch_id = Column(String(36), ForeignKey("batches.id"), nullable=False)
    file_name = Column(String(255), nullable=False, default="")
    file_type = Column(String(32), nullable=False, default="")  # pdf, tiff, png, jpg, ...
    confidence_score = Column(Float, nullable=True)
    extracted_metadata = Column(JSON(none_as_null=True), nullable=True)
    processing_priority = Column(Integer, nullable=False, default=0)  # higher first
    validation_status = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_documents_batch_priority", "batch_id", "processing_priority"),
    )

    @property
    def is_finished(self) -> bool:
        return self.confidence_score is not None and self.extracted_metadata is not None

    def to_dict(self):
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "confidence_score": self.confidence_score,
            "extracted_metadata": self.extracted_metadata,
            "processing_priority": self.processing_priority,
            "validation_status": self.validation_status,
        }
