from sqlalchemy import Column, String, Integer, DateTime
from docintake.db import Base
from docintake.utils.timeutil import utcnow

class TenantLimits(Base):
    __tablename__ = "tenant_limits"
    customer_id = Column(String(64), primary_key=True)
    # NULL ceiling = unlimited for that threshold
    max_concurrent_jobs = Column(Integer, nullable=True)
    max_jobs_per_minute = Column(Integer, nullable=True)
    max_jobs_per_hour = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
