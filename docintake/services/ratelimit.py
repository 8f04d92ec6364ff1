"""
Tenant rate limiter: admission decisions from recent Job Store activity
"""

import enum
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..config import RATE_LIMIT_WARN_RATIO
from ..db import SessionLocal
from ..models.tenant import TenantLimits
from ..utils.timeutil import utcnow
from .job_store import JobStore

logger = logging.getLogger("ratelimit")


class AdmissionDecision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass
class TenantUsage:
    current_jobs: int
    jobs_last_minute: int
    jobs_last_hour: int


def _pct(used: int, limit: Optional[int]) -> Optional[float]:
    if limit is None:
        return None
    if limit <= 0:
        return 100.0
    return round(used / limit * 100.0, 1)


def _at_or_over(used: int, limit: Optional[int]) -> bool:
    return limit is not None and used >= limit


class TenantRateLimiter:

    def __init__(self, job_store: Optional[JobStore] = None, session_factory=SessionLocal,
                 warn_ratio: float = RATE_LIMIT_WARN_RATIO):
        self._session_factory = session_factory
        self._jobs = job_store or JobStore(session_factory)
        self.warn_ratio = warn_ratio

    def get_limits(self, customer_id: str) -> Optional[TenantLimits]:
        db = self._session_factory()
        try:
            limits = db.get(TenantLimits, customer_id)
            if limits is not None:
                db.expunge(limits)
            return limits
        finally:
            db.close()

    def usage(self, customer_id: str, now: Optional[datetime] = None) -> TenantUsage:
        now = now or utcnow()
        return TenantUsage(
            current_jobs=self._jobs.count_active(customer_id),
            jobs_last_minute=self._jobs.count_created_since(customer_id, now - timedelta(seconds=60)),
            jobs_last_hour=self._jobs.count_created_since(customer_id, now - timedelta(minutes=60)),
        )

    def check_admission(self, customer_id: str, job_type: str = "extraction",
                        now: Optional[datetime] = None) -> AdmissionDecision:
        """Deny when any of the three thresholds is at or above its ceiling"""
        limits = self.get_limits(customer_id)
        if limits is None:
            # No limits configured - unlimited
            return AdmissionDecision.ALLOW

        usage = self.usage(customer_id, now)
        exceeded = [
            name for name, used, limit in (
                ("concurrent", usage.current_jobs, limits.max_concurrent_jobs),
                ("per_minute", usage.jobs_last_minute, limits.max_jobs_per_minute),
                ("per_hour", usage.jobs_last_hour, limits.max_jobs_per_hour),
            ) if _at_or_over(used, limit)
        ]
        if exceeded:
            logger.warning("Admission denied", extra={
                "component": "ratelimit",
                "customer_id": customer_id,
                "job_type": job_type,
                "exceeded": exceeded,
                **asdict(usage)
            })
            return AdmissionDecision.DENY
        return AdmissionDecision.ALLOW

    def check_tenant_rate_limit(self, customer_id: str, job_type: str = "extraction") -> bool:
        return self.check_admission(customer_id, job_type) is AdmissionDecision.ALLOW

    def usage_report(self, customer_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Advisory usage snapshot for warning banners; never used to block admission"""
        limits = self.get_limits(customer_id)
        if limits is None:
            return {"customer_id": customer_id, "limited": False, "approaching": False, "exceeded": False}

        usage = self.usage(customer_id, now)
        percentages = {
            "concurrent": _pct(usage.current_jobs, limits.max_concurrent_jobs),
            "per_minute": _pct(usage.jobs_last_minute, limits.max_jobs_per_minute),
            "per_hour": _pct(usage.jobs_last_hour, limits.max_jobs_per_hour),
        }
        known = [p for p in percentages.values() if p is not None]
        return {
            "customer_id": customer_id,
            "limited": True,
            "limits": {
                "max_concurrent_jobs": limits.max_concurrent_jobs,
                "max_jobs_per_minute": limits.max_jobs_per_minute,
                "max_jobs_per_hour": limits.max_jobs_per_hour,
            },
            "usage": asdict(usage),
            "percentages": percentages,
            "approaching": any(p >= self.warn_ratio * 100.0 for p in known),
            "exceeded": any(p >= 100.0 for p in known),
        }
