"""
Error taxonomy for the batch scheduler
"""

from typing import Optional


class SchedulerError(Exception):
    """Base class for scheduler errors"""


class JobRejected(SchedulerError):
    """Job submission refused before anything was persisted"""

    RATE_LIMITED = "rate_limited"
    UNAUTHENTICATED = "unauthenticated"
    VALIDATION_ERROR = "validation_error"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class AdmissionDenied(JobRejected):
    """Tenant is at or above one of its rate/concurrency ceilings"""

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(JobRejected.RATE_LIMITED, f"Rate limit exceeded for customer {customer_id}")


class Unauthenticated(JobRejected):
    def __init__(self):
        super().__init__(JobRejected.UNAUTHENTICATED, "Caller identity required to create jobs")


class ExtractionTimeout(SchedulerError):
    """Soft: the local wait expired, the remote call may still complete"""


class ExtractionFailure(SchedulerError):
    """Hard failure of a single document's extraction"""


class SelectionFailure(SchedulerError):
    """Loading the batch's documents failed; aborts the whole dispatch"""

    def __init__(self, batch_id: str, cause: Exception, duration_ms: int):
        self.batch_id = batch_id
        self.cause = cause
        self.duration_ms = duration_ms
        super().__init__(f"Document selection failed for batch {batch_id}: {cause}")


class PersistenceFailure(SchedulerError):
    """A Job/Batch progress write failed"""


class ReplaySyncFailure(SchedulerError):
    """A queued offline action could not be replayed"""


class InvalidTransition(SchedulerError):
    """A status change that would move a record backwards"""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: cannot move from {current} to {target}")
