from pydantic import BaseModel, Field
from typing import Dict, Any, Optional


class JobCreate(BaseModel):
    jobType: str = Field(..., max_length=64, description="Job type tag (extraction, batch_dispatch, ...)")
    payload: Dict[str, Any] = Field(default_factory=dict)
    customerId: Optional[str] = Field(None, max_length=64, description="Tenant; enables admission checks")
    priority: str = Field("normal", description="low, normal, high or urgent")


class JobCreated(BaseModel):
    jobId: str


class JobStatusOut(BaseModel):
    jobId: str
    jobType: str
    status: str
    result: Optional[Dict[str, Any]] = None
    errorMessage: Optional[str] = None
    completedAt: Optional[str] = None


class RateLimitCheck(BaseModel):
    customerId: str
    jobType: str = "extraction"
