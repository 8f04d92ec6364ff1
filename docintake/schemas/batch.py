from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class DispatchRequest(BaseModel):
    batchId: str
    maxParallel: Optional[int] = Field(None, ge=1, le=50)
    prioritizeSimple: bool = True
    skipProcessed: bool = True


class ResumeRequest(BaseModel):
    maxParallel: Optional[int] = Field(None, ge=1, le=50)


class ExportFailure(BaseModel):
    error: str = "Export failed"


class ExtractionCompleted(BaseModel):
    confidence: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class ExportTimeoutSweep(BaseModel):
    olderThanMinutes: Optional[int] = Field(None, ge=1)
