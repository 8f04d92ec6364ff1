"""
Tenant rate-limit check and advisory usage report
"""

from fastapi import APIRouter, Depends

from ..auth import require_key
from ..schemas.job import RateLimitCheck
from ..services.container import Services
from .deps import get_services

router = APIRouter(tags=["Rate limits"], dependencies=[Depends(require_key)])


@router.post("/rate-limit/check")
async def check_tenant_rate_limit(body: RateLimitCheck, services: Services = Depends(get_services)):
    allowed = services.rate_limiter.check_tenant_rate_limit(body.customerId, body.jobType)
    return {"allowed": allowed}


@router.get("/tenants/{customer_id}/usage")
async def tenant_usage(customer_id: str, services: Services = Depends(get_services)):
    """Usage against configured ceilings; flags tenants approaching a limit"""
    return services.rate_limiter.usage_report(customer_id)
