from __future__ import annotations

from fastapi import APIRouter, Depends

from storefront.core.metrics import request_metrics
from storefront.deps import require_admin
from storefront.services.access_control import Principal

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics(_admin: Principal = Depends(require_admin)):
    return {
        "requests": request_metrics.snapshot(),
        "rate_limits": request_metrics.snapshot_rate_limits(),
    }
