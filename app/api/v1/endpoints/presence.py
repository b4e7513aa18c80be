"""
Presence heartbeat endpoint.

Clients post one reading every few seconds while checked in.  The
handler only records presence; countdowns are the sweep's job.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_current_active_employee, get_db
from app.core.config import settings
from app.models.tenant import Employee
from app.schemas.presence import HeartbeatRequest, HeartbeatResponse
from app.services import geofence, heartbeat

# Rate limiter, keyed by client IP
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

router = APIRouter(tags=["presence"])
logger = logging.getLogger(__name__)


@router.post("/heartbeat", response_model=HeartbeatResponse)
@limiter.limit(settings.HEARTBEAT_RATE_LIMIT)
async def post_heartbeat(
    request: Request,
    body: HeartbeatRequest,
    db: AsyncSession = Depends(get_db),
    current: Employee = Depends(get_current_active_employee),
) -> HeartbeatResponse:
    """Record the caller's latest location / GPS permission reading."""
    if body.employee_id != current.id or body.tenant_id != current.tenant_id:
        logger.warning(
            "Heartbeat body (employee %d, tenant %d) does not match token (employee %d, tenant %d)",
            body.employee_id,
            body.tenant_id,
            current.id,
            current.tenant_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Heartbeat does not belong to the authenticated employee",
        )

    position = None
    accuracy = None
    if body.location is not None:
        position = geofence.Position(body.location.lat, body.location.lng)
        accuracy = body.location.accuracy

    outcome = await heartbeat.ingest(
        db,
        heartbeat.HeartbeatReading(
            tenant_id=body.tenant_id,
            employee_id=body.employee_id,
            permission_state=body.permission_state,
            position=position,
            accuracy_m=accuracy,
        ),
    )
    return HeartbeatResponse(
        ok=True,
        in_branch=outcome.in_branch,
        gps_ok=outcome.gps_ok,
    )
