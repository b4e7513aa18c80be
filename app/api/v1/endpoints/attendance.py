"""
Attendance endpoints: session-state query plus the manual check-in /
check-out paths that race the enforcement sweep.

All routes act on the employee named by the bearer token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_current_active_employee, get_db
from app.core.timeutil import ensure_utc, utcnow
from app.models.tenant import Employee
from app.schemas.attendance import (
    AttendanceSessionRead,
    PendingCheckoutRead,
    SessionStateResponse,
)
from app.services import attendance, countdown_store

router = APIRouter(prefix="/attendance", tags=["attendance"])
logger = logging.getLogger(__name__)


def _session_read(session) -> AttendanceSessionRead:
    out = AttendanceSessionRead.model_validate(session)
    out.check_in_time = ensure_utc(out.check_in_time)  # type: ignore[assignment]
    out.check_out_time = ensure_utc(out.check_out_time)
    return out


# ── State ───────────────────────────────────────────────────────────
@router.get("/state", response_model=SessionStateResponse)
async def session_state(
    session_id: int | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    current: Employee = Depends(get_current_active_employee),
) -> SessionStateResponse:
    """Server-authoritative view of the caller's session and countdown.

    ``ends_at`` is returned verbatim; clients compute the remaining time
    from it and ``server_time`` rather than keeping their own timer.
    """
    now = utcnow()
    session = await attendance.latest_session(db, current.tenant_id, current.id, session_id)
    if session is None:
        return SessionStateResponse(server_time=now)

    pending = await countdown_store.get_latest(db, session.id)
    pending_out = None
    if pending is not None:
        pending_out = PendingCheckoutRead(
            id=pending.id,
            status=pending.status,
            reason=pending.reason,
            started_at=ensure_utc(pending.started_at),  # type: ignore[arg-type]
            ends_at=ensure_utc(pending.ends_at),  # type: ignore[arg-type]
        )

    return SessionStateResponse(
        session_id=session.id,
        session_open=session.is_open,
        check_in_time=ensure_utc(session.check_in_time),
        check_out_time=ensure_utc(session.check_out_time),
        checkout_kind=session.checkout_kind,
        checkout_reason=session.checkout_reason,
        pending=pending_out,
        server_time=now,
    )


# ── Manual check-in / check-out ─────────────────────────────────────
@router.post("/check-in", response_model=AttendanceSessionRead, status_code=201)
async def check_in(
    db: AsyncSession = Depends(get_db),
    current: Employee = Depends(get_current_active_employee),
) -> AttendanceSessionRead:
    session = await attendance.check_in(db, current.tenant_id, current.id)
    return _session_read(session)


@router.post("/check-out", response_model=AttendanceSessionRead)
async def check_out(
    db: AsyncSession = Depends(get_db),
    current: Employee = Depends(get_current_active_employee),
) -> AttendanceSessionRead:
    """Close the open session manually.  409 if the sweep closed it first."""
    session = await attendance.manual_check_out(db, current.tenant_id, current.id)
    return _session_read(session)
