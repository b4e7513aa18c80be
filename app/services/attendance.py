"""
Attendance session access: open-session lookup, check-in, and the
conditional close shared by manual check-out and the enforcement sweep.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import HTTPException
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import events
from app.core.exceptions import NoActiveSession, RaceLost
from app.core.timeutil import utcnow, work_date
from app.models.attendance_session import AttendanceSession, CheckoutKind
from app.models.pending_checkout import CancelReason
from app.models.presence_heartbeat import PresenceHeartbeat
from app.models.tenant import Branch, Employee
from app.services import countdown_store

logger = logging.getLogger(__name__)


async def find_open_session(
    db: AsyncSession, tenant_id: int, employee_id: int
) -> AttendanceSession | None:
    result = await db.execute(
        select(AttendanceSession)
        .where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.check_out_time.is_(None),
        )
        .order_by(AttendanceSession.check_in_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_open_session_with_branch(
    db: AsyncSession, tenant_id: int, employee_id: int
) -> tuple[AttendanceSession, Branch]:
    """Open session and the branch whose geofence applies; NoActiveSession otherwise."""
    result = await db.execute(
        select(AttendanceSession, Branch)
        .join(Branch, AttendanceSession.branch_id == Branch.id)
        .where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.check_out_time.is_(None),
            Branch.tenant_id == tenant_id,
        )
        .order_by(AttendanceSession.check_in_time.desc())
        .limit(1)
    )
    row = result.first()
    if row is None:
        raise NoActiveSession(
            f"Employee {employee_id} (tenant {tenant_id}) has no open attendance session"
        )
    return row[0], row[1]


async def latest_session(
    db: AsyncSession, tenant_id: int, employee_id: int, session_id: int | None = None
) -> AttendanceSession | None:
    """The session a client is asking about: *session_id* if given, else the newest."""
    query = select(AttendanceSession).where(
        AttendanceSession.tenant_id == tenant_id,
        AttendanceSession.employee_id == employee_id,
    )
    if session_id is not None:
        query = query.where(AttendanceSession.id == session_id)
    result = await db.execute(
        query.order_by(AttendanceSession.check_in_time.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def close_session(
    db: AsyncSession,
    *,
    tenant_id: int,
    session_id: int,
    kind: CheckoutKind,
    reason: str | None,
    now: datetime,
) -> bool:
    """Conditionally close a session.  Only the first writer wins.

    Does not commit.  Returns ``False`` when zero rows were affected,
    i.e. the session was already closed by another writer.
    """
    result = await db.execute(
        update(AttendanceSession)
        .where(
            AttendanceSession.id == session_id,
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.check_out_time.is_(None),
        )
        .values(check_out_time=now, checkout_kind=kind.value, checkout_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def clear_presence(db: AsyncSession, *, employee_id: int, session_id: int) -> None:
    """Drop the heartbeat row tied to a session that has just closed."""
    await db.execute(
        delete(PresenceHeartbeat)
        .where(
            PresenceHeartbeat.employee_id == employee_id,
            PresenceHeartbeat.attendance_session_id == session_id,
        )
        .execution_options(synchronize_session=False)
    )


def session_closed_payload(
    *,
    session_id: int,
    employee_id: int,
    tenant_id: int,
    kind: CheckoutKind,
    reason: str | None,
    closed_at: datetime,
) -> dict:
    return {
        "session_id": session_id,
        "employee_id": employee_id,
        "tenant_id": tenant_id,
        "kind": kind.value,
        "reason": reason,
        "closed_at": closed_at.isoformat(),
    }


# ── Manual paths ────────────────────────────────────────────────────
async def check_in(
    db: AsyncSession, tenant_id: int, employee_id: int, now: datetime | None = None
) -> AttendanceSession:
    now = now or utcnow()

    result = await db.execute(
        select(Employee).where(Employee.id == employee_id, Employee.tenant_id == tenant_id)
    )
    employee = result.scalar_one_or_none()
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    if not employee.is_active:
        raise HTTPException(status_code=403, detail="Employee account is deactivated")

    if await find_open_session(db, tenant_id, employee_id) is not None:
        raise HTTPException(status_code=409, detail="Already checked in")

    session = AttendanceSession(
        tenant_id=tenant_id,
        employee_id=employee_id,
        branch_id=employee.branch_id,
        work_date=work_date(now),
        check_in_time=now,
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Concurrent check-in rejected for employee %d", employee_id)
        raise HTTPException(status_code=409, detail="Already checked in")
    await db.refresh(session)

    logger.info("Check-in: employee %d, tenant %d, session %d", employee_id, tenant_id, session.id)
    return session


async def manual_check_out(
    db: AsyncSession, tenant_id: int, employee_id: int, now: datetime | None = None
) -> AttendanceSession:
    """Close the employee's open session as ``manual``.

    Races the sweep through the same conditional update; the loser sees
    ``RaceLost``.  A running countdown is cancelled in the same transaction.
    """
    now = now or utcnow()

    session = await find_open_session(db, tenant_id, employee_id)
    if session is None:
        raise NoActiveSession(f"Employee {employee_id} has no open attendance session")
    session_id = session.id

    closed = await close_session(
        db,
        tenant_id=tenant_id,
        session_id=session_id,
        kind=CheckoutKind.MANUAL,
        reason=None,
        now=now,
    )
    if not closed:
        await db.rollback()
        raise RaceLost(f"Session {session_id} was already closed")

    pending = await countdown_store.get_active(db, session_id)
    if pending is not None:
        await countdown_store.cancel(db, pending.id, CancelReason.MANUAL_CHECKOUT, now)
    await clear_presence(db, employee_id=employee_id, session_id=session_id)
    await db.commit()

    logger.info("Manual check-out: employee %d, session %d", employee_id, session_id)
    await events.publish(
        events.SESSION_CLOSED,
        session_closed_payload(
            session_id=session_id,
            employee_id=employee_id,
            tenant_id=tenant_id,
            kind=CheckoutKind.MANUAL,
            reason=None,
            closed_at=now,
        ),
    )

    await db.refresh(session)
    return session
