"""
Countdown State Store: persistence for the PendingCheckout state machine.

Transitions are conditional writes on ``status = 'PENDING'`` so two
writers racing on the same row can only move it once.  Nothing here
commits; callers own the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import RaceLost
from app.models.pending_checkout import (
    CancelReason,
    DoneReason,
    PendingCheckout,
    PendingStatus,
    ViolationReason,
)

logger = logging.getLogger(__name__)


async def get_active(db: AsyncSession, session_id: int) -> PendingCheckout | None:
    """The PENDING countdown for *session_id*, if one is running."""
    result = await db.execute(
        select(PendingCheckout).where(
            PendingCheckout.attendance_session_id == session_id,
            PendingCheckout.status == PendingStatus.PENDING.value,
        )
    )
    return result.scalar_one_or_none()


async def get_latest(db: AsyncSession, session_id: int) -> PendingCheckout | None:
    """Most recent countdown for *session_id* in any status."""
    result = await db.execute(
        select(PendingCheckout)
        .where(PendingCheckout.attendance_session_id == session_id)
        .order_by(PendingCheckout.started_at.desc(), PendingCheckout.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_active_for_tenant(db: AsyncSession, tenant_id: int) -> list[PendingCheckout]:
    result = await db.execute(
        select(PendingCheckout).where(
            PendingCheckout.tenant_id == tenant_id,
            PendingCheckout.status == PendingStatus.PENDING.value,
        )
    )
    return list(result.scalars().all())


async def start(
    db: AsyncSession,
    *,
    tenant_id: int,
    employee_id: int,
    session_id: int,
    reason: ViolationReason,
    duration_seconds: int,
    now: datetime,
) -> PendingCheckout:
    """Insert a new PENDING countdown ending ``now + duration_seconds``.

    The partial unique index on (attendance_session_id) WHERE
    status = 'PENDING' rejects a second live countdown; that collision
    rolls the transaction back and surfaces as ``RaceLost``.
    """
    pending = PendingCheckout(
        tenant_id=tenant_id,
        employee_id=employee_id,
        attendance_session_id=session_id,
        reason=reason.value,
        started_at=now,
        ends_at=now + timedelta(seconds=duration_seconds),
        status=PendingStatus.PENDING.value,
    )
    db.add(pending)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise RaceLost(f"Session {session_id} already has a PENDING countdown")
    return pending


async def cancel(
    db: AsyncSession, pending_id: int, cancel_reason: CancelReason, now: datetime
) -> bool:
    """PENDING → CANCELLED.  ``False`` if the row had already left PENDING."""
    result = await db.execute(
        update(PendingCheckout)
        .where(
            PendingCheckout.id == pending_id,
            PendingCheckout.status == PendingStatus.PENDING.value,
        )
        .values(
            status=PendingStatus.CANCELLED.value,
            cancel_reason=cancel_reason.value,
            cancelled_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def complete(
    db: AsyncSession, pending_id: int, done_reason: DoneReason, now: datetime
) -> bool:
    """PENDING → DONE.  ``False`` if the row had already left PENDING."""
    result = await db.execute(
        update(PendingCheckout)
        .where(
            PendingCheckout.id == pending_id,
            PendingCheckout.status == PendingStatus.PENDING.value,
        )
        .values(
            status=PendingStatus.DONE.value,
            done_reason=done_reason.value,
            done_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
