"""Tests for the PendingCheckout state store."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.exceptions import RaceLost
from app.core.timeutil import ensure_utc, utcnow
from app.models.pending_checkout import (
    CancelReason,
    DoneReason,
    PendingCheckout,
    PendingStatus,
    ViolationReason,
)
from app.services import attendance, countdown_store


async def _open_session(session_factory, t):
    async with session_factory() as db:
        return (await attendance.check_in(db, t.tenant_id, t.employee_id)).id


async def _start(session_factory, t, session_id, now, reason=ViolationReason.GPS_DISABLED):
    async with session_factory() as db:
        pending = await countdown_store.start(
            db,
            tenant_id=t.tenant_id,
            employee_id=t.employee_id,
            session_id=session_id,
            reason=reason,
            duration_seconds=300,
            now=now,
        )
        await db.commit()
        return pending


@pytest.mark.asyncio
async def test_start_sets_fixed_end(session_factory, tenant):
    session_id = await _open_session(session_factory, tenant)
    now = utcnow()
    pending = await _start(session_factory, tenant, session_id, now)

    async with session_factory() as db:
        row = await countdown_store.get_active(db, session_id)
    assert row.id == pending.id
    assert row.status == PendingStatus.PENDING.value
    assert ensure_utc(row.ends_at) == now + timedelta(seconds=300)
    assert ensure_utc(row.started_at) == now


@pytest.mark.asyncio
async def test_second_pending_for_same_session_loses(session_factory, tenant):
    """Two writers that both saw 'no countdown': only one row survives."""
    session_id = await _open_session(session_factory, tenant)
    now = utcnow()

    async with session_factory() as late_writer:
        assert await countdown_store.get_active(late_writer, session_id) is None

        await _start(session_factory, tenant, session_id, now)

        with pytest.raises(RaceLost):
            await countdown_store.start(
                late_writer,
                tenant_id=tenant.tenant_id,
                employee_id=tenant.employee_id,
                session_id=session_id,
                reason=ViolationReason.OUT_OF_BRANCH,
                duration_seconds=300,
                now=now + timedelta(seconds=1),
            )

    async with session_factory() as db:
        count = await db.scalar(
            select(func.count())
            .select_from(PendingCheckout)
            .where(PendingCheckout.attendance_session_id == session_id)
        )
    assert count == 1


@pytest.mark.asyncio
async def test_cancel_is_conditional(session_factory, tenant):
    session_id = await _open_session(session_factory, tenant)
    now = utcnow()
    pending = await _start(session_factory, tenant, session_id, now)

    async with session_factory() as db:
        assert await countdown_store.cancel(db, pending.id, CancelReason.CONDITIONS_RESOLVED, now) is True
        assert await countdown_store.cancel(db, pending.id, CancelReason.CONDITIONS_RESOLVED, now) is False
        assert await countdown_store.complete(db, pending.id, DoneReason.EXECUTED, now) is False
        await db.commit()

    async with session_factory() as db:
        row = await countdown_store.get_latest(db, session_id)
    assert row.status == PendingStatus.CANCELLED.value
    assert row.cancel_reason == CancelReason.CONDITIONS_RESOLVED.value
    assert row.done_reason is None


@pytest.mark.asyncio
async def test_complete_is_conditional(session_factory, tenant):
    session_id = await _open_session(session_factory, tenant)
    now = utcnow()
    pending = await _start(session_factory, tenant, session_id, now)

    async with session_factory() as db:
        assert await countdown_store.complete(db, pending.id, DoneReason.EXECUTED, now) is True
        assert await countdown_store.cancel(db, pending.id, CancelReason.MANUAL_CHECKOUT, now) is False
        await db.commit()

    async with session_factory() as db:
        row = await countdown_store.get_latest(db, session_id)
    assert row.status == PendingStatus.DONE.value
    assert row.done_reason == DoneReason.EXECUTED.value
    assert row.cancel_reason is None


@pytest.mark.asyncio
async def test_new_violation_after_cancel_gets_new_row(session_factory, tenant):
    session_id = await _open_session(session_factory, tenant)
    now = utcnow()
    first = await _start(session_factory, tenant, session_id, now)
    async with session_factory() as db:
        await countdown_store.cancel(db, first.id, CancelReason.CONDITIONS_RESOLVED, now)
        await db.commit()

    second = await _start(session_factory, tenant, session_id, now + timedelta(seconds=60))

    assert second.id != first.id
    async with session_factory() as db:
        latest = await countdown_store.get_latest(db, session_id)
        active = await countdown_store.list_active_for_tenant(db, tenant.tenant_id)
    assert latest.id == second.id
    assert [p.id for p in active] == [second.id]
