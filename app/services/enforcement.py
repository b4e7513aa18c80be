"""
Enforcement Sweep: drives every open session's countdown across tenants.

One call to :func:`run_sweep` is one tick.  For every tenant with
auto-checkout enabled it evaluates each open session against the latest
heartbeat and moves the session's PendingCheckout:

    no countdown + violation          → start (ends_at = now + countdown)
    PENDING + violation, now < ends   → leave running
    PENDING + violation, now >= ends  → close session (auto), DONE
    PENDING + no violation            → CANCELLED (conditions_resolved)

Every write is conditional, so overlapping ticks (or a manual check-out
racing a tick) cannot double-apply a transition.  A failure on one
session or tenant is logged and counted; the tick carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import events
from app.core.exceptions import RaceLost, TransientIO, is_transient
from app.core.timeutil import ensure_utc, utcnow
from app.models.attendance_session import AttendanceSession, CheckoutKind
from app.models.pending_checkout import (
    CancelReason,
    DoneReason,
    PendingCheckout,
    PendingStatus,
    ViolationReason,
)
from app.models.presence_heartbeat import PresenceHeartbeat
from app.models.tenant import Tenant
from app.services import attendance, countdown_store, tenant_settings
from app.services.tenant_settings import AutoCheckoutPolicy

logger = logging.getLogger(__name__)

# Actions reported in SweepReport.details
STARTED = "STARTED"
EXECUTED = "EXECUTED"
CANCELLED = "CANCELLED"
ALREADY_CLOSED = "ALREADY_CLOSED"
RACE_LOST = "RACE_LOST"
ERROR = "ERROR"


@dataclass
class SweepReport:
    processed: int = 0
    started: int = 0
    executed: int = 0
    cancelled: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def record(self, action: str, **info: Any) -> None:
        self.details.append({"action": action, **info})


# Plain snapshots: the ORM rows are expired by any per-session rollback.
@dataclass(frozen=True)
class _OpenSession:
    id: int
    tenant_id: int
    employee_id: int
    check_in_time: datetime


@dataclass(frozen=True)
class _Presence:
    session_id: int
    last_seen_at: datetime
    gps_enabled: bool
    inside_geofence: bool
    outside_streak: int


@dataclass(frozen=True)
class _Countdown:
    id: int
    ends_at: datetime


def evaluate_violation(
    session: _OpenSession,
    presence: _Presence | None,
    policy: AutoCheckoutPolicy,
    now: datetime,
) -> ViolationReason | None:
    """Apply the violation rules in priority order; ``None`` means present.

    ``outside_streak`` counts consecutive out-of-geofence heartbeats as
    recorded by the ingestor, not consecutive sweep evaluations.
    """
    timeout = timedelta(seconds=policy.heartbeat_timeout_seconds)

    # A heartbeat left over from an earlier session says nothing about this one.
    if presence is not None and presence.session_id != session.id:
        presence = None

    if presence is not None and not presence.gps_enabled:
        return ViolationReason.GPS_DISABLED
    if presence is None:
        if now - session.check_in_time >= timeout:
            return ViolationReason.NO_HEARTBEAT
        return None
    if now - presence.last_seen_at >= timeout:
        return ViolationReason.HEARTBEAT_TIMEOUT
    if not presence.inside_geofence and presence.outside_streak >= policy.outside_readings_required:
        return ViolationReason.OUT_OF_BRANCH
    return None


async def run_sweep(db: AsyncSession, now: datetime | None = None) -> SweepReport:
    """One enforcement tick over every tenant."""
    now = now or utcnow()
    report = SweepReport()

    try:
        result = await db.execute(select(Tenant.id).order_by(Tenant.id))
        tenant_ids = [row[0] for row in result.all()]
    except Exception as exc:
        if is_transient(exc):
            raise TransientIO(f"Could not list tenants: {exc}") from exc
        raise

    for tenant_id in tenant_ids:
        try:
            policy = await tenant_settings.get_policy(db, tenant_id)
            if not policy.enabled:
                continue
            await _sweep_tenant(db, policy, now, report)
        except Exception as exc:
            await db.rollback()
            report.errors += 1
            report.record(ERROR, tenant_id=tenant_id, error=type(exc).__name__)
            logger.error("Sweep failed for tenant %d: %s", tenant_id, exc, exc_info=True)

    logger.info(
        "Sweep complete: processed=%d started=%d executed=%d cancelled=%d errors=%d",
        report.processed,
        report.started,
        report.executed,
        report.cancelled,
        report.errors,
    )
    return report


async def _sweep_tenant(
    db: AsyncSession, policy: AutoCheckoutPolicy, now: datetime, report: SweepReport
) -> None:
    tenant_id = policy.tenant_id

    await _reap_orphans(db, tenant_id, now, report)

    sessions_result = await db.execute(
        select(
            AttendanceSession.id,
            AttendanceSession.employee_id,
            AttendanceSession.check_in_time,
        )
        .where(
            AttendanceSession.tenant_id == tenant_id,
            AttendanceSession.check_out_time.is_(None),
        )
        .order_by(AttendanceSession.id)
    )
    open_sessions = [
        _OpenSession(
            id=sid,
            tenant_id=tenant_id,
            employee_id=emp_id,
            check_in_time=ensure_utc(check_in),  # type: ignore[arg-type]
        )
        for sid, emp_id, check_in in sessions_result.all()
    ]
    if not open_sessions:
        return

    hb_result = await db.execute(
        select(PresenceHeartbeat).where(PresenceHeartbeat.tenant_id == tenant_id)
    )
    presence_by_employee = {
        hb.employee_id: _Presence(
            session_id=hb.attendance_session_id,
            last_seen_at=ensure_utc(hb.last_seen_at),  # type: ignore[arg-type]
            gps_enabled=bool(hb.gps_enabled),
            inside_geofence=bool(hb.inside_geofence),
            outside_streak=hb.outside_streak or 0,
        )
        for hb in hb_result.scalars().all()
    }

    countdown_by_session = {
        p.attendance_session_id: _Countdown(id=p.id, ends_at=ensure_utc(p.ends_at))  # type: ignore[arg-type]
        for p in await countdown_store.list_active_for_tenant(db, tenant_id)
    }

    for session in open_sessions:
        report.processed += 1
        try:
            await _sweep_session(
                db,
                session,
                presence_by_employee.get(session.employee_id),
                countdown_by_session.get(session.id),
                policy,
                now,
                report,
            )
        except Exception as exc:
            await db.rollback()
            report.errors += 1
            report.record(
                ERROR,
                tenant_id=tenant_id,
                employee_id=session.employee_id,
                session_id=session.id,
                error=type(exc).__name__,
            )
            logger.error(
                "Sweep failed for session %d (employee %d): %s",
                session.id,
                session.employee_id,
                exc,
                exc_info=True,
            )


async def _sweep_session(
    db: AsyncSession,
    session: _OpenSession,
    presence: _Presence | None,
    countdown: _Countdown | None,
    policy: AutoCheckoutPolicy,
    now: datetime,
    report: SweepReport,
) -> None:
    violation = evaluate_violation(session, presence, policy, now)
    info = {
        "tenant_id": session.tenant_id,
        "employee_id": session.employee_id,
        "session_id": session.id,
    }

    if violation is None:
        if countdown is not None:
            await _cancel(db, countdown, now, report, info)
        return

    if countdown is None:
        await _start(db, session, violation, policy, now, report, info)
    elif now >= countdown.ends_at:
        await _execute(db, session, countdown, violation, now, report, info)


async def _start(
    db: AsyncSession,
    session: _OpenSession,
    violation: ViolationReason,
    policy: AutoCheckoutPolicy,
    now: datetime,
    report: SweepReport,
    info: dict[str, Any],
) -> None:
    try:
        pending = await countdown_store.start(
            db,
            tenant_id=session.tenant_id,
            employee_id=session.employee_id,
            session_id=session.id,
            reason=violation,
            duration_seconds=policy.countdown_seconds,
            now=now,
        )
        ends_at = pending.ends_at
        await db.commit()
    except RaceLost as exc:
        # Another tick created the countdown between our read and insert.
        report.record(RACE_LOST, reason=violation.value, **info)
        logger.info("Countdown start lost race: %s", exc.message)
        return

    report.started += 1
    report.record(STARTED, reason=violation.value, ends_at=ends_at.isoformat(), **info)
    logger.info(
        "Countdown started: session %d employee %d reason=%s ends_at=%s",
        session.id,
        session.employee_id,
        violation.value,
        ends_at.isoformat(),
    )


async def _cancel(
    db: AsyncSession,
    countdown: _Countdown,
    now: datetime,
    report: SweepReport,
    info: dict[str, Any],
) -> None:
    cancelled = await countdown_store.cancel(
        db, countdown.id, CancelReason.CONDITIONS_RESOLVED, now
    )
    await db.commit()
    if not cancelled:
        return
    report.cancelled += 1
    report.record(CANCELLED, reason=CancelReason.CONDITIONS_RESOLVED.value, **info)
    logger.info("Countdown %d cancelled: conditions resolved", countdown.id)


async def _execute(
    db: AsyncSession,
    session: _OpenSession,
    countdown: _Countdown,
    violation: ViolationReason,
    now: datetime,
    report: SweepReport,
    info: dict[str, Any],
) -> None:
    # The countdown must leave PENDING before the session is touched.
    if not await countdown_store.complete(db, countdown.id, DoneReason.EXECUTED, now):
        await db.rollback()
        logger.info(
            "Countdown %d left PENDING before execution; session %d untouched",
            countdown.id,
            session.id,
        )
        return

    closed = await attendance.close_session(
        db,
        tenant_id=session.tenant_id,
        session_id=session.id,
        kind=CheckoutKind.AUTO,
        reason=violation.value,
        now=now,
    )
    if not closed:
        await db.rollback()
        await countdown_store.complete(db, countdown.id, DoneReason.ALREADY_CLOSED, now)
        await attendance.clear_presence(db, employee_id=session.employee_id, session_id=session.id)
        await db.commit()
        report.record(ALREADY_CLOSED, **info)
        logger.info("Session %d already closed; countdown %d marked DONE", session.id, countdown.id)
        return

    await attendance.clear_presence(db, employee_id=session.employee_id, session_id=session.id)
    await db.commit()

    report.executed += 1
    report.record(EXECUTED, reason=violation.value, **info)
    logger.info(
        "Auto-checkout executed: session %d employee %d reason=%s",
        session.id,
        session.employee_id,
        violation.value,
    )
    await events.publish(
        events.SESSION_CLOSED,
        attendance.session_closed_payload(
            session_id=session.id,
            employee_id=session.employee_id,
            tenant_id=session.tenant_id,
            kind=CheckoutKind.AUTO,
            reason=violation.value,
            closed_at=now,
        ),
    )


async def _reap_orphans(
    db: AsyncSession, tenant_id: int, now: datetime, report: SweepReport
) -> None:
    """Resolve PENDING countdowns whose session was closed by another path."""
    result = await db.execute(
        select(PendingCheckout.id, PendingCheckout.employee_id, PendingCheckout.attendance_session_id)
        .join(AttendanceSession, PendingCheckout.attendance_session_id == AttendanceSession.id)
        .where(
            PendingCheckout.tenant_id == tenant_id,
            PendingCheckout.status == PendingStatus.PENDING.value,
            AttendanceSession.check_out_time.is_not(None),
        )
    )
    orphans = result.all()
    if not orphans:
        return

    for pending_id, employee_id, session_id in orphans:
        if await countdown_store.complete(db, pending_id, DoneReason.ALREADY_CLOSED, now):
            report.record(
                ALREADY_CLOSED,
                tenant_id=tenant_id,
                employee_id=employee_id,
                session_id=session_id,
            )
    await db.commit()
    logger.info("Reaped %d orphaned countdown(s) for tenant %d", len(orphans), tenant_id)
