"""
Heartbeat Ingestor: records the latest presence signal for an employee.

Only upserts PresenceHeartbeat.  Starting or cancelling a countdown is
left to the enforcement sweep so that violation handling stays
single-writer per tenant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.timeutil import utcnow
from app.models.presence_heartbeat import PresenceHeartbeat, PresenceViolation
from app.services import attendance, geofence

logger = logging.getLogger(__name__)

PERMISSION_GRANTED = "granted"


@dataclass(frozen=True)
class HeartbeatReading:
    tenant_id: int
    employee_id: int
    permission_state: str
    position: geofence.Position | None = None
    accuracy_m: float | None = None


@dataclass(frozen=True)
class HeartbeatOutcome:
    session_id: int
    in_branch: bool
    gps_ok: bool
    violation: PresenceViolation
    distance_m: float | None
    outside_streak: int


async def ingest(
    db: AsyncSession, reading: HeartbeatReading, now: datetime | None = None
) -> HeartbeatOutcome:
    now = now or utcnow()

    session, branch = await attendance.find_open_session_with_branch(
        db, reading.tenant_id, reading.employee_id
    )
    session_id = session.id

    gps_ok = reading.permission_state == PERMISSION_GRANTED and reading.position is not None
    distance: float | None = None
    if not gps_ok:
        inside = False
        violation = PresenceViolation.GPS_DISABLED
    else:
        result = geofence.evaluate(
            reading.position,  # type: ignore[arg-type]
            geofence.Position(branch.latitude, branch.longitude),
            branch.geofence_radius,
        )
        inside = result.inside
        distance = result.distance_m
        violation = PresenceViolation.NONE if inside else PresenceViolation.OUT_OF_BRANCH

    streak = await _upsert(
        db,
        reading=reading,
        session_id=session_id,
        now=now,
        inside=inside,
        gps_ok=gps_ok,
        violation=violation,
        distance=distance,
    )

    logger.debug(
        "Heartbeat employee=%d session=%d gps_ok=%s inside=%s distance=%s streak=%d",
        reading.employee_id,
        session_id,
        gps_ok,
        inside,
        f"{distance:.0f}m" if distance is not None else "-",
        streak,
    )
    return HeartbeatOutcome(
        session_id=session_id,
        in_branch=inside,
        gps_ok=gps_ok,
        violation=violation,
        distance_m=distance,
        outside_streak=streak,
    )


def _next_streak(row: PresenceHeartbeat | None, session_id: int, violation: PresenceViolation) -> int:
    """Consecutive out-of-geofence readings, restarting with each new session."""
    if violation != PresenceViolation.OUT_OF_BRANCH:
        return 0
    if row is None or row.attendance_session_id != session_id:
        return 1
    return (row.outside_streak or 0) + 1


async def _upsert(
    db: AsyncSession,
    *,
    reading: HeartbeatReading,
    session_id: int,
    now: datetime,
    inside: bool,
    gps_ok: bool,
    violation: PresenceViolation,
    distance: float | None,
) -> int:
    async def write() -> int:
        result = await db.execute(
            select(PresenceHeartbeat).where(PresenceHeartbeat.employee_id == reading.employee_id)
        )
        row = result.scalar_one_or_none()
        streak = _next_streak(row, session_id, violation)

        if row is None:
            row = PresenceHeartbeat(employee_id=reading.employee_id)
            db.add(row)
        row.tenant_id = reading.tenant_id
        row.attendance_session_id = session_id
        row.last_seen_at = now
        row.inside_geofence = inside
        row.gps_enabled = gps_ok
        row.violation = violation.value
        row.outside_streak = streak
        row.distance_m = distance
        row.accuracy_m = reading.accuracy_m
        await db.commit()
        return streak

    try:
        return await write()
    except IntegrityError:
        # A concurrent heartbeat inserted the row first; retry once as an update.
        await db.rollback()
        logger.info("Concurrent heartbeat insert for employee %d", reading.employee_id)
        return await write()
