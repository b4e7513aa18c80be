"""Tests for heartbeat ingestion (service and POST /heartbeat)."""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.exceptions import NoActiveSession
from app.core.security import create_access_token
from app.core.timeutil import ensure_utc, utcnow
from app.models.pending_checkout import PendingCheckout
from app.models.presence_heartbeat import PresenceHeartbeat, PresenceViolation
from app.services import attendance, heartbeat
from app.services.geofence import Position

from conftest import INSIDE, OUTSIDE


def _reading(t, permission="granted", where=INSIDE):
    return heartbeat.HeartbeatReading(
        tenant_id=t.tenant_id,
        employee_id=t.employee_id,
        permission_state=permission,
        position=Position(where["lat"], where["lng"]) if where else None,
        accuracy_m=where["accuracy"] if where else None,
    )


async def _checked_in(session_factory, t, now=None):
    async with session_factory() as db:
        return await attendance.check_in(db, t.tenant_id, t.employee_id, now=now)


# ── Service ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_ingest_inside_records_no_violation(session_factory, tenant):
    session = await _checked_in(session_factory, tenant)
    async with session_factory() as db:
        outcome = await heartbeat.ingest(db, _reading(tenant))

    assert outcome.session_id == session.id
    assert outcome.in_branch is True
    assert outcome.gps_ok is True
    assert outcome.violation == PresenceViolation.NONE
    assert outcome.distance_m < 150
    assert outcome.outside_streak == 0


@pytest.mark.asyncio
async def test_ingest_without_open_session_raises(session_factory, tenant):
    async with session_factory() as db:
        with pytest.raises(NoActiveSession):
            await heartbeat.ingest(db, _reading(tenant))


@pytest.mark.asyncio
async def test_permission_denied_is_gps_violation(session_factory, tenant):
    await _checked_in(session_factory, tenant)
    async with session_factory() as db:
        outcome = await heartbeat.ingest(db, _reading(tenant, permission="denied", where=None))

    assert outcome.gps_ok is False
    assert outcome.in_branch is False
    assert outcome.violation == PresenceViolation.GPS_DISABLED


@pytest.mark.asyncio
async def test_granted_without_fix_counts_as_gps_off(session_factory, tenant):
    await _checked_in(session_factory, tenant)
    async with session_factory() as db:
        outcome = await heartbeat.ingest(db, _reading(tenant, where=None))
    assert outcome.violation == PresenceViolation.GPS_DISABLED


@pytest.mark.asyncio
async def test_single_row_per_employee(session_factory, tenant):
    """Heartbeats overwrite the employee's row rather than appending."""
    await _checked_in(session_factory, tenant)
    for where in (INSIDE, OUTSIDE, INSIDE, OUTSIDE):
        async with session_factory() as db:
            await heartbeat.ingest(db, _reading(tenant, where=where))

    async with session_factory() as db:
        count = await db.scalar(select(func.count()).select_from(PresenceHeartbeat))
        row = await db.get(PresenceHeartbeat, tenant.employee_id)
    assert count == 1
    assert row.violation == PresenceViolation.OUT_OF_BRANCH.value
    assert row.inside_geofence is False


@pytest.mark.asyncio
async def test_outside_streak_counts_consecutive_readings(session_factory, tenant):
    await _checked_in(session_factory, tenant)
    streaks = []
    for where in (OUTSIDE, OUTSIDE, OUTSIDE, INSIDE, OUTSIDE):
        async with session_factory() as db:
            streaks.append((await heartbeat.ingest(db, _reading(tenant, where=where))).outside_streak)
    assert streaks == [1, 2, 3, 0, 1]


@pytest.mark.asyncio
async def test_gps_off_resets_outside_streak(session_factory, tenant):
    await _checked_in(session_factory, tenant)
    async with session_factory() as db:
        await heartbeat.ingest(db, _reading(tenant, where=OUTSIDE))
    async with session_factory() as db:
        await heartbeat.ingest(db, _reading(tenant, permission="denied", where=None))
    async with session_factory() as db:
        outcome = await heartbeat.ingest(db, _reading(tenant, where=OUTSIDE))
    assert outcome.outside_streak == 1


@pytest.mark.asyncio
async def test_ingest_updates_last_seen(session_factory, tenant):
    t0 = utcnow()
    await _checked_in(session_factory, tenant, now=t0)
    async with session_factory() as db:
        await heartbeat.ingest(db, _reading(tenant), now=t0 + timedelta(seconds=10))
    async with session_factory() as db:
        await heartbeat.ingest(db, _reading(tenant), now=t0 + timedelta(seconds=25))
    async with session_factory() as db:
        row = await db.get(PresenceHeartbeat, tenant.employee_id)
    assert ensure_utc(row.last_seen_at) == t0 + timedelta(seconds=25)


@pytest.mark.asyncio
async def test_ingest_never_creates_a_countdown(session_factory, tenant):
    await _checked_in(session_factory, tenant)
    for _ in range(5):
        async with session_factory() as db:
            await heartbeat.ingest(db, _reading(tenant, permission="denied", where=None))
    async with session_factory() as db:
        count = await db.scalar(select(func.count()).select_from(PendingCheckout))
    assert count == 0


# ── Endpoint ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_heartbeat_endpoint_inside(async_client: AsyncClient, session_factory, tenant):
    await _checked_in(session_factory, tenant)
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": tenant.employee_id,
            "tenant_id": tenant.tenant_id,
            "location": INSIDE,
            "permission_state": "granted",
        },
        headers=tenant.headers,
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "in_branch": True, "gps_ok": True}


@pytest.mark.asyncio
async def test_heartbeat_endpoint_outside(async_client: AsyncClient, session_factory, tenant):
    await _checked_in(session_factory, tenant)
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": tenant.employee_id,
            "tenant_id": tenant.tenant_id,
            "location": OUTSIDE,
            "permission_state": "granted",
        },
        headers=tenant.headers,
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "in_branch": False, "gps_ok": True}


@pytest.mark.asyncio
async def test_heartbeat_endpoint_no_session_is_404(async_client: AsyncClient, tenant):
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": tenant.employee_id,
            "tenant_id": tenant.tenant_id,
            "location": INSIDE,
            "permission_state": "granted",
        },
        headers=tenant.headers,
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "NO_ACTIVE_SESSION"


@pytest.mark.asyncio
async def test_heartbeat_requires_token(async_client: AsyncClient, tenant):
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={"employee_id": tenant.employee_id, "tenant_id": tenant.tenant_id},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_heartbeat_for_another_employee_is_forbidden(
    async_client: AsyncClient, make_tenant
):
    a = await make_tenant(name="A")
    b = await make_tenant(name="B")
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": b.employee_id,
            "tenant_id": b.tenant_id,
            "location": INSIDE,
            "permission_state": "granted",
        },
        headers=a.headers,
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_token_for_wrong_tenant_is_rejected(async_client: AsyncClient, make_tenant):
    a = await make_tenant(name="A")
    b = await make_tenant(name="B")
    forged = create_access_token(a.employee_id, b.tenant_id)
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={"employee_id": a.employee_id, "tenant_id": b.tenant_id},
        headers={"Authorization": f"Bearer {forged}"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "location",
    [
        {"lat": 91.0, "lng": 0.0},
        {"lat": 0.0, "lng": -200.0},
        {"lat": 0.0, "lng": 0.0, "accuracy": -5},
    ],
)
async def test_heartbeat_rejects_bad_coordinates(
    async_client: AsyncClient, session_factory, tenant, location
):
    await _checked_in(session_factory, tenant)
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": tenant.employee_id,
            "tenant_id": tenant.tenant_id,
            "location": location,
            "permission_state": "granted",
        },
        headers=tenant.headers,
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_heartbeat_endpoint_gps_off_is_still_accepted(
    async_client: AsyncClient, session_factory, tenant
):
    await _checked_in(session_factory, tenant)
    resp = await async_client.post(
        "/api/v1/heartbeat",
        json={
            "employee_id": tenant.employee_id,
            "tenant_id": tenant.tenant_id,
            "permission_state": "denied",
        },
        headers=tenant.headers,
    )
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "in_branch": False, "gps_ok": False}
