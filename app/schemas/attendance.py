"""Pydantic schemas for attendance sessions and the session-state query."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# ── Session ─────────────────────────────────────────────────────────
class AttendanceSessionRead(BaseModel):
    id: int
    tenant_id: int
    employee_id: int
    branch_id: int
    work_date: str
    check_in_time: datetime
    check_out_time: datetime | None = None
    checkout_kind: str | None = None
    checkout_reason: str | None = None

    model_config = {"from_attributes": True}


# ── State ───────────────────────────────────────────────────────────
class PendingCheckoutRead(BaseModel):
    id: int
    status: str
    reason: str
    started_at: datetime
    ends_at: datetime

    model_config = {"from_attributes": True}


class SessionStateResponse(BaseModel):
    """Everything a client needs to render the countdown without guessing."""

    session_id: int | None = None
    session_open: bool = False
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    checkout_kind: str | None = None
    checkout_reason: str | None = None
    pending: PendingCheckoutRead | None = None
    server_time: datetime


# ── Health ──────────────────────────────────────────────────────────
class HealthResponse(BaseModel):
    db: bool
    redis: bool
