"""
PendingCheckout: the server-side countdown state machine.

PENDING → CANCELLED when the violation resolves, PENDING → DONE when the
sweep closes the session.  Both end states are terminal; ``ends_at`` is
written once at creation.  A partial unique index keeps at most one
PENDING row per attendance session.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text

from app.db.base import Base


class PendingStatus(str, enum.Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class ViolationReason(str, enum.Enum):
    GPS_DISABLED = "gps_disabled"
    OUT_OF_BRANCH = "out_of_branch"
    NO_HEARTBEAT = "no_heartbeat"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"


class CancelReason(str, enum.Enum):
    CONDITIONS_RESOLVED = "conditions_resolved"
    MANUAL_CHECKOUT = "manual_checkout"


class DoneReason(str, enum.Enum):
    EXECUTED = "executed"
    ALREADY_CLOSED = "already_closed"


class PendingCheckout(Base):
    __tablename__ = "pending_checkouts"
    __table_args__ = (
        Index(
            "uq_pending_checkout_active_session",
            "attendance_session_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index("ix_pending_checkout_tenant_status", "tenant_id", "status"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)  # type: ignore[assignment]
    attendance_session_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("attendance_sessions.id"), nullable=False, index=True
    )
    reason: str = Column(String(30), nullable=False)  # type: ignore[assignment]
    started_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    ends_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    status: str = Column(String(12), nullable=False, default=PendingStatus.PENDING.value)  # type: ignore[assignment]
    cancel_reason: str | None = Column(String(30), nullable=True)  # type: ignore[assignment]
    cancelled_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    done_reason: str | None = Column(String(30), nullable=True)  # type: ignore[assignment]
    done_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
