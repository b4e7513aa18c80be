"""
PresenceHeartbeat: latest known presence signal, one row per employee.

Overwritten by every heartbeat, deleted when the session closes.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String

from app.db.base import Base


class PresenceViolation(str, enum.Enum):
    NONE = "none"
    GPS_DISABLED = "gps_disabled"
    OUT_OF_BRANCH = "out_of_branch"


class PresenceHeartbeat(Base):
    __tablename__ = "presence_heartbeats"

    employee_id: int = Column(Integer, ForeignKey("employees.id"), primary_key=True)  # type: ignore[assignment]
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)  # type: ignore[assignment]
    attendance_session_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("attendance_sessions.id"), nullable=False
    )
    last_seen_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    inside_geofence: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    gps_enabled: bool = Column(Boolean, nullable=False, default=False)  # type: ignore[assignment]
    violation: str = Column(String(20), nullable=False, default=PresenceViolation.NONE.value)  # type: ignore[assignment]
    # none | gps_disabled | out_of_branch
    outside_streak: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    distance_m: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    accuracy_m: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
