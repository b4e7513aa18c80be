"""
AttendanceSession: one check-in / check-out record per employee per day.

Closed exactly once, by either the manual check-out path or the
enforcement sweep, through a conditional ``UPDATE ... WHERE
check_out_time IS NULL``.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text

from app.db.base import Base


class CheckoutKind(str, enum.Enum):
    MANUAL = "manual"
    AUTO = "auto"


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    __table_args__ = (
        Index("ix_attendance_session_tenant_open", "tenant_id", "check_out_time"),
        Index(
            "uq_attendance_session_open_per_day",
            "employee_id",
            "work_date",
            unique=True,
            sqlite_where=text("check_out_time IS NULL"),
            postgresql_where=text("check_out_time IS NULL"),
        ),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False)  # type: ignore[assignment]
    employee_id: int = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)  # type: ignore[assignment]
    branch_id: int = Column(Integer, ForeignKey("branches.id"), nullable=False)  # type: ignore[assignment]
    work_date: str = Column(String(10), nullable=False, index=True)  # type: ignore[assignment]  # YYYY-MM-DD
    check_in_time: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    check_out_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    checkout_kind: str | None = Column(String(10), nullable=True)  # type: ignore[assignment]
    # manual | auto
    checkout_reason: str | None = Column(String(40), nullable=True)  # type: ignore[assignment]

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None
