"""
Per-tenant auto-checkout settings.

One row per tenant, defaulted when the tenant is created and edited only
by the admin settings screens.  The enforcement engine treats it as
read-only.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship

from app.core.config import settings
from app.db.base import Base


class TenantAutoCheckoutSettings(Base):
    __tablename__ = "tenant_auto_checkout_settings"
    __table_args__ = (
        CheckConstraint(
            "countdown_seconds >= 60 AND countdown_seconds <= 3600",
            name="ck_auto_checkout_countdown_range",
        ),
        CheckConstraint(
            "outside_readings_required >= 1 AND outside_readings_required <= 10",
            name="ck_auto_checkout_readings_range",
        ),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    tenant_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("tenants.id"), unique=True, nullable=False
    )
    enabled: bool = Column(Boolean, nullable=False, default=True, server_default="true")  # type: ignore[assignment]
    countdown_seconds: int = Column(  # type: ignore[assignment]
        Integer, nullable=False, default=settings.DEFAULT_COUNTDOWN_SECONDS
    )
    outside_readings_required: int = Column(  # type: ignore[assignment]
        Integer, nullable=False, default=settings.DEFAULT_OUTSIDE_READINGS
    )
    heartbeat_timeout_seconds: int = Column(  # type: ignore[assignment]
        Integer, nullable=False, default=settings.DEFAULT_HEARTBEAT_TIMEOUT_SECONDS
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tenant = relationship("Tenant", back_populates="auto_checkout_settings")
