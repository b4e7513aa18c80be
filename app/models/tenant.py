"""
Tenant, Branch & Employee models: owned by the CRUD subsystem.

The enforcement engine only reads them: employee → branch → geofence.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    auto_checkout_settings = relationship(
        "TenantAutoCheckoutSettings",
        back_populates="tenant",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Branch(Base):
    __tablename__ = "branches"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    latitude: float = Column(Float, nullable=False)  # type: ignore[assignment]
    longitude: float = Column(Float, nullable=False)  # type: ignore[assignment]
    geofence_radius: float = Column(Float, nullable=False, default=150.0)  # type: ignore[assignment]  # meters


class Employee(Base):
    __tablename__ = "employees"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    tenant_id: int = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)  # type: ignore[assignment]
    branch_id: int = Column(Integer, ForeignKey("branches.id"), nullable=False)  # type: ignore[assignment]
    full_name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]

    branch = relationship("Branch", lazy="joined")
