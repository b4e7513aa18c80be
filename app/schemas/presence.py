"""Pydantic schemas for the presence heartbeat."""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field, field_validator

PermissionState = Literal["granted", "denied", "prompt", "unavailable"]


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Coordinates must be finite numbers")
        return v


class HeartbeatRequest(BaseModel):
    employee_id: int
    tenant_id: int
    location: Location | None = None
    permission_state: PermissionState = "granted"


class HeartbeatResponse(BaseModel):
    """``ok`` means the reading was recorded; presence is in the other two flags."""

    ok: bool
    in_branch: bool
    gps_ok: bool
