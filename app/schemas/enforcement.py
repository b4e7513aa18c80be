"""Pydantic schemas for the enforcement sweep trigger."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class SweepResponse(BaseModel):
    processed: int
    started: int
    executed: int
    cancelled: int
    errors: int
    details: list[dict[str, Any]] = []
