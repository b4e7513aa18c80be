"""
V1 API router aggregator: wires all endpoint modules together.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import attendance, enforcement, health, presence

api_router = APIRouter()

# Heartbeat ingestion
api_router.include_router(presence.router)

# Session state, manual check-in / check-out
api_router.include_router(attendance.router)

# Sweep trigger for external schedulers
api_router.include_router(enforcement.router)

# Health
api_router.include_router(health.router)
