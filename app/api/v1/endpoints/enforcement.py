"""
Sweep trigger for external schedulers (cron, k8s CronJob, Cloud Scheduler).
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_db, require_cron_key
from app.schemas.enforcement import SweepResponse
from app.services.enforcement import run_sweep

router = APIRouter(prefix="/enforcement", tags=["enforcement"])
logger = logging.getLogger(__name__)


@router.post("/sweep", response_model=SweepResponse, dependencies=[Depends(require_cron_key)])
async def trigger_sweep(db: AsyncSession = Depends(get_db)) -> SweepResponse:
    report = await run_sweep(db)
    return SweepResponse(**asdict(report))
