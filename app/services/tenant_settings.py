"""
Read access to per-tenant auto-checkout settings, with a short TTL cache.

Settings change rarely (admin screens only), so the sweep and the state
query may see a value up to ``TENANT_SETTINGS_CACHE_TTL_SECONDS`` old.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import StaleSettings
from app.models.auto_checkout_settings import TenantAutoCheckoutSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoCheckoutPolicy:
    tenant_id: int
    enabled: bool
    countdown_seconds: int
    outside_readings_required: int
    heartbeat_timeout_seconds: int

    @classmethod
    def disabled(cls, tenant_id: int) -> "AutoCheckoutPolicy":
        """Safe fallback when a tenant has no settings row."""
        return cls(
            tenant_id=tenant_id,
            enabled=False,
            countdown_seconds=settings.DEFAULT_COUNTDOWN_SECONDS,
            outside_readings_required=settings.DEFAULT_OUTSIDE_READINGS,
            heartbeat_timeout_seconds=settings.DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
        )


_cache: dict[int, tuple[float, AutoCheckoutPolicy]] = {}


def clear_cache() -> None:
    _cache.clear()


async def load_policy(db: AsyncSession, tenant_id: int) -> AutoCheckoutPolicy:
    """Fetch the tenant's policy from the database; raises StaleSettings if missing."""
    result = await db.execute(
        select(TenantAutoCheckoutSettings).where(
            TenantAutoCheckoutSettings.tenant_id == tenant_id
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise StaleSettings(f"No auto-checkout settings for tenant {tenant_id}")
    return AutoCheckoutPolicy(
        tenant_id=tenant_id,
        enabled=bool(row.enabled),
        countdown_seconds=row.countdown_seconds,
        outside_readings_required=row.outside_readings_required,
        heartbeat_timeout_seconds=row.heartbeat_timeout_seconds,
    )


async def get_policy(db: AsyncSession, tenant_id: int) -> AutoCheckoutPolicy:
    """Cached policy lookup; missing settings fall back to auto-checkout disabled."""
    ttl = settings.TENANT_SETTINGS_CACHE_TTL_SECONDS
    hit = _cache.get(tenant_id)
    if hit is not None and time.monotonic() - hit[0] < ttl:
        return hit[1]

    try:
        policy = await load_policy(db, tenant_id)
    except StaleSettings as exc:
        logger.warning("%s; auto-checkout disabled for this tenant", exc.message)
        policy = AutoCheckoutPolicy.disabled(tenant_id)

    _cache[tenant_id] = (time.monotonic(), policy)
    return policy
