"""
FastAPI dependencies: database session, employee auth, cron-key guard.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import decode_access_token, verify_cron_key
from app.db.session import async_session_factory
from app.models.tenant import Employee

bearer_scheme = HTTPBearer(auto_error=False)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_employee(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Decode the bearer JWT and load the employee it names, scoped to its tenant."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None or not credentials.credentials:
        raise credentials_exc

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise credentials_exc

    try:
        employee_id = int(payload["sub"])
        tenant_id = int(payload["tid"])
    except (KeyError, TypeError, ValueError):
        raise credentials_exc

    result = await db.execute(
        select(Employee).where(Employee.id == employee_id, Employee.tenant_id == tenant_id)
    )
    employee = result.scalar_one_or_none()
    if employee is None:
        raise credentials_exc
    return employee


async def get_current_active_employee(
    current: Employee = Depends(get_current_employee),
) -> Employee:
    """Reject deactivated accounts."""
    if not current.is_active:
        raise HTTPException(status_code=403, detail="Employee account is deactivated")
    return current


async def require_cron_key(
    x_cron_key: Optional[str] = Header(default=None, alias="X-Cron-Key"),
) -> None:
    """Guard for the scheduler-facing sweep trigger."""
    if not verify_cron_key(x_cron_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron key",
        )
