"""
Domain errors and global exception handlers.

Handlers prevent stack-trace leakage to clients; the domain errors are
raised by the services and mapped to HTTP status codes here.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

logger = logging.getLogger(__name__)


# ── Domain errors ───────────────────────────────────────────────────
class EnforcementError(Exception):
    """Base class for auto-checkout domain errors."""

    code = "ENFORCEMENT_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class NoActiveSession(EnforcementError):
    """Heartbeat or state query for an employee without an open session."""

    code = "NO_ACTIVE_SESSION"


class RaceLost(EnforcementError):
    """A conditional write affected zero rows: another writer got there first."""

    code = "RACE_LOST"


class StaleSettings(EnforcementError):
    """Tenant has no auto-checkout settings row."""

    code = "STALE_SETTINGS"


class TransientIO(EnforcementError):
    """Database / network failure worth retrying."""

    code = "TRANSIENT_IO"


class InvalidCoordinates(EnforcementError, ValueError):
    """Latitude / longitude / radius outside the valid range."""

    code = "INVALID_COORDINATES"


def is_transient(exc: BaseException) -> bool:
    """True for driver-level failures (lost connection, timeout, lock wait)."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (TransientIO, OperationalError, ConnectionError, TimeoutError))


# ── Handlers ────────────────────────────────────────────────────────
def _error_body(detail: str, code: str) -> dict:
    return {"detail": detail, "code": code, "success": False}


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _no_active_session_handler(_request: Request, exc: NoActiveSession) -> JSONResponse:
    logger.warning("No active session: %s", exc.message)
    return JSONResponse(status_code=404, content=_error_body(exc.message, exc.code))


async def _race_lost_handler(_request: Request, exc: RaceLost) -> JSONResponse:
    logger.info("Conditional write lost: %s", exc.message)
    return JSONResponse(status_code=409, content=_error_body(exc.message, exc.code))


async def _invalid_coordinates_handler(_request: Request, exc: InvalidCoordinates) -> JSONResponse:
    return JSONResponse(status_code=422, content=_error_body(exc.message, exc.code))


async def _transient_io_handler(_request: Request, exc: TransientIO) -> JSONResponse:
    logger.error("Transient I/O failure: %s", exc.message)
    return JSONResponse(
        status_code=503,
        content=_error_body("Service temporarily unavailable", exc.code),
        headers={"Retry-After": "5"},
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NoActiveSession, _no_active_session_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RaceLost, _race_lost_handler)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidCoordinates, _invalid_coordinates_handler)  # type: ignore[arg-type]
    app.add_exception_handler(TransientIO, _transient_io_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
