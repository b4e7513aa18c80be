"""
Client side of auto-checkout: keeps a device consistent with server truth.

The server's PendingCheckout / AttendanceSession rows are the only source
of truth.  The client never stores a remaining-seconds value; it keeps the
server's ``ends_at`` verbatim and derives the display from it every tick.
Resync triggers (mount, focus, visibility, poll, manual) are plain events
that all funnel into :meth:`ReconciliationClient.refresh_state`.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from app.core.exceptions import NoActiveSession, RaceLost, TransientIO
from app.core.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class Phase(str, Enum):
    IDLE = "IDLE"
    COUNTDOWN = "COUNTDOWN"
    EXECUTING = "EXECUTING"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class Trigger(str, Enum):
    MOUNT = "mount"
    FOCUS = "focus"
    VISIBILITY = "visibility"
    POLL = "poll"
    MANUAL = "manual"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed number of attempts with a fixed delay between them."""

    attempts: int = 3
    delay: float = 2.0


class StateTransport(Protocol):
    async def fetch_state(self, session_id: int | None = None) -> dict[str, Any]: ...

    async def check_out(self) -> dict[str, Any]: ...


def remaining_seconds(ends_at: datetime, now: datetime) -> int:
    """Whole seconds left on a countdown, rounded up, never negative."""
    delta = (ensure_utc(ends_at) - ensure_utc(now)).total_seconds()  # type: ignore[operator]
    return max(0, math.ceil(delta))


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    # Pydantic emits a trailing "Z" for UTC
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


class ReconciliationClient:
    def __init__(
        self,
        transport: StateTransport,
        session_id: int | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self.session_id = session_id
        self.poll_interval = poll_interval
        self.retry = retry or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._poll_task: asyncio.Task | None = None

        self.phase = Phase.IDLE
        self.ends_at: datetime | None = None
        self.reason: str | None = None
        self.pending_id: int | None = None
        self.remaining: int | None = None
        self.checkout_kind: str | None = None
        self.last_synced_at: datetime | None = None

    # ── Server sync ─────────────────────────────────────────────────
    async def refresh_state(self) -> Phase:
        """Pull server state and derive the phase from it.

        If the server cannot be reached the current phase and ``ends_at``
        are kept; the display keeps ticking until a later refresh succeeds.
        """
        try:
            state = await self._transport.fetch_state(self.session_id)
        except TransientIO as exc:
            logger.warning("State refresh failed, keeping %s: %s", self.phase.value, exc.message)
            return self.phase

        self.last_synced_at = self._clock()
        self._apply(state)
        return self.phase

    def _apply(self, state: dict[str, Any]) -> None:
        previous = self.phase
        session_id = state.get("session_id")
        pending = state.get("pending")

        if session_id is None:
            self._clear_countdown()
            self.phase = Phase.IDLE
        elif not state.get("session_open", False):
            self.session_id = session_id
            self.checkout_kind = state.get("checkout_kind")
            self._clear_countdown()
            self.phase = Phase.DONE
        elif pending is not None and pending.get("status") == "PENDING":
            self.session_id = session_id
            self.pending_id = pending["id"]
            self.reason = pending.get("reason")
            self.ends_at = _parse_ts(pending["ends_at"])
            self.phase = Phase.COUNTDOWN
            self.tick()
        else:
            self.session_id = session_id
            self._clear_countdown()
            # A countdown we were showing is gone: the server cancelled it.
            if previous in (Phase.COUNTDOWN, Phase.EXECUTING):
                self.phase = Phase.CANCELLED
            else:
                self.phase = Phase.IDLE

        if self.phase != previous:
            logger.info("Auto-checkout phase %s -> %s", previous.value, self.phase.value)

    def _clear_countdown(self) -> None:
        self.ends_at = None
        self.reason = None
        self.pending_id = None
        self.remaining = None

    async def on_trigger(self, trigger: Trigger) -> Phase:
        logger.debug("Resync trigger: %s", trigger.value)
        return await self.refresh_state()

    # ── Display ─────────────────────────────────────────────────────
    def tick(self, now: datetime | None = None) -> int | None:
        """Recompute the displayed remaining time; never touches the server."""
        if self.ends_at is None or self.phase not in (Phase.COUNTDOWN, Phase.EXECUTING):
            self.remaining = None
            return None
        self.remaining = remaining_seconds(self.ends_at, now or self._clock())
        if self.remaining == 0 and self.phase == Phase.COUNTDOWN:
            self.phase = Phase.EXECUTING
            logger.info("Countdown reached zero; waiting for server to close session")
        return self.remaining

    # ── Manual-equivalent checkout ──────────────────────────────────
    async def request_checkout(self) -> bool:
        """Manual check-out with bounded retry.

        Returns ``True`` once the session is known to be closed (by this
        call or by anyone else).  After the last failed attempt returns
        ``False`` and leaves the outcome to the next poll.
        """
        for attempt in range(1, self.retry.attempts + 1):
            try:
                await self._transport.check_out()
            except (RaceLost, NoActiveSession) as exc:
                # Someone else closed it first; either way it is closed.
                logger.info("Check-out already applied: %s", exc.message)
                await self.refresh_state()
                return True
            except TransientIO as exc:
                logger.warning(
                    "Check-out attempt %d/%d failed: %s", attempt, self.retry.attempts, exc.message
                )
                if attempt < self.retry.attempts:
                    await self._sleep(self.retry.delay)
                continue
            await self.refresh_state()
            return True

        logger.error("Check-out gave up after %d attempts; deferring to next poll", self.retry.attempts)
        return False

    # ── Polling ─────────────────────────────────────────────────────
    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def start_polling(self) -> None:
        if self.polling:
            return
        self._poll_task = asyncio.create_task(self._poll_loop(), name="state-poll")

    async def stop_polling(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            await self.on_trigger(Trigger.POLL)
            await self._sleep(self.poll_interval)
