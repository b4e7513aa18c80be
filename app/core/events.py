"""
In-process domain event bus.

The notification subsystem (out of this service) registers handlers for
the events it cares about; publishing never fails the caller.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

SESSION_CLOSED = "attendance.session_closed"

Handler = Callable[[str, dict[str, Any]], Awaitable[None] | None]

_handlers: dict[str, list[Handler]] = defaultdict(list)


def subscribe(event: str, handler: Handler) -> None:
    _handlers[event].append(handler)


def unsubscribe(event: str, handler: Handler) -> None:
    if handler in _handlers.get(event, []):
        _handlers[event].remove(handler)


def clear() -> None:
    _handlers.clear()


async def publish(event: str, payload: dict[str, Any]) -> int:
    """Deliver *payload* to every handler of *event*; returns handlers reached."""
    delivered = 0
    for handler in list(_handlers.get(event, [])):
        try:
            result = handler(event, payload)
            if inspect.isawaitable(result):
                await result
            delivered += 1
        except Exception:
            logger.exception("Event handler %r failed for %s", handler, event)
    logger.info("Event %s published to %d handler(s): %s", event, delivered, payload)
    return delivered
