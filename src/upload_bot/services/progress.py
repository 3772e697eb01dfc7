"""Best-effort delivery of progress events to observers."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT")

ProgressObserver = Callable[[EventT], Awaitable[None] | None]


async def emit(observer: ProgressObserver | None, event: EventT) -> None:
    """Deliver an event; observer failures never reach the caller."""
    if observer is None:
        return
    try:
        outcome = observer(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:  # noqa: BLE001
        logger.debug("Progress observer failed", exc_info=True)
