"""
Lightweight in-process wake-up signal for the delivery worker.

The worker polls on a fixed interval; this event lets the ingestion path
wake it early after new occurrences were scheduled.  Multiple `.set()` calls
before a single `.wait()` returns coalesce into one wake-up.
"""

import asyncio
from typing import Optional

_loop: Optional[asyncio.AbstractEventLoop] = None
_schedule_event: Optional[asyncio.Event] = None


def _event() -> asyncio.Event:
    """The event of the running loop (a new loop starts with a fresh event)."""
    global _loop, _schedule_event
    loop = asyncio.get_running_loop()
    if _schedule_event is None or _loop is not loop:
        _loop = loop
        _schedule_event = asyncio.Event()
    return _schedule_event


def notify_scheduler() -> None:
    """Signal that new occurrences were scheduled. No-op outside a running loop."""
    try:
        event = _event()
    except RuntimeError:
        return
    event.set()


async def wait_for_notification(timeout: float = 30.0) -> bool:
    """
    Wait until notified or *timeout* seconds elapse.

    Returns True if a notification arrived, False on timeout.
    Clears the event so the next call blocks again.
    """
    event = _event()
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        event.clear()
