from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Page events that count as network activity.
ACTIVITY_EVENTS = ("request", "response", "requestfinished", "requestfailed")


class QuiescenceOutcome(str, Enum):
    SETTLED = "settled"
    TIMED_OUT = "timed_out"


class QuiescenceMonitor:
    """
    Two-timer idle detector, independent of where activity signals come from.

    - idle timer: re-armed to `idle_window` on every notify_activity(); firing
      resolves SETTLED.
    - hard timer: fires once after `max_timeout` and resolves TIMED_OUT.

    Whichever fires first wins; both timers are cancelled on resolution.
    """

    def __init__(self, idle_window: float, max_timeout: float, *, loop: Optional[asyncio.AbstractEventLoop] = None):
        if idle_window <= 0 or max_timeout <= 0:
            raise ValueError("idle_window and max_timeout must be positive")
        self.idle_window = float(idle_window)
        self.max_timeout = float(max_timeout)
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._hard_handle: Optional[asyncio.TimerHandle] = None
        self.activity_count = 0

    @property
    def done(self) -> bool:
        return self._future.done()

    def start(self) -> None:
        if self._hard_handle is not None or self.done:
            return
        self._hard_handle = self._loop.call_later(self.max_timeout, self._resolve, QuiescenceOutcome.TIMED_OUT)
        self._arm_idle()

    def notify_activity(self, *_: Any) -> None:
        if self.done:
            return
        self.activity_count += 1
        self._arm_idle()

    def cancel(self) -> None:
        self._cancel_timers()
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> QuiescenceOutcome:
        self.start()
        try:
            return await self._future
        finally:
            self._cancel_timers()

    def _arm_idle(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        self._idle_handle = self._loop.call_later(self.idle_window, self._resolve, QuiescenceOutcome.SETTLED)

    def _resolve(self, outcome: QuiescenceOutcome) -> None:
        if self._future.done():
            return
        self._cancel_timers()
        self._future.set_result(outcome)

    def _cancel_timers(self) -> None:
        for h in (self._idle_handle, self._hard_handle):
            if h is not None:
                h.cancel()
        self._idle_handle = None
        self._hard_handle = None


async def await_quiescence(page, idle_window: float, max_timeout: float) -> QuiescenceOutcome:
    """
    Wait until `page` shows no network activity for `idle_window` seconds, or
    until `max_timeout` seconds pass. Listeners are always removed before
    returning so the next navigation on the same page starts clean.
    """
    monitor = QuiescenceMonitor(idle_window, max_timeout)
    handler = monitor.notify_activity
    for ev in ACTIVITY_EVENTS:
        page.on(ev, handler)
    try:
        outcome = await monitor.wait()
    finally:
        monitor.cancel()
        for ev in ACTIVITY_EVENTS:
            try:
                page.remove_listener(ev, handler)
            except Exception as e:
                logger.debug("remove_listener(%s) failed: %s", ev, e)

    if outcome is QuiescenceOutcome.TIMED_OUT:
        logger.debug(
            "Quiescence timeout after %.1fs (%d activity events) on %s",
            max_timeout, monitor.activity_count, getattr(page, "url", "?"),
        )
    return outcome
