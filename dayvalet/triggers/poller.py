"""Poller — drives the AutoMessageEngine on a fixed cadence, with early wake-ups."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from ..bus import SCHEDULE_CHANGED, Event, MessageBus
from .engine import AutoMessageEngine
from .models import TickReport

logger = logging.getLogger(__name__)

# Minimum sleep to avoid busy-spin
MIN_SLEEP_S = 0.01


class Poller:
    """Timer loop around AutoMessageEngine.tick().

    Ticks once immediately on start(), then every ``interval`` seconds. The
    loop can be woken early by notify_snapshot_changed() (wired to the
    ``schedule:changed`` bus event) and wakes once more ``trend_reminder_delay``
    seconds after the unread trend set becomes non-empty. It guarantees only
    "at least once per interval"; the idempotency store absorbs extra ticks.
    """

    def __init__(
        self,
        engine: AutoMessageEngine,
        interval: float = 60.0,
        trend_reminder_delay: float = 60.0,
    ):
        self._engine = engine
        self._interval = max(MIN_SLEEP_S, interval)
        self._trend_reminder_delay = trend_reminder_delay
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None  # bound to the running loop in start()
        self._trend_timer: Optional[asyncio.TimerHandle] = None
        self._trend_armed_for: Optional[datetime] = None
        self.tick_count = 0
        self.last_report: Optional[TickReport] = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run one tick right away, then start the timer loop."""
        if self._running:
            return
        self._running = True
        self._wake = asyncio.Event()
        await self._run_tick()
        self._loop_task = asyncio.create_task(self._timer_loop())
        logger.info(f"Poller started (interval {self._interval}s)")

    async def stop(self) -> None:
        """Stop the loop and wait for in-flight content tasks."""
        self._running = False
        if self._wake is not None:
            self._wake.set()  # wake the loop so it can exit
        self._cancel_trend_timer()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self._engine.drain()
        logger.info("Poller stopped")

    def notify_snapshot_changed(self, event: Optional[Event] = None) -> None:
        """Request an extra tick (schedule edited, trends refreshed...)."""
        if self._wake is not None:
            self._wake.set()

    def subscribe(self, bus: MessageBus) -> None:
        """Tick again whenever the schedule source announces a change."""
        source, event_type = SCHEDULE_CHANGED
        bus.subscribe(f"{source}:{event_type}", self.notify_snapshot_changed)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _timer_loop(self) -> None:
        while self._running:
            try:
                await self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Poller tick error: {e}")
                await asyncio.sleep(1)  # brief recovery pause

    async def _tick(self) -> None:
        # Sleep, but wake immediately if _wake event is set
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

        if not self._running:
            return

        await self._run_tick()

    async def _run_tick(self) -> TickReport:
        report = await self._engine.tick()
        self.tick_count += 1
        self.last_report = report
        if report.fired:
            logger.debug(f"Tick {self.tick_count} fired {len(report.fired)} trigger(s)")
        self._arm_trend_timer()
        return report

    def _arm_trend_timer(self) -> None:
        """Schedule a wake-up for when the unread trend set has aged enough."""
        since = self._engine.unread_since
        if since is None:
            self._cancel_trend_timer()
            self._trend_armed_for = None
            return
        if since == self._trend_armed_for:
            return

        self._cancel_trend_timer()
        self._trend_armed_for = since
        elapsed = (self._engine.clock.now() - since).total_seconds()
        remaining = self._trend_reminder_delay - elapsed
        if remaining <= 0:
            return
        loop = asyncio.get_running_loop()
        self._trend_timer = loop.call_later(remaining, self._wake.set)

    def _cancel_trend_timer(self) -> None:
        if self._trend_timer is not None:
            self._trend_timer.cancel()
            self._trend_timer = None
