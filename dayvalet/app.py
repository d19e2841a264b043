"""
DayValet Application - Single entry point for the auto-message engine.

Usage:
    from dayvalet import DayValet

    app = DayValet("config.yaml")
    await app.run()  # until cancelled

    # Or drive it manually
    await app.start()
    ...
    await app.stop()
"""

import asyncio
import logging
import os
import random
from typing import Optional, Union

from .bus import MESSAGE_APPENDED, MessageBus
from .clock import SystemClock
from .config import DayValetConfig, load_config
from .protocols import GoalSourceProtocol, ScheduleSourceProtocol
from .sink import CallbackSink, ConversationLog
from .sources import HttpGoalSource, JsonGoalSource, JsonScheduleSource, StaticScheduleSource
from .triggers.engine import AutoMessageEngine
from .triggers.evaluator import TriggerEvaluator
from .triggers.poller import Poller
from .triggers.resolver import ContentResolver
from .triggers.store import JsonIdempotencyStore, JsonMessageCounter

logger = logging.getLogger(__name__)


class DayValet:
    """
    DayValet application: wires clock, store, sources, resolver, sinks,
    engine and poller from one configuration.

    Args:
        config: Path to a YAML configuration file, or a DayValetConfig.
        schedule_source: Optional override for the configured schedule source.
        goal_source: Optional override for the configured goal source.
    """

    def __init__(
        self,
        config: Union[str, DayValetConfig],
        schedule_source: Optional[ScheduleSourceProtocol] = None,
        goal_source: Optional[GoalSourceProtocol] = None,
    ):
        self._config = load_config(config) if isinstance(config, str) else config

        self.bus = MessageBus()
        self.clock = SystemClock(self._config.timezone)
        self.store = JsonIdempotencyStore(self._config.fired_keys_path)
        self.message_counter = JsonMessageCounter(
            os.path.join(os.path.dirname(self._config.fired_keys_path), "sent_counts.json")
        )
        self.schedule_source = schedule_source or self._build_schedule_source()
        self.goal_source = goal_source or self._build_goal_source()
        self.resolver = ContentResolver(self._config.content)
        self.conversation = ConversationLog(self._config.conversation_path, bus=self.bus)

        self.callback: Optional[CallbackSink] = None
        if self._config.callback_url:
            self.callback = CallbackSink(self._config.callback_url, timeout=self._config.content.timeout)
            source, event_type = MESSAGE_APPENDED
            self.bus.subscribe(f"{source}:{event_type}", self.callback.handle_event)

        evaluator = TriggerEvaluator(
            settings=self._config.triggers,
            trend_reminder_delay=self._config.trend_reminder_delay,
        )
        self.engine = AutoMessageEngine(
            clock=self.clock,
            schedule_source=self.schedule_source,
            store=self.store,
            resolver=self.resolver,
            sink=self.conversation,
            goal_source=self.goal_source,
            random_source=random.Random(),
            evaluator=evaluator,
            daily_message_cap=self._config.triggers.daily_message_cap,
            message_counter=self.message_counter,
        )
        self.poller = Poller(
            self.engine,
            interval=self._config.poll_interval,
            trend_reminder_delay=self._config.trend_reminder_delay,
        )
        self.poller.subscribe(self.bus)

    @property
    def config(self) -> DayValetConfig:
        return self._config

    def _build_schedule_source(self) -> ScheduleSourceProtocol:
        if self._config.schedule_path:
            return JsonScheduleSource(self._config.schedule_path)
        logger.warning("No schedule.path configured, starting with an empty schedule")
        return StaticScheduleSource()

    def _build_goal_source(self) -> Optional[GoalSourceProtocol]:
        if self._config.goals_url:
            return HttpGoalSource(
                self._config.goals_url,
                timeout=self._config.content.timeout,
                headers=self._config.content.headers,
            )
        if self._config.goals_path:
            return JsonGoalSource(self._config.goals_path)
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.poller.start()
        logger.info(f"DayValet started (timezone={self._config.timezone})")

    async def stop(self) -> None:
        await self.poller.stop()
        await self.bus.drain()
        if self.callback is not None:
            await self.callback.drain()
        logger.info("DayValet stopped")

    async def run(self) -> None:
        """Start and keep running until cancelled, then shut down cleanly."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
