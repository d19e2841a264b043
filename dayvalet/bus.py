"""DayValet MessageBus — in-process publish/subscribe with ``source:event_type`` patterns."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

# Well-known events
SCHEDULE_CHANGED = ("schedule", "changed")
MESSAGE_APPENDED = ("conversation", "message_appended")


@dataclass
class Event:
    """An event published on the MessageBus."""
    source: str  # e.g. "schedule", "conversation"
    event_type: str  # e.g. "changed", "message_appended"
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class MessageBus:
    """
    Single-process event bus.

    Callbacks may be plain functions or coroutine functions. Coroutine
    callbacks are scheduled on the running loop and tracked until done;
    publish() itself never blocks and never raises.

    Usage:
        bus = MessageBus()
        bus.subscribe("schedule:*", on_schedule_event)
        bus.publish(Event(source="schedule", event_type="changed"))
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[Callable]] = {}  # pattern -> [callback]
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, pattern: str, callback: Callable) -> None:
        """Subscribe to events matching ``source:event_type`` (``*`` wildcards)."""
        self._subscriptions.setdefault(pattern, []).append(callback)
        logger.debug(f"Subscribed to event pattern: {pattern}")

    def unsubscribe(self, pattern: str, callback: Callable = None) -> None:
        """Remove one callback, or every callback for a pattern."""
        if callback is None:
            self._subscriptions.pop(pattern, None)
            return
        callbacks = self._subscriptions.get(pattern, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: Event) -> None:
        """Dispatch an event to every matching subscriber."""
        for pattern, callbacks in list(self._subscriptions.items()):
            if not self._matches_pattern(pattern, event):
                continue
            for callback in list(callbacks):
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        task = asyncio.ensure_future(result)
                        self._pending.add(task)
                        task.add_done_callback(self._on_task_done)
                except Exception as e:
                    logger.error(f"Event callback error for {pattern}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled coroutine callbacks to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event callback failed: {task.exception()}")

    @staticmethod
    def _matches_pattern(pattern: str, event: Event) -> bool:
        """Check if event matches subscription pattern."""
        parts = pattern.split(":", 1)
        source_pattern = parts[0]
        type_pattern = parts[1] if len(parts) > 1 else "*"

        if source_pattern != "*" and source_pattern != event.source:
            return False
        if type_pattern != "*" and type_pattern != event.event_type:
            return False
        return True
