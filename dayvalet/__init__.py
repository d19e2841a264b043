"""
DayValet - Proactive auto-messages for a personal productivity assistant

DayValet watches today's schedule and a handful of timed conditions (news
cadence, goal reminders, idle time, unread trend items, morning greeting)
and appends at most one assistant message per trigger key to the
conversation.

Quick Start:
    from dayvalet import DayValet

    app = DayValet("config.yaml")
    await app.run()

Embedding the engine directly:
    from dayvalet import AutoMessageEngine, FixedClock, MemoryIdempotencyStore

    engine = AutoMessageEngine(
        clock=FixedClock(datetime(2025, 3, 10, 10, 0)),
        schedule_source=StaticScheduleSource([Activity("a1", "업무", "10:00", "11:00")]),
        store=MemoryIdempotencyStore(),
        resolver=ContentResolver(),
        sink=ConversationLog(),
    )
    report = await engine.tick()
"""

from .errors import (
    ConfigError,
    DayValetError,
    GoalSourceError,
    IdempotencyStoreError,
    ScheduleSourceError,
)
from .models import Activity, Goal, Message, ScheduleSnapshot, TrendItem
from .clock import FixedClock, SystemClock
from .config import ContentConfig, DayValetConfig, TriggerSettings, load_config
from .bus import Event, MessageBus
from .sink import CallbackSink, ConversationLog
from .sources import (
    HttpGoalSource,
    JsonGoalSource,
    JsonScheduleSource,
    StaticGoalSource,
    StaticScheduleSource,
)
from .triggers import (
    AutoMessageEngine,
    ContentResolver,
    JsonIdempotencyStore,
    MemoryIdempotencyStore,
    Poller,
    TriggerEvaluator,
    TriggerFamily,
)
from .app import DayValet

__version__ = "0.1.0"

__all__ = [
    # Application
    "DayValet",
    # Errors
    "DayValetError",
    "ConfigError",
    "IdempotencyStoreError",
    "ScheduleSourceError",
    "GoalSourceError",
    # Models
    "Activity",
    "Goal",
    "Message",
    "ScheduleSnapshot",
    "TrendItem",
    # Clock
    "FixedClock",
    "SystemClock",
    # Config
    "ContentConfig",
    "DayValetConfig",
    "TriggerSettings",
    "load_config",
    # Bus and sinks
    "Event",
    "MessageBus",
    "CallbackSink",
    "ConversationLog",
    # Sources
    "HttpGoalSource",
    "JsonGoalSource",
    "JsonScheduleSource",
    "StaticGoalSource",
    "StaticScheduleSource",
    # Engine
    "AutoMessageEngine",
    "ContentResolver",
    "JsonIdempotencyStore",
    "MemoryIdempotencyStore",
    "Poller",
    "TriggerEvaluator",
    "TriggerFamily",
]
