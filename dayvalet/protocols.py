"""
DayValet Protocols - Ports for the collaborators the trigger engine depends on

The engine never talks to a browser, a database or a wall clock directly.
Each collaborator is injected and only has to satisfy one of these contracts,
which keeps the evaluator testable without real waiting.
"""

from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from .models import Goal, Message, ScheduleSnapshot


@runtime_checkable
class ClockProtocol(Protocol):
    """Supplies wall-clock "now" as a timezone-aware datetime"""

    def now(self) -> datetime:
        ...


@runtime_checkable
class IdempotencyStoreProtocol(Protocol):
    """
    Key -> fired flag, scoped by the day/hour string embedded in the key

    mark() must be idempotent and durable; has() must be synchronous.
    """

    def has(self, key: str) -> bool:
        ...

    def mark(self, key: str) -> None:
        ...


@runtime_checkable
class ScheduleSourceProtocol(Protocol):
    """Returns today's activities (and trend items), re-read in full each tick"""

    async def load(self) -> ScheduleSnapshot:
        ...


@runtime_checkable
class GoalSourceProtocol(Protocol):
    """Returns active (incomplete) long-term goals"""

    async def active_goals(self) -> List[Goal]:
        ...


@runtime_checkable
class MessageSinkProtocol(Protocol):
    """
    Receives engine messages

    append() is fire-and-forget: persistence failures are the sink's concern.
    """

    def append(self, message: Message) -> None:
        ...


@runtime_checkable
class RandomSourceProtocol(Protocol):
    """Random choice among goals; random.Random satisfies it"""

    def choice(self, seq: Sequence[Any]) -> Any:
        ...


@runtime_checkable
class ContentResolverProtocol(Protocol):
    """Resolves personalized text for a trigger family; never raises"""

    async def resolve(
        self, family: Any, activity: Optional[Any] = None, activities: Optional[List[Any]] = None,
    ) -> Optional[str]:
        ...


@runtime_checkable
class MessageCounterProtocol(Protocol):
    """Per-day count of engine messages, for the daily cap"""

    def count(self, day: str) -> int:
        ...

    def increment(self, day: str) -> int:
        ...
