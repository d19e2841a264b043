"""DayValet AutoMessageEngine — turns one evaluation pass into marked keys and messages."""

import asyncio
import logging
import random
import uuid
from datetime import datetime
from typing import List, Optional, Set

from ..errors import IdempotencyStoreError
from ..models import Message, ScheduleSnapshot
from ..protocols import (
    ClockProtocol,
    ContentResolverProtocol,
    GoalSourceProtocol,
    IdempotencyStoreProtocol,
    MessageCounterProtocol,
    MessageSinkProtocol,
    RandomSourceProtocol,
    ScheduleSourceProtocol,
)
from .evaluator import TriggerEvaluator
from .models import TickReport, TriggerCandidate, TriggerFamily, day_scope
from .store import MemoryMessageCounter
from .templates import render_day_end, render_goal_reminder, render_start, render_trend_reminder

logger = logging.getLogger(__name__)


class AutoMessageEngine:
    """
    Scheduled trigger / auto-message engine.

    Each tick reads the clock and the schedule snapshot, asks the evaluator
    for eligible triggers, marks every trigger's key in the idempotency store
    *before* any asynchronous work starts, and appends the resulting message
    to the sink. Content lookups run as background tasks so a slow endpoint
    never delays the other triggers of the same tick.

    The goal reminder is the one family marked only after its goal fetch
    succeeds; an in-flight guard keeps overlapping ticks from fetching twice.

    Args:
        clock: Supplies "now" (timezone-aware)
        schedule_source: Returns today's snapshot
        store: Idempotency store (has/mark)
        resolver: Content resolver for AI-backed families
        sink: Message sink (append)
        goal_source: Optional active-goal source; goal reminders are skipped without one
        random_source: Picks the goal to remind about (default random.Random())
        evaluator: Trigger evaluator (default settings if omitted)
        daily_message_cap: Max engine messages per day; pre-reminders bypass it. None/0 = unlimited
        message_counter: Per-day sent count backing the cap (default in-memory)
    """

    def __init__(
        self,
        clock: ClockProtocol,
        schedule_source: ScheduleSourceProtocol,
        store: IdempotencyStoreProtocol,
        resolver: ContentResolverProtocol,
        sink: MessageSinkProtocol,
        goal_source: Optional[GoalSourceProtocol] = None,
        random_source: Optional[RandomSourceProtocol] = None,
        evaluator: Optional[TriggerEvaluator] = None,
        daily_message_cap: Optional[int] = 8,
        message_counter: Optional[MessageCounterProtocol] = None,
    ):
        self._clock = clock
        self._schedule_source = schedule_source
        self._store = store
        self._resolver = resolver
        self._sink = sink
        self._goal_source = goal_source
        self._random = random_source or random.Random()
        self._evaluator = evaluator or TriggerEvaluator()
        self._daily_message_cap = daily_message_cap or None
        self._message_counter = message_counter if message_counter is not None else MemoryMessageCounter()
        self._unread_since: Optional[datetime] = None
        self._goal_inflight: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    @property
    def unread_since(self) -> Optional[datetime]:
        """When the unread trend set last became non-empty (None while empty)."""
        return self._unread_since

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Run one evaluation pass. Content resolution continues in the background."""
        now = self._clock.now()
        report = TickReport(fired_at=now)

        try:
            snapshot = await self._schedule_source.load()
        except Exception as e:
            logger.error(f"Schedule snapshot unavailable, skipping tick: {e}")
            return report

        self._track_unread(snapshot, now)
        evaluation = self._evaluator.evaluate(now, snapshot, self._store, self._unread_since)
        report.suppressed.extend(evaluation.suppressed)

        for candidate in evaluation.candidates:
            if candidate.family == TriggerFamily.GOAL_REMINDER:
                self._start_goal_reminder(candidate)
                continue

            try:
                self._store.mark(candidate.key)
            except IdempotencyStoreError as e:
                logger.error(f"Skipping trigger {candidate.key}: {e}")
                report.errors.append(candidate.key)
                continue

            report.fired.append(candidate.key)
            logger.info(f"Trigger fired: {candidate.key}")
            self._dispatch(candidate, snapshot)

        return report

    async def drain(self) -> None:
        """Wait for every in-flight content task (tests, shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _track_unread(self, snapshot: ScheduleSnapshot, now: datetime) -> None:
        if snapshot.unread_trends:
            if self._unread_since is None:
                self._unread_since = now
        else:
            self._unread_since = None

    # ------------------------------------------------------------------
    # Dispatch per family
    # ------------------------------------------------------------------

    def _dispatch(self, candidate: TriggerCandidate, snapshot: ScheduleSnapshot) -> None:
        family = candidate.family

        if family == TriggerFamily.SCHEDULE_START and not candidate.category.needs_ai:
            self._emit(candidate, render_start(
                candidate.activity,
                candidate.category,
                completion_rate=candidate.params.get("completion_rate", -1),
                streak=candidate.params.get("streak", 0),
            ))
        elif family == TriggerFamily.DAY_END:
            self._emit(candidate, render_day_end(candidate.params["completed"], candidate.params["total"]))
        elif family == TriggerFamily.TREND_REMINDER:
            self._emit(candidate, render_trend_reminder(candidate.params["unread_count"]))
        else:
            self._spawn(self._resolve_and_emit(candidate, snapshot.activities))

    async def _resolve_and_emit(self, candidate: TriggerCandidate, activities: List) -> None:
        content = await self._resolver.resolve(
            candidate.family,
            activity=candidate.activity,
            activities=activities,
        )
        if content is None:
            logger.info(f"No message for {candidate.key} (nothing to report)")
            return
        self._emit(candidate, content)

    def _start_goal_reminder(self, candidate: TriggerCandidate) -> None:
        if self._goal_source is None:
            logger.debug("No goal source configured, skipping goal reminder")
            return
        if candidate.key in self._goal_inflight:
            return
        self._goal_inflight.add(candidate.key)
        self._spawn(self._goal_reminder(candidate))

    async def _goal_reminder(self, candidate: TriggerCandidate) -> None:
        try:
            try:
                goals = await self._goal_source.active_goals()
            except Exception as e:
                logger.warning(f"Goal fetch failed, will retry on a later tick: {e}")
                return

            try:
                self._store.mark(candidate.key)
            except IdempotencyStoreError as e:
                logger.error(f"Skipping trigger {candidate.key}: {e}")
                return

            active = [g for g in goals if g.active]
            if not active:
                logger.info(f"No active goals for {candidate.key}")
                return
            goal = self._random.choice(active)
            logger.info(f"Trigger fired: {candidate.key} (goal {goal.id})")
            self._emit(candidate, render_goal_reminder(goal))
        finally:
            self._goal_inflight.discard(candidate.key)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(self, candidate: TriggerCandidate, content: str) -> bool:
        now = self._clock.now()
        day = day_scope(now)

        if self._daily_message_cap and not candidate.bypasses_cap:
            if self._message_counter.count(day) >= self._daily_message_cap:
                logger.warning(f"Daily message cap ({self._daily_message_cap}) reached, dropping {candidate.key}")
                return False
        self._message_counter.increment(day)

        message = Message(
            id=f"auto-{candidate.family.value}-{uuid.uuid4().hex[:8]}",
            content=content,
            timestamp=now,
            metadata={"trigger": candidate.family.value, "key": candidate.key},
        )
        try:
            self._sink.append(message)
        except Exception as e:
            logger.error(f"Message sink failed for {candidate.key}: {e}")
            return False
        return True

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Auto-message task failed: {task.exception()}")
