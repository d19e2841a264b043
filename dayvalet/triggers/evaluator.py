"""Decides which triggers are eligible to fire on a tick.

Pure with respect to its inputs: it reads the clock value, the schedule
snapshot and the idempotency store, and never writes anything. Windows are
half-open minute ranges ``[a, b)`` so that ticks spaced by the polling
interval intersect a window a bounded number of times; the store makes the
first such tick the only one that fires.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from croniter import croniter

from ..clock import minutes_since_midnight
from ..config import TriggerSettings
from ..models import MINUTES_PER_DAY, Activity, ScheduleSnapshot
from ..protocols import IdempotencyStoreProtocol
from .classifier import ActivityClassifier, is_important
from .models import (
    DayDensity,
    TriggerCandidate,
    TriggerFamily,
    day_scope,
    hour_scope,
    make_key,
)

logger = logging.getLogger(__name__)

PRE_REMINDER_LEAD = 10
START_WINDOW = 5
CHECK_IN_OFFSET = 30
CHECK_IN_WINDOW = 5
FEEDBACK_WINDOW = 10
GAP_MIN_LEAD = 20
GAP_MAX_LEAD = 30
DAY_END_DELAY = 10
DAY_END_WINDOW = 30
WEEKLY_REPORT_SUNDAY_FROM = 21
WEEKLY_REPORT_MONDAY_UNTIL = 9


@dataclass
class Evaluation:
    """Candidates to fire this tick, in firing order."""
    candidates: List[TriggerCandidate] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)  # keys held back by density gating


def aligned_minutes(now_minutes: int, lower: int, upper: int, overnight: bool) -> int:
    """Represent ``now`` on whichever side of midnight falls inside ``[lower, upper)``.

    Overnight ranges are normalized past 1440, so 01:00 against a 23:00-02:00
    activity is compared as minute 1500. The unshifted reading wins when both
    sides fit; when neither does, ``now`` is returned unchanged.
    """
    if not overnight or lower <= now_minutes < upper:
        return now_minutes
    shifted = now_minutes + MINUTES_PER_DAY
    if lower <= shifted < upper:
        return shifted
    return now_minutes


def activity_minutes(activity: Activity, now_minutes: int) -> int:
    """``now`` aligned to the span an activity can trigger in, pre-reminder to feedback."""
    return aligned_minutes(
        now_minutes,
        activity.start_minutes - PRE_REMINDER_LEAD,
        activity.end_minutes + FEEDBACK_WINDOW,
        activity.crosses_midnight,
    )


def in_window(value: int, start: int, end: int) -> bool:
    return start <= value < end


def day_density(activities: List[Activity]) -> DayDensity:
    count = len(activities)
    if count <= 2:
        return DayDensity.LIGHT
    if count <= 5:
        return DayDensity.NORMAL
    return DayDensity.BUSY


def completion_rate(activities: List[Activity], now_minutes: int) -> int:
    """Percent of past activities that were completed; -1 when none are past."""
    completed = sum(1 for a in activities if a.completed)
    past = sum(1 for a in activities if now_minutes > a.end_minutes)
    if past == 0:
        return -1
    return round(completed / past * 100)


def completion_streak(activities: List[Activity], now_minutes: int) -> int:
    """Consecutive completed activities counting back from the latest ended one."""
    ended = sorted(
        (a for a in activities if a.end_time and now_minutes > a.end_minutes),
        key=lambda a: a.end_minutes,
        reverse=True,
    )
    streak = 0
    for activity in ended:
        if not activity.completed:
            break
        streak += 1
    return streak


def is_weekly_report_time(now: datetime) -> bool:
    """Sunday from 21:00, or Monday before 09:00."""
    weekday = now.weekday()
    if weekday == 6:
        return now.hour >= WEEKLY_REPORT_SUNDAY_FROM
    if weekday == 0:
        return now.hour < WEEKLY_REPORT_MONDAY_UNTIL
    return False


def cron_slot(expression: str, now: datetime, window_minutes: int) -> Optional[datetime]:
    """Return the cron fire time whose ``[fire, fire + window)`` contains ``now``."""

    base = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    try:
        fire = croniter(expression, base).get_prev(datetime)
    except Exception as e:
        logger.warning(f"Invalid cron expression '{expression}': {e}")
        return None
    if fire <= now < fire + timedelta(minutes=window_minutes):
        return fire
    return None


class TriggerEvaluator:
    """Computes the triggers eligible to fire for one tick.

    Args:
        settings: Cadences and gates (density gating, cron expressions, hour ranges)
        classifier: Activity classifier (keyword table)
        trend_reminder_delay: Seconds the unread trend set must stay non-empty
    """

    def __init__(
        self,
        settings: Optional[TriggerSettings] = None,
        classifier: Optional[ActivityClassifier] = None,
        trend_reminder_delay: float = 60.0,
    ):
        self._settings = settings or TriggerSettings()
        self._classifier = classifier or ActivityClassifier()
        self._trend_reminder_delay = trend_reminder_delay

    def evaluate(
        self,
        now: datetime,
        snapshot: ScheduleSnapshot,
        store: IdempotencyStoreProtocol,
        unread_since: Optional[datetime] = None,
    ) -> Evaluation:
        result = Evaluation()
        activities = snapshot.activities
        now_minutes = minutes_since_midnight(now)
        today = day_scope(now)

        density = day_density(activities)
        rate = completion_rate(activities, now_minutes)
        streak = completion_streak(activities, now_minutes)

        def offer(candidate: TriggerCandidate, allowed: bool = True) -> None:
            if self._already_fired(store, candidate.key):
                return
            if not allowed:
                result.suppressed.append(candidate.key)
                return
            result.candidates.append(candidate)

        # -- Per-activity families: activity by activity, then family by family --
        for activity in activities:
            start = activity.start_minutes
            end = activity.end_minutes
            now_m = activity_minutes(activity, now_minutes)
            category = self._classifier.classify(activity.text)
            important = is_important(activity.text)

            if in_window(now_m, start - PRE_REMINDER_LEAD, start):
                offer(
                    TriggerCandidate(
                        family=TriggerFamily.PRE_REMINDER,
                        key=make_key(TriggerFamily.PRE_REMINDER, today, activity.id),
                        activity=activity,
                        category=category,
                        params={"minutes_until": start - now_m},
                    ),
                    allowed=self._gate_start(density, important),
                )

            if in_window(now_m, start, start + START_WINDOW):
                offer(
                    TriggerCandidate(
                        family=TriggerFamily.SCHEDULE_START,
                        key=make_key(TriggerFamily.SCHEDULE_START, today, activity.id),
                        activity=activity,
                        category=category,
                        params={"completion_rate": rate, "streak": streak},
                    ),
                    allowed=self._gate_start(density, important),
                )

            if (
                category.needs_ai
                and in_window(now_m, start + CHECK_IN_OFFSET, start + CHECK_IN_OFFSET + CHECK_IN_WINDOW)
                and now_m < end
            ):
                offer(
                    TriggerCandidate(
                        family=TriggerFamily.IN_PROGRESS,
                        key=make_key(TriggerFamily.IN_PROGRESS, today, activity.id),
                        activity=activity,
                        category=category,
                    ),
                    allowed=self._gate_check_in(density, important),
                )

            if in_window(now_m, end, end + FEEDBACK_WINDOW):
                offer(
                    TriggerCandidate(
                        family=TriggerFamily.SCHEDULE_COMPLETED,
                        key=make_key(TriggerFamily.SCHEDULE_COMPLETED, today, activity.id),
                        activity=activity,
                        category=category,
                    ),
                    allowed=not self._is_busy(density),
                )

        # -- Free-time families --
        in_progress = [a for a in activities if self._is_in_progress(a, now_minutes)]
        upcoming = [
            a for a in activities
            if not a.completed and not a.skipped and a.start_minutes > now_minutes
        ]
        next_activity = min(upcoming, key=lambda a: a.start_minutes) if upcoming else None

        if next_activity and not in_progress:
            until = next_activity.start_minutes - now_minutes
            if GAP_MIN_LEAD <= until <= GAP_MAX_LEAD:
                offer(
                    TriggerCandidate(
                        family=TriggerFamily.GAP_FILLER,
                        key=make_key(TriggerFamily.GAP_FILLER, today, next_activity.id),
                        activity=next_activity,
                        params={"minutes_until": until},
                    ),
                    allowed=not self._is_busy(density),
                )

        idle_from, idle_to = self._settings.idle_hours
        if not upcoming and not in_progress and idle_from <= now.hour <= idle_to:
            offer(TriggerCandidate(
                family=TriggerFamily.IDLE,
                key=make_key(TriggerFamily.IDLE, hour_scope(now)),
            ))

        # -- Day-end summary --
        ended = [a for a in activities if a.end_time]
        if ended:
            last_end = max(a.end_minutes for a in ended)
            # Only an activity running past midnight carries the summary into the next morning
            overnight = last_end >= MINUTES_PER_DAY
            lower = last_end + DAY_END_DELAY
            upper = last_end + DAY_END_WINDOW if overnight else min(last_end + DAY_END_WINDOW, MINUTES_PER_DAY)
            now_m = aligned_minutes(now_minutes, lower, upper, overnight)
            if in_window(now_m, lower, upper):
                offer(TriggerCandidate(
                    family=TriggerFamily.DAY_END,
                    key=make_key(TriggerFamily.DAY_END, today),
                    params={
                        "completed": sum(1 for a in activities if a.completed),
                        "total": len(activities),
                    },
                ))

        evening_from, evening_to = self._settings.evening_hours
        if self._settings.evening_check and activities and evening_from <= now.hour < evening_to:
            offer(TriggerCandidate(
                family=TriggerFamily.EVENING_CHECK,
                key=make_key(TriggerFamily.EVENING_CHECK, today),
            ))

        if self._settings.weekly_report and is_weekly_report_time(now):
            offer(TriggerCandidate(
                family=TriggerFamily.WEEKLY_REPORT,
                key=make_key(TriggerFamily.WEEKLY_REPORT, today),
            ))

        # -- Cadence families --
        window = self._settings.cron_window_minutes
        news_fire = cron_slot(self._settings.news_cron, now, window)
        if news_fire is not None:
            offer(TriggerCandidate(
                family=TriggerFamily.NEWS,
                key=make_key(TriggerFamily.NEWS, hour_scope(news_fire)),
            ))

        unread = snapshot.unread_trends
        if (
            unread
            and unread_since is not None
            and (now - unread_since).total_seconds() >= self._trend_reminder_delay
        ):
            offer(TriggerCandidate(
                family=TriggerFamily.TREND_REMINDER,
                key=make_key(TriggerFamily.TREND_REMINDER, today),
                params={"unread_count": len(unread)},
            ))

        goal_fire = cron_slot(self._settings.goal_cron, now, window)
        if goal_fire is not None:
            offer(TriggerCandidate(
                family=TriggerFamily.GOAL_REMINDER,
                key=make_key(TriggerFamily.GOAL_REMINDER, hour_scope(goal_fire)),
            ))

        morning_from, morning_to = self._settings.morning_hours
        if self._settings.morning_greeting and morning_from <= now.hour < morning_to:
            offer(TriggerCandidate(
                family=TriggerFamily.MORNING_GREETING,
                key=make_key(TriggerFamily.MORNING_GREETING, today),
            ))

        if result.suppressed:
            logger.debug(f"Density gate ({density.value}) held back: {result.suppressed}")
        return result

    @staticmethod
    def _already_fired(store: IdempotencyStoreProtocol, key: str) -> bool:
        try:
            return store.has(key)
        except Exception as e:
            logger.warning(f"Idempotency store read failed for {key}, treating as unfired: {e}")
            return False

    @staticmethod
    def _is_in_progress(activity: Activity, now_minutes: int) -> bool:
        now_m = activity_minutes(activity, now_minutes)
        return activity.start_minutes <= now_m < activity.end_minutes

    def _is_busy(self, density: DayDensity) -> bool:
        return self._settings.density_gating and density == DayDensity.BUSY

    def _gate_start(self, density: DayDensity, important: bool) -> bool:
        return important or not self._is_busy(density)

    def _gate_check_in(self, density: DayDensity, important: bool) -> bool:
        if not self._settings.density_gating:
            return True
        if density == DayDensity.LIGHT:
            return True
        return density == DayDensity.NORMAL and important
