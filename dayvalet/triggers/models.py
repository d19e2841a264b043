"""Trigger families, categories, candidates and TriggerKey construction."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..models import Activity


class TriggerFamily(str, Enum):
    """Independent condition categories checked every tick."""
    PRE_REMINDER = "pre_reminder"
    SCHEDULE_START = "schedule_start"
    IN_PROGRESS = "in_progress"
    SCHEDULE_COMPLETED = "schedule_completed"
    GAP_FILLER = "gap_filler"
    IDLE = "idle"
    DAY_END = "day_end"
    NEWS = "news"
    TREND_REMINDER = "trend_reminder"
    GOAL_REMINDER = "goal_reminder"
    MORNING_GREETING = "morning_greeting"
    EVENING_CHECK = "evening_check"
    WEEKLY_REPORT = "weekly_report"


class ActivityCategory(str, Enum):
    """Keyword-derived category of an activity."""
    MEAL = "meal"
    REST = "rest"
    LEISURE = "leisure"
    EXERCISE = "exercise"
    WORK = "work"
    STUDY = "study"
    GENERIC = "generic"

    @property
    def needs_ai(self) -> bool:
        """Work/study activities get AI start text and a mid-progress check-in."""
        return self in (ActivityCategory.WORK, ActivityCategory.STUDY)


class DayDensity(str, Enum):
    LIGHT = "light"
    NORMAL = "normal"
    BUSY = "busy"


def make_key(family: TriggerFamily, scope: str, entity_id: Optional[str] = None) -> str:
    """Build a TriggerKey: ``{family}_{entityId?}_{scope}``."""
    if entity_id:
        return f"{family.value}_{entity_id}_{scope}"
    return f"{family.value}_{scope}"


def day_scope(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def hour_scope(now: datetime) -> str:
    return now.strftime("%Y-%m-%d_%H")


@dataclass
class TriggerCandidate:
    """A trigger judged eligible to fire this tick."""
    family: TriggerFamily
    key: str
    activity: Optional[Activity] = None
    category: Optional[ActivityCategory] = None
    # Family-specific values (completion counts, unread count, minutes until next...)
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def bypasses_cap(self) -> bool:
        return self.family == TriggerFamily.PRE_REMINDER


@dataclass
class TickReport:
    """Outcome of one engine tick."""
    fired_at: datetime
    fired: list = field(default_factory=list)  # keys marked this tick
    suppressed: list = field(default_factory=list)  # keys gated by density
    errors: list = field(default_factory=list)  # keys whose mark() failed
