"""DayValet Models - activities, goals, trend items and conversation messages"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Activities without an explicit end time last one hour
DEFAULT_DURATION_MINUTES = 60

MINUTES_PER_DAY = 1440


def time_to_minutes(value: str) -> int:
    """Convert a wall-clock "HH:MM" string to minutes since midnight."""
    hours, minutes = value.strip().split(":")[:2]
    return int(hours) * 60 + int(minutes)


@dataclass
class Activity:
    """A timed activity on today's schedule (read-only for the engine)."""
    id: str
    text: str
    start_time: str  # "HH:MM"
    end_time: Optional[str] = None  # None = start + 60 minutes
    completed: bool = False
    skipped: bool = False

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        """End in minutes, normalized past midnight when the activity crosses it."""
        start = self.start_minutes
        if not self.end_time:
            return start + DEFAULT_DURATION_MINUTES
        end = time_to_minutes(self.end_time)
        if end < start:
            end += MINUTES_PER_DAY
        return end

    @property
    def crosses_midnight(self) -> bool:
        return self.end_minutes > MINUTES_PER_DAY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "completed": self.completed,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            id=str(data["id"]),
            text=data.get("text", ""),
            start_time=data.get("startTime") or data["start_time"],
            end_time=data.get("endTime", data.get("end_time")) or None,
            completed=bool(data.get("completed", False)),
            skipped=bool(data.get("skipped", False)),
        )


@dataclass
class TrendItem:
    """A trend briefing item; unread items drive the trend reminder."""
    id: str
    title: str = ""
    read: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrendItem":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            read=bool(data.get("read", False)),
        )


@dataclass
class Goal:
    """A long-term (weekly/monthly/yearly) goal with a 0-100 progress value."""
    id: str
    title: str
    type: str = "weekly"
    progress: int = 0
    completed: bool = False

    @property
    def active(self) -> bool:
        return not self.completed

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Goal":
        progress = int(data.get("progress", 0) or 0)
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            type=data.get("type", "weekly"),
            progress=max(0, min(100, progress)),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class ScheduleSnapshot:
    """Everything the engine reads in one tick. Treated as immutable."""
    activities: List[Activity] = field(default_factory=list)
    trend_items: List[TrendItem] = field(default_factory=list)

    @property
    def unread_trends(self) -> List[TrendItem]:
        return [t for t in self.trend_items if not t.read]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleSnapshot":
        return cls(
            activities=[Activity.from_dict(a) for a in data.get("activities", [])],
            trend_items=[TrendItem.from_dict(t) for t in data.get("trends", [])],
        )


@dataclass
class Message:
    """An assistant message appended to the conversation log."""
    content: str
    role: str = "assistant"
    id: str = field(default_factory=lambda: f"auto-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            role=data.get("role", "assistant"),
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
            metadata=data.get("metadata", {}),
        )
