"""Schedule and goal sources read by the engine."""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from .errors import GoalSourceError, ScheduleSourceError
from .models import Activity, Goal, ScheduleSnapshot, TrendItem

logger = logging.getLogger(__name__)


class StaticScheduleSource:
    """In-memory snapshot holder; replace() swaps the whole snapshot."""

    def __init__(self, activities: Optional[List[Activity]] = None, trend_items: Optional[List[TrendItem]] = None):
        self._snapshot = ScheduleSnapshot(
            activities=list(activities or []),
            trend_items=list(trend_items or []),
        )

    def replace(
        self,
        activities: Optional[List[Activity]] = None,
        trend_items: Optional[List[TrendItem]] = None,
    ) -> None:
        self._snapshot = ScheduleSnapshot(
            activities=list(activities if activities is not None else self._snapshot.activities),
            trend_items=list(trend_items if trend_items is not None else self._snapshot.trend_items),
        )

    async def load(self) -> ScheduleSnapshot:
        return self._snapshot


class JsonScheduleSource:
    """Reads today's snapshot from a JSON file on every tick.

    File format:
        {
            "activities": [{"id": "a1", "text": "업무", "startTime": "10:00", "endTime": "11:00"}],
            "trends": [{"id": "t1", "title": "...", "read": false}]
        }
    """

    def __init__(self, path: str):
        self._path = Path(os.path.expanduser(path))

    async def load(self) -> ScheduleSnapshot:
        if not self._path.exists():
            return ScheduleSnapshot()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return ScheduleSnapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise ScheduleSourceError(f"Failed to read schedule from {self._path}: {e}") from e


class StaticGoalSource:
    """In-memory goal list."""

    def __init__(self, goals: Optional[List[Goal]] = None):
        self.goals = list(goals or [])

    async def active_goals(self) -> List[Goal]:
        return [g for g in self.goals if g.active]


class JsonGoalSource:
    """Reads goals from a JSON file: ``{"goals": [{"id", "title", "type", "progress", "completed"}]}``."""

    def __init__(self, path: str):
        self._path = Path(os.path.expanduser(path))

    async def active_goals(self) -> List[Goal]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            goals = [Goal.from_dict(g) for g in data.get("goals", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise GoalSourceError(f"Failed to read goals from {self._path}: {e}") from e
        return [g for g in goals if g.active]


class HttpGoalSource:
    """Fetches goals from an HTTP endpoint returning ``{"goals": [...]}``.

    Args:
        url: Goal endpoint URL
        timeout: Request timeout in seconds
        headers: Extra request headers (e.g. Authorization)
        client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._client = client

    async def active_goals(self) -> List[Goal]:
        try:
            if self._client is not None:
                response = await self._client.get(self._url, headers=self._headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url, headers=self._headers)
            response.raise_for_status()
            data = response.json()
            goals = [Goal.from_dict(g) for g in data.get("goals", [])]
        except Exception as e:
            raise GoalSourceError(f"Failed to fetch goals from {self._url}: {e}") from e
        return [g for g in goals if g.active]
