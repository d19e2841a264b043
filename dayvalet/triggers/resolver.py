"""Content resolver: one external call per trigger, fixed fallback on any failure."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import ContentConfig
from ..models import Activity
from .models import TriggerFamily
from .templates import render_evening_check, render_news, render_recommendation, render_weekly_report

logger = logging.getLogger(__name__)

# Families resolved through the AI content endpoint, with the context sent for each
CONTENT_CONTEXTS: Dict[TriggerFamily, str] = {
    TriggerFamily.PRE_REMINDER: "pre_reminder",
    TriggerFamily.SCHEDULE_START: "schedule_start",
    TriggerFamily.IN_PROGRESS: "in_progress",
    TriggerFamily.SCHEDULE_COMPLETED: "schedule_completed",
}

FALLBACKS: Dict[TriggerFamily, str] = {
    TriggerFamily.PRE_REMINDER: "곧 일정이 시작됩니다. 준비하실 것이 있나요?",
    TriggerFamily.SCHEDULE_START: "일정을 시작할 시간이에요! 오늘도 화이팅! 💪",
    TriggerFamily.IN_PROGRESS: (
        "시작한 지 30분이 지났네요! 어떻게 진행되고 있나요?\n\n"
        "막히는 부분이 있거나 필요한 자료가 있으면 말씀해주세요 😊"
    ),
    TriggerFamily.SCHEDULE_COMPLETED: (
        "일정이 끝났습니다. 어떠셨나요?\n\n"
        "• 간단히 기록하실 내용이 있나요?\n• 다음 액션 아이템을 정리해드릴까요?"
    ),
    TriggerFamily.GAP_FILLER: "다음 일정까지 여유가 있네요. 잠깐 스트레칭하며 쉬어가는 건 어떨까요? ☕",
    TriggerFamily.IDLE: "지금은 등록된 일정이 없네요! 산책하거나 가볍게 쉬어가는 건 어때요? ☕",
    TriggerFamily.MORNING_GREETING: "좋은 아침이에요! ☀️\n\n활기찬 하루 보내세요! 💪",
    TriggerFamily.NEWS: "📰 지금은 새 소식을 불러오지 못했어요. 잠시 후 트렌드 브리핑에서 확인해보세요!",
    TriggerFamily.EVENING_CHECK: (
        "🌙 **저녁 회고**\n\n"
        "오늘 하루는 어떠셨나요? 가장 뿌듯했던 일 한 가지를 떠올려 보세요 😊"
    ),
    TriggerFamily.WEEKLY_REPORT: (
        "한 주 동안 고생 많으셨어요! 🎉\n\n"
        "이번 주도 열심히 달려오셨네요.\n새로운 한 주도 화이팅입니다!"
    ),
}


class ContentFetchError(Exception):
    """Raised internally when an endpoint call fails or returns a malformed payload."""
    pass


class ContentResolver:
    """Resolves personalized message text for trigger families.

    Each resolve() wraps exactly one POST to the family's endpoint. Any
    exception, timeout, non-2xx status or malformed payload yields the
    family's fallback string. resolve() never raises and never retries.

    A news response with ``hasNews: false`` and a weekly report with
    ``success: false`` are legitimate negative results and return None
    (no message).

    Args:
        config: Endpoint base URL, paths, timeout and headers
        client: Optional shared httpx.AsyncClient (tests pass a MockTransport client)
    """

    def __init__(self, config: Optional[ContentConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self._config = config or ContentConfig()
        self._client = client

    async def resolve(
        self,
        family: TriggerFamily,
        activity: Optional[Activity] = None,
        activities: Optional[List[Activity]] = None,
    ) -> Optional[str]:
        try:
            if family in CONTENT_CONTEXTS:
                if activity is None:
                    raise ContentFetchError(f"{family.value} requires an activity")
                return await self._fetch_content(activity, CONTENT_CONTEXTS[family])
            if family in (TriggerFamily.GAP_FILLER, TriggerFamily.IDLE):
                return await self._fetch_recommendation()
            if family == TriggerFamily.NEWS:
                return await self._fetch_news()
            if family == TriggerFamily.MORNING_GREETING:
                return await self._fetch_greeting(activities or [])
            if family == TriggerFamily.EVENING_CHECK:
                return await self._fetch_evening_check(activities or [])
            if family == TriggerFamily.WEEKLY_REPORT:
                return await self._fetch_weekly_report()
            raise ContentFetchError(f"No content endpoint for family {family.value}")
        except Exception as e:
            fallback = FALLBACKS.get(family)
            logger.warning(
                f"Content fetch failed for {family.value}, "
                f"{'using fallback' if fallback else 'suppressing message'}: {e}"
            )
            return fallback

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", path, payload)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._config.base_url}{path}"
        if self._client is not None:
            response = await self._client.request(
                method, url, json=payload, headers=self._config.headers, timeout=self._config.timeout,
            )
        else:
            async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                response = await client.request(method, url, json=payload, headers=self._config.headers)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ContentFetchError(f"Expected a JSON object from {path}, got {type(data).__name__}")
        return data

    async def _fetch_content(self, activity: Activity, context: str) -> str:
        data = await self._post(
            self._config.content_path,
            {"activityName": activity.text, "context": context},
        )
        return _require_text(data, "recommendation")

    async def _fetch_recommendation(self) -> str:
        data = await self._post(self._config.recommendation_path, {})
        items = data.get("recommendations")
        if not isinstance(items, list) or not items:
            raise ContentFetchError("No recommendations in response")
        first = items[0]
        if not isinstance(first, dict) or not isinstance(first.get("title"), str) or not first["title"].strip():
            raise ContentFetchError("Malformed recommendation item")
        return render_recommendation(first)

    async def _fetch_news(self) -> Optional[str]:
        data = await self._post(self._config.news_path, {})
        has_news = data.get("hasNews")
        if not isinstance(has_news, bool):
            raise ContentFetchError("Missing 'hasNews' flag")
        if not has_news:
            logger.info("News endpoint reported no relevant news")
            return None
        text = render_news(data)
        if text is None:
            raise ContentFetchError("News response has neither headline nor content")
        return text

    async def _fetch_greeting(self, activities: List[Activity]) -> str:
        data = await self._post(
            self._config.greeting_path,
            {
                "todaySchedules": [
                    {"text": a.text, "startTime": a.start_time, "endTime": a.end_time}
                    for a in activities
                ]
            },
        )
        return _require_text(data, "greeting")

    async def _fetch_evening_check(self, activities: List[Activity]) -> str:
        data = await self._post(
            self._config.evening_check_path,
            {
                "todaySchedules": [
                    {
                        "id": a.id,
                        "text": a.text,
                        "startTime": a.start_time,
                        "endTime": a.end_time,
                        "completed": a.completed,
                        "skipped": a.skipped,
                    }
                    for a in activities
                ],
                "completedScheduleIds": [a.id for a in activities if a.completed],
            },
        )
        return render_evening_check(_require_text(data, "message"))

    async def _fetch_weekly_report(self) -> Optional[str]:
        data = await self._request("GET", self._config.weekly_report_path)
        report = data.get("report")
        if data.get("success") is False or report is None:
            logger.info("Weekly report endpoint returned no report")
            return None
        if not isinstance(report, dict):
            raise ContentFetchError("Malformed weekly report")
        return render_weekly_report(report)


def _require_text(data: Dict[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ContentFetchError(f"Missing '{field_name}' in response")
    return value.strip()
