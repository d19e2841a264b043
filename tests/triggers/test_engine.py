"""Tests for dayvalet.triggers.engine.AutoMessageEngine

Tests cover:
- End-to-end day for a single work activity (exactly once per key)
- Marking before asynchronous content resolution
- Fallback content when the endpoint fails
- Goal reminders: retry after fetch failure, in-flight guard, random choice
- Daily message cap, trend reminder delay, store/source/sink failures
"""

import asyncio
import json
import random
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest

from dayvalet.clock import FixedClock
from dayvalet.config import ContentConfig, TriggerSettings
from dayvalet.errors import GoalSourceError, IdempotencyStoreError, ScheduleSourceError
from dayvalet.models import Activity, Goal, TrendItem
from dayvalet.sink import ConversationLog
from dayvalet.sources import StaticGoalSource, StaticScheduleSource
from dayvalet.triggers.engine import AutoMessageEngine
from dayvalet.triggers.evaluator import TriggerEvaluator
from dayvalet.triggers.resolver import FALLBACKS, ContentResolver
from dayvalet.triggers.store import JsonMessageCounter, MemoryIdempotencyStore
from dayvalet.triggers.models import TriggerFamily
from dayvalet.triggers.templates import render_goal_reminder, render_start
from dayvalet.triggers.classifier import ActivityClassifier

TZ = ZoneInfo("Asia/Seoul")


def _at(hour, minute=0, second=0, day=10):
    return datetime(2025, 3, day, hour, minute, second, tzinfo=TZ)


class StubResolver:
    """Returns a canned text for every family and records the calls."""

    def __init__(self, text="추천 메시지"):
        self.text = text
        self.calls = []

    async def resolve(self, family, activity=None, activities=None):
        self.calls.append(family)
        return self.text


class GatedResolver:
    """Blocks every call until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0

    async def resolve(self, family, activity=None, activities=None):
        self.calls += 1
        await self.release.wait()
        return "늦은 응답"


class FlakyGoalSource:
    def __init__(self, goals, failures=1):
        self.goals = goals
        self.failures = failures
        self.calls = 0

    async def active_goals(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise GoalSourceError("goal service down")
        return list(self.goals)


def _make_engine(
    activities=(),
    now=None,
    resolver=None,
    goal_source=None,
    settings=None,
    cap=8,
    trends=None,
    store=None,
    sink=None,
    source=None,
    seed=7,
    counter=None,
):
    clock = FixedClock(now or _at(9, 0))
    store = store if store is not None else MemoryIdempotencyStore()
    sink = sink if sink is not None else ConversationLog()
    source = source if source is not None else StaticScheduleSource(list(activities), trends)
    engine = AutoMessageEngine(
        clock=clock,
        schedule_source=source,
        store=store,
        resolver=resolver or StubResolver(),
        sink=sink,
        goal_source=goal_source,
        random_source=random.Random(seed),
        evaluator=TriggerEvaluator(settings=settings or TriggerSettings(morning_greeting=False)),
        daily_message_cap=cap,
        message_counter=counter,
    )
    return engine, clock, store, sink


def _by_trigger(sink, family):
    return [m for m in sink.messages if m.metadata["trigger"] == family.value]


def _content_resolver(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ContentResolver(ContentConfig(base_url="http://content.test"), client=client)


# =========================================================================
# End-to-end
# =========================================================================


class TestWorkActivityDay:

    async def test_each_trigger_exactly_once(self):
        def handler(request):
            if request.url.path == "/api/ai-resource-recommend":
                context = json.loads(request.content)["context"]
                return httpx.Response(200, json={"recommendation": f"{context} 메시지"})
            return httpx.Response(200, json={"recommendations": [{"id": "v1", "title": "스트레칭"}]})

        work = Activity(id="a1", text="업무", start_time="10:00", end_time="11:00")
        engine, clock, store, sink = _make_engine([work], now=_at(10, 0), resolver=_content_resolver(handler))

        for minute_of_day in [(10, 0), (10, 30), (10, 31), (10, 45), (11, 5), (11, 9)]:
            clock.set(_at(*minute_of_day))
            await engine.tick()
            await engine.drain()

        a1_keys = [m.metadata["key"] for m in sink.messages if "_a1_" in m.metadata["key"]]
        assert a1_keys == [
            "schedule_start_a1_2025-03-10",
            "in_progress_a1_2025-03-10",
            "schedule_completed_a1_2025-03-10",
        ]
        assert _by_trigger(sink, TriggerFamily.SCHEDULE_START)[0].content == "schedule_start 메시지"
        assert _by_trigger(sink, TriggerFamily.IN_PROGRESS)[0].content == "in_progress 메시지"
        assert len(_by_trigger(sink, TriggerFamily.IDLE)) == 1

    async def test_repeated_ticks_do_not_duplicate(self):
        lunch = Activity(id="l1", text="점심", start_time="12:00", end_time="13:00")
        engine, clock, store, sink = _make_engine([lunch], now=_at(12, 0))

        for second in range(0, 240, 20):
            clock.set(_at(12, second // 60, second % 60))
            await engine.tick()
        await engine.drain()

        assert len(_by_trigger(sink, TriggerFamily.SCHEDULE_START)) == 1

    async def test_message_shape(self):
        lunch = Activity(id="l1", text="점심 식사", start_time="12:00", end_time="13:00")
        engine, clock, store, sink = _make_engine([lunch], now=_at(12, 1))

        report = await engine.tick()

        assert report.fired == ["schedule_start_l1_2025-03-10"]
        [message] = sink.messages
        assert message.role == "assistant"
        assert message.id.startswith("auto-schedule_start-")
        assert message.timestamp == _at(12, 1)
        assert message.metadata == {"trigger": "schedule_start", "key": "schedule_start_l1_2025-03-10"}
        assert message.content == render_start(lunch, ActivityClassifier().classify(lunch.text))

    async def test_day_end_summary(self):
        day = [
            Activity(id="a1", text="업무", start_time="09:00", end_time="10:00", completed=True),
            Activity(id="a2", text="공부", start_time="10:00", end_time="11:00"),
        ]
        engine, clock, store, sink = _make_engine(day, now=_at(11, 10), resolver=StubResolver(None))
        await engine.tick()

        [summary] = _by_trigger(sink, TriggerFamily.DAY_END)
        assert "1/2개" in summary.content


# =========================================================================
# Ordering of marking and content resolution
# =========================================================================


class TestMarkBeforeResolve:

    async def test_key_marked_while_content_pending(self):
        meeting = Activity(id="a1", text="팀 회의", start_time="14:00", end_time="15:00")
        resolver = GatedResolver()
        engine, clock, store, sink = _make_engine([meeting], now=_at(13, 50), resolver=resolver)

        await engine.tick()
        assert store.has("pre_reminder_a1_2025-03-10")
        assert sink.messages == []

        clock.set(_at(13, 51))
        report = await engine.tick()
        assert report.fired == []

        resolver.release.set()
        await engine.drain()
        assert resolver.calls == 1
        assert [m.content for m in sink.messages] == ["늦은 응답"]

    async def test_failed_call_still_consumes_key(self):
        meeting = Activity(id="a1", text="팀 회의", start_time="14:00", end_time="15:00")
        engine, clock, store, sink = _make_engine(
            [meeting], now=_at(13, 50), resolver=_content_resolver(lambda request: httpx.Response(500)),
        )

        await engine.tick()
        await engine.drain()

        assert [m.content for m in sink.messages] == [FALLBACKS[TriggerFamily.PRE_REMINDER]]
        assert sink.messages[0].content == "곧 일정이 시작됩니다. 준비하실 것이 있나요?"

        clock.set(_at(13, 55))
        await engine.tick()
        await engine.drain()
        assert len(sink.messages) == 1

    async def test_no_news_consumes_key_without_message(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json={"hasNews": False})

        engine, clock, store, sink = _make_engine(
            now=_at(21, 0),
            resolver=_content_resolver(handler),
            settings=TriggerSettings(morning_greeting=False, idle_hours=[9, 20]),
        )
        await engine.tick()
        await engine.drain()
        clock.set(_at(21, 3))
        await engine.tick()
        await engine.drain()

        assert store.has("news_2025-03-10_21")
        assert calls == ["/api/ai-news-alert"]
        assert sink.messages == []


# =========================================================================
# Goal reminders
# =========================================================================


class TestGoalReminder:

    async def test_retry_after_fetch_failure(self):
        goal = Goal(id="g1", title="매일 운동하기", progress=40)
        goals = FlakyGoalSource([goal])
        engine, clock, store, sink = _make_engine(now=_at(10, 0), goal_source=goals)

        await engine.tick()
        await engine.drain()
        assert not store.has("goal_reminder_2025-03-10_10")
        assert _by_trigger(sink, TriggerFamily.GOAL_REMINDER) == []

        clock.set(_at(10, 1))
        await engine.tick()
        await engine.drain()
        assert store.has("goal_reminder_2025-03-10_10")
        [message] = _by_trigger(sink, TriggerFamily.GOAL_REMINDER)
        assert message.content == render_goal_reminder(goal)

        clock.set(_at(10, 2))
        await engine.tick()
        await engine.drain()
        assert goals.calls == 2
        assert len(_by_trigger(sink, TriggerFamily.GOAL_REMINDER)) == 1

    async def test_no_active_goals_marks_without_message(self):
        goals = StaticGoalSource([Goal(id="g1", title="끝난 목표", completed=True)])
        engine, clock, store, sink = _make_engine(now=_at(15, 0), goal_source=goals)

        await engine.tick()
        await engine.drain()

        assert store.has("goal_reminder_2025-03-10_15")
        assert _by_trigger(sink, TriggerFamily.GOAL_REMINDER) == []

    async def test_random_choice_uses_injected_source(self):
        goals = [
            Goal(id="g1", title="책 읽기", progress=10),
            Goal(id="g2", title="운동하기", progress=50),
            Goal(id="g3", title="저축하기", progress=90),
        ]
        engine, clock, store, sink = _make_engine(
            now=_at(15, 0), goal_source=StaticGoalSource(goals), seed=42,
        )

        await engine.tick()
        await engine.drain()

        expected = random.Random(42).choice(goals)
        [message] = _by_trigger(sink, TriggerFamily.GOAL_REMINDER)
        assert message.content == render_goal_reminder(expected)

    async def test_overlapping_ticks_fetch_once(self):
        class SlowGoalSource:
            def __init__(self):
                self.release = asyncio.Event()
                self.calls = 0

            async def active_goals(self):
                self.calls += 1
                await self.release.wait()
                return [Goal(id="g1", title="목표", progress=0)]

        goals = SlowGoalSource()
        engine, clock, store, sink = _make_engine(now=_at(15, 0), goal_source=goals)

        await engine.tick()
        await asyncio.sleep(0)
        clock.set(_at(15, 1))
        await engine.tick()

        goals.release.set()
        await engine.drain()
        assert goals.calls == 1
        assert len(_by_trigger(sink, TriggerFamily.GOAL_REMINDER)) == 1

    async def test_skipped_without_goal_source(self):
        engine, clock, store, sink = _make_engine(now=_at(15, 0))
        await engine.tick()
        await engine.drain()
        assert not store.has("goal_reminder_2025-03-10_15")


# =========================================================================
# Daily cap
# =========================================================================


class TestDailyCap:

    @pytest.fixture
    def lunches(self):
        return [
            Activity(id="m1", text="점심", start_time="12:00", end_time="13:00"),
            Activity(id="m2", text="점심 약속", start_time="12:00", end_time="13:00"),
        ]

    async def test_over_cap_dropped_after_marking(self, lunches):
        engine, clock, store, sink = _make_engine(lunches, now=_at(12, 0), cap=1)

        report = await engine.tick()

        assert report.fired == ["schedule_start_m1_2025-03-10", "schedule_start_m2_2025-03-10"]
        assert store.has("schedule_start_m2_2025-03-10")
        assert len(sink.messages) == 1

    async def test_pre_reminders_bypass_cap(self, lunches):
        engine, clock, store, sink = _make_engine(lunches, now=_at(11, 50), cap=1)

        await engine.tick()
        await engine.drain()
        assert len(_by_trigger(sink, TriggerFamily.PRE_REMINDER)) == 2

        clock.set(_at(12, 0))
        await engine.tick()
        assert _by_trigger(sink, TriggerFamily.SCHEDULE_START) == []

    async def test_cap_resets_next_day(self, lunches):
        engine, clock, store, sink = _make_engine(lunches, now=_at(12, 0), cap=1)
        await engine.tick()
        clock.set(_at(12, 0, day=11))
        await engine.tick()
        assert len(sink.messages) == 2

    async def test_unlimited(self, lunches):
        engine, clock, store, sink = _make_engine(lunches, now=_at(12, 0), cap=None)
        await engine.tick()
        assert len(sink.messages) == 2

    async def test_count_survives_restart(self, lunches, tmp_path):
        path = str(tmp_path / "sent_counts.json")
        engine, clock, store, sink = _make_engine(lunches[:1], now=_at(12, 0), cap=1, counter=JsonMessageCounter(path))
        await engine.tick()
        assert len(sink.messages) == 1

        restarted, clock, store, sink = _make_engine(
            lunches[1:], now=_at(12, 1), cap=1, counter=JsonMessageCounter(path),
        )
        report = await restarted.tick()
        assert report.fired == ["schedule_start_m2_2025-03-10"]
        assert sink.messages == []


# =========================================================================
# Trend reminder
# =========================================================================


class TestTrendReminder:

    async def test_fires_after_unread_for_delay(self):
        trends = [TrendItem(id="t1", title="생성형 AI 동향")]
        engine, clock, store, sink = _make_engine(now=_at(20, 0), trends=trends, resolver=StubResolver(None))

        await engine.tick()
        assert engine.unread_since == _at(20, 0)
        assert _by_trigger(sink, TriggerFamily.TREND_REMINDER) == []

        clock.advance(seconds=59)
        await engine.tick()
        assert _by_trigger(sink, TriggerFamily.TREND_REMINDER) == []

        clock.advance(seconds=1)
        await engine.tick()
        [message] = _by_trigger(sink, TriggerFamily.TREND_REMINDER)
        assert "트렌드 브리핑이 1개" in message.content

    async def test_reading_resets_timer(self):
        source = StaticScheduleSource([], [TrendItem(id="t1")])
        engine, clock, store, sink = _make_engine(now=_at(20, 0), source=source, resolver=StubResolver(None))

        await engine.tick()
        source.replace(trend_items=[TrendItem(id="t1", read=True)])
        clock.advance(seconds=30)
        await engine.tick()
        assert engine.unread_since is None

        source.replace(trend_items=[TrendItem(id="t2")])
        clock.advance(seconds=40)
        await engine.tick()
        assert engine.unread_since == _at(20, 1, 10)
        assert _by_trigger(sink, TriggerFamily.TREND_REMINDER) == []


# =========================================================================
# Evening check and weekly report
# =========================================================================


class TestReflections:

    async def test_evening_check_sends_completed_ids(self):
        bodies = []

        def handler(request):
            if request.url.path == "/api/ai-evening-check":
                bodies.append(json.loads(request.content))
                return httpx.Response(200, json={"message": "오늘 업무를 잘 마무리하셨네요."})
            return httpx.Response(500)

        day = [
            Activity(id="a1", text="업무", start_time="09:00", end_time="18:00", completed=True),
            Activity(id="b1", text="점심", start_time="12:00", end_time="13:00"),
        ]
        engine, clock, store, sink = _make_engine(day, now=_at(21, 0), resolver=_content_resolver(handler))
        await engine.tick()
        await engine.drain()

        [message] = _by_trigger(sink, TriggerFamily.EVENING_CHECK)
        assert message.content == "🌙 **저녁 회고**\n\n오늘 업무를 잘 마무리하셨네요."
        assert bodies[0]["completedScheduleIds"] == ["a1"]
        assert [s["id"] for s in bodies[0]["todaySchedules"]] == ["a1", "b1"]

    async def test_weekly_report_on_sunday_evening(self):
        report = {
            "period": {"start": "2025-03-03", "end": "2025-03-09", "weekNumber": 10},
            "scheduleAnalysis": {"completionRate": 80.4, "completedSchedules": 8, "totalSchedules": 10},
            "trendBriefingAnalysis": {"totalRead": 5},
            "growthMetrics": {"consistencyScore": 72},
            "insights": {"achievements": ["운동 4회"], "recommendations": []},
        }

        def handler(request):
            if request.url.path == "/api/weekly-report":
                assert request.method == "GET"
                return httpx.Response(200, json={"success": True, "report": report})
            return httpx.Response(500)

        engine, clock, store, sink = _make_engine(now=_at(21, 0, day=9), resolver=_content_resolver(handler))
        await engine.tick()
        await engine.drain()

        [message] = _by_trigger(sink, TriggerFamily.WEEKLY_REPORT)
        assert message.metadata["key"] == "weekly_report_2025-03-09"
        assert "일정 완료율: **80%** (8/10)" in message.content
        assert "- 운동 4회" in message.content

    async def test_weekly_report_failure_uses_fallback(self):
        engine, clock, store, sink = _make_engine(
            now=_at(7, 0), resolver=_content_resolver(lambda request: httpx.Response(503)),
        )
        await engine.tick()
        await engine.drain()

        [message] = _by_trigger(sink, TriggerFamily.WEEKLY_REPORT)
        assert message.content == FALLBACKS[TriggerFamily.WEEKLY_REPORT]


# =========================================================================
# Failure isolation
# =========================================================================


class TestFailures:

    async def test_store_write_failure_skips_only_that_trigger(self):
        class FailingStore(MemoryIdempotencyStore):
            def mark(self, key):
                if key.startswith("schedule_start_m1"):
                    raise IdempotencyStoreError(f"disk full: {key}")
                super().mark(key)

        lunches = [
            Activity(id="m1", text="점심", start_time="12:00", end_time="13:00"),
            Activity(id="m2", text="저녁", start_time="12:00", end_time="13:00"),
        ]
        engine, clock, store, sink = _make_engine(lunches, now=_at(12, 0), store=FailingStore())

        report = await engine.tick()

        assert report.errors == ["schedule_start_m1_2025-03-10"]
        assert report.fired == ["schedule_start_m2_2025-03-10"]
        assert [m.metadata["key"] for m in sink.messages] == ["schedule_start_m2_2025-03-10"]

    async def test_schedule_source_failure_skips_tick(self):
        class BrokenSource:
            async def load(self):
                raise ScheduleSourceError("unreadable")

        engine, clock, store, sink = _make_engine(now=_at(15, 0), source=BrokenSource())
        report = await engine.tick()

        assert report.fired == []
        assert len(store) == 0

    async def test_sink_failure_does_not_propagate(self):
        class BrokenSink:
            def append(self, message):
                raise RuntimeError("transcript unavailable")

        lunch = Activity(id="l1", text="점심", start_time="12:00", end_time="13:00")
        engine, clock, store, sink = _make_engine([lunch], now=_at(12, 0), sink=BrokenSink())

        report = await engine.tick()
        assert report.fired == ["schedule_start_l1_2025-03-10"]
        assert store.has("schedule_start_l1_2025-03-10")

    async def test_density_suppressed_not_marked(self):
        day = [
            Activity(id=f"s{i}", text=f"공부 {i}", start_time=f"{9 + i:02d}:00", end_time=f"{9 + i:02d}:30")
            for i in range(6)
        ]
        engine, clock, store, sink = _make_engine(day, now=_at(12, 0))

        report = await engine.tick()

        assert "schedule_start_s3_2025-03-10" in report.suppressed
        assert not store.has("schedule_start_s3_2025-03-10")
