"""Message templates for the fixed-text trigger families (Jinja2)."""

from typing import Any, Dict, Optional, Sequence, Tuple

from jinja2 import Template

from ..models import Activity, Goal
from .models import ActivityCategory

STREAK_TONE_RATE = 70
STREAK_MIN = 3

START_TEMPLATE = Template(
    '"{{ text }}" 시간이에요 {{ emoji }}\n\n{{ cheer }}'
    "{% if streak %}\n\n🔥 {{ streak }}개 연속 완료 중!{% endif %}"
)

DAY_END_TEMPLATE = Template(
    "오늘 일정이 모두 끝났어요! 🎉\n\n"
    "오늘의 성과:\n✅ 완료: {{ completed }}/{{ total }}개\n\n"
    "충분한 휴식 취하시고, 내일 또 만나요!"
)

TREND_REMINDER_TEMPLATE = Template(
    "아직 안 읽은 트렌드 브리핑이 {{ count }}개 있어요 📰\n\n"
    "잠깐 시간 내서 확인해보실래요? 최신 트렌드 놓치기 아까울 것 같아요! 🚀"
)

NEWS_TEMPLATE = Template(
    "📰 {{ headline }}\n\n{{ content }}"
    "{% if relevance %}\n\n💡 {{ relevance }}{% endif %}"
    "{% if source %}\n\n출처: {{ source }}{% endif %}"
)

EVENING_CHECK_TEMPLATE = Template("🌙 **저녁 회고**\n\n{{ message }}")

WEEKLY_REPORT_TEMPLATE = Template(
    "## 📊 이번 주 성장 리포트\n\n"
    "**{{ period.start }} ~ {{ period.end }}** (Week {{ period.weekNumber }})\n\n"
    "### 핵심 지표\n"
    "- 📅 일정 완료율: **{{ \"%.0f\"|format(schedule.completionRate) }}%** "
    "({{ schedule.completedSchedules }}/{{ schedule.totalSchedules }})\n"
    "- 📚 브리핑 읽기: **{{ briefings_read }}개**\n"
    "- 🔥 일관성 점수: **{{ \"%.0f\"|format(consistency) }}점**\n\n"
    "{% if narrative %}### AI 분석\n{{ narrative }}\n\n{% endif %}"
    "{% if achievements %}### ✨ 이번 주 성취\n{% for a in achievements %}- {{ a }}\n{% endfor %}\n{% endif %}"
    "{% if recommendations %}### 💡 다음 주 추천\n{% for r in recommendations %}- {{ r }}\n{% endfor %}{% endif %}"
    "\n새로운 한 주도 화이팅! 🎉"
)

RECOMMENDATION_TEMPLATE = Template(
    "잠깐 쉬어가며 볼 만한 영상을 골라봤어요 🎬\n\n"
    "▶ {{ title }}{% if channel or duration %} ({{ [channel, duration] | select | join(', ') }}){% endif %}"
)

GOAL_TEMPLATES: Dict[str, Template] = {
    "not_started": Template(
        '아직 시작하지 않은 목표가 있어요: "{{ title }}"\n\n오늘 작은 첫걸음을 내딛어 볼까요? 🌱'
    ),
    "early": Template(
        '"{{ title }}" 목표가 {{ progress }}% 진행됐어요.\n\n조금씩 꾸준히 해나가면 충분해요! 💪'
    ),
    "midway": Template(
        '"{{ title }}" 목표가 {{ progress }}%까지 왔어요.\n\n이 페이스를 유지해봐요! 🔥'
    ),
    "almost": Template(
        '"{{ title }}" 목표 달성이 눈앞이에요 ({{ progress }}%)!\n\n마지막까지 화이팅! 🏁'
    ),
}

# (keyword, emoji, cheer) rows per category; first keyword found in the text wins
_START_VARIANTS: Dict[ActivityCategory, Sequence[Tuple[str, str, str]]] = {
    ActivityCategory.MEAL: (
        ("아침", "🍳", "든든하게 드세요!"),
        ("점심", "🍚", "맛있게 드세요!"),
        ("저녁", "🍽️", "맛있는 식사 되세요!"),
        ("야식", "🌙", "맛있게 드세요!"),
        ("브런치", "🥐", "맛있게 드세요!"),
        ("간식", "🍪", "맛있게 드세요!"),
    ),
    ActivityCategory.REST: (
        ("취침", "🌙", "수면 시간을 기록해보세요! 좋은 꿈 꾸세요 😴"),
        ("수면", "🌙", "수면 시간을 기록해보세요! 좋은 꿈 꾸세요 😴"),
        ("기상", "☀️", "상쾌한 아침 되세요!"),
        ("일어나", "🌅", "좋은 아침이에요!"),
        ("낮잠", "😌", "달콤한 낮잠 되세요!"),
        ("잠", "🌙", "좋은 꿈 꾸세요 😴"),
    ),
    ActivityCategory.LEISURE: (
        ("게임", "🎮", "즐거운 시간 보내세요!"),
        ("영화", "🎬", "재미있게 보세요!"),
        ("드라마", "📺", "재미있게 보세요!"),
        ("유튜브", "📱", "즐거운 시청 되세요!"),
        ("넷플릭스", "🍿", "재미있게 보세요!"),
        ("독서", "📚", "즐거운 독서 시간 되세요!"),
        ("음악", "🎵", "좋은 음악과 함께하세요!"),
        ("산책", "🚶", "상쾌한 산책 되세요!"),
    ),
}

_START_DEFAULTS: Dict[ActivityCategory, Tuple[str, str]] = {
    ActivityCategory.MEAL: ("🍽️", "맛있게 드세요!"),
    ActivityCategory.REST: ("☕", "편하게 쉬세요!"),
    ActivityCategory.LEISURE: ("🎉", "즐거운 시간 보내세요!"),
    ActivityCategory.EXERCISE: ("💪", "오늘도 화이팅!"),
    ActivityCategory.WORK: ("💼", "화이팅!"),
    ActivityCategory.STUDY: ("📖", "집중해서 화이팅!"),
    ActivityCategory.GENERIC: ("🕐", "화이팅!"),
}


def render_start(
    activity: Activity,
    category: ActivityCategory,
    completion_rate: int = -1,
    streak: int = 0,
) -> str:
    """Fixed start text; a streak line is added when the day is going well."""
    emoji, cheer = _START_DEFAULTS[category]
    for keyword, variant_emoji, variant_cheer in _START_VARIANTS.get(category, ()):
        if keyword in activity.text:
            emoji, cheer = variant_emoji, variant_cheer
            break
    show_streak = completion_rate >= STREAK_TONE_RATE and streak >= STREAK_MIN
    return START_TEMPLATE.render(
        text=activity.text,
        emoji=emoji,
        cheer=cheer,
        streak=streak if show_streak else 0,
    )


def progress_bucket(progress: int) -> str:
    if progress <= 0:
        return "not_started"
    if progress < 30:
        return "early"
    if progress < 70:
        return "midway"
    return "almost"


def render_goal_reminder(goal: Goal) -> str:
    return GOAL_TEMPLATES[progress_bucket(goal.progress)].render(
        title=goal.title,
        progress=goal.progress,
    )


def render_day_end(completed: int, total: int) -> str:
    return DAY_END_TEMPLATE.render(completed=completed, total=total)


def render_trend_reminder(count: int) -> str:
    return TREND_REMINDER_TEMPLATE.render(count=count)


def render_news(data: Dict[str, Any]) -> Optional[str]:
    headline = (data.get("headline") or "").strip()
    content = (data.get("content") or "").strip()
    if not headline and not content:
        return None
    return NEWS_TEMPLATE.render(
        headline=headline or "오늘의 소식",
        content=content,
        source=data.get("source") or "",
        relevance=data.get("relevance") or "",
    )


def render_recommendation(item: Dict[str, Any]) -> str:
    duration = item.get("duration")
    return RECOMMENDATION_TEMPLATE.render(
        title=item["title"],
        channel=item.get("channel") or "",
        duration=str(duration) if duration not in (None, "") else "",
    )


def render_evening_check(message: str) -> str:
    return EVENING_CHECK_TEMPLATE.render(message=message)


def render_weekly_report(report: Dict[str, Any]) -> str:
    """Render a weekly report payload. Missing or non-numeric metrics raise KeyError/TypeError/ValueError."""
    schedule = report["scheduleAnalysis"]
    insights = report.get("insights") or {}
    return WEEKLY_REPORT_TEMPLATE.render(
        period=report["period"],
        schedule={
            "completionRate": float(schedule["completionRate"]),
            "completedSchedules": int(schedule["completedSchedules"]),
            "totalSchedules": int(schedule["totalSchedules"]),
        },
        briefings_read=int(report["trendBriefingAnalysis"]["totalRead"]),
        consistency=float(report["growthMetrics"]["consistencyScore"]),
        narrative=report.get("narrative") or "",
        achievements=list(insights.get("achievements") or []),
        recommendations=list(insights.get("recommendations") or []),
    )
