"""Keyword-based activity classification."""

from typing import Callable, Iterable, List, Sequence, Tuple

from .models import ActivityCategory

Predicate = Callable[[str], bool]


def contains_any(keywords: Iterable[str]) -> Predicate:
    """Case-insensitive substring predicate over a keyword list."""
    lowered = tuple(k.lower() for k in keywords)

    def _match(text: str) -> bool:
        name = text.lower()
        return any(k in name for k in lowered)

    return _match


MEAL_KEYWORDS = (
    "식사", "점심", "저녁", "아침", "밥", "브런치", "런치", "디너", "야식", "간식",
    "meal", "breakfast", "lunch", "dinner", "brunch", "snack",
)
REST_KEYWORDS = (
    "휴식", "쉬는", "낮잠", "수면", "취침", "잠", "기상", "일어나",
    "rest", "break", "nap", "sleep", "wake up",
)
LEISURE_KEYWORDS = (
    "게임", "영화", "드라마", "유튜브", "넷플릭스", "독서", "음악", "산책",
    "game", "movie", "drama", "youtube", "netflix", "reading", "music", "walk",
)
EXERCISE_KEYWORDS = (
    "운동", "헬스", "요가", "필라테스", "러닝", "조깅", "수영", "등산",
    "exercise", "workout", "gym", "yoga", "pilates", "running", "jogging", "swim", "hiking",
)
WORK_KEYWORDS = (
    "업무", "출근", "회의", "미팅", "프레젠테이션", "발표", "면접", "프로젝트", "작업", "개발", "코딩",
    "work", "meeting", "presentation", "interview", "project", "coding",
)
STUDY_KEYWORDS = (
    "공부", "학습", "강의", "수업", "시험", "과제",
    "study", "lecture", "class", "exam", "homework",
)

IMPORTANT_KEYWORDS = (
    "회의", "미팅", "meeting", "면접", "발표", "프레젠테이션",
    "마감", "데드라인", "deadline", "시험", "테스트",
    "약속", "상담", "진료", "예약",
)

DEFAULT_RULES: List[Tuple[Predicate, ActivityCategory]] = [
    (contains_any(MEAL_KEYWORDS), ActivityCategory.MEAL),
    (contains_any(REST_KEYWORDS), ActivityCategory.REST),
    (contains_any(LEISURE_KEYWORDS), ActivityCategory.LEISURE),
    (contains_any(EXERCISE_KEYWORDS), ActivityCategory.EXERCISE),
    (contains_any(WORK_KEYWORDS), ActivityCategory.WORK),
    (contains_any(STUDY_KEYWORDS), ActivityCategory.STUDY),
]

_is_important = contains_any(IMPORTANT_KEYWORDS)


class ActivityClassifier:
    """Classifies activity text by walking the rule table in order.

    Example:
        classifier = ActivityClassifier()
        classifier.classify("점심 식사")  # ActivityCategory.MEAL
    """

    def __init__(self, rules: Sequence[Tuple[Predicate, ActivityCategory]] = DEFAULT_RULES):
        self._rules = list(rules)

    def classify(self, text: str) -> ActivityCategory:
        for predicate, category in self._rules:
            if predicate(text):
                return category
        return ActivityCategory.GENERIC


def is_important(text: str) -> bool:
    """Meetings, interviews, deadlines, exams and appointments."""
    return _is_important(text)
