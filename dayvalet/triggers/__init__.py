"""
DayValet Triggers — Scheduled trigger / auto-message engine.

The evaluator decides which trigger families are eligible on a tick, the
idempotency store guarantees one message per TriggerKey, the resolver
fetches personalized text with fixed fallbacks, and the poller drives it all.
"""

from .models import (
    ActivityCategory,
    DayDensity,
    TickReport,
    TriggerCandidate,
    TriggerFamily,
    make_key,
)
from .classifier import ActivityClassifier, is_important
from .evaluator import Evaluation, TriggerEvaluator
from .store import (
    JsonIdempotencyStore,
    JsonMessageCounter,
    MemoryIdempotencyStore,
    MemoryMessageCounter,
)
from .resolver import FALLBACKS, ContentResolver
from .engine import AutoMessageEngine
from .poller import Poller

__all__ = [
    # Models
    "ActivityCategory",
    "DayDensity",
    "TickReport",
    "TriggerCandidate",
    "TriggerFamily",
    "make_key",
    # Classification
    "ActivityClassifier",
    "is_important",
    # Evaluation
    "Evaluation",
    "TriggerEvaluator",
    # Stores
    "JsonIdempotencyStore",
    "JsonMessageCounter",
    "MemoryIdempotencyStore",
    "MemoryMessageCounter",
    # Content
    "ContentResolver",
    "FALLBACKS",
    # Engine
    "AutoMessageEngine",
    "Poller",
]
