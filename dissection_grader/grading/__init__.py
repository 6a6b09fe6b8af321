"""
Grading Module.

Answer normalization, tiered matching and point calculation. The recorder
(engine) and override handler live in their own modules because they depend
on persistence and passback.
"""

from dissection_grader.grading.errors import (
    AlreadyGradedError,
    AttemptNotFoundError,
    GradingError,
    InvalidOverrideError,
    InvalidResponseError,
    InvalidStatusTransitionError,
    InvalidSyncReportError,
    LabNotFoundError,
    NotFoundError,
    QueueUnavailableError,
    ResponseNotFoundError,
)
from dissection_grader.grading.matcher import (
    AcceptedNames,
    MatchOutcome,
    levenshtein_distance,
    match_answer,
)
from dissection_grader.grading.normalizer import normalize_answer
from dissection_grader.grading.scorer import (
    aggregate_scores,
    category_for,
    score_structure,
)

__all__ = [
    "AcceptedNames",
    "AlreadyGradedError",
    "AttemptNotFoundError",
    "GradingError",
    "InvalidOverrideError",
    "InvalidResponseError",
    "InvalidStatusTransitionError",
    "InvalidSyncReportError",
    "LabNotFoundError",
    "MatchOutcome",
    "NotFoundError",
    "QueueUnavailableError",
    "ResponseNotFoundError",
    "aggregate_scores",
    "category_for",
    "levenshtein_distance",
    "match_answer",
    "normalize_answer",
    "score_structure",
]
