"""
Rubric Processing Module.

Provides parsing and validation of per-lab grading rubrics.
"""

from dissection_grader.rubric.parser import RubricParser, RubricParseError
from dissection_grader.rubric.validator import RubricValidator, RubricValidationError

__all__ = [
    "RubricParser",
    "RubricParseError",
    "RubricValidator",
    "RubricValidationError",
]
