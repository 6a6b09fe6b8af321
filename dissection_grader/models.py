"""
Pydantic models for the Dissection Grader.

These models define the schemas for:
- Match tiers, attempt lifecycle and delivery outcomes
- The per-lab rubric configuration
- Grading results with per-structure scores
- Delivery audit entries

Result models are frozen so a computed grade cannot be altered after the fact.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


def to_decimal(v: Any) -> Decimal:
    """Convert numeric values to Decimal without binary float artifacts."""
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


# ==============================================================================
# Enumerations
# ==============================================================================


class MatchType(str, Enum):
    """Match tier assigned to a response by the matcher."""

    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    NONE = "none"


class AttemptStatus(str, Enum):
    """Lifecycle of a lab attempt. Transitions only move forward."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"

    @property
    def rank(self) -> int:
        return list(AttemptStatus).index(self)

    def can_transition_to(self, target: "AttemptStatus") -> bool:
        """Return True if moving to ``target`` is a forward transition."""
        return target.rank > self.rank


class SyncStatus(str, Enum):
    """Outcome of a single grade-book delivery attempt."""

    SUCCESS = "success"
    FAILED = "failed"  # grade book answered with a non-success status
    SKIPPED = "skipped"  # no grade-book line item configured for the attempt
    ERROR = "error"  # transport or unexpected failure


# ==============================================================================
# Rubric Models
# ==============================================================================


class Rubric(BaseModel):
    """
    Per-lab grading configuration.

    Parsed from the lab's stored rubric blob. Every optional setting has an
    explicit default, so an empty blob produces a usable rubric. Both the
    snake_case field names and the camelCase keys written by the lab builder
    are accepted.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    hint_penalty_percent: Decimal = Field(
        default=Decimal("10"),
        ge=0,
        le=100,
        validation_alias=AliasChoices("hint_penalty_percent", "hintPenaltyPercent"),
        description="Percent of a structure's points deducted per hint used",
    )

    fuzzy_match_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "fuzzy_match_enabled", "fuzzyMatchEnabled", "fuzzyMatch"
        ),
        description="Accept answers within edit distance 2 of an accepted name",
    )

    partial_credit_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "partial_credit_enabled", "partialCreditEnabled", "partialCredit"
        ),
        description="Scale fuzzy credit by distance and credit near misses",
    )

    accepted_aliases: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("accepted_aliases", "acceptedAliases"),
        description="Structure id to ordered list of curated alias names",
    )

    category_weights: dict[str, Decimal] | None = Field(
        default=None,
        validation_alias=AliasChoices("category_weights", "categoryWeights"),
        description="Category to weight; enables category-weighted aggregation",
    )

    fuzzy_min_length: int = Field(
        default=3,
        ge=0,
        validation_alias=AliasChoices("fuzzy_min_length", "fuzzyMinLength"),
        description="Shortest normalized answer eligible for a fuzzy match",
    )

    @field_validator("hint_penalty_percent", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        if v is None:
            return Decimal("10")
        return to_decimal(v)

    @field_validator("accepted_aliases", mode="before")
    @classmethod
    def normalize_alias_map(cls, v: Any) -> dict[str, tuple[str, ...]]:
        """Accept lists or tuples of aliases keyed by structure id."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("acceptedAliases must be an object keyed by structure id")
        aliases: dict[str, tuple[str, ...]] = {}
        for structure_id, names in v.items():
            if names is None:
                continue
            if isinstance(names, str):
                names = [names]
            aliases[str(structure_id)] = tuple(str(n) for n in names)
        return aliases

    @field_validator("category_weights", mode="before")
    @classmethod
    def convert_weights(cls, v: Any) -> dict[str, Decimal] | None:
        """Convert weights to Decimal and reject negative values."""
        if v is None:
            return None
        if not isinstance(v, dict):
            raise ValueError("categoryWeights must be an object keyed by category")
        weights: dict[str, Decimal] = {}
        for category, weight in v.items():
            value = to_decimal(weight)
            if value < 0:
                raise ValueError(f"Weight for category '{category}' cannot be negative")
            weights[str(category)] = value
        return weights

    @property
    def is_category_weighted(self) -> bool:
        """True when the rubric defines at least one category weight."""
        return bool(self.category_weights)

    def aliases_for(self, structure_id: str) -> tuple[str, ...]:
        """Return the curated aliases for a structure, in rubric order."""
        return self.accepted_aliases.get(structure_id, ())


# ==============================================================================
# Grading Result Models
# ==============================================================================


class StructureGradeResult(BaseModel):
    """
    The grading result for a single structure response.

    Includes the match tier, points and hint penalty.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    response_id: str
    structure_id: str
    structure_name: str
    student_answer: str | None = None
    is_correct: bool
    points_earned: Decimal = Field(..., ge=0)
    points_possible: Decimal = Field(..., ge=0)
    hints_used: int = Field(..., ge=0)
    hint_penalty: Decimal = Field(..., ge=0)
    match_type: MatchType

    @field_validator("points_earned", "points_possible", "hint_penalty", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return to_decimal(v)


class GradeResult(BaseModel):
    """
    Complete grading result for an attempt.

    Contains the attempt aggregate and one result per structure.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    attempt_id: str
    total_score: Decimal
    max_points: Decimal
    percentage: Decimal
    structure_results: tuple[StructureGradeResult, ...]
    graded_at: datetime

    @field_validator("total_score", "max_points", "percentage", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return to_decimal(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def correct_count(self) -> int:
        """Number of structures matched at any tier."""
        return sum(1 for r in self.structure_results if r.is_correct)


class ScoreUpdate(BaseModel):
    """New attempt aggregate produced by a recalculation or total override."""

    model_config = ConfigDict(frozen=True, strict=True)

    attempt_id: str
    total_score: Decimal
    percentage: Decimal

    @field_validator("total_score", "percentage", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return to_decimal(v)


# ==============================================================================
# Delivery Audit Models
# ==============================================================================


class SyncLogEntry(BaseModel):
    """
    One audit record of a single grade-book delivery attempt.

    Entries are append-only; an attempt accumulates one per delivery.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    attempt_id: str
    canvas_status: SyncStatus
    canvas_response: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime
