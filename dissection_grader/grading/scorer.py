"""
Point calculation and attempt aggregation.

Converts match outcomes into per-structure points (with hint penalties and
optional partial credit) and aggregates them into an attempt total, either
as a flat sum rescaled to the lab's maximum or as a category-weighted mean.

All arithmetic uses Decimal. Reported values are rounded half-up to two
decimal places.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, NamedTuple, Sequence

from dissection_grader.grading.errors import InvalidResponseError
from dissection_grader.grading.matcher import MatchOutcome
from dissection_grader.models import MatchType, Rubric, to_decimal

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")

# Points for a response whose structure is not assigned to the lab
DEFAULT_POINTS_POSSIBLE = Decimal("1")

# Category used for structures without tags
DEFAULT_CATEGORY = "default"


class StructureScore(NamedTuple):
    """Points for one structure after penalties."""

    points_earned: Decimal
    hint_penalty: Decimal


class ScoredStructure(NamedTuple):
    """Aggregation input for one structure."""

    category: str
    points_earned: Decimal
    points_possible: Decimal


class AttemptTotals(NamedTuple):
    """Attempt aggregate."""

    total_score: Decimal
    max_points: Decimal
    percentage: Decimal


def round_points(value: Decimal) -> Decimal:
    """Round to two decimal places, halves away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_percentage(total_score: Decimal, max_points: Decimal) -> Decimal:
    """Percentage of ``max_points`` earned, rounded to two places; 0 when max is 0."""
    if max_points == 0:
        return round_points(ZERO)
    return round_points(total_score / max_points * 100)


def category_for(tags: Sequence[str] | None) -> str:
    """
    Resolve a structure's grading category.

    The first tag is the category. Structures with no tags, or a blank first
    tag, fall into the literal "default" category. Later tags are ignored.
    """
    if tags and tags[0]:
        return tags[0]
    return DEFAULT_CATEGORY


def score_structure(
    outcome: MatchOutcome,
    points_possible: Decimal | int | float,
    hints_used: int,
    rubric: Rubric,
) -> StructureScore:
    """
    Calculate the points earned for one structure.

    Args:
        outcome: Match classification of the student's answer.
        points_possible: Points the lab assigns to the structure.
        hints_used: Hints the student revealed for the structure.
        rubric: Rubric supplying hint penalty and partial-credit settings.

    Returns:
        StructureScore with points earned (never negative) and the hint penalty.

    Raises:
        InvalidResponseError: If hints_used is negative.
    """
    if hints_used < 0:
        raise InvalidResponseError(f"hints_used cannot be negative, got {hints_used}")

    possible = to_decimal(points_possible)
    base = _base_points(outcome, possible, rubric)

    penalty = hints_used * (rubric.hint_penalty_percent / 100) * possible
    earned = max(ZERO, base - penalty)

    return StructureScore(points_earned=round_points(earned), hint_penalty=round_points(penalty))


def _base_points(outcome: MatchOutcome, possible: Decimal, rubric: Rubric) -> Decimal:
    """Points before hint penalties."""
    if outcome.match_type in (MatchType.EXACT, MatchType.ALIAS):
        return possible

    if outcome.match_type is MatchType.FUZZY:
        if not rubric.partial_credit_enabled:
            return possible
        # 90% at distance 1, 80% at distance 2
        return possible * (ONE - Decimal(outcome.distance or 0) * Decimal("0.1"))

    if outcome.near_miss and outcome.distance is not None:
        # 40% at distance 1 down to 10% at distance 4
        return possible * max(ZERO, (5 - Decimal(outcome.distance)) / 10)

    return ZERO


def aggregate_scores(
    items: Iterable[ScoredStructure],
    max_points: Decimal | int | float,
    category_weights: Mapping[str, Decimal] | None = None,
) -> AttemptTotals:
    """
    Aggregate per-structure points into an attempt total.

    Flat mode sums earned points and rescales to ``max_points`` whenever the
    structures' possible points differ from it. Category-weighted mode, used
    when ``category_weights`` is non-empty, averages each category's earned
    ratio by weight and scales the mean to ``max_points``.

    Args:
        items: Scored structures of one attempt.
        max_points: The lab's configured maximum.
        category_weights: Optional category to weight mapping.

    Returns:
        AttemptTotals with total and percentage rounded to two places.
    """
    maximum = to_decimal(max_points)
    structures = list(items)

    if category_weights:
        total = _weighted_total(structures, maximum, category_weights)
    else:
        total = _flat_total(structures, maximum)

    total = round_points(total)
    return AttemptTotals(
        total_score=total,
        max_points=maximum,
        percentage=compute_percentage(total, maximum),
    )


def _flat_total(structures: Sequence[ScoredStructure], maximum: Decimal) -> Decimal:
    earned = sum((s.points_earned for s in structures), ZERO)
    possible = sum((s.points_possible for s in structures), ZERO)

    if possible == 0:
        return earned
    if possible != maximum:
        return earned / possible * maximum
    return earned


def _weighted_total(
    structures: Sequence[ScoredStructure],
    maximum: Decimal,
    category_weights: Mapping[str, Decimal],
) -> Decimal:
    earned_by_category: dict[str, Decimal] = {}
    possible_by_category: dict[str, Decimal] = {}

    for s in structures:
        earned_by_category[s.category] = earned_by_category.get(s.category, ZERO) + s.points_earned
        possible_by_category[s.category] = (
            possible_by_category.get(s.category, ZERO) + s.points_possible
        )

    weighted_sum = ZERO
    total_weight = ZERO

    for category, possible in possible_by_category.items():
        if possible == 0:
            continue
        weight = to_decimal(category_weights.get(category, ONE))
        weighted_sum += earned_by_category[category] / possible * weight
        total_weight += weight

    if total_weight == 0:
        return ZERO
    return weighted_sum / total_weight * maximum


def nominal_total(points: Sequence[Decimal], max_points: Decimal | int | float) -> AttemptTotals:
    """
    Rescale reviewed points where every response is worth one nominal point.

    Used after instructor overrides: the denominator is the number of
    responses rather than the structures' configured points.
    """
    maximum = to_decimal(max_points)
    if not points:
        total = ZERO
    else:
        total = sum(points, ZERO) / len(points) * maximum

    total = round_points(total)
    return AttemptTotals(
        total_score=total,
        max_points=maximum,
        percentage=compute_percentage(total, maximum),
    )
