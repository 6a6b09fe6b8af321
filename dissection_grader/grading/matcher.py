"""
Tiered answer matching.

Classifies a normalized answer against the accepted names of a structure.
Tiers are evaluated in strict priority order and short-circuit on the first
success: exact, alias, fuzzy, then the partial-credit fallback.
"""

from typing import NamedTuple

from dissection_grader.grading.normalizer import normalize_answer
from dissection_grader.models import MatchType, Rubric

# Inclusive upper bound on edit distance for a fuzzy-correct answer
FUZZY_MAX_DISTANCE = 2

# Inclusive upper bound on edit distance for fallback partial credit
PARTIAL_CREDIT_MAX_DISTANCE = 4


def levenshtein_distance(a: str, b: str) -> int:
    """
    Calculate the Levenshtein distance between two strings.

    Insertions, deletions and substitutions each cost 1. Comparison is
    case-sensitive; callers normalize first. Only two rows sized by the
    shorter string are kept in memory.

    Args:
        a: First string.
        b: Second string.

    Returns:
        Minimum number of single-character edits turning ``a`` into ``b``.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Iterate over the longer string so the rows track the shorter one
    if len(b) > len(a):
        a, b = b, a

    previous = list(range(len(b) + 1))
    current = [0] * (len(b) + 1)

    for i, char_a in enumerate(a, start=1):
        current[0] = i
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                current[j - 1] + 1,  # insertion
                previous[j] + 1,  # deletion
                previous[j - 1] + cost,  # substitution
            )
        previous, current = current, previous

    return previous[len(b)]


class AcceptedNames(NamedTuple):
    """Names a structure may be identified by."""

    primary: str
    alternate: str | None = None
    aliases: tuple[str, ...] = ()

    def canonical(self) -> tuple[str, ...]:
        """Normalized primary and alternate names."""
        names = (normalize_answer(self.primary), normalize_answer(self.alternate))
        return tuple(n for n in names if n)

    def curated(self) -> tuple[str, ...]:
        """Normalized rubric aliases, in rubric order."""
        return tuple(n for n in (normalize_answer(a) for a in self.aliases) if n)

    def normalized(self) -> tuple[str, ...]:
        """Every normalized accepted name without duplicates, primary first."""
        return tuple(dict.fromkeys(self.canonical() + self.curated()))


class MatchOutcome(NamedTuple):
    """Classification of one answer."""

    match_type: MatchType
    distance: int | None = None
    near_miss: bool = False  # unmatched, but close enough for fallback credit

    @property
    def is_correct(self) -> bool:
        return self.match_type is not MatchType.NONE


NO_MATCH = MatchOutcome(MatchType.NONE)


def match_answer(normalized_answer: str, accepted: AcceptedNames, rubric: Rubric) -> MatchOutcome:
    """
    Classify a normalized answer against a structure's accepted names.

    Args:
        normalized_answer: Output of normalize_answer for the student's answer.
        accepted: The structure's primary, alternate and alias names.
        rubric: Rubric toggles for fuzzy matching and partial credit.

    Returns:
        MatchOutcome with the tier, and the minimum edit distance once computed.
    """
    if not normalized_answer:
        return NO_MATCH

    # 1. Exact: primary or alternate name
    if normalized_answer in accepted.canonical():
        return MatchOutcome(MatchType.EXACT, distance=0)

    # 2. Alias: curated rubric names, labelled separately
    if normalized_answer in accepted.curated():
        return MatchOutcome(MatchType.ALIAS, distance=0)

    names = accepted.normalized()
    if not names:
        return NO_MATCH

    min_distance = min(levenshtein_distance(normalized_answer, name) for name in names)

    # 3. Fuzzy: close misspelling of any accepted name, long answers only
    fuzzy_allowed = rubric.fuzzy_match_enabled and len(normalized_answer) >= rubric.fuzzy_min_length
    if fuzzy_allowed and 0 < min_distance <= FUZZY_MAX_DISTANCE:
        return MatchOutcome(MatchType.FUZZY, distance=min_distance)

    # 4. Partial-credit fallback: incorrect, but near enough to earn something
    if rubric.partial_credit_enabled and min_distance <= PARTIAL_CREDIT_MAX_DISTANCE:
        return MatchOutcome(MatchType.NONE, distance=min_distance, near_miss=True)

    return MatchOutcome(MatchType.NONE, distance=min_distance)
