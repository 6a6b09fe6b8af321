"""
Rubric validation module.

Checks a parsed rubric against the lab it is attached to, catching settings
that parse cleanly but cannot grade the way the instructor intended.
"""

from decimal import Decimal
from typing import Collection

from dissection_grader.grading.normalizer import normalize_answer
from dissection_grader.models import Rubric


class RubricValidationError(Exception):
    """Raised when rubric validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = "Rubric validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class RubricValidator:
    """
    Validates rubrics against their lab.

    Checks:
    1. Aliases only reference structures assigned to the lab
    2. Aliases are non-blank after normalization
    3. Category weights reference known categories and do not all vanish
    4. The lab's maximum points are positive
    """

    def validate(
        self,
        rubric: Rubric,
        structure_ids: Collection[str] | None = None,
        categories: Collection[str] | None = None,
        max_points: Decimal | None = None,
    ) -> tuple[bool, list[str]]:
        """
        Validate a rubric and return any issues found.

        Lab-dependent checks run only when the corresponding argument is given.

        Args:
            rubric: The rubric to validate.
            structure_ids: Ids of the structures assigned to the lab.
            categories: Grading categories present in the lab.
            max_points: The lab's maximum points.

        Returns:
            Tuple of (is_valid, list of issues).
        """
        issues: list[str] = []

        issues.extend(self._validate_aliases(rubric, structure_ids))
        issues.extend(self._validate_weights(rubric, categories))

        if max_points is not None and max_points <= 0:
            issues.append(f"Lab max points must be greater than 0, got {max_points}")

        return len(issues) == 0, issues

    def validate_or_raise(
        self,
        rubric: Rubric,
        structure_ids: Collection[str] | None = None,
        categories: Collection[str] | None = None,
        max_points: Decimal | None = None,
    ) -> None:
        """
        Validate a rubric and raise if invalid.

        Raises:
            RubricValidationError: If validation fails.
        """
        is_valid, issues = self.validate(rubric, structure_ids, categories, max_points)
        if not is_valid:
            raise RubricValidationError(issues)

    def _validate_aliases(self, rubric: Rubric, structure_ids: Collection[str] | None) -> list[str]:
        issues: list[str] = []
        known = set(structure_ids) if structure_ids is not None else None

        for structure_id, aliases in rubric.accepted_aliases.items():
            if known is not None and structure_id not in known:
                issues.append(f"Aliases reference structure '{structure_id}' which is not in the lab")

            for position, alias in enumerate(aliases, start=1):
                if not normalize_answer(alias):
                    issues.append(
                        f"Alias {position} for structure '{structure_id}' is blank after "
                        "normalization and can never match"
                    )

        return issues

    def _validate_weights(self, rubric: Rubric, categories: Collection[str] | None) -> list[str]:
        """Validate category weights."""
        issues: list[str] = []
        if not rubric.is_category_weighted:
            return issues

        weights = rubric.category_weights or {}

        if categories is not None:
            present = set(categories)
            for category in weights:
                if category not in present:
                    issues.append(f"Weight given for category '{category}' which no structure uses")

            # Categories without an explicit weight count as 1
            effective = [weights.get(c, Decimal("1")) for c in present]
            if present and sum(effective, Decimal("0")) == 0:
                issues.append("Every category has weight 0; weighted totals would always be 0")
        elif sum(weights.values(), Decimal("0")) == 0:
            issues.append("Every category weight is 0; weighted totals would always be 0")

        return issues
