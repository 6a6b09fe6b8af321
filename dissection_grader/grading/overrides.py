"""
Instructor overrides.

Instructors may replace a structure's automatic points or the attempt total.
Recalculation rebuilds the aggregate from the recorded points without
re-running the matcher.
"""

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.db.tables import LabAttempt, LabStructure, StructureResponse
from dissection_grader.grading.errors import (
    AttemptNotFoundError,
    InvalidOverrideError,
    ResponseNotFoundError,
)
from dissection_grader.grading.scorer import (
    DEFAULT_POINTS_POSSIBLE,
    ZERO,
    compute_percentage,
    nominal_total,
    round_points,
)
from dissection_grader.models import AttemptStatus, ScoreUpdate, to_decimal
from dissection_grader.passback.enqueuer import PassbackEnqueuer

logger = logging.getLogger(__name__)


class OverrideHandler:
    """
    Applies instructor overrides and recalculates attempt totals.

    When an enqueuer is supplied, overrides made through apply_override on a
    graded attempt queue a fresh passback so the grade book is not left with
    the old score.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        enqueuer: PassbackEnqueuer | None = None,
    ):
        self._session_factory = session_factory
        self._enqueuer = enqueuer

    def override_response_grade(
        self,
        response_id: str,
        points: Decimal | int | float,
        attempt_id: str | None = None,
    ) -> Decimal:
        """
        Replace one structure's recorded points.

        The attempt aggregate is left as it is; call recalculate_attempt_score
        afterwards.

        Args:
            response_id: The structure response to override.
            points: Instructor-awarded points.
            attempt_id: If given, the response must belong to this attempt.

        Returns:
            The stored override value.

        Raises:
            ResponseNotFoundError: If the response does not exist (in the attempt).
            InvalidOverrideError: If points fall outside [0, points possible].
        """
        with self._session_factory.begin() as session:
            response = self._get_response(session, response_id, attempt_id)
            value = self._apply_response_override(session, response, points)

        logger.info(f"Instructor override on response {response_id}: {value} points")
        return value

    def recalculate_attempt_score(self, attempt_id: str) -> ScoreUpdate:
        """
        Recompute and persist an attempt's total from recorded points.

        Each response contributes its override if present, else its
        automatic points. The sum is scaled to the lab's maximum using the
        number of responses as the possible-points denominator.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
        """
        with self._session_factory.begin() as session:
            attempt = self._get_attempt(session, attempt_id)
            update = self._recalculate(attempt)

        logger.info(
            f"Recalculated attempt {attempt_id}: {update.total_score} ({update.percentage}%)"
        )
        return update

    def override_attempt_total(
        self, attempt_id: str, total: Decimal | int | float
    ) -> ScoreUpdate:
        """
        Replace an attempt's total score.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            InvalidOverrideError: If total falls outside [0, lab max points].
        """
        with self._session_factory.begin() as session:
            attempt = self._get_attempt(session, attempt_id)
            max_points = to_decimal(attempt.lab.max_points)
            score = round_points(_checked_value(total, max_points))
            attempt.score = score
            attempt.percentage = compute_percentage(score, max_points)
            attempt.score_overridden = True
            update = ScoreUpdate(
                attempt_id=attempt_id,
                total_score=score,
                percentage=attempt.percentage,
            )

        logger.info(f"Instructor set total of attempt {attempt_id} to {update.total_score}")
        return update

    def apply_override(
        self,
        attempt_id: str,
        response_id: str,
        points: Decimal | int | float,
        feedback: str | None = None,
    ) -> ScoreUpdate:
        """
        Override a response, store feedback and recalculate, in one transaction.

        Args:
            attempt_id: The attempt under review.
            response_id: The response to override; must belong to the attempt.
            points: Instructor-awarded points.
            feedback: Optional instructor feedback for the attempt.

        Returns:
            The recalculated aggregate.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            ResponseNotFoundError: If the response is not part of the attempt.
            InvalidOverrideError: If points fall outside [0, points possible].
        """
        with self._session_factory.begin() as session:
            attempt = self._get_attempt(session, attempt_id)
            response = self._get_response(session, response_id, attempt_id)
            value = self._apply_response_override(session, response, points)
            if feedback:
                attempt.instructor_feedback = feedback
            session.flush()
            update = self._recalculate(attempt)
            graded = attempt.status == AttemptStatus.GRADED.value

        logger.info(
            f"Instructor override on attempt {attempt_id}: response {response_id} -> "
            f"{value} points, new total {update.total_score} ({update.percentage}%)"
        )

        if graded and self._enqueuer is not None:
            result = self._enqueuer.enqueue(attempt_id)
            if not result.ok:
                logger.warning(f"Override on attempt {attempt_id} saved but not queued: {result.error}")

        return update

    def _get_attempt(self, session: Session, attempt_id: str) -> LabAttempt:
        attempt = session.get(LabAttempt, attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(attempt_id)
        return attempt

    def _get_response(
        self, session: Session, response_id: str, attempt_id: str | None
    ) -> StructureResponse:
        response = session.get(StructureResponse, response_id)
        if response is None or (attempt_id is not None and response.attempt_id != attempt_id):
            raise ResponseNotFoundError(response_id, attempt_id)
        return response

    def _apply_response_override(
        self,
        session: Session,
        response: StructureResponse,
        points: Decimal | int | float,
    ) -> Decimal:
        """Validate and store an override on ``response``."""
        maximum = self._points_possible(session, response)
        value = round_points(_checked_value(points, maximum))
        response.instructor_override = value
        response.auto_graded = False
        return value

    def _points_possible(self, session: Session, response: StructureResponse) -> Decimal:
        lab_structure = session.execute(
            select(LabStructure).where(
                LabStructure.lab_id == response.attempt.lab_id,
                LabStructure.structure_id == response.structure_id,
            )
        ).scalars().first()
        if lab_structure is None:
            return DEFAULT_POINTS_POSSIBLE
        return to_decimal(lab_structure.points_possible)

    def _recalculate(self, attempt: LabAttempt) -> ScoreUpdate:
        """Rebuild and store the aggregate from recorded points."""
        points = [
            to_decimal(r.instructor_override if r.instructor_override is not None else r.points_earned)
            for r in attempt.responses
        ]
        totals = nominal_total(points, attempt.lab.max_points)

        attempt.score = totals.total_score
        attempt.percentage = totals.percentage
        attempt.score_overridden = False

        return ScoreUpdate(
            attempt_id=attempt.id,
            total_score=totals.total_score,
            percentage=totals.percentage,
        )


def _checked_value(value: Decimal | int | float | str, maximum: Decimal) -> Decimal:
    """Convert an override to Decimal, rejecting NaN, infinities and out-of-range values."""
    try:
        checked = to_decimal(value)
    except InvalidOperation:
        raise InvalidOverrideError(value, ZERO, maximum)
    if not checked.is_finite() or checked < 0 or checked > maximum:
        raise InvalidOverrideError(value, ZERO, maximum)
    return checked
