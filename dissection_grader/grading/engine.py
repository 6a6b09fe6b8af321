"""
Grading engine - records automatic grades.

Loads an attempt with its lab, rubric and responses, runs every response
through the normalizer, matcher and scorer, and writes the outcome in a
single transaction. An attempt is graded exactly once; passback is queued
only after the grade has committed.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.db.tables import LabAttempt, LabStructure, StructureResponse, utcnow
from dissection_grader.grading.errors import (
    AlreadyGradedError,
    AttemptNotFoundError,
    InvalidResponseError,
    InvalidStatusTransitionError,
)
from dissection_grader.grading.matcher import AcceptedNames, match_answer
from dissection_grader.grading.normalizer import normalize_answer
from dissection_grader.grading.scorer import (
    DEFAULT_POINTS_POSSIBLE,
    ScoredStructure,
    aggregate_scores,
    category_for,
    score_structure,
)
from dissection_grader.models import (
    AttemptStatus,
    GradeResult,
    Rubric,
    StructureGradeResult,
    to_decimal,
)
from dissection_grader.passback.enqueuer import PassbackEnqueuer
from dissection_grader.rubric.parser import RubricParser

logger = logging.getLogger(__name__)


class GradingEngine:
    """
    Records automatic grades for lab attempts.

    The delivery queue is reached only through the injected enqueuer, so
    tests and deployments choose their own queue.
    """

    def __init__(self, session_factory: sessionmaker[Session], enqueuer: PassbackEnqueuer):
        """
        Initialize the grading engine.

        Args:
            session_factory: Factory for database sessions.
            enqueuer: Passback enqueuer used after a grade commits.
        """
        self._session_factory = session_factory
        self._enqueuer = enqueuer
        self._rubric_parser = RubricParser()

    def submit_attempt(self, attempt_id: str) -> datetime:
        """
        Mark an attempt as submitted.

        Args:
            attempt_id: The attempt to submit.

        Returns:
            The submission timestamp.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            InvalidStatusTransitionError: If the attempt is already submitted or graded.
        """
        with self._session_factory.begin() as session:
            attempt = session.get(LabAttempt, attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(attempt_id)

            current = AttemptStatus(attempt.status)
            if not current.can_transition_to(AttemptStatus.SUBMITTED):
                raise InvalidStatusTransitionError(
                    attempt_id, current.value, AttemptStatus.SUBMITTED.value
                )

            submitted_at = utcnow()
            attempt.status = AttemptStatus.SUBMITTED.value
            attempt.submitted_at = submitted_at

        logger.info(f"Attempt {attempt_id} submitted")
        return submitted_at

    def grade_attempt(self, attempt_id: str) -> GradeResult:
        """
        Grade an attempt and persist the result.

        Every response and the attempt aggregate are written in one
        transaction; any failure leaves the attempt untouched. The status
        change is a conditional update, so of two concurrent calls exactly
        one succeeds.

        Args:
            attempt_id: The attempt to grade.

        Returns:
            GradeResult with the aggregate and one result per response.

        Raises:
            AttemptNotFoundError: If the attempt does not exist.
            AlreadyGradedError: If the attempt is (or concurrently became) graded.
            RubricParseError: If the lab's rubric blob is malformed.
            InvalidResponseError: If a stored response has a negative hint count.
        """
        with self._session_factory.begin() as session:
            attempt = session.get(LabAttempt, attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(attempt_id)
            if attempt.status == AttemptStatus.GRADED.value:
                raise AlreadyGradedError(attempt_id)

            lab = attempt.lab
            rubric = self._rubric_parser.parse(lab.rubric)
            lab_structures = {ls.structure_id: ls for ls in lab.structures}
            responses = sorted(
                attempt.responses,
                key=lambda r: _display_order(lab_structures.get(r.structure_id), r),
            )

            structure_results, scored = self._grade_responses(responses, lab_structures, rubric)
            totals = aggregate_scores(scored, lab.max_points, rubric.category_weights)
            graded_at = utcnow()

            # Authoritative grade-once check: only one writer can flip the status
            transitioned = session.execute(
                update(LabAttempt)
                .where(
                    LabAttempt.id == attempt_id,
                    LabAttempt.status != AttemptStatus.GRADED.value,
                )
                .values(
                    status=AttemptStatus.GRADED.value,
                    graded_at=graded_at,
                    score=totals.total_score,
                    percentage=totals.percentage,
                    score_overridden=False,
                )
                .execution_options(synchronize_session=False)
            )
            if transitioned.rowcount != 1:
                raise AlreadyGradedError(attempt_id)

            for response, result in zip(responses, structure_results):
                response.match_type = result.match_type.value
                response.is_correct = result.is_correct
                response.points_earned = result.points_earned
                response.hint_penalty = result.hint_penalty
                response.auto_graded = True

        grade = GradeResult(
            attempt_id=attempt_id,
            total_score=totals.total_score,
            max_points=totals.max_points,
            percentage=totals.percentage,
            structure_results=tuple(structure_results),
            graded_at=graded_at,
        )
        logger.info(
            f"Graded attempt {attempt_id}: {grade.total_score}/{grade.max_points} "
            f"({grade.percentage}%), {grade.correct_count}/{len(structure_results)} correct"
        )

        self._queue_passback(attempt_id)
        return grade

    def _grade_responses(
        self,
        responses: list[StructureResponse],
        lab_structures: dict[str, LabStructure],
        rubric: Rubric,
    ) -> tuple[list[StructureGradeResult], list[ScoredStructure]]:
        """
        Match and score each response.

        Returns:
            Tuple of (per-response results, aggregation inputs), in response order.
        """
        results: list[StructureGradeResult] = []
        scored: list[ScoredStructure] = []

        for response in responses:
            structure = response.structure
            lab_structure = lab_structures.get(response.structure_id)
            points_possible = (
                to_decimal(lab_structure.points_possible)
                if lab_structure is not None
                else DEFAULT_POINTS_POSSIBLE
            )

            accepted = AcceptedNames(
                primary=structure.name,
                alternate=structure.latin_name,
                aliases=rubric.aliases_for(structure.id),
            )
            outcome = match_answer(normalize_answer(response.student_answer), accepted, rubric)
            try:
                score = score_structure(outcome, points_possible, response.hints_used, rubric)
            except InvalidResponseError as e:
                raise InvalidResponseError(f"Response {response.id}: {e}", response.id) from e

            results.append(
                StructureGradeResult(
                    response_id=response.id,
                    structure_id=structure.id,
                    structure_name=structure.name,
                    student_answer=response.student_answer,
                    is_correct=outcome.is_correct,
                    points_earned=score.points_earned,
                    points_possible=points_possible,
                    hints_used=response.hints_used,
                    hint_penalty=score.hint_penalty,
                    match_type=outcome.match_type,
                )
            )
            scored.append(
                ScoredStructure(
                    category=category_for(structure.tags),
                    points_earned=score.points_earned,
                    points_possible=points_possible,
                )
            )

        return results, scored

    def _queue_passback(self, attempt_id: str) -> None:
        """Queue grade passback; failures are logged, never raised."""
        result = self._enqueuer.enqueue(attempt_id)
        if result.ok:
            logger.info(f"Queued grade passback job {result.job_id} for attempt {attempt_id}")
        else:
            logger.warning(f"Grade for attempt {attempt_id} saved but not queued: {result.error}")


def _display_order(lab_structure: LabStructure | None, response: StructureResponse) -> tuple:
    """Sort key: lab order first, unassigned structures last."""
    if lab_structure is None or lab_structure.order_index is None:
        return (1, 0, response.id)
    return (0, lab_structure.order_index, response.id)
