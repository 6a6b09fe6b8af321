"""
Grade passback enqueuing.

Hands graded attempts to the delivery queue. Queue failures never propagate:
they come back as EnqueueResult values for the caller to log, so a grade that
is already committed is never reported as failed.
"""

import logging
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.db.tables import Lab, LabAttempt
from dissection_grader.grading.errors import LabNotFoundError, QueueUnavailableError
from dissection_grader.models import AttemptStatus
from dissection_grader.passback.queue import (
    DeliveryQueue,
    EnqueueResult,
    PassbackJobPayload,
    RetryPolicy,
)

logger = logging.getLogger(__name__)


class BulkEnqueueResult(NamedTuple):
    """Outcome of enqueuing every graded attempt of a lab."""

    lab_id: str
    total: int
    results: tuple[EnqueueResult, ...]

    @property
    def enqueued(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failures(self) -> tuple[EnqueueResult, ...]:
        return tuple(r for r in self.results if not r.ok)


class PassbackEnqueuer:
    """Submits grade passback jobs with the configured retry policy."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        queue: DeliveryQueue,
        policy: RetryPolicy | None = None,
    ):
        """
        Initialize the enqueuer.

        Args:
            session_factory: Session factory used to look up graded attempts.
            queue: Delivery queue jobs are submitted to.
            policy: Retry policy attached to every job. Defaults to RetryPolicy().
        """
        self._session_factory = session_factory
        self._queue = queue
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def enqueue(self, attempt_id: str) -> EnqueueResult:
        """
        Submit a passback job for one attempt.

        Args:
            attempt_id: The graded attempt to deliver.

        Returns:
            EnqueueResult; ``ok`` is False and ``error`` is set when the
            queue rejected the job or was unreachable.
        """
        payload = PassbackJobPayload(attempt_id=attempt_id)
        try:
            job_id = self._queue.submit(payload, self._policy)
        except Exception as e:
            return EnqueueResult(
                attempt_id=attempt_id,
                error=QueueUnavailableError(
                    f"Could not enqueue grade passback for attempt {attempt_id}: {e}",
                    cause=e,
                ),
            )

        return EnqueueResult(attempt_id=attempt_id, job_id=job_id)

    def enqueue_lab(self, lab_id: str) -> BulkEnqueueResult:
        """
        Submit passback jobs for every graded attempt of a lab.

        Args:
            lab_id: The lab whose grades should be re-synced.

        Returns:
            BulkEnqueueResult with one EnqueueResult per graded attempt.

        Raises:
            LabNotFoundError: If the lab does not exist.
        """
        with self._session_factory() as session:
            if session.get(Lab, lab_id) is None:
                raise LabNotFoundError(lab_id)

            attempt_ids = session.execute(
                select(LabAttempt.id)
                .where(
                    LabAttempt.lab_id == lab_id,
                    LabAttempt.status == AttemptStatus.GRADED.value,
                )
                .order_by(LabAttempt.graded_at, LabAttempt.id)
            ).scalars().all()

        results = tuple(self.enqueue(attempt_id) for attempt_id in attempt_ids)
        bulk = BulkEnqueueResult(lab_id=lab_id, total=len(attempt_ids), results=results)

        logger.info(f"Queued {bulk.enqueued}/{bulk.total} grade syncs for lab {lab_id}")
        for failure in bulk.failures:
            logger.warning(str(failure.error))

        return bulk
