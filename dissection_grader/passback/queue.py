"""
Delivery queue for grade passback jobs.

Defines the queue interface the grading core submits to, the retry policy
attached to every job, and a durable database-backed implementation that
external workers can claim jobs from.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, NamedTuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.config import Settings
from dissection_grader.db.tables import PassbackJob, utcnow
from dissection_grader.grading.errors import QueueUnavailableError

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """State of a passback job in the durable queue."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy attached to passback jobs.

    Delivery is attempted at most ``max_attempts`` times. The n-th retry
    waits ``backoff_delay_seconds * 2 ** (n - 1)`` seconds. Only the most
    recent ``keep_completed`` completed and ``keep_failed`` failed jobs are
    retained.
    """

    max_attempts: int = 3
    backoff: str = "exponential"
    backoff_delay_seconds: float = 2.0
    keep_completed: int = 100
    keep_failed: int = 50

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff != "exponential":
            raise ValueError(f"Unsupported backoff type: {self.backoff}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build the policy from application settings."""
        return cls(
            max_attempts=settings.passback_max_attempts,
            backoff_delay_seconds=settings.passback_backoff_seconds,
            keep_completed=settings.passback_keep_completed,
            keep_failed=settings.passback_keep_failed,
        )

    def delay_for(self, attempts_made: int) -> float:
        """
        Seconds to wait before the next attempt.

        Args:
            attempts_made: Delivery attempts already made (1 after the first failure).
        """
        return self.backoff_delay_seconds * (2 ** max(0, attempts_made - 1))

    def job_options(self) -> dict[str, Any]:
        """Retry metadata in the shape queue consumers expect."""
        return {
            "attempts": self.max_attempts,
            "backoff": {"type": self.backoff, "delay": int(self.backoff_delay_seconds * 1000)},
            "removeOnComplete": self.keep_completed,
            "removeOnFail": self.keep_failed,
        }


class PassbackJobPayload(NamedTuple):
    """Job payload: a reference to a graded attempt."""

    attempt_id: str

    def to_dict(self) -> dict[str, str]:
        return {"attemptId": self.attempt_id}


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of submitting a passback job. Never raised, always returned."""

    attempt_id: str
    job_id: str | None = None
    error: QueueUnavailableError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClaimedJob(NamedTuple):
    """A job handed to a worker."""

    job_id: str
    attempt_id: str
    attempt_number: int
    max_attempts: int


class DeliveryQueue(ABC):
    """
    Abstract asynchronous work queue for passback jobs.

    Implementations may raise any exception from ``submit``; the enqueuer
    converts failures into an EnqueueResult.
    """

    name: ClassVar[str] = "grade-passback"

    @abstractmethod
    def submit(self, payload: PassbackJobPayload, policy: RetryPolicy) -> str:
        """
        Submit a job.

        Args:
            payload: The job payload.
            policy: Retry and retention policy for the job.

        Returns:
            The queue's identifier for the job.
        """
        ...


class DatabaseDeliveryQueue(DeliveryQueue):
    """
    Durable queue stored in the passback_jobs table.

    Producers submit jobs; workers claim the oldest due job, then report
    completion or failure. Failed jobs are re-scheduled with exponential
    backoff and abandoned once their attempts are exhausted.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        retention: RetryPolicy | None = None,
    ):
        self._session_factory = session_factory
        self._retention = retention or RetryPolicy()

    def submit(self, payload: PassbackJobPayload, policy: RetryPolicy) -> str:
        with self._session_factory.begin() as session:
            job = PassbackJob(
                name=self.name,
                attempt_id=payload.attempt_id,
                status=JobState.WAITING.value,
                max_attempts=policy.max_attempts,
                backoff_delay_seconds=policy.backoff_delay_seconds,
                available_at=utcnow(),
            )
            session.add(job)
            session.flush()
            job_id = job.id

        logger.debug(f"Queued {self.name} job {job_id} for attempt {payload.attempt_id}")
        return job_id

    def claim_next(self, now: datetime | None = None) -> ClaimedJob | None:
        """
        Claim the oldest waiting job that is due.

        Returns:
            The claimed job, or None when nothing is due.
        """
        now = now or utcnow()
        with self._session_factory.begin() as session:
            job = session.execute(
                select(PassbackJob)
                .where(
                    PassbackJob.status == JobState.WAITING.value,
                    PassbackJob.available_at <= now,
                )
                .order_by(PassbackJob.available_at, PassbackJob.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            ).scalar_one_or_none()

            if job is None:
                return None

            claimed = session.execute(
                update(PassbackJob)
                .where(PassbackJob.id == job.id, PassbackJob.status == JobState.WAITING.value)
                .values(status=JobState.ACTIVE.value, attempts_made=PassbackJob.attempts_made + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                # Another worker took it between the read and the write
                return None

            return ClaimedJob(
                job_id=job.id,
                attempt_id=job.attempt_id,
                attempt_number=job.attempts_made + 1,
                max_attempts=job.max_attempts,
            )

    def complete(self, job_id: str, now: datetime | None = None) -> None:
        """Mark an active job as delivered."""
        now = now or utcnow()
        with self._session_factory.begin() as session:
            job = self._get_job(session, job_id)
            job.status = JobState.COMPLETED.value
            job.finished_at = now
            session.flush()
            self._prune(session, JobState.COMPLETED, self._retention.keep_completed)

    def fail(self, job_id: str, error: str, now: datetime | None = None) -> JobState:
        """
        Record a failed delivery.

        Re-schedules the job with exponential backoff, or marks it failed
        when no attempts remain.

        Returns:
            The job's new state.
        """
        now = now or utcnow()
        with self._session_factory.begin() as session:
            job = self._get_job(session, job_id)
            job.last_error = error

            if job.attempts_made >= job.max_attempts:
                job.status = JobState.FAILED.value
                job.finished_at = now
                state = JobState.FAILED
                logger.warning(
                    f"Passback job {job_id} for attempt {job.attempt_id} failed after "
                    f"{job.attempts_made}/{job.max_attempts} attempts: {error}"
                )
            else:
                policy = RetryPolicy(
                    max_attempts=job.max_attempts,
                    backoff_delay_seconds=job.backoff_delay_seconds,
                )
                delay = policy.delay_for(job.attempts_made)
                job.status = JobState.WAITING.value
                job.available_at = now + timedelta(seconds=delay)
                state = JobState.WAITING
                logger.info(
                    f"Passback job {job_id} attempt {job.attempts_made}/{job.max_attempts} "
                    f"failed, retrying in {delay:g}s"
                )

            session.flush()
            if state is JobState.FAILED:
                self._prune(session, JobState.FAILED, self._retention.keep_failed)

        return state

    def counts(self) -> dict[str, int]:
        """Number of jobs per state, including empty states."""
        with self._session_factory() as session:
            rows = session.execute(
                select(PassbackJob.status, func.count()).group_by(PassbackJob.status)
            ).all()
        counts = {state.value: 0 for state in JobState}
        counts.update({status: count for status, count in rows})
        return counts

    def _get_job(self, session: Session, job_id: str) -> PassbackJob:
        job = session.get(PassbackJob, job_id)
        if job is None:
            raise QueueUnavailableError(f"Unknown passback job: {job_id}")
        return job

    def _prune(self, session: Session, state: JobState, keep: int) -> None:
        """Delete the oldest finished jobs in ``state`` beyond ``keep``."""
        stale_ids = session.execute(
            select(PassbackJob.id)
            .where(PassbackJob.status == state.value)
            .order_by(PassbackJob.finished_at.desc(), PassbackJob.created_at.desc())
            .offset(keep)
        ).scalars().all()

        for stale_id in stale_ids:
            session.delete(session.get(PassbackJob, stale_id))
