"""
Append-only audit of grade-book deliveries.

The external delivery worker reports each attempt it makes here. Every report
adds a row; nothing is updated or deduplicated, so redelivered jobs simply
leave more history.
"""

import logging
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dissection_grader.db.tables import GradeSyncLog, LabAttempt, utcnow
from dissection_grader.grading.errors import AttemptNotFoundError, InvalidSyncReportError
from dissection_grader.models import SyncLogEntry, SyncStatus

logger = logging.getLogger(__name__)

# Outcomes that must explain themselves, and the detail key each one needs
_REQUIRED_DETAIL = {
    SyncStatus.SKIPPED: "reason",
    SyncStatus.ERROR: "error",
}


class SyncLogRecorder:
    """Writes and reads GradeSyncLog entries."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(
        self,
        attempt_id: str,
        status: SyncStatus | str,
        response: Mapping[str, Any] | None = None,
    ) -> SyncLogEntry:
        """
        Append one delivery outcome.

        Args:
            attempt_id: The attempt that was delivered.
            status: Outcome of the delivery.
            response: Structured detail. Skipped outcomes need a ``reason``
                and error outcomes an ``error``.

        Returns:
            The stored entry.

        Raises:
            InvalidSyncReportError: If the status is unknown or required detail is missing.
            AttemptNotFoundError: If the attempt does not exist.
        """
        try:
            status = SyncStatus(status)
        except ValueError as e:
            raise InvalidSyncReportError(f"Unknown sync status: {status}") from e

        detail = dict(response or {})
        required_key = _REQUIRED_DETAIL.get(status)
        if required_key and not detail.get(required_key):
            raise InvalidSyncReportError(
                f"Sync status '{status.value}' requires a '{required_key}' entry"
            )

        with self._session_factory.begin() as session:
            if session.get(LabAttempt, attempt_id) is None:
                raise AttemptNotFoundError(attempt_id)

            row = GradeSyncLog(
                attempt_id=attempt_id,
                canvas_status=status.value,
                canvas_response=detail,
                synced_at=utcnow(),
            )
            session.add(row)
            session.flush()
            entry = _to_entry(row)

        log = logger.info if status is SyncStatus.SUCCESS else logger.warning
        log(f"Grade sync for attempt {attempt_id}: {status.value}")
        return entry

    def list_for_attempt(self, attempt_id: str) -> list[SyncLogEntry]:
        """Return an attempt's delivery history, newest first."""
        with self._session_factory() as session:
            rows = session.execute(
                select(GradeSyncLog)
                .where(GradeSyncLog.attempt_id == attempt_id)
                .order_by(GradeSyncLog.synced_at.desc(), GradeSyncLog.id.desc())
            ).scalars().all()
            return [_to_entry(row) for row in rows]


def _to_entry(row: GradeSyncLog) -> SyncLogEntry:
    return SyncLogEntry(
        id=row.id,
        attempt_id=row.attempt_id,
        canvas_status=SyncStatus(row.canvas_status),
        canvas_response=row.canvas_response or {},
        synced_at=row.synced_at,
    )
