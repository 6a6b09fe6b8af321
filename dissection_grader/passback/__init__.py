"""
Grade Passback Module.

Queues graded attempts for delivery to the external grade book and keeps the
audit trail of every delivery attempt.
"""

from dissection_grader.passback.enqueuer import BulkEnqueueResult, PassbackEnqueuer
from dissection_grader.passback.queue import (
    ClaimedJob,
    DatabaseDeliveryQueue,
    DeliveryQueue,
    EnqueueResult,
    JobState,
    PassbackJobPayload,
    RetryPolicy,
)
from dissection_grader.passback.sync_log import SyncLogRecorder

__all__ = [
    "BulkEnqueueResult",
    "ClaimedJob",
    "DatabaseDeliveryQueue",
    "DeliveryQueue",
    "EnqueueResult",
    "JobState",
    "PassbackEnqueuer",
    "PassbackJobPayload",
    "RetryPolicy",
    "SyncLogRecorder",
]
