"""
Errors raised by the grading core.

Every error carries a human-readable message suitable for showing to the
caller. Queue and delivery failures are deliberately absent from the raised
set: they are reported as results or audit entries instead.
"""


class GradingError(Exception):
    """Base class for failures surfaced to grading callers."""


class NotFoundError(GradingError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, record_id: str, detail: str | None = None):
        self.kind = kind
        self.record_id = record_id
        message = f"{kind} not found: {record_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class AttemptNotFoundError(NotFoundError):
    """Raised when an attempt id does not resolve."""

    def __init__(self, attempt_id: str):
        super().__init__("Attempt", attempt_id)


class ResponseNotFoundError(NotFoundError):
    """Raised when a structure response does not resolve or belongs elsewhere."""

    def __init__(self, response_id: str, attempt_id: str | None = None):
        detail = f"not part of attempt {attempt_id}" if attempt_id else None
        super().__init__("Response", response_id, detail)


class LabNotFoundError(NotFoundError):
    """Raised when a lab id does not resolve."""

    def __init__(self, lab_id: str):
        super().__init__("Lab", lab_id)


class AlreadyGradedError(GradingError):
    """Raised when grading an attempt that has already been graded."""

    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        super().__init__(f"Attempt {attempt_id} has already been graded")


class InvalidStatusTransitionError(GradingError):
    """Raised when an attempt would move backwards in its lifecycle."""

    def __init__(self, attempt_id: str, current: str, target: str):
        self.attempt_id = attempt_id
        self.current = current
        self.target = target
        super().__init__(
            f"Attempt {attempt_id} cannot move from '{current}' to '{target}'"
        )


class InvalidOverrideError(GradingError):
    """Raised when an override value falls outside its allowed range."""

    def __init__(self, value: object, minimum: object, maximum: object):
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Override of {value} points is outside the allowed range [{minimum}, {maximum}]"
        )


class InvalidResponseError(GradingError):
    """Raised when a stored response cannot be scored."""

    def __init__(self, message: str, response_id: str | None = None):
        self.response_id = response_id
        super().__init__(message)


class InvalidSyncReportError(GradingError):
    """Raised when a delivery outcome report is missing required detail."""


class QueueUnavailableError(Exception):
    """
    Describes a failed passback enqueue.

    Never raised into the grading path; carried inside an EnqueueResult.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)
