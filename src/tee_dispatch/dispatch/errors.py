"""Error taxonomy for job submission and task monitoring."""

from __future__ import annotations

from tee_dispatch.dispatch.models import TerminalState


class JobError(RuntimeError):
    """Base class for errors that end a job with a terminal state."""

    terminal_state: TerminalState = TerminalState.SUBMISSION_FAILED


class ValidationError(JobError):
    """Submission is missing required fields or references an unusable app."""

    terminal_state = TerminalState.REJECTED


class ProvisioningError(JobError):
    """Requester secret could not be pushed; no order was built."""

    terminal_state = TerminalState.PROVISIONING_FAILED


class MatchingError(JobError):
    """No compatible workerpool order in either order book tier."""

    terminal_state = TerminalState.NO_WORKERPOOL


class SubmissionError(JobError):
    """Orders could not be fetched or signed, or deal creation failed."""

    terminal_state = TerminalState.SUBMISSION_FAILED

    def __init__(self, message: str, *, reason_code: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code


class MonitoringTimeout(JobError):
    """Monitor budget ran out; the task may still complete."""

    terminal_state = TerminalState.TIMEOUT

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class ExpiryDetected(JobError):
    """Deal deadline passed before the task reached a final status."""

    terminal_state = TerminalState.EXPIRED

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class MonitoringFailure(JobError):
    """Every status fetch failed until the attempt budget was spent."""

    terminal_state = TerminalState.MONITORING_FAILED

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class TaskNotFoundError(LookupError):
    """Ledger has not indexed the task yet."""


class OrderbookUnavailableError(RuntimeError):
    """Order book query failed at the transport level."""
