"""Task status monitoring to a terminal state.

Two modes share one result type:

- ``poll`` fetches the task status on a fixed interval with a bounded attempt
  budget. Tasks the ledger has not indexed yet count as PENDING, transient
  fetch errors back off exponentially, and every fetched status is checked
  against the owning deal's deadline.
- ``watch`` subscribes to the push stream and settles on the first final
  status or when the wall-clock budget runs out.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from tee_dispatch.config import MonitorSettings
from tee_dispatch.dispatch.errors import ExpiryDetected, MonitoringFailure, MonitoringTimeout
from tee_dispatch.dispatch.failure_classifier import FailureKind, classify_status_fetch_failure
from tee_dispatch.dispatch.models import Task, TaskStatus, TerminalState
from tee_dispatch.dispatch.ports import Ledger, TaskSubscription, TaskUpdateStream

logger = logging.getLogger(__name__)

_STATUS_MESSAGES: dict[TaskStatus, str] = {
    TaskStatus.UNSET: "Task has not been set up yet",
    TaskStatus.ACTIVE: "Task is being executed",
    TaskStatus.REVEALING: "Task execution completed, revealing results",
    TaskStatus.COMPLETED: "Task completed successfully",
    TaskStatus.FAILED: "Task execution failed",
    TaskStatus.TIMEOUT: "Task timed out",
    TaskStatus.PENDING: "Task is not indexed by the ledger yet",
    TaskStatus.EXPIRED: "Task has expired and will not complete",
}


def describe_status(status: TaskStatus) -> str:
    return _STATUS_MESSAGES.get(status, "Unknown task status")


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time, timezone-aware."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task."""


class SystemClock:
    """Wall clock backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now(tz=UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True, slots=True)
class MonitorResult:
    """Terminal outcome of one monitor invocation."""

    task_id: str
    state: TerminalState
    status: TaskStatus | None
    attempts: int
    deal_id: str | None = None
    result_ref: str | None = None
    deadline: datetime | None = None
    message: str = ""

    def raise_for_outcome(self) -> None:
        """Raise the monitor error matching a non-ledger terminal state."""

        if self.state is TerminalState.TIMEOUT:
            raise MonitoringTimeout(self.message, task_id=self.task_id)
        if self.state is TerminalState.EXPIRED:
            raise ExpiryDetected(self.message, task_id=self.task_id)
        if self.state is TerminalState.MONITORING_FAILED:
            raise MonitoringFailure(self.message, task_id=self.task_id)


def compute_backoff_delay(error_number: int, settings: MonitorSettings) -> float:
    """Delay before retrying after the n-th consecutive fetch error."""

    exponent = max(error_number - 1, 0)
    return min(
        settings.backoff_cap_seconds,
        settings.backoff_base_seconds * settings.backoff_multiplier**exponent,
    )


class TaskMonitor:
    """Tracks one task through its lifecycle to exactly one terminal result."""

    def __init__(
        self,
        *,
        ledger: Ledger,
        settings: MonitorSettings | None = None,
        clock: Clock | None = None,
        updates: TaskUpdateStream | None = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings or MonitorSettings()
        self.clock = clock or SystemClock()
        self.updates = updates

    async def poll(self, task_id: str) -> MonitorResult:  # noqa: C901
        """Poll until the task settles, the deadline passes or the budget runs out."""

        attempt = 0
        consecutive_errors = 0
        saw_status = False
        last_status: TaskStatus | None = None
        last_task: Task | None = None
        last_error: Exception | None = None

        while attempt < self.settings.max_attempts:
            attempt += 1
            try:
                task = await self.ledger.show_task(task_id)
            except Exception as error:  # noqa: BLE001
                classification = classify_status_fetch_failure(error)
                if classification.kind is FailureKind.NOT_FOUND:
                    logger.info("Task %s not indexed yet (attempt %d)", task_id, attempt)
                    saw_status = True
                    consecutive_errors = 0
                    last_status = TaskStatus.PENDING
                    delay = self.settings.poll_interval_seconds
                else:
                    consecutive_errors += 1
                    last_error = error
                    delay = compute_backoff_delay(consecutive_errors, self.settings)
                    logger.warning(
                        "Status fetch for task %s failed (attempt %d): %s; retrying in %.2fs",
                        task_id,
                        attempt,
                        error,
                        delay,
                    )
            else:
                saw_status = True
                consecutive_errors = 0
                last_status = task.status
                last_task = task
                settled = await self._settle_fetched(task=task, attempt=attempt)
                if settled is not None:
                    return settled
                delay = self.settings.poll_interval_seconds
                logger.debug("Task %s is %s (attempt %d)", task_id, task.status.value, attempt)

            if attempt < self.settings.max_attempts:
                await self.clock.sleep(delay)

        if not saw_status:
            return MonitorResult(
                task_id=task_id,
                state=TerminalState.MONITORING_FAILED,
                status=None,
                attempts=attempt,
                message=(
                    f"Task monitoring failed after {attempt} attempts: {last_error}"
                ),
            )
        return MonitorResult(
            task_id=task_id,
            state=TerminalState.TIMEOUT,
            status=last_status,
            attempts=attempt,
            deal_id=last_task.deal_id if last_task else None,
            message=(
                f"Task monitoring timed out after {attempt} attempts. "
                "Task may still be processing."
            ),
        )

    async def _settle_fetched(self, *, task: Task, attempt: int) -> MonitorResult | None:
        if task.status.is_ledger_terminal:
            return MonitorResult(
                task_id=task.task_id,
                state=TerminalState(task.status.value),
                status=task.status,
                attempts=attempt,
                deal_id=task.deal_id,
                result_ref=task.result_ref,
                message=describe_status(task.status),
            )

        deadline: datetime | None = None
        try:
            deal = await self.ledger.show_deal(task.deal_id)
        except Exception as error:  # noqa: BLE001
            logger.info("Could not fetch deal %s for deadline check: %s", task.deal_id, error)
        else:
            deadline = deal.deadline

        now = self.clock.now()
        expired = deadline is not None and now > deadline
        if expired or task.status is TaskStatus.TIMEOUT:
            logger.warning("Task %s expired (deadline %s, now %s)", task.task_id, deadline, now)
            return MonitorResult(
                task_id=task.task_id,
                state=TerminalState.EXPIRED,
                status=task.status if task.status is TaskStatus.TIMEOUT else TaskStatus.EXPIRED,
                attempts=attempt,
                deal_id=task.deal_id,
                deadline=deadline,
                message=(
                    "Task has expired and will not complete. "
                    "Try submitting a new task with a longer timeout."
                ),
            )
        return None

    async def watch(self, task_id: str) -> MonitorResult:
        """Resolve on the first COMPLETED/FAILED push update or on the watch budget."""

        if self.updates is None:
            return _watch_unavailable(task_id, "no task update stream is configured")
        try:
            subscription = await self.updates.subscribe(task_id)
        except Exception as error:  # noqa: BLE001
            logger.warning("Could not subscribe to task %s updates: %s", task_id, error)
            return _watch_unavailable(task_id, f"could not subscribe to updates: {error}")

        try:
            return await asyncio.wait_for(
                self._first_final_update(task_id, subscription),
                timeout=self.settings.watch_timeout_seconds,
            )
        except TimeoutError:
            return MonitorResult(
                task_id=task_id,
                state=TerminalState.TIMEOUT,
                status=None,
                attempts=0,
                message=(
                    f"Task monitoring timed out after {self.settings.watch_timeout_seconds:g} "
                    "seconds. Task may still be processing."
                ),
            )
        finally:
            await subscription.close()

    async def _first_final_update(
        self,
        task_id: str,
        subscription: TaskSubscription,
    ) -> MonitorResult:
        updates = 0
        try:
            async for update in subscription:
                updates += 1
                logger.debug("Task %s update: %s", task_id, update.status.value)
                if update.status.is_ledger_terminal:
                    return MonitorResult(
                        task_id=task_id,
                        state=TerminalState(update.status.value),
                        status=update.status,
                        attempts=updates,
                        message=describe_status(update.status),
                    )
        except Exception as error:  # noqa: BLE001
            logger.warning("Task %s observation failed: %s", task_id, error)
            return MonitorResult(
                task_id=task_id,
                state=TerminalState.MONITORING_FAILED,
                status=None,
                attempts=updates,
                message=f"Task monitoring failed: {error}",
            )
        return MonitorResult(
            task_id=task_id,
            state=TerminalState.MONITORING_FAILED,
            status=None,
            attempts=updates,
            message="Task update stream closed before a final status",
        )


def _watch_unavailable(task_id: str, reason: str) -> MonitorResult:
    return MonitorResult(
        task_id=task_id,
        state=TerminalState.MONITORING_FAILED,
        status=None,
        attempts=0,
        message=f"Task monitoring failed: {reason}",
    )
