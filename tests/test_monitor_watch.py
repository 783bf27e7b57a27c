from __future__ import annotations

import asyncio

import allure

from tee_dispatch.config import MonitorSettings
from tee_dispatch.dispatch.models import TaskStatus, TerminalState
from tee_dispatch.dispatch.monitor import TaskMonitor

pytestmark = [
    allure.epic("Task Monitoring"),
    allure.feature("Push Updates"),
]

TASK_ID = "0xtask"


def _watch(marketplace, *, timeout: float = 30.0):
    monitor = TaskMonitor(
        ledger=marketplace,
        settings=MonitorSettings(watch_timeout_seconds=timeout),
        updates=marketplace,
    )
    return asyncio.run(monitor.watch(TASK_ID))


def test_watch_settles_on_first_final_update(marketplace) -> None:
    marketplace.script_updates(
        [TaskStatus.ACTIVE, TaskStatus.REVEALING, TaskStatus.COMPLETED, TaskStatus.FAILED],
    )

    result = _watch(marketplace)

    assert result.state is TerminalState.COMPLETED
    assert result.attempts == 3
    subscription = marketplace.subscriptions[0]
    assert subscription.closed is True
    assert [update.status for update in subscription.delivered] == [
        TaskStatus.ACTIVE,
        TaskStatus.REVEALING,
        TaskStatus.COMPLETED,
    ]


def test_watch_reports_failed_task(marketplace) -> None:
    marketplace.script_updates([TaskStatus.ACTIVE, TaskStatus.FAILED])

    result = _watch(marketplace)

    assert result.state is TerminalState.FAILED


def test_watch_times_out_and_closes_subscription(marketplace) -> None:
    marketplace.script_updates([TaskStatus.ACTIVE], delay_seconds=0.01)

    result = _watch(marketplace, timeout=0.1)

    assert result.state is TerminalState.TIMEOUT
    assert "may still be processing" in result.message
    assert marketplace.subscriptions[0].closed is True


def test_watch_stream_error_is_monitoring_failure(marketplace) -> None:
    marketplace.script_updates([TaskStatus.ACTIVE, ConnectionError("websocket dropped")])

    result = _watch(marketplace)

    assert result.state is TerminalState.MONITORING_FAILED
    assert "websocket dropped" in result.message
    assert marketplace.subscriptions[0].closed is True


def test_watch_stream_ending_early_is_monitoring_failure(marketplace) -> None:
    marketplace.script_updates([TaskStatus.ACTIVE])

    result = _watch(marketplace)

    assert result.state is TerminalState.MONITORING_FAILED
    assert result.attempts == 1


def test_watch_without_update_stream_is_monitoring_failure(marketplace) -> None:
    monitor = TaskMonitor(ledger=marketplace)

    result = asyncio.run(monitor.watch(TASK_ID))

    assert result.state is TerminalState.MONITORING_FAILED
    assert "no task update stream" in result.message


def test_watch_subscribe_error_is_monitoring_failure(marketplace) -> None:
    marketplace.subscribe_error = ConnectionError("websocket refused")

    result = _watch(marketplace)

    assert result.state is TerminalState.MONITORING_FAILED
    assert result.status is None
    assert result.attempts == 0
    assert "websocket refused" in result.message
    assert marketplace.subscriptions == []
