from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import allure
import pytest

from tee_dispatch.config import SelectionSettings, Settings
from tee_dispatch.dispatch.errors import OrderbookUnavailableError, ValidationError
from tee_dispatch.dispatch.models import RequestOrder, TaskStatus, TeeFramework, TerminalState
from tee_dispatch.dispatch.pipeline import SubmitJob, build_pipeline
from tee_dispatch.dispatch.results import decode_result_ref
from tee_dispatch.dispatch.sandbox import SandboxMarketplace

from .conftest import APP, CHEAP_POOL, PINNED_POOL, PROTECTED_DATA, REQUESTER, publish

pytestmark = [
    allure.epic("Job Submission"),
    allure.feature("End-to-End Pipeline"),
]


def _pipeline(marketplace: SandboxMarketplace, settings: Settings | None = None):
    return build_pipeline(
        settings or Settings(),
        registry=marketplace,
        secret_store=marketplace,
        orderbook=marketplace,
        signer=marketplace,
        ledger=marketplace,
        updates=marketplace,
        clock=marketplace.clock,
    )


def _run(marketplace, job: SubmitJob, *, settings: Settings | None = None, mode="poll"):
    return asyncio.run(_pipeline(marketplace, settings).run(job, mode=mode))


def _matched_request(marketplace) -> RequestOrder:
    order = marketplace.matched[0].request_order.order
    assert isinstance(order, RequestOrder)
    return order


def test_secret_input_job_runs_to_completion_on_pinned_pool(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)
    publish(marketplace, PINNED_POOL, 100_000_000)
    marketplace.script_task([TaskStatus.ACTIVE, TaskStatus.COMPLETED])
    settings = Settings(selection=SelectionSettings(pinned_workerpool=PINNED_POOL))

    outcome = _run(
        marketplace,
        SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"),
        settings=settings,
    )

    assert outcome.state is TerminalState.COMPLETED
    assert list(marketplace.deals) == [outcome.deal_id]
    assert marketplace.deals[outcome.deal_id].task_ids == [outcome.task_id]
    assert marketplace.show_task_calls == 2
    assert marketplace.secrets == {(REQUESTER.lower(), 1, TeeFramework.SCONE): "5"}
    assert marketplace.matched[0].workerpool_order.order.workerpool == PINNED_POOL
    request = _matched_request(marketplace)
    assert request.category == 1
    assert request.tag == ("tee", "scone")
    assert request.params == {"iexec_secrets": {"1": "1"}}
    assert "5" not in json.dumps(request.params)
    assert decode_result_ref(outcome.result_ref or "").location == marketplace.result_location


def test_framework_from_app_metadata_drives_tags(marketplace) -> None:
    gramine_app = "0xA0000000000000000000000000000000000000ee"
    marketplace.register_app(gramine_app, enclave_metadata='{"framework": "gramine"}')
    publish(marketplace, CHEAP_POOL, 0)
    publish(marketplace, PINNED_POOL, 10, framework=TeeFramework.GRAMINE)

    outcome = _run(
        marketplace,
        SubmitJob(app_address=gramine_app, requester=REQUESTER, input_value="x"),
    )

    assert outcome.state is TerminalState.COMPLETED
    assert marketplace.matched[0].workerpool_order.order.workerpool == PINNED_POOL
    assert _matched_request(marketplace).tag == ("tee", "gramine")
    assert (REQUESTER.lower(), 1, TeeFramework.GRAMINE) in marketplace.secrets


def test_relaxed_tier_category_flows_into_request_order(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 500_000_000, category=0)

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.COMPLETED
    assert _matched_request(marketplace).category == 0


def test_relaxed_tier_order_above_request_price_fails_submission(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 3_000_000_000, category=0)

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.SUBMISSION_FAILED
    assert outcome.reason_code == "match_price_mismatch"
    assert outcome.deal_id is None
    assert marketplace.deals == {}


def test_protected_data_job_skips_secret_and_adds_dataset_order(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)

    outcome = _run(
        marketplace,
        SubmitJob(app_address=APP, requester=REQUESTER, protected_data=PROTECTED_DATA),
    )

    assert outcome.state is TerminalState.COMPLETED
    assert marketplace.secrets == {}
    assert marketplace.matched[0].dataset_order is not None
    assert _matched_request(marketplace).dataset == PROTECTED_DATA


def test_no_workerpool_ends_job_without_deal(marketplace) -> None:
    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.NO_WORKERPOOL
    assert outcome.deal_id is None
    assert outcome.task_id is None
    assert marketplace.signed == []


def test_provisioning_failure_stops_before_order_book(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)
    marketplace.secret_error = ConnectionError("secret service unreachable")

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.PROVISIONING_FAILED
    assert marketplace.queries == []
    assert marketplace.signed == []
    assert marketplace.matched == []


def test_order_book_outage_ends_job_as_submission_failure(marketplace) -> None:
    marketplace.orderbook_error = OrderbookUnavailableError("market api 503")

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.SUBMISSION_FAILED
    assert outcome.reason_code == "orderbook_unavailable"
    assert "market api 503" in outcome.message
    assert outcome.deal_id is None
    assert marketplace.signed == []


def test_signer_failure_ends_job_as_submission_failure(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)
    marketplace.sign_error = ConnectionError("signer unreachable")

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.SUBMISSION_FAILED
    assert outcome.reason_code == "sign_failed"
    assert "signer unreachable" in outcome.message
    assert marketplace.matched == []
    assert marketplace.deals == {}


def test_watch_subscribe_failure_ends_job_as_monitoring_failure(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)
    marketplace.subscribe_error = ConnectionError("websocket refused")

    outcome = _run(
        marketplace,
        SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"),
        mode="watch",
    )

    assert outcome.state is TerminalState.MONITORING_FAILED
    assert "websocket refused" in outcome.message
    assert outcome.deal_id is not None
    assert outcome.task_id is not None


@pytest.mark.parametrize(
    "job",
    [
        SubmitJob(app_address="", requester=REQUESTER, input_value="5"),
        SubmitJob(app_address="0x123", requester=REQUESTER, input_value="5"),
        SubmitJob(app_address=APP, requester="", input_value="5"),
        SubmitJob(
            app_address=APP,
            requester=REQUESTER,
            input_value="5",
            protected_data=PROTECTED_DATA,
        ),
        SubmitJob(app_address="0x" + "9" * 40, requester=REQUESTER, input_value="5"),
    ],
)
def test_invalid_submissions_are_rejected(marketplace, job) -> None:
    publish(marketplace, CHEAP_POOL, 0)

    outcome = _run(marketplace, job)

    assert outcome.state is TerminalState.REJECTED
    assert marketplace.matched == []
    assert marketplace.secrets == {}


def test_submit_raises_validation_error_directly(marketplace) -> None:
    pipeline = _pipeline(marketplace)

    with pytest.raises(ValidationError, match="not both"):
        asyncio.run(
            pipeline.submit(
                SubmitJob(
                    app_address=APP,
                    requester=REQUESTER,
                    input_value="5",
                    protected_data=PROTECTED_DATA,
                ),
            ),
        )


def test_deal_deadline_passing_expires_job(clock) -> None:
    marketplace = SandboxMarketplace(
        requester=REQUESTER,
        clock=clock,
        deal_duration=timedelta(seconds=7),
    )
    marketplace.register_app(APP)
    publish(marketplace, CHEAP_POOL, 0)
    marketplace.script_task([TaskStatus.ACTIVE])

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))

    assert outcome.state is TerminalState.EXPIRED
    assert outcome.task_id is not None
    assert marketplace.show_task_calls == 3


def test_watch_mode_uses_update_stream(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)
    marketplace.script_updates([TaskStatus.ACTIVE, TaskStatus.COMPLETED])

    outcome = _run(
        marketplace,
        SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"),
        mode="watch",
    )

    assert outcome.state is TerminalState.COMPLETED
    assert marketplace.show_task_calls == 0
    assert marketplace.subscriptions[0].task_id == outcome.task_id


def test_outcome_serializes_deal_task_and_status(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))
    payload = outcome.to_dict()

    assert payload["deal"] == outcome.deal_id
    assert payload["task"] == outcome.task_id
    assert payload["status"] == "COMPLETED"
    assert payload["finished_at"] is not None


def test_completed_task_result_can_be_fetched(marketplace) -> None:
    publish(marketplace, CHEAP_POOL, 0)

    outcome = _run(marketplace, SubmitJob(app_address=APP, requester=REQUESTER, input_value="5"))
    archive = asyncio.run(marketplace.fetch_result(outcome.task_id or ""))

    assert json.loads(archive)["location"] == marketplace.result_location
