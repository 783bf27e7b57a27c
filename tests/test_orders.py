from __future__ import annotations

import allure
import pytest

from tee_dispatch.dispatch.errors import ValidationError
from tee_dispatch.dispatch.models import NULL_ADDRESS, TeeFramework
from tee_dispatch.dispatch.orders import SECRETS_PARAM, OrderBuilder, RequestPricing

from .conftest import APP, PROTECTED_DATA, REQUESTER

pytestmark = [
    allure.epic("Order Negotiation"),
    allure.feature("Order Templates"),
]


def test_secret_request_order_references_slot_and_requires_tee() -> None:
    order = OrderBuilder().build_request_order(
        app=APP,
        requester=REQUESTER,
        framework=TeeFramework.SCONE,
        category=1,
        secret_slot=1,
    )

    assert order.app == APP
    assert order.requester == REQUESTER
    assert order.category == 1
    assert order.volume == 1
    assert order.app_max_price == 0
    assert order.workerpool_max_price == 1_000_000_000
    assert order.dataset == NULL_ADDRESS
    assert order.tag == ("tee", "scone")
    assert order.params == {SECRETS_PARAM: {"1": "1"}}


def test_protected_data_request_order_sets_dataset_and_price() -> None:
    builder = OrderBuilder(
        pricing=RequestPricing(workerpool_max_price=300, dataset_max_price=70),
    )

    order = builder.build_request_order(
        app=APP,
        requester=REQUESTER,
        framework=TeeFramework.GRAMINE,
        category=0,
        protected_data=PROTECTED_DATA,
    )

    assert order.dataset == PROTECTED_DATA
    assert order.dataset_max_price == 70
    assert order.workerpool_max_price == 300
    assert order.category == 0
    assert order.tag == ("tee", "gramine")
    assert order.params == {}


def test_request_order_rejects_both_inputs() -> None:
    with pytest.raises(ValidationError, match="not both"):
        OrderBuilder().build_request_order(
            app=APP,
            requester=REQUESTER,
            framework=TeeFramework.SCONE,
            category=1,
            protected_data=PROTECTED_DATA,
            secret_slot=1,
        )


def test_app_and_dataset_orders_are_free_single_task_orders() -> None:
    builder = OrderBuilder()

    app_order = builder.build_app_order(app=APP, framework=TeeFramework.TDX)
    dataset_order = builder.build_dataset_order(
        dataset=PROTECTED_DATA,
        framework=TeeFramework.TDX,
    )

    assert (app_order.app_price, app_order.volume, app_order.tag) == (0, 1, ("tee", "tdx"))
    assert (dataset_order.dataset_price, dataset_order.volume) == (0, 1)
    assert dataset_order.tag == ("tee", "tdx")


def test_builder_returns_fresh_templates() -> None:
    builder = OrderBuilder()
    kwargs = {
        "app": APP,
        "requester": REQUESTER,
        "framework": TeeFramework.SCONE,
        "category": 1,
        "secret_slot": 1,
    }

    first = builder.build_request_order(**kwargs)
    first.params[SECRETS_PARAM]["2"] = "2"
    second = builder.build_request_order(**kwargs)

    assert second.params == {SECRETS_PARAM: {"1": "1"}}
