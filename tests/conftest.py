"""Shared test fixtures."""

from __future__ import annotations

import json
import os

import pytest

from tee_dispatch.dispatch.models import TeeFramework
from tee_dispatch.dispatch.sandbox import SandboxMarketplace, VirtualClock
from tee_dispatch.dispatch.tags import tee_tag

APP = "0xA0000000000000000000000000000000000000a1"
REQUESTER = "0xB0000000000000000000000000000000000000b2"
PROTECTED_DATA = "0xD0000000000000000000000000000000000000d4"
CHEAP_POOL = "0x1111111111111111111111111111111111111111"
PINNED_POOL = "0x2222222222222222222222222222222222222222"
BANNED_POOL = "0x3333333333333333333333333333333333333333"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Drop TEE_DISPATCH_* variables from the developer shell."""
    for name in list(os.environ):
        if name.startswith("TEE_DISPATCH_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture()
def marketplace(clock: VirtualClock) -> SandboxMarketplace:
    """Sandbox with one scone app registered and no workerpool orders."""
    sandbox = SandboxMarketplace(requester=REQUESTER, clock=clock)
    sandbox.register_app(APP, enclave_metadata=json.dumps({"framework": "scone"}))
    return sandbox


def publish(
    marketplace: SandboxMarketplace,
    workerpool: str,
    price: int,
    *,
    category: int = 1,
    framework: TeeFramework = TeeFramework.SCONE,
):
    return marketplace.publish_workerpool_order(
        workerpool=workerpool,
        price=price,
        category=category,
        tag=tee_tag(framework),
    )
