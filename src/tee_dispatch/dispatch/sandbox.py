"""In-memory marketplace for rehearsals and tests.

Implements every collaborator port the pipeline needs. Task status
progressions are scripted per deal: each `show_task` call consumes one
entry, where `TaskStatus.PENDING` means "not indexed yet" and an exception
instance is raised as a fetch error.
"""

from __future__ import annotations

import asyncio
import binascii
import hashlib
import json
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from tee_dispatch.dispatch.errors import TaskNotFoundError
from tee_dispatch.dispatch.models import (
    NULL_ADDRESS,
    AppDescriptor,
    Deal,
    MatchReceipt,
    Order,
    OrderBundle,
    PublishedWorkerpoolOrder,
    RequestOrder,
    SignedOrder,
    Task,
    TaskStatus,
    TaskUpdate,
    TeeFramework,
    WorkerpoolOrder,
)
from tee_dispatch.dispatch.ports import OrderbookQuery
from tee_dispatch.dispatch.tags import is_tag_superset

ScriptStep = TaskStatus | Exception

DEFAULT_SCRIPT: tuple[ScriptStep, ...] = (
    TaskStatus.PENDING,
    TaskStatus.ACTIVE,
    TaskStatus.REVEALING,
    TaskStatus.COMPLETED,
)


class SandboxRevertError(RuntimeError):
    """Simulated on-ledger revert."""


class VirtualClock:
    """Clock whose sleeps advance virtual time instantly and are recorded."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, tzinfo=UTC)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass(slots=True)
class _SandboxTask:
    task: Task
    script: list[ScriptStep]
    updates: list[ScriptStep]


@dataclass(slots=True)
class SandboxSubscription:
    """Push subscription replaying scripted updates."""

    task_id: str
    steps: list[ScriptStep]
    delay_seconds: float = 0.0
    closed: bool = False
    delivered: list[TaskUpdate] = field(default_factory=list)

    def __aiter__(self) -> AsyncIterator[TaskUpdate]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TaskUpdate]:
        for step in self.steps:
            if self.closed:
                return
            await asyncio.sleep(self.delay_seconds)
            if isinstance(step, Exception):
                raise step
            update = TaskUpdate(task_id=self.task_id, status=step)
            self.delivered.append(update)
            yield update
        if self.delay_seconds > 0:
            # keep the stream open without further updates, like an idle observable
            while not self.closed:
                await asyncio.sleep(self.delay_seconds)

    async def close(self) -> None:
        self.closed = True


class SandboxMarketplace:
    """Simulated registry, secret store, order book, signer, ledger and update stream."""

    def __init__(
        self,
        *,
        requester: str,
        clock: VirtualClock | None = None,
        deal_duration: timedelta = timedelta(minutes=20),
        result_location: str = "/ipfs/QmYwAPJzv5CZsnAzt8auVZRn9pUAXSTcRzvf7bWBb2xNqx",
    ) -> None:
        self.requester = requester
        self.clock = clock or VirtualClock()
        self.deal_duration = deal_duration
        self.result_location = result_location
        self.apps: dict[str, AppDescriptor] = {}
        self.secrets: dict[tuple[str, int, TeeFramework], str] = {}
        self.workerpool_orders: list[PublishedWorkerpoolOrder] = []
        self.deals: dict[str, Deal] = {}
        self.queries: list[OrderbookQuery] = []
        self.signed: list[SignedOrder] = []
        self.matched: list[OrderBundle] = []
        self.subscriptions: list[SandboxSubscription] = []
        self.show_task_calls = 0
        self.show_deal_calls = 0
        self.task_script: list[ScriptStep] = list(DEFAULT_SCRIPT)
        self.update_script: list[ScriptStep] = [TaskStatus.ACTIVE, TaskStatus.COMPLETED]
        self.update_delay_seconds = 0.0
        self.secret_error: Exception | None = None
        self.orderbook_error: Exception | None = None
        self.sign_error: Exception | None = None
        self.match_error: Exception | None = None
        self.subscribe_error: Exception | None = None
        self._tasks: dict[str, _SandboxTask] = {}
        self._counter = 0

    # seeding

    def register_app(self, address: str, enclave_metadata: str | None = None) -> None:
        self.apps[address.lower()] = AppDescriptor(
            address=address,
            enclave_metadata=enclave_metadata,
        )

    def publish_workerpool_order(  # noqa: PLR0913
        self,
        *,
        workerpool: str,
        price: int,
        category: int,
        tag: Iterable[str],
        volume: int = 1,
        order_hash: str | None = None,
    ) -> PublishedWorkerpoolOrder:
        order = WorkerpoolOrder(
            workerpool=workerpool,
            workerpool_price=price,
            category=category,
            volume=volume,
            tag=tuple(tag),
        )
        published = PublishedWorkerpoolOrder(
            order_hash=order_hash or self._next_id("order"),
            order=SignedOrder(order=order, signature=_signature(order)),
            remaining=volume,
        )
        self.workerpool_orders.append(published)
        return published

    def script_task(self, steps: Iterable[ScriptStep]) -> None:
        """Status steps returned by `show_task` for the next created task."""

        self.task_script = list(steps)

    def script_updates(self, steps: Iterable[ScriptStep], *, delay_seconds: float = 0.0) -> None:
        """Push updates delivered to subscriptions of the next created task."""

        self.update_script = list(steps)
        self.update_delay_seconds = delay_seconds

    # AppRegistry

    async def describe_app(self, address: str) -> AppDescriptor:
        app = self.apps.get(address.lower())
        if app is None:
            raise LookupError(f"App {address} not found")
        return app

    # SecretStore

    async def exists(self, owner: str, slot: int, framework: TeeFramework) -> bool:
        if self.secret_error is not None:
            raise self.secret_error
        return (owner.lower(), slot, framework) in self.secrets

    async def upsert(self, slot: int, value: str, framework: TeeFramework) -> None:
        if self.secret_error is not None:
            raise self.secret_error
        self.secrets[(self.requester.lower(), slot, framework)] = value

    # OrderBook

    async def query(self, query: OrderbookQuery) -> list[PublishedWorkerpoolOrder]:
        self.queries.append(query)
        if self.orderbook_error is not None:
            raise self.orderbook_error
        matches = [
            published
            for published in self.workerpool_orders
            if published.category == query.category
            and published.remaining >= query.min_volume
            and is_tag_superset(published.workerpool_order.tag, query.min_tag)
            and (query.max_price is None or published.price <= query.max_price)
        ]
        matches.sort(key=lambda published: published.price)
        return matches[: query.page_size]

    # Signer

    async def sign(self, order: Order) -> SignedOrder:
        if self.sign_error is not None:
            raise self.sign_error
        signed = SignedOrder(order=order, signature=_signature(order))
        self.signed.append(signed)
        return signed

    # Ledger

    async def match_orders(self, bundle: OrderBundle) -> MatchReceipt:
        if self.match_error is not None:
            raise self.match_error
        request = bundle.request_order.order
        workerpool = bundle.workerpool_order.order
        if not isinstance(request, RequestOrder) or not isinstance(workerpool, WorkerpoolOrder):
            raise SandboxRevertError("invalid bundle")
        _check_compatibility(bundle, request, workerpool)

        self.matched.append(bundle)
        deal_id = self._next_id("deal")
        task_id = self._next_id("task")
        self.deals[deal_id] = Deal(
            deal_id=deal_id,
            task_ids=[task_id],
            volume=1,
            deadline=self.clock.now() + self.deal_duration,
        )
        self._tasks[task_id] = _SandboxTask(
            task=Task(task_id=task_id, deal_id=deal_id, status=TaskStatus.UNSET),
            script=list(self.task_script),
            updates=list(self.update_script),
        )
        return MatchReceipt(deal_id=deal_id, tx_hash=self._next_id("tx"), volume=1)

    async def show_deal(self, deal_id: str) -> Deal:
        self.show_deal_calls += 1
        deal = self.deals.get(deal_id)
        if deal is None:
            raise LookupError(f"Deal {deal_id} not found")
        return deal

    async def show_task(self, task_id: str) -> Task:
        self.show_task_calls += 1
        entry = self._tasks.get(task_id)
        if entry is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        if entry.script:
            step = entry.script.pop(0)
            if isinstance(step, Exception):
                raise step
            if step is TaskStatus.PENDING:
                raise TaskNotFoundError(f"Task {task_id} not found")
            entry.task = self._with_status(entry.task, step)
        return entry.task

    async def fetch_result(self, task_id: str) -> bytes:
        entry = self._tasks.get(task_id)
        if entry is None or entry.task.status is not TaskStatus.COMPLETED:
            raise LookupError(f"Task {task_id} has no result yet")
        return json.dumps({"task": task_id, "location": self.result_location}).encode("utf-8")

    # TaskUpdateStream

    async def subscribe(self, task_id: str) -> SandboxSubscription:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        entry = self._tasks.get(task_id)
        steps = list(entry.updates) if entry is not None else list(self.update_script)
        subscription = SandboxSubscription(
            task_id=task_id,
            steps=steps,
            delay_seconds=self.update_delay_seconds,
        )
        self.subscriptions.append(subscription)
        return subscription

    def _with_status(self, task: Task, status: TaskStatus) -> Task:
        result_ref = None
        if status is TaskStatus.COMPLETED:
            payload = json.dumps({"storage": "ipfs", "location": self.result_location})
            result_ref = "0x" + binascii.hexlify(payload.encode("utf-8")).decode("ascii")
        return Task(
            task_id=task.task_id,
            deal_id=task.deal_id,
            status=status,
            result_ref=result_ref,
            contribution_deadline=task.contribution_deadline,
            final_deadline=self.deals[task.deal_id].deadline,
        )

    def _next_id(self, kind: str) -> str:
        self._counter += 1
        digest = hashlib.sha256(f"{kind}:{self._counter}".encode()).hexdigest()
        return f"0x{digest}"


def _check_compatibility(
    bundle: OrderBundle,
    request: RequestOrder,
    workerpool: WorkerpoolOrder,
) -> None:
    if request.category != workerpool.category:
        raise SandboxRevertError(
            f"category mismatch: request {request.category} != workerpool {workerpool.category}",
        )
    if workerpool.workerpool_price > request.workerpool_max_price:
        raise SandboxRevertError(
            f"workerpool price {workerpool.workerpool_price} exceeds "
            f"{request.workerpool_max_price}",
        )
    if request.volume != 1:
        raise SandboxRevertError(f"volume mismatch: request volume {request.volume}")
    required: set[str] = set(request.tag) | set(bundle.app_order.order.tag)
    if bundle.dataset_order is not None:
        required |= set(bundle.dataset_order.order.tag)
    if not is_tag_superset(workerpool.tag, required):
        raise SandboxRevertError(
            f"tag mismatch: workerpool {workerpool.tag} lacks {sorted(required)}",
        )
    if (request.dataset != NULL_ADDRESS) != (bundle.dataset_order is not None):
        raise SandboxRevertError("dataset order missing")


def _signature(order: Order) -> str:
    return "0x" + hashlib.sha256(repr(order).encode("utf-8")).hexdigest()
