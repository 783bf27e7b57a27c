"""Collaborator interfaces required by the submission pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from tee_dispatch.dispatch.models import (
    AppDescriptor,
    Deal,
    MatchReceipt,
    Order,
    OrderBundle,
    PublishedWorkerpoolOrder,
    SignedOrder,
    Task,
    TaskUpdate,
    TeeFramework,
)


@dataclass(frozen=True, slots=True)
class OrderbookQuery:
    """Filters for one workerpool order book request."""

    category: int
    min_volume: int
    min_tag: tuple[str, ...]
    max_price: int | None
    page_size: int


class AppRegistry(Protocol):
    async def describe_app(self, address: str) -> AppDescriptor:
        """Return registry metadata for an app address."""


class SecretStore(Protocol):
    async def exists(self, owner: str, slot: int, framework: TeeFramework) -> bool:
        """Check whether `owner` already has a secret at `slot`."""

    async def upsert(self, slot: int, value: str, framework: TeeFramework) -> None:
        """Create or overwrite the caller's secret at `slot`."""


class OrderBook(Protocol):
    async def query(self, query: OrderbookQuery) -> list[PublishedWorkerpoolOrder]:
        """Return workerpool orders matching the filters."""


class Signer(Protocol):
    async def sign(self, order: Order) -> SignedOrder:
        """Sign an order template with the requester key."""


class Ledger(Protocol):
    async def match_orders(self, bundle: OrderBundle) -> MatchReceipt:
        """Submit the bundle and create one deal."""

    async def show_deal(self, deal_id: str) -> Deal:
        """Fetch deal tasks and deadline."""

    async def show_task(self, task_id: str) -> Task:
        """Fetch task status; raises TaskNotFoundError before indexing."""

    async def fetch_result(self, task_id: str) -> bytes:
        """Download the result archive of a completed task."""


class TaskSubscription(Protocol):
    def __aiter__(self) -> AsyncIterator[TaskUpdate]: ...

    async def close(self) -> None:
        """Stop receiving updates and release the stream."""


class TaskUpdateStream(Protocol):
    async def subscribe(self, task_id: str) -> TaskSubscription:
        """Open a push subscription for one task."""
