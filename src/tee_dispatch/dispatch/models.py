"""Domain models for order negotiation and task tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"
NRLC_PER_RLC = 1_000_000_000
SINGLE_TASK_VOLUME = 1


class TeeFramework(str, Enum):
    """Enclave technologies an app and a workerpool must both support."""

    SCONE = "scone"
    GRAMINE = "gramine"
    TDX = "tdx"


DEFAULT_TEE_FRAMEWORK = TeeFramework.SCONE


class TaskStatus(str, Enum):
    """Task lifecycle states as seen by the monitor."""

    UNSET = "UNSET"
    ACTIVE = "ACTIVE"
    REVEALING = "REVEALING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    PENDING = "PENDING"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_wire(cls, value: object) -> TaskStatus:
        """Map ledger status codes 0-5 to states; anything else is UNKNOWN."""

        if isinstance(value, bool) or not isinstance(value, int):
            return cls.UNKNOWN
        return _WIRE_STATUSES.get(value, cls.UNKNOWN)

    @property
    def is_ledger_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


_WIRE_STATUSES: dict[int, TaskStatus] = {
    0: TaskStatus.UNSET,
    1: TaskStatus.ACTIVE,
    2: TaskStatus.REVEALING,
    3: TaskStatus.COMPLETED,
    4: TaskStatus.FAILED,
    5: TaskStatus.TIMEOUT,
}


class TerminalState(str, Enum):
    """Single terminal vocabulary shared by the monitor and the pipeline."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    EXPIRED = "EXPIRED"
    MONITORING_FAILED = "MONITORING_FAILED"
    REJECTED = "REJECTED"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    NO_WORKERPOOL = "NO_WORKERPOOL"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"


@dataclass(frozen=True, slots=True)
class AppDescriptor:
    """Registry entry of an application."""

    address: str
    enclave_metadata: str | None = None


@dataclass(slots=True)
class RequestOrder:
    """Requester side of a deal."""

    app: str
    requester: str
    category: int
    app_max_price: int = 0
    dataset: str = NULL_ADDRESS
    dataset_max_price: int = 0
    workerpool: str = NULL_ADDRESS
    workerpool_max_price: int = 0
    volume: int = SINGLE_TASK_VOLUME
    tag: tuple[str, ...] = ()
    trust: int = 0
    beneficiary: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AppOrder:
    """App owner side of a deal."""

    app: str
    app_price: int = 0
    volume: int = SINGLE_TASK_VOLUME
    tag: tuple[str, ...] = ()


@dataclass(slots=True)
class DatasetOrder:
    """Dataset owner side of a deal, only used with protected data."""

    dataset: str
    dataset_price: int = 0
    volume: int = SINGLE_TASK_VOLUME
    tag: tuple[str, ...] = ()


@dataclass(slots=True)
class WorkerpoolOrder:
    """Workerpool side of a deal, as published in the order book."""

    workerpool: str
    workerpool_price: int
    category: int
    volume: int = SINGLE_TASK_VOLUME
    tag: tuple[str, ...] = ()
    trust: int = 0


Order = RequestOrder | AppOrder | DatasetOrder | WorkerpoolOrder


@dataclass(frozen=True, slots=True)
class SignedOrder:
    """Order template plus the signature produced by the signer."""

    order: Order
    signature: str


@dataclass(frozen=True, slots=True)
class PublishedWorkerpoolOrder:
    """One entry fetched from the workerpool order book."""

    order_hash: str
    order: SignedOrder
    remaining: int = SINGLE_TASK_VOLUME

    @property
    def workerpool(self) -> str:
        return self.workerpool_order.workerpool

    @property
    def price(self) -> int:
        return self.workerpool_order.workerpool_price

    @property
    def category(self) -> int:
        return self.workerpool_order.category

    @property
    def workerpool_order(self) -> WorkerpoolOrder:
        order = self.order.order
        if not isinstance(order, WorkerpoolOrder):
            raise TypeError(f"Order book entry {self.order_hash} is not a workerpool order")
        return order


@dataclass(slots=True)
class OrderBundle:
    """Signed orders submitted together to create one deal."""

    app_order: SignedOrder
    workerpool_order: SignedOrder
    request_order: SignedOrder
    dataset_order: SignedOrder | None = None

    def signed_orders(self) -> list[SignedOrder]:
        orders = [self.app_order, self.workerpool_order, self.request_order]
        if self.dataset_order is not None:
            orders.append(self.dataset_order)
        return orders


@dataclass(frozen=True, slots=True)
class MatchReceipt:
    """Ledger acknowledgement of a matched bundle."""

    deal_id: str
    tx_hash: str
    volume: int


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    """Deal and task created for one submitted job."""

    deal_id: str
    task_id: str
    tx_hash: str
    volume: int
    category: int
    workerpool: str
    framework: TeeFramework


@dataclass(frozen=True, slots=True)
class Deal:
    """Read-only ledger view of a deal."""

    deal_id: str
    task_ids: list[str]
    volume: int
    deadline: datetime


@dataclass(frozen=True, slots=True)
class Task:
    """Read-only ledger view of a task."""

    task_id: str
    deal_id: str
    status: TaskStatus
    result_ref: str | None = None
    contribution_deadline: datetime | None = None
    final_deadline: datetime | None = None


@dataclass(frozen=True, slots=True)
class TaskUpdate:
    """One message from the task update stream."""

    task_id: str
    status: TaskStatus
