"""Job submission pipeline: resolve, provision, select, build, sign, match, monitor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from tee_dispatch.config import Settings, is_address
from tee_dispatch.dispatch.errors import JobError, SubmissionError, ValidationError
from tee_dispatch.dispatch.framework import TeeFrameworkResolver
from tee_dispatch.dispatch.matching import OrderMatcher
from tee_dispatch.dispatch.models import (
    Order,
    OrderBundle,
    SignedOrder,
    SubmissionReceipt,
    TerminalState,
)
from tee_dispatch.dispatch.monitor import Clock, MonitorResult, TaskMonitor
from tee_dispatch.dispatch.orders import OrderBuilder, RequestPricing
from tee_dispatch.dispatch.ports import (
    AppRegistry,
    Ledger,
    OrderBook,
    SecretStore,
    Signer,
    TaskUpdateStream,
)
from tee_dispatch.dispatch.secrets import REQUESTER_SECRET_SLOT, SecretProvisioner
from tee_dispatch.dispatch.selection import SelectionPolicy, WorkerpoolSelector

logger = logging.getLogger(__name__)

MonitorMode = Literal["poll", "watch"]


@dataclass(slots=True)
class SubmitJob:
    """High-level command to submit one confidential job."""

    app_address: str
    requester: str
    input_value: str | None = None
    protected_data: str | None = None

    def validate(self) -> None:
        """Reject submissions that cannot enter the pipeline."""

        if not self.app_address or not self.app_address.strip():
            raise ValidationError("Missing required parameter: app address.")
        if not self.requester or not self.requester.strip():
            raise ValidationError("Missing required parameter: requester address.")
        if not is_address(self.app_address):
            raise ValidationError(f"Invalid app address: {self.app_address!r}")
        if not is_address(self.requester):
            raise ValidationError(f"Invalid requester address: {self.requester!r}")
        if self.protected_data is not None:
            if not is_address(self.protected_data):
                raise ValidationError(f"Invalid protected data address: {self.protected_data!r}")
            if self.input_value is not None:
                raise ValidationError("Use either protected data or an input value, not both.")
        if self.input_value is not None and not self.input_value.strip():
            raise ValidationError("Input value must not be empty.")


@dataclass(slots=True)
class JobOutcome:
    """Caller-visible result of one job: a deal/task reference or a terminal error."""

    state: TerminalState
    deal_id: str | None = None
    task_id: str | None = None
    tx_hash: str | None = None
    result_ref: str | None = None
    message: str = ""
    reason_code: str | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "deal": self.deal_id,
            "task": self.task_id,
            "status": self.state.value,
            "tx_hash": self.tx_hash,
            "result_ref": self.result_ref,
            "message": self.message,
            "reason_code": self.reason_code,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class JobPipeline:
    """Runs the stages of one job strictly in sequence."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        resolver: TeeFrameworkResolver,
        provisioner: SecretProvisioner,
        selector: WorkerpoolSelector,
        builder: OrderBuilder,
        signer: Signer,
        matcher: OrderMatcher,
        monitor: TaskMonitor,
    ) -> None:
        self.resolver = resolver
        self.provisioner = provisioner
        self.selector = selector
        self.builder = builder
        self.signer = signer
        self.matcher = matcher
        self.monitor = monitor

    async def submit(self, job: SubmitJob) -> SubmissionReceipt:
        """Create one deal for the job and return its task reference."""

        job.validate()
        framework = await self.resolver.resolve(job.app_address)

        secret_slot: int | None = None
        if job.input_value is not None and job.protected_data is None:
            provisioned = await self.provisioner.provision(
                owner=job.requester,
                value=job.input_value,
                framework=framework,
                slot=REQUESTER_SECRET_SLOT,
            )
            secret_slot = provisioned.slot

        selection = await self.selector.select(framework)
        request_order = self.builder.build_request_order(
            app=job.app_address,
            requester=job.requester,
            framework=framework,
            category=selection.category,
            protected_data=job.protected_data,
            secret_slot=secret_slot,
        )
        app_order = self.builder.build_app_order(app=job.app_address, framework=framework)

        bundle = OrderBundle(
            app_order=await self._sign(app_order),
            workerpool_order=selection.order.order,
            request_order=await self._sign(request_order),
        )
        if job.protected_data is not None:
            dataset_order = self.builder.build_dataset_order(
                dataset=job.protected_data,
                framework=framework,
            )
            bundle.dataset_order = await self._sign(dataset_order)

        return await self.matcher.match(bundle, framework=framework)

    async def _sign(self, order: Order) -> SignedOrder:
        try:
            return await self.signer.sign(order)
        except Exception as error:
            logger.warning("Signing %s failed: %s", type(order).__name__, error)
            raise SubmissionError(
                f"Failed to sign {type(order).__name__}: {error}",
                reason_code="sign_failed",
            ) from error

    async def run(self, job: SubmitJob, *, mode: MonitorMode = "poll") -> JobOutcome:
        """Submit and monitor; every failure is returned as a terminal outcome."""

        try:
            receipt = await self.submit(job)
        except JobError as error:
            logger.warning(
                "Job for app %s ended with %s: %s",
                job.app_address,
                error.terminal_state.value,
                error,
            )
            return JobOutcome(
                state=error.terminal_state,
                message=str(error),
                reason_code=getattr(error, "reason_code", None),
                finished_at=datetime.now(tz=UTC),
            )

        if mode == "watch":
            result = await self.monitor.watch(receipt.task_id)
        else:
            result = await self.monitor.poll(receipt.task_id)
        return _outcome_from_monitor(receipt, result)


def build_pipeline(  # noqa: PLR0913
    settings: Settings,
    *,
    registry: AppRegistry,
    secret_store: SecretStore,
    orderbook: OrderBook,
    signer: Signer,
    ledger: Ledger,
    updates: TaskUpdateStream | None = None,
    clock: Clock | None = None,
) -> JobPipeline:
    """Wire a pipeline from settings and marketplace collaborators."""

    return JobPipeline(
        resolver=TeeFrameworkResolver(registry=registry),
        provisioner=SecretProvisioner(store=secret_store),
        selector=WorkerpoolSelector(
            orderbook=orderbook,
            policy=SelectionPolicy.from_settings(settings.selection),
        ),
        builder=OrderBuilder(
            pricing=RequestPricing(
                workerpool_max_price=settings.request.workerpool_max_price_nrlc,
                dataset_max_price=settings.request.dataset_max_price_nrlc,
            ),
        ),
        signer=signer,
        matcher=OrderMatcher(ledger=ledger),
        monitor=TaskMonitor(
            ledger=ledger,
            settings=settings.monitor,
            clock=clock,
            updates=updates,
        ),
    )


def _outcome_from_monitor(receipt: SubmissionReceipt, result: MonitorResult) -> JobOutcome:
    logger.info("Task %s finished monitoring with %s", receipt.task_id, result.state.value)
    return JobOutcome(
        state=result.state,
        deal_id=receipt.deal_id,
        task_id=receipt.task_id,
        tx_hash=receipt.tx_hash,
        result_ref=result.result_ref,
        message=result.message,
        finished_at=datetime.now(tz=UTC),
    )
