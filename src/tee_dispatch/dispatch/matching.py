"""Atomic submission of a signed order bundle."""

from __future__ import annotations

import logging

from tee_dispatch.dispatch.errors import SubmissionError
from tee_dispatch.dispatch.failure_classifier import classify_submission_failure
from tee_dispatch.dispatch.models import (
    NULL_ADDRESS,
    SINGLE_TASK_VOLUME,
    Deal,
    MatchReceipt,
    OrderBundle,
    RequestOrder,
    SubmissionReceipt,
    TeeFramework,
    WorkerpoolOrder,
)
from tee_dispatch.dispatch.ports import Ledger

logger = logging.getLogger(__name__)


class OrderMatcher:
    """Creates exactly one deal from a bundle and resolves its single task.

    The matcher never retries: a revert or a network failure is reported as
    `SubmissionError` and the caller decides whether to start a fresh job.
    """

    def __init__(self, *, ledger: Ledger) -> None:
        self.ledger = ledger

    async def match(self, bundle: OrderBundle, *, framework: TeeFramework) -> SubmissionReceipt:
        request_order, workerpool_order = _check_bundle(bundle)

        try:
            receipt = await self.ledger.match_orders(bundle)
        except Exception as error:
            raise _submission_error("Order matching failed", error) from error
        logger.info("Orders matched: deal=%s tx=%s", receipt.deal_id, receipt.tx_hash)

        if receipt.volume != SINGLE_TASK_VOLUME:
            raise SubmissionError(
                f"Deal {receipt.deal_id} committed volume {receipt.volume}, expected 1",
                reason_code="match_volume_mismatch",
            )

        task_id = await self._resolve_task_id(receipt)
        logger.info("Deal %s created task %s", receipt.deal_id, task_id)
        return SubmissionReceipt(
            deal_id=receipt.deal_id,
            task_id=task_id,
            tx_hash=receipt.tx_hash,
            volume=receipt.volume,
            category=request_order.category,
            workerpool=workerpool_order.workerpool,
            framework=framework,
        )

    async def _resolve_task_id(self, receipt: MatchReceipt) -> str:
        try:
            deal: Deal = await self.ledger.show_deal(receipt.deal_id)
        except Exception as error:
            raise _submission_error(f"Could not load deal {receipt.deal_id}", error) from error
        if not deal.task_ids:
            raise SubmissionError(
                f"Deal {receipt.deal_id} has no task",
                reason_code="deal_without_task",
            )
        return deal.task_ids[0]


def _check_bundle(bundle: OrderBundle) -> tuple[RequestOrder, WorkerpoolOrder]:
    request_order = bundle.request_order.order
    workerpool_order = bundle.workerpool_order.order
    if not isinstance(request_order, RequestOrder) or not isinstance(
        workerpool_order,
        WorkerpoolOrder,
    ):
        raise SubmissionError(
            "Bundle must contain a request order and a workerpool order",
            reason_code="bundle_invalid",
        )

    for signed in bundle.signed_orders():
        if signed.order.volume < SINGLE_TASK_VOLUME:
            raise SubmissionError(
                f"{type(signed.order).__name__} has no remaining volume",
                reason_code="bundle_volume_mismatch",
            )
    if request_order.volume != SINGLE_TASK_VOLUME:
        raise SubmissionError(
            f"Request order volume must be 1, got {request_order.volume}",
            reason_code="bundle_volume_mismatch",
        )
    if request_order.category != workerpool_order.category:
        raise SubmissionError(
            f"Request category {request_order.category} does not match "
            f"workerpool category {workerpool_order.category}",
            reason_code="bundle_category_mismatch",
        )

    uses_dataset = request_order.dataset != NULL_ADDRESS
    if uses_dataset != (bundle.dataset_order is not None):
        raise SubmissionError(
            "Dataset order must be present exactly when the request references a dataset",
            reason_code="bundle_dataset_mismatch",
        )
    return request_order, workerpool_order


def _submission_error(prefix: str, error: Exception) -> SubmissionError:
    classification = classify_submission_failure(error)
    logger.warning(
        "%s (%s, pattern=%s): %s",
        prefix,
        classification.reason_code,
        classification.matched_pattern,
        error,
    )
    return SubmissionError(f"{prefix}: {error}", reason_code=classification.reason_code)
