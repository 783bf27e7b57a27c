"""Order template construction under price, volume and tag constraints."""

from __future__ import annotations

from dataclasses import dataclass

from tee_dispatch.dispatch.errors import ValidationError
from tee_dispatch.dispatch.models import (
    NRLC_PER_RLC,
    NULL_ADDRESS,
    SINGLE_TASK_VOLUME,
    AppOrder,
    DatasetOrder,
    RequestOrder,
    TeeFramework,
)
from tee_dispatch.dispatch.tags import tee_tag

SECRETS_PARAM = "iexec_secrets"


@dataclass(frozen=True, slots=True)
class RequestPricing:
    """Price ceilings written into every request order, in nRLC."""

    workerpool_max_price: int = NRLC_PER_RLC
    dataset_max_price: int = NRLC_PER_RLC


class OrderBuilder:
    """Builds fresh, unsigned templates for one job."""

    def __init__(self, *, pricing: RequestPricing | None = None) -> None:
        self.pricing = pricing or RequestPricing()

    def build_request_order(  # noqa: PLR0913
        self,
        *,
        app: str,
        requester: str,
        framework: TeeFramework,
        category: int,
        protected_data: str | None = None,
        secret_slot: int | None = None,
    ) -> RequestOrder:
        """Build the request order; `category` must come from the workerpool selection."""

        if protected_data is not None and secret_slot is not None:
            raise ValidationError("Use either protected data or a requester secret, not both.")

        order = RequestOrder(
            app=app,
            requester=requester,
            category=category,
            app_max_price=0,
            workerpool_max_price=self.pricing.workerpool_max_price,
            volume=SINGLE_TASK_VOLUME,
        )
        if protected_data is not None:
            order.dataset = protected_data
            order.dataset_max_price = self.pricing.dataset_max_price
            order.tag = tee_tag(framework)
        elif secret_slot is not None:
            order.dataset = NULL_ADDRESS
            order.tag = tee_tag(framework)
            # app secret slot -> requester secret name; the value stays in the secret store
            order.params = {SECRETS_PARAM: {str(secret_slot): str(secret_slot)}}
        return order

    def build_app_order(self, *, app: str, framework: TeeFramework) -> AppOrder:
        return AppOrder(
            app=app,
            app_price=0,
            volume=SINGLE_TASK_VOLUME,
            tag=tee_tag(framework),
        )

    def build_dataset_order(self, *, dataset: str, framework: TeeFramework) -> DatasetOrder:
        """Dataset access is already granted upstream, so the order is free."""

        return DatasetOrder(
            dataset=dataset,
            dataset_price=0,
            volume=SINGLE_TASK_VOLUME,
            tag=tee_tag(framework),
        )
