"""Workerpool order selection with tier fallback and deterministic ranking."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from tee_dispatch.config import SelectionSettings
from tee_dispatch.dispatch.errors import MatchingError, SubmissionError
from tee_dispatch.dispatch.models import (
    NRLC_PER_RLC,
    SINGLE_TASK_VOLUME,
    PublishedWorkerpoolOrder,
    TeeFramework,
)
from tee_dispatch.dispatch.ports import OrderBook, OrderbookQuery
from tee_dispatch.dispatch.tags import tee_tag

logger = logging.getLogger(__name__)

STRICT_TIER = "strict"
RELAXED_TIER = "relaxed"

_RANK_PINNED = 0
_RANK_REGULAR = 1
_RANK_BLACKLISTED = 2


@dataclass(frozen=True, slots=True)
class SelectionPolicy:
    """Immutable selection configuration; addresses are stored lower-cased."""

    preferred_category: int = 1
    fallback_category: int = 0
    max_price: int = NRLC_PER_RLC
    page_size: int = 10
    blacklist: frozenset[str] = frozenset()
    pinned_workerpool: str | None = None

    def __post_init__(self) -> None:
        blacklist = frozenset(
            _normalize_address(address) for address in self.blacklist if address.strip()
        )
        object.__setattr__(self, "blacklist", blacklist)
        if self.pinned_workerpool is not None:
            pinned = _normalize_address(self.pinned_workerpool)
            object.__setattr__(self, "pinned_workerpool", pinned or None)

    @classmethod
    def from_settings(cls, settings: SelectionSettings) -> SelectionPolicy:
        """Build a validated policy from selection settings."""

        if settings.page_size <= 0:
            raise ValueError("Order book page size must be a positive integer.")
        if settings.max_price_nrlc < 0:
            raise ValueError("Workerpool price ceiling must be >= 0.")
        blacklist = frozenset(
            _normalize_address(address) for address in settings.blacklist if address.strip()
        )
        pinned = (
            _normalize_address(settings.pinned_workerpool)
            if settings.pinned_workerpool and settings.pinned_workerpool.strip()
            else None
        )
        if pinned is not None and pinned in blacklist:
            raise ValueError(f"Pinned workerpool {pinned} is also blacklisted.")
        return cls(
            preferred_category=settings.preferred_category,
            fallback_category=settings.fallback_category,
            max_price=settings.max_price_nrlc,
            page_size=settings.page_size,
            blacklist=blacklist,
            pinned_workerpool=pinned,
        )

    def is_blacklisted(self, address: str) -> bool:
        return _normalize_address(address) in self.blacklist

    def is_pinned(self, address: str) -> bool:
        return (
            self.pinned_workerpool is not None
            and _normalize_address(address) == self.pinned_workerpool
        )


@dataclass(frozen=True, slots=True)
class WorkerpoolSelection:
    """Chosen workerpool order and the category the request order must use."""

    order: PublishedWorkerpoolOrder
    category: int
    tier: str
    ranked: tuple[PublishedWorkerpoolOrder, ...]

    @property
    def candidates(self) -> int:
        return len(self.ranked)


class WorkerpoolSelector:
    """Queries the order book and picks exactly one compatible workerpool order."""

    def __init__(self, *, orderbook: OrderBook, policy: SelectionPolicy) -> None:
        self.orderbook = orderbook
        self.policy = policy

    async def select(self, framework: TeeFramework) -> WorkerpoolSelection:
        tier = STRICT_TIER
        candidates = await self._query_tier(
            OrderbookQuery(
                category=self.policy.preferred_category,
                min_volume=SINGLE_TASK_VOLUME,
                min_tag=tee_tag(framework),
                max_price=self.policy.max_price,
                page_size=self.policy.page_size,
            ),
        )
        if not candidates:
            logger.warning(
                "No workerpool order in category %d under %d nRLC, relaxing to category %d",
                self.policy.preferred_category,
                self.policy.max_price,
                self.policy.fallback_category,
            )
            tier = RELAXED_TIER
            candidates = await self._query_tier(
                OrderbookQuery(
                    category=self.policy.fallback_category,
                    min_volume=SINGLE_TASK_VOLUME,
                    min_tag=tee_tag(framework),
                    max_price=None,
                    page_size=self.policy.page_size,
                ),
            )
        if not candidates:
            raise MatchingError(
                f"No compatible workerpool orders found for tee/{framework.value} "
                f"in categories {self.policy.preferred_category} and "
                f"{self.policy.fallback_category}",
            )

        ranked = rank_workerpool_orders(candidates, self.policy)
        chosen = ranked[0]
        logger.info(
            "Selected workerpool %s at %d nRLC (category %d, %s tier, %d candidates)",
            chosen.workerpool,
            chosen.price,
            chosen.category,
            tier,
            len(ranked),
        )
        return WorkerpoolSelection(
            order=chosen,
            category=chosen.category,
            tier=tier,
            ranked=tuple(ranked),
        )

    async def _query_tier(self, query: OrderbookQuery) -> list[PublishedWorkerpoolOrder]:
        try:
            orders = await self.orderbook.query(query)
        except Exception as error:
            logger.warning("Order book query for category %d failed: %s", query.category, error)
            raise SubmissionError(
                f"Order book unavailable: {error}",
                reason_code="orderbook_unavailable",
            ) from error
        allowed = [order for order in orders if not self.policy.is_blacklisted(order.workerpool)]
        dropped = len(orders) - len(allowed)
        if dropped:
            logger.info("Dropped %d blacklisted workerpool orders", dropped)
        return allowed


def rank_workerpool_orders(
    orders: Iterable[PublishedWorkerpoolOrder],
    policy: SelectionPolicy,
) -> list[PublishedWorkerpoolOrder]:
    """Sort orders: pinned first, blacklisted last, the rest by ascending price."""

    def sort_key(order: PublishedWorkerpoolOrder) -> tuple[int, int, str, str]:
        if policy.is_blacklisted(order.workerpool):
            rank = _RANK_BLACKLISTED
        elif policy.is_pinned(order.workerpool):
            rank = _RANK_PINNED
        else:
            rank = _RANK_REGULAR
        return (rank, order.price, _normalize_address(order.workerpool), order.order_hash)

    return sorted(orders, key=sort_key)


def _normalize_address(value: str) -> str:
    return value.strip().lower()
