"""Runtime configuration for order selection, submission and monitoring."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

DEFAULT_MARKET_API_URL = "https://api.market.v8-bellecour.iex.ec"
DEFAULT_IPFS_GATEWAY_URL = "https://ipfs-gateway.v8-bellecour.iex.ec"
DEFAULT_CHAIN_ID = 134
ONE_RLC_NRLC = 1_000_000_000


@dataclass(slots=True)
class MarketSettings:
    """Public market API and result gateway endpoints."""

    market_api_url: str = DEFAULT_MARKET_API_URL
    ipfs_gateway_url: str = DEFAULT_IPFS_GATEWAY_URL
    chain_id: int = DEFAULT_CHAIN_ID
    request_timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class SelectionSettings:
    """Workerpool selection policy inputs."""

    preferred_category: int = 1
    fallback_category: int = 0
    max_price_nrlc: int = ONE_RLC_NRLC
    page_size: int = 10
    blacklist: tuple[str, ...] = ()
    pinned_workerpool: str | None = None


@dataclass(slots=True)
class RequestSettings:
    """Price ceilings written into request orders."""

    workerpool_max_price_nrlc: int = ONE_RLC_NRLC
    dataset_max_price_nrlc: int = ONE_RLC_NRLC


@dataclass(frozen=True, slots=True)
class MonitorSettings:
    """Task monitor timing; poll waits and backoff share one attempt budget."""

    poll_interval_seconds: float = 5.0
    max_attempts: int = 60
    backoff_base_seconds: float = 5.0
    backoff_multiplier: float = 1.5
    backoff_cap_seconds: float = 15.0
    watch_timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    market: MarketSettings = field(default_factory=MarketSettings)
    selection: SelectionSettings = field(default_factory=SelectionSettings)
    request: RequestSettings = field(default_factory=RequestSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with marketplace defaults."""

        pinned = os.getenv("TEE_DISPATCH_PINNED_WORKERPOOL", "").strip()
        return cls(
            market=MarketSettings(
                market_api_url=os.getenv("TEE_DISPATCH_MARKET_API_URL", DEFAULT_MARKET_API_URL),
                ipfs_gateway_url=os.getenv(
                    "TEE_DISPATCH_IPFS_GATEWAY_URL",
                    DEFAULT_IPFS_GATEWAY_URL,
                ),
                chain_id=int(os.getenv("TEE_DISPATCH_CHAIN_ID", str(DEFAULT_CHAIN_ID))),
                request_timeout_seconds=float(
                    os.getenv("TEE_DISPATCH_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                max_retries=int(os.getenv("TEE_DISPATCH_MAX_RETRIES", "3")),
            ),
            selection=SelectionSettings(
                preferred_category=int(os.getenv("TEE_DISPATCH_PREFERRED_CATEGORY", "1")),
                fallback_category=int(os.getenv("TEE_DISPATCH_FALLBACK_CATEGORY", "0")),
                max_price_nrlc=int(
                    os.getenv("TEE_DISPATCH_WORKERPOOL_MAX_PRICE_NRLC", str(ONE_RLC_NRLC)),
                ),
                page_size=int(os.getenv("TEE_DISPATCH_ORDERBOOK_PAGE_SIZE", "10")),
                blacklist=_collect_addresses("TEE_DISPATCH_WORKERPOOL_BLACKLIST"),
                pinned_workerpool=pinned or None,
            ),
            request=RequestSettings(
                workerpool_max_price_nrlc=int(
                    os.getenv(
                        "TEE_DISPATCH_REQUEST_WORKERPOOL_MAX_PRICE_NRLC",
                        str(ONE_RLC_NRLC),
                    ),
                ),
                dataset_max_price_nrlc=int(
                    os.getenv("TEE_DISPATCH_REQUEST_DATASET_MAX_PRICE_NRLC", str(ONE_RLC_NRLC)),
                ),
            ),
            monitor=MonitorSettings(
                poll_interval_seconds=float(os.getenv("TEE_DISPATCH_POLL_INTERVAL_SECONDS", "5")),
                max_attempts=int(os.getenv("TEE_DISPATCH_MONITOR_MAX_ATTEMPTS", "60")),
                backoff_base_seconds=float(os.getenv("TEE_DISPATCH_BACKOFF_BASE_SECONDS", "5")),
                backoff_multiplier=float(os.getenv("TEE_DISPATCH_BACKOFF_MULTIPLIER", "1.5")),
                backoff_cap_seconds=float(os.getenv("TEE_DISPATCH_BACKOFF_CAP_SECONDS", "15")),
                watch_timeout_seconds=float(
                    os.getenv("TEE_DISPATCH_WATCH_TIMEOUT_SECONDS", "30"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        _validate_http_url("TEE_DISPATCH_MARKET_API_URL", self.market.market_api_url)
        _validate_http_url("TEE_DISPATCH_IPFS_GATEWAY_URL", self.market.ipfs_gateway_url)
        if self.market.chain_id <= 0:
            raise ValueError("TEE_DISPATCH_CHAIN_ID must be a positive integer.")
        if self.market.max_retries < 0:
            raise ValueError("TEE_DISPATCH_MAX_RETRIES must be >= 0.")
        if self.selection.page_size <= 0:
            raise ValueError("TEE_DISPATCH_ORDERBOOK_PAGE_SIZE must be a positive integer.")
        if self.selection.max_price_nrlc < 0:
            raise ValueError("TEE_DISPATCH_WORKERPOOL_MAX_PRICE_NRLC must be >= 0.")
        for address in self.selection.blacklist:
            validate_address(address, name="TEE_DISPATCH_WORKERPOOL_BLACKLIST")
        if self.selection.pinned_workerpool is not None:
            validate_address(
                self.selection.pinned_workerpool,
                name="TEE_DISPATCH_PINNED_WORKERPOOL",
            )
            blacklisted = {address.lower() for address in self.selection.blacklist}
            if self.selection.pinned_workerpool.lower() in blacklisted:
                raise ValueError("TEE_DISPATCH_PINNED_WORKERPOOL must not be blacklisted.")
        if self.monitor.poll_interval_seconds <= 0:
            raise ValueError("TEE_DISPATCH_POLL_INTERVAL_SECONDS must be > 0.")
        if self.monitor.max_attempts <= 0:
            raise ValueError("TEE_DISPATCH_MONITOR_MAX_ATTEMPTS must be a positive integer.")
        if self.monitor.backoff_base_seconds <= 0 or self.monitor.backoff_cap_seconds <= 0:
            raise ValueError("Backoff base and cap must be > 0.")
        if self.monitor.backoff_multiplier < 1:
            raise ValueError("TEE_DISPATCH_BACKOFF_MULTIPLIER must be >= 1.")
        if self.monitor.watch_timeout_seconds <= 0:
            raise ValueError("TEE_DISPATCH_WATCH_TIMEOUT_SECONDS must be > 0.")


def is_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value.strip()))


def validate_address(value: str, *, name: str) -> None:
    if not is_address(value):
        raise ValueError(f"Invalid address in {name}: {value!r}. Expected 0x + 40 hex digits.")


def _collect_addresses(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    deduped: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        normalized = part.strip()
        if not normalized or normalized.lower() in seen:
            continue
        seen.add(normalized.lower())
        deduped.append(normalized)
    return tuple(deduped)


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
