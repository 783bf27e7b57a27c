"""Controllers for dispatch CLI commands."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path

from tee_dispatch.config import Settings
from tee_dispatch.dispatch.errors import MatchingError, SubmissionError
from tee_dispatch.dispatch.models import TeeFramework, TerminalState
from tee_dispatch.dispatch.pipeline import MonitorMode, SubmitJob, build_pipeline
from tee_dispatch.dispatch.results import decode_result_ref
from tee_dispatch.dispatch.sandbox import SandboxMarketplace, VirtualClock
from tee_dispatch.dispatch.selection import SelectionPolicy, WorkerpoolSelector
from tee_dispatch.dispatch.tags import tee_tag
from tee_dispatch.http.ipfs_gateway import IpfsGateway
from tee_dispatch.http.market_api import MarketApiOrderbook

_SANDBOX_WORKERPOOLS: tuple[tuple[str, int], ...] = (
    ("0x1111111111111111111111111111111111111111", 200_000_000),
    ("0x2222222222222222222222222222222222222222", 50_000_000),
    ("0x3333333333333333333333333333333333333333", 0),
)


@dataclass(slots=True)
class RehearseCommand:
    """CLI input for a sandbox job submission."""

    app_address: str
    requester: str
    input_value: str | None
    protected_data: str | None
    framework: TeeFramework
    mode: MonitorMode
    output_format: str = "table"


@dataclass(slots=True)
class OrderbookCommand:
    """CLI input for a live workerpool selection preview."""

    framework: TeeFramework
    limit: int


@dataclass(slots=True)
class DecodeResultCommand:
    """CLI input for result reference decoding and optional download."""

    result_ref: str
    download_to: Path | None


@dataclass(slots=True)
class CommandResult:
    """Lines to render in CLI plus overall success flag."""

    lines: list[str]
    success: bool


class DispatchCliController:
    """Coordinates pipeline, order book and result CLI operations."""

    def rehearse(self, command: RehearseCommand) -> CommandResult:
        settings = Settings.from_env()
        settings.validate()
        marketplace = _sandbox_marketplace(command=command, settings=settings)
        pipeline = build_pipeline(
            settings,
            registry=marketplace,
            secret_store=marketplace,
            orderbook=marketplace,
            signer=marketplace,
            ledger=marketplace,
            updates=marketplace,
            clock=marketplace.clock,
        )
        outcome = asyncio.run(
            pipeline.run(
                SubmitJob(
                    app_address=command.app_address,
                    requester=command.requester,
                    input_value=command.input_value,
                    protected_data=command.protected_data,
                ),
                mode=command.mode,
            ),
        )
        success = outcome.state is TerminalState.COMPLETED
        if command.output_format == "json":
            return CommandResult(
                lines=[json.dumps(outcome.to_dict(), ensure_ascii=False, sort_keys=True)],
                success=success,
            )

        lines = [
            f"Job status: {outcome.state.value}",
            f"Deal: {outcome.deal_id or '-'}",
            f"Task: {outcome.task_id or '-'}",
        ]
        if outcome.tx_hash:
            lines.append(f"Transaction: {outcome.tx_hash}")
        if outcome.result_ref:
            location = decode_result_ref(outcome.result_ref)
            lines.append(f"Result location: {location.location or '-'}")
        if outcome.reason_code:
            lines.append(f"Reason: {outcome.reason_code}")
        if outcome.message:
            lines.append(f"Message: {outcome.message}")
        return CommandResult(lines=lines, success=success)

    def orderbook(self, command: OrderbookCommand) -> CommandResult:
        """Show ranked live workerpool orders and the one the selector would pick."""

        settings = Settings.from_env()
        settings.validate()
        policy = SelectionPolicy.from_settings(settings.selection)

        async def _run() -> CommandResult:
            async with MarketApiOrderbook(settings=settings.market) as orderbook:
                selector = WorkerpoolSelector(orderbook=orderbook, policy=policy)
                try:
                    selection = await selector.select(command.framework)
                except (MatchingError, SubmissionError) as error:
                    return CommandResult(lines=[f"Selection failed: {error}"], success=False)
            ranked = selection.ranked[: command.limit]
            lines = [
                f"Selected: {selection.order.workerpool} price={selection.order.price} "
                f"category={selection.category} tier={selection.tier} "
                f"candidates={selection.candidates}",
                "Ranked candidates:",
            ]
            for position, order in enumerate(ranked):
                marker = " (pinned)" if policy.is_pinned(order.workerpool) else ""
                lines.append(
                    f"  {position}. {order.workerpool} price={order.price} "
                    f"category={order.category} remaining={order.remaining}{marker}",
                )
            return CommandResult(lines=lines, success=True)

        return asyncio.run(_run())

    def decode_result(self, command: DecodeResultCommand) -> CommandResult:
        location = decode_result_ref(command.result_ref)
        lines = [
            f"Location: {location.location or '-'}",
            f"IPFS hash: {location.ipfs_hash or '-'}",
        ]
        if command.download_to is None:
            return CommandResult(lines=lines, success=location.location is not None)
        if location.ipfs_hash is None:
            lines.append("Nothing to download: result reference has no IPFS hash.")
            return CommandResult(lines=lines, success=False)

        settings = Settings.from_env()

        async def _download() -> CommandResult:
            async with IpfsGateway(settings=settings.market) as gateway:
                fetched = await gateway.fetch(location.ipfs_hash or "")
            if not fetched.is_success:
                lines.append(f"Download failed from {fetched.url}: {fetched.error}")
                return CommandResult(lines=lines, success=False)
            destination = command.download_to
            if destination is None:
                raise RuntimeError("Download destination is missing.")
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(fetched.content)
            lines.append(f"Saved {len(fetched.content)} bytes to {destination}")
            return CommandResult(lines=lines, success=True)

        return asyncio.run(_download())


def _sandbox_marketplace(*, command: RehearseCommand, settings: Settings) -> SandboxMarketplace:
    marketplace = SandboxMarketplace(requester=command.requester, clock=VirtualClock())
    marketplace.register_app(
        command.app_address,
        enclave_metadata=json.dumps({"framework": command.framework.value}),
    )
    category = settings.selection.preferred_category
    tag = tee_tag(command.framework)
    for workerpool, price in _SANDBOX_WORKERPOOLS:
        marketplace.publish_workerpool_order(
            workerpool=workerpool,
            price=price,
            category=category,
            tag=tag,
        )
    pinned = settings.selection.pinned_workerpool
    if pinned and all(pinned.lower() != address for address, _ in _SANDBOX_WORKERPOOLS):
        marketplace.publish_workerpool_order(
            workerpool=pinned,
            price=settings.selection.max_price_nrlc,
            category=category,
            tag=tag,
        )
    return marketplace

