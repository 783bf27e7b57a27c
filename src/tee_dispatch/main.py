"""CLI entrypoint for tee-dispatch."""

import logging
from pathlib import Path

import rich_click as click

from tee_dispatch import __version__
from tee_dispatch.dispatch.controllers import (
    CommandResult,
    DecodeResultCommand,
    DispatchCliController,
    OrderbookCommand,
    RehearseCommand,
)
from tee_dispatch.dispatch.models import TeeFramework

click.rich_click.USE_MARKDOWN = True
DISPATCH_CONTROLLER = DispatchCliController()

_FRAMEWORK_CHOICES = [framework.value for framework in TeeFramework]


@click.group()
@click.version_option(version=__version__, prog_name="tee-dispatch")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logger level.",
)
def tee_dispatch(log_level: str) -> None:
    """Submit and track confidential-compute jobs."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@tee_dispatch.command("rehearse")
@click.option("--app", "app_address", required=True, help="App address (0x...).")
@click.option("--requester", required=True, help="Requester wallet address (0x...).")
@click.option(
    "--input",
    "input_value",
    default=None,
    help="Input value pushed as requester secret 1.",
)
@click.option(
    "--protected-data",
    default=None,
    help="Protected data address; mutually exclusive with --input.",
)
@click.option(
    "--framework",
    type=click.Choice(_FRAMEWORK_CHOICES, case_sensitive=False),
    default=TeeFramework.SCONE.value,
    show_default=True,
    help="Enclave framework advertised by the sandbox app.",
)
@click.option(
    "--mode",
    type=click.Choice(["poll", "watch"], case_sensitive=False),
    default="poll",
    show_default=True,
    help="Task monitor mode.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    show_default=True,
)
def rehearse(  # noqa: PLR0913
    app_address: str,
    requester: str,
    input_value: str | None,
    protected_data: str | None,
    framework: str,
    mode: str,
    output_format: str,
) -> None:
    """Run the full submission pipeline against the in-memory sandbox marketplace."""

    _emit_result(
        DISPATCH_CONTROLLER.rehearse(
            RehearseCommand(
                app_address=app_address,
                requester=requester,
                input_value=input_value,
                protected_data=protected_data,
                framework=TeeFramework(framework.lower()),
                mode="watch" if mode.lower() == "watch" else "poll",
                output_format=output_format.lower(),
            ),
        ),
        failure_message="Job did not complete.",
    )


@tee_dispatch.command("orderbook")
@click.option(
    "--framework",
    type=click.Choice(_FRAMEWORK_CHOICES, case_sensitive=False),
    default=TeeFramework.SCONE.value,
    show_default=True,
    help="Enclave framework the workerpool must support.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=10,
    show_default=True,
    help="How many ranked candidates to print.",
)
def orderbook(framework: str, limit: int) -> None:
    """Preview workerpool selection against the live market API."""

    _emit_result(
        DISPATCH_CONTROLLER.orderbook(
            OrderbookCommand(framework=TeeFramework(framework.lower()), limit=limit),
        ),
        failure_message="Workerpool selection failed.",
    )


@tee_dispatch.command("decode-result")
@click.argument("result_ref")
@click.option(
    "--download-to",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Download the result archive from the IPFS gateway to this file.",
)
def decode_result(result_ref: str, download_to: Path | None) -> None:
    """Decode a task result reference and optionally download the archive."""

    _emit_result(
        DISPATCH_CONTROLLER.decode_result(
            DecodeResultCommand(result_ref=result_ref, download_to=download_to),
        ),
        failure_message="Result reference could not be resolved.",
    )


def _emit_result(result: CommandResult, *, failure_message: str) -> None:
    for line in result.lines:
        click.echo(line)
    if not result.success:
        raise click.ClickException(failure_message)


if __name__ == "__main__":  # pragma: no cover
    tee_dispatch()
