"""CLI entrypoint for driverflow."""

import logging
from collections.abc import Iterable
from pathlib import Path

import rich_click as click

from driverflow import __version__
from driverflow.config import SUPPORTED_METHODS
from driverflow.orchestrator.controllers import (
    ManifestReorderCommand,
    ManifestShowCommand,
    StageRunCommand,
    StageRunOutcome,
    StagingCliController,
)

click.rich_click.USE_MARKDOWN = True
STAGING_CONTROLLER = StagingCliController()


@click.group()
@click.version_option(version=__version__, prog_name="driverflow")
@click.option("--verbose", is_flag=True, default=False, help="Log worker activity to stderr.")
def driverflow(verbose: bool) -> None:
    """Package and driver staging CLI."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@driverflow.command("run")
@click.argument("items_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Install manifest path. Defaults to DRIVERFLOW_MANIFEST_PATH.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1, max=64),
    default=None,
    help="Maximum simultaneous workers. Defaults to DRIVERFLOW_CONCURRENCY (5).",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=None,
    help="Attempts per method. Defaults to DRIVERFLOW_RETRIES (3).",
)
@click.option(
    "--backoff-base",
    "backoff_base_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Backoff base in seconds; the n-th retry waits base * n.",
)
@click.option(
    "--method",
    "methods",
    multiple=True,
    type=click.Choice(list(SUPPORTED_METHODS), case_sensitive=False),
    help="Method strategy in fallback order. Can be repeated.",
)
def run(  # noqa: PLR0913
    items_path: Path,
    manifest_path: Path | None,
    concurrency: int | None,
    retries: int | None,
    backoff_base_seconds: float | None,
    methods: tuple[str, ...],
) -> None:
    """Stage every work item listed in a JSON file and register installers."""

    outcome = StageRunOutcome()
    _emit_lines(
        STAGING_CONTROLLER.run_batch(
            StageRunCommand(
                items_path=items_path,
                manifest_path=manifest_path,
                concurrency=concurrency,
                retries=retries,
                backoff_base_seconds=backoff_base_seconds,
                methods=methods,
            ),
            outcome,
        ),
    )
    if not outcome.success:
        raise click.ClickException("Staging finished with failures.")


@driverflow.group()
def manifest() -> None:
    """Install manifest commands."""


@manifest.command("show")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Install manifest path.",
)
def manifest_show(manifest_path: Path | None) -> None:
    """List manifest entries in priority order."""

    _emit_lines(STAGING_CONTROLLER.show_manifest(ManifestShowCommand(manifest_path=manifest_path)))


@manifest.command("reorder")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Install manifest path.",
)
@click.option(
    "--order",
    "order",
    multiple=True,
    help="Entry name or package identifier in desired order. Repeat for each entry.",
)
def manifest_reorder(manifest_path: Path | None, order: tuple[str, ...]) -> None:
    """Reorder manifest entries; unlisted entries keep their relative order at the end."""

    _emit_lines(
        STAGING_CONTROLLER.reorder_manifest(
            ManifestReorderCommand(manifest_path=manifest_path, order=order),
        ),
    )


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    driverflow()
