"""CLI entrypoint for artifact-pipeline."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from artifact_pipeline import __version__
from artifact_pipeline.config import Settings
from artifact_pipeline.controllers import (
    PipelineCliController,
    PipelineInspectCommand,
    PipelineRunCommand,
)
from artifact_pipeline.errors import PipelineConfigError

click.rich_click.TEXT_MARKUP = "markdown"
PIPELINE_CONTROLLER = PipelineCliController()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="artifact-pipeline")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log INFO to the console.")
def artifact_pipeline(verbose: bool) -> None:
    """Event-sourced, resumable multi-phase agent pipeline."""

    _configure_console_logging(verbose=verbose)


@artifact_pipeline.command("run")
@click.argument("phases", type=click.IntRange(min=0), default=0, required=False)
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root. Defaults to ARTIFACT_PIPELINE_PROJECT_DIR or the current directory.",
)
@click.option(
    "--usage-check/--no-usage-check",
    default=None,
    help="Override ARTIFACT_PIPELINE_USAGE_CHECK for this run.",
)
@click.pass_context
def run(
    ctx: click.Context,
    phases: int,
    project_dir: Path | None,
    usage_check: bool | None,
) -> None:
    """Run the pipeline.

    `PHASES` caps how many phases this invocation runs (0 = until the
    terminal marker or the max-phases ceiling). Exit codes: **0** normal stop,
    **1** configuration or test-gate failure, **130** interrupted.
    """

    file_handler = _file_log_handler(project_dir)
    try:
        result = PIPELINE_CONTROLLER.run(
            PipelineRunCommand(project_dir=project_dir, phases=phases, usage_check=usage_check),
            on_progress=click.echo,
        )
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()
    if result.exit_code != 0:
        click.echo(f"Stopped: {result.reason}", err=True)
    ctx.exit(result.exit_code)


@artifact_pipeline.command("position")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root.",
)
def position(project_dir: Path | None) -> None:
    """Show the position resolved from the event log and where a run would resume."""

    _emit_lines(_guard(lambda: PIPELINE_CONTROLLER.position(PipelineInspectCommand(project_dir))))


@artifact_pipeline.command("status")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root.",
)
def status(project_dir: Path | None) -> None:
    """Regenerate the status summary from the event log."""

    _emit_lines(_guard(lambda: PIPELINE_CONTROLLER.status(PipelineInspectCommand(project_dir))))


def _guard(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except PipelineConfigError as error:
        raise click.ClickException(str(error)) from error


def _configure_console_logging(*, verbose: bool) -> None:
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    if root.handlers:
        return
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(console)


def _file_log_handler(project_dir: Path | None) -> logging.Handler | None:
    """Attach ``.pipeline/pipeline.log`` to the root logger for the duration of a run."""

    try:
        settings = Settings.from_env(project_dir=project_dir)
        settings.pipeline_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(settings.pipeline_dir / "pipeline.log", encoding="utf-8")
    except (OSError, ValueError) as error:
        logging.getLogger(__name__).warning("File logging disabled: %s", error)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    artifact_pipeline()
