"""CLI entry point for the scan pipeline."""

import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

import typer
from pydantic import ValidationError

from boostsec.scan_pipeline.aggregator import load_report, write_report
from boostsec.scan_pipeline.controller import RunController
from boostsec.scan_pipeline.definition_loader import dump_definition
from boostsec.scan_pipeline.errors import ConfigError
from boostsec.scan_pipeline.models.engine_config import (
    DEFAULT_REPORT_PATH,
    EngineConfig,
)
from boostsec.scan_pipeline.models.report import PipelineReport
from boostsec.scan_pipeline.models.status_config import GitHubStatusConfig
from boostsec.scan_pipeline.reporting.github_status import GitHubStatusPublisher

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_CONFIG_ERROR = 2


@app.callback()
def callback() -> None:
    """Run security scan pipelines: static analysis, tests, fuzzing."""


@app.command()
def run(  # noqa: C901
    definition_file: Path = typer.Argument(..., help="Pipeline definition YAML"),  # noqa: B008
    workdir: Path = typer.Option(  # noqa: B008
        Path("."), help="Checkout the stages run against"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Validate and print the plan without running"
    ),
    report: Path | None = typer.Option(  # noqa: B008
        None, help=f"Report path (default: <workdir>/{DEFAULT_REPORT_PATH})"
    ),
    log_dir: Path | None = typer.Option(  # noqa: B008
        None, help="Directory for raw per-stage tool output"
    ),
    event: str | None = typer.Option(None, help="Event: push or pull_request"),
    branch: str | None = typer.Option(None, help="Branch the event targets"),
    github_status_config: str | None = typer.Option(
        None, help="JSON configuration for publishing a GitHub commit status"
    ),
) -> None:
    """Run a pipeline definition against a checkout."""
    logger.info("=" * 80)
    logger.info("Scan Pipeline - Starting")
    logger.info("=" * 80)
    logger.info(f"Definition: {definition_file}")
    logger.info(f"Working directory: {workdir}")

    try:
        config = _load_engine_config(report, log_dir)
        controller = RunController.from_file(definition_file, workdir, config)
        publisher = _create_publisher(github_status_config)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if event is not None or branch is not None:
        if event not in {"push", "pull_request"} or branch is None:
            typer.echo(
                "Error: --event (push or pull_request) and --branch go together",
                err=True,
            )
            raise typer.Exit(code=EXIT_CONFIG_ERROR)
        if not controller.should_run(event, branch):  # type: ignore[arg-type]
            typer.echo(f"Pipeline not triggered by {event} on {branch}")
            return

    if dry_run:
        typer.echo(f"Pipeline '{controller.definition.name}' plan:")
        for line in controller.plan():
            typer.echo(line)
        typer.echo("\nNormalized definition:")
        typer.echo(dump_definition(controller.definition), nl=False)
        return

    try:
        pipeline_report = asyncio.run(_run_with_signals(controller))
    except Exception as e:
        logger.exception("Pipeline execution failed")
        typer.echo(f"Error running pipeline: {e}", err=True)
        raise typer.Exit(code=EXIT_FAIL)

    _log_summary(pipeline_report)
    write_report(pipeline_report, workdir / config.report_path)

    if publisher is not None:
        try:
            asyncio.run(publisher.publish(pipeline_report))
        except Exception:
            logger.exception("Failed to publish commit status")

    typer.echo(json.dumps(_summary(pipeline_report), indent=2))

    if not pipeline_report.passed:
        logger.error(f"Pipeline {pipeline_report.status}")
        raise typer.Exit(code=EXIT_FAIL)


@app.command("show-report")
def show_report(
    report_file: Path = typer.Argument(..., help="Report written by 'run'"),  # noqa: B008
) -> None:
    """Print a per-stage summary of a pipeline report."""
    try:
        pipeline_report = load_report(report_file)
    except (OSError, ValidationError) as e:
        typer.echo(f"Error: cannot read report {report_file}: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    typer.echo(
        f"{pipeline_report.pipeline}: {pipeline_report.status} "
        f"({pipeline_report.duration:.2f}s)"
    )
    for result in pipeline_report.stages:
        marker = "✓" if result.status == "success" else "✗"
        kind = "" if result.required else " (advisory)"
        typer.echo(f"{marker} {result.stage}{kind}: {result.status}")
        for category, count in result.findings.items():
            typer.echo(f"    {category}: {count}")
        if result.message:
            typer.echo(f"    {result.message}")

    if not pipeline_report.passed:
        raise typer.Exit(code=EXIT_FAIL)


async def _run_with_signals(controller: RunController) -> PipelineReport:
    """Run the pipeline, turning SIGINT/SIGTERM into a cooperative cancel."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.cancel, f"received {sig.name}")
            installed.append(sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover
            pass
    try:
        return await controller.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _load_engine_config(report: Path | None, log_dir: Path | None) -> EngineConfig:
    """Build engine settings from CLI options and the environment."""
    settings: dict[str, object] = {}
    if "SCAN_PIPELINE_GRACE_PERIOD" in os.environ:
        settings["grace_period_seconds"] = os.environ["SCAN_PIPELINE_GRACE_PERIOD"]
    if "SCAN_PIPELINE_LOG_DIR" in os.environ:
        settings["log_dir"] = os.environ["SCAN_PIPELINE_LOG_DIR"]
    if report is not None:
        settings["report_path"] = report
    if log_dir is not None:
        settings["log_dir"] = log_dir

    try:
        return EngineConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid engine settings: {e}") from e


def _create_publisher(config_json: str | None) -> GitHubStatusPublisher | None:
    """Create the commit status publisher from its JSON configuration."""
    if config_json is None:
        return None

    try:
        config_dict = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in github-status-config: {e}") from e

    try:
        config = GitHubStatusConfig(**config_dict)
    except (TypeError, ValidationError) as e:
        raise ConfigError(f"Invalid github-status-config: {e}") from e

    if "GITHUB_API_URL" in os.environ:
        config.base_url = os.environ["GITHUB_API_URL"]
    return GitHubStatusPublisher(config)


def _log_summary(report: PipelineReport) -> None:
    logger.info("=" * 80)
    logger.info("Pipeline Results Summary:")
    logger.info("=" * 80)
    for result in report.stages:
        if result.status == "success":
            logger.info(
                f"✓ {result.stage}: {result.status} ({result.duration:.2f}s)"
            )
        elif result.status == "skipped":
            logger.info(f"- {result.stage}: skipped")
        else:
            logger.error(f"✗ {result.stage}: {result.status}")
            if result.message:
                logger.error(f"  Message: {result.message}")
        if result.findings:
            logger.info(f"  Findings: {result.findings}")


def _summary(report: PipelineReport) -> dict[str, object]:
    return {
        "pipeline": report.pipeline,
        "status": report.status,
        "total": len(report.stages),
        "passed": report.count("success"),
        "failed": report.count("failure"),
        "errors": report.count("tool-error"),
        "timeouts": report.count("timeout"),
        "skipped": report.count("skipped"),
        "duration": report.duration,
        "findings": report.total_findings(),
        "results": [
            {
                "stage": r.stage,
                "status": r.status,
                "required": r.required,
                "findings": r.findings,
                "duration": r.duration,
                "message": r.message,
            }
            for r in report.stages
        ],
    }


if __name__ == "__main__":  # pragma: no cover
    app()
