"""Main CLI application for releasegate."""

import asyncio
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..adapters.commands import CommandRunner
from ..config import get_settings
from ..errors import DeploymentError, ReportParseError
from ..logging import get_logger, set_level
from ..models.runs import PIPELINE_MODES, PipelineRun
from ..orchestrator.aggregator import aggregate, predicate_for
from ..orchestrator.normalizer import SUPPORTED_TOOLS, normalize
from ..orchestrator.notifications import format_duration
from ..orchestrator.pipeline import ReleasePipeline
from ..orchestrator.policy import evaluate
from ..orchestrator.stages import build_scanners

app = typer.Typer(
    name="releasegate",
    help="Security-gated release pipeline for containerized services",
    add_completion=False
)

console = Console()
logger = get_logger(__name__)

_OUTCOME_STYLE = {
    'success': 'green',
    'passed': 'green',
    'unstable': 'yellow',
    'failed': 'red',
}


def _check_mode(mode: Optional[str]) -> Optional[str]:
    if mode is not None and mode not in PIPELINE_MODES:
        raise typer.BadParameter(f"mode must be one of: {', '.join(PIPELINE_MODES)}")
    return mode


@app.command()
def run(
    mode: Optional[str] = typer.Option(
        None, "--mode", "-m", callback=_check_mode, help="Gate policy: warn_only, strict, fail_fast"
    ),
    image_tag: Optional[str] = typer.Option(
        None, "--image-tag", "-t", help="Image tag to build and deploy (default: build id)"
    ),
    skip_deploy: bool = typer.Option(
        False, "--skip-deploy", help="Stop after the image is pushed"
    ),
    fail_on_unstable: bool = typer.Option(
        False, "--fail-on-unstable", help="Exit non-zero for unstable releases"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """Run the complete release pipeline."""
    settings = get_settings()

    if mode:
        settings.pipeline_mode = mode
    if verbose:
        settings.log_level = "DEBUG"
        set_level("DEBUG")

    console.print("[bold blue]releasegate[/bold blue] - Release Pipeline")
    console.print(f"Mode: {settings.pipeline_mode}")
    console.print(f"Build: {settings.build_id or 'local'}")
    console.print(f"Image: {settings.image_uri(image_tag) or 'not configured'}")
    console.print(f"Deploy: {not skip_deploy}")
    console.print()

    result = asyncio.run(_run_pipeline(image_tag, deploy=not skip_deploy))
    _display_run(result)

    if result.final_outcome == 'failed':
        raise typer.Exit(1)
    if result.final_outcome == 'unstable' and fail_on_unstable:
        raise typer.Exit(2)


@app.command()
def gate(
    report: Path = typer.Argument(..., exists=True, dir_okay=False, help="Raw scanner report (JSON)"),
    tool: str = typer.Option(..., "--tool", help=f"Report format: {', '.join(SUPPORTED_TOOLS)}"),
    mode: str = typer.Option(
        "strict", "--mode", "-m", callback=_check_mode, help="Gate policy: warn_only, strict, fail_fast"
    ),
) -> None:
    """Evaluate a single scanner report without running the pipeline."""
    if tool not in SUPPORTED_TOOLS:
        raise typer.BadParameter(f"tool must be one of: {', '.join(SUPPORTED_TOOLS)}")

    try:
        findings = normalize(report.read_bytes(), tool)
    except ReportParseError as e:
        console.print(f"[red]Could not read report: {e}[/red]")
        raise typer.Exit(1)

    is_critical = predicate_for(tool)
    tally = aggregate(findings, is_critical)
    decision = evaluate(
        tally,
        mode,
        stage="Gate",
        tool=tool,
        findings=findings,
        is_critical=is_critical,
        max_details=get_settings().max_details_per_tool,
    )

    table = Table(title=f"{tool} findings")
    table.add_column("Severity", style="cyan")
    table.add_column("Count", style="white")
    for severity in ('critical', 'high', 'medium', 'low'):
        table.add_row(severity, str(tally.count(severity)))
    console.print(table)

    style = _OUTCOME_STYLE[decision.outcome]
    console.print(f"Decision ({mode}): [{style}]{decision.outcome}[/{style}]")
    if decision.context is not None:
        console.print(f"Classification: {decision.context.classification}")
        console.print(f"Reason: {decision.context.reason}")
        for detail in decision.context.details:
            console.print(f"  • {detail}")
        console.print(f"Next step: {decision.context.remediation}")

    if decision.outcome == 'failed':
        raise typer.Exit(1)


@app.command()
def verify() -> None:
    """Verify the deployed service without rolling anything out."""
    settings = get_settings()
    missing = [name for name in ('cluster_name', 'service_name', 'task_family') if not getattr(settings, name)]
    if missing:
        console.print(f"[red]Missing required settings: {', '.join(missing)}[/red]")
        raise typer.Exit(1)

    console.print("[bold blue]releasegate[/bold blue] - Deployment Verification")
    console.print(f"Cluster: {settings.cluster_name}")
    console.print(f"Service: {settings.service_name}")
    console.print()

    asyncio.run(_verify())


@app.command()
def health() -> None:
    """Check which scanner tools are available."""
    console.print("[bold blue]releasegate[/bold blue] - Health Check")
    console.print()

    settings = get_settings()
    scanners = build_scanners(settings, CommandRunner())
    for tool, scanner in scanners.items():
        if scanner.health_check():
            console.print(f"✅ {tool}: [green]OK[/green]")
        else:
            console.print(f"❌ {tool}: [red]FAILED[/red]")

    if not settings.snyk_token:
        console.print("➖ snyk: [dim]disabled (no SNYK_TOKEN)[/dim]")
    if 'sonarqube' not in scanners:
        console.print("➖ sonarqube: [dim]disabled (no host or project key)[/dim]")


async def _run_pipeline(image_tag: Optional[str], deploy: bool) -> PipelineRun:
    """Run the pipeline with SIGINT/SIGTERM wired to cancellation."""
    pipeline = ReleasePipeline()
    run = pipeline.new_run(image_tag=image_tag)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pipeline.cancel)

    console.print(f"[green]Starting pipeline run: {run.id}[/green]")
    try:
        return await pipeline.execute(run, deploy=deploy)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _verify() -> None:
    pipeline = ReleasePipeline()
    target = pipeline.deployment_target()
    try:
        state = await pipeline.deployer.verify(target)
    except DeploymentError as e:
        console.print(f"[red]Verification failed: {e}[/red]")
        logger.error("Verification failed", error=str(e))
        raise typer.Exit(1)

    table = Table(title="Service State")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", state.status)
    table.add_row("Running", str(state.running_count))
    table.add_row("Desired", str(state.desired_count))
    table.add_row("Pending", str(state.pending_count))
    table.add_row("Rollout", state.rollout_state or 'n/a')
    table.add_row("Task definition", state.task_definition or 'n/a')
    console.print(table)
    console.print("[green]Deployment verified[/green]")


def _display_run(run: PipelineRun) -> None:
    """Display run results in a table."""
    console.print()
    table = Table(title=f"Run {run.id}")
    table.add_column("Stage", style="cyan")
    table.add_column("Outcome")
    table.add_column("Critical", style="red")
    table.add_column("High", style="yellow")
    table.add_column("Medium", style="blue")
    table.add_column("Duration", style="white")

    for stage in run.stages:
        style = _OUTCOME_STYLE[stage.outcome]
        tallies = stage.tallies
        table.add_row(
            stage.name,
            f"[{style}]{stage.outcome}[/{style}]",
            str(tallies.critical) if tallies else '',
            str(tallies.high) if tallies else '',
            str(tallies.medium) if tallies else '',
            format_duration(stage.duration_seconds),
        )
    console.print(table)

    style = _OUTCOME_STYLE[run.final_outcome]
    console.print(f"Result: [{style}]{run.final_outcome}[/{style}] in {format_duration(run.duration_seconds)}")
    context = run.failure_context
    if context is not None:
        console.print(f"Classification: {context.classification} at {context.stage}")
        console.print(f"Reason: {context.reason}")
        if context.remediation:
            console.print(f"Next step: {context.remediation}")
    if run.artifacts:
        console.print(f"Reports: {', '.join(sorted(run.artifacts.values()))}")


if __name__ == "__main__":
    app()
