"""Pipeline stages.

A stage never raises to stop the pipeline. It returns a
:class:`StageExecution`: the recorded :class:`StageResult` plus, for
non-clean outcomes, the :class:`FailureContext` the orchestrator merges
into the run.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, NamedTuple, Optional, Protocol, Sequence

from ..adapters.artifacts import ArtifactStore
from ..adapters.commands import CommandRunner
from ..adapters.scanners import (
    GitleaksAdapter,
    NpmAuditAdapter,
    ScanReport,
    ScanTarget,
    SnykAdapter,
    TrivyAdapter,
)
from ..adapters.sonarqube_adapter import SonarQubeAdapter
from ..config import Settings
from ..errors import CommandError, ReportParseError, ScannerError
from ..logging import get_logger
from ..models.runs import Classification, FailureContext, PipelineMode, PipelineRun
from ..models.stages import SeverityTally, StageResult
from .aggregator import aggregate, predicate_for
from .normalizer import normalize
from .policy import GateDecision, combine, evaluate, evaluate_operational_error

logger = get_logger(__name__)


class StageExecution(NamedTuple):
    """What a stage hands back to the orchestrator."""

    result: StageResult
    context: Optional[FailureContext]


@dataclass
class StageContext:
    """Everything a stage may read, passed explicitly instead of via the environment."""

    run: PipelineRun
    settings: Settings
    artifacts: ArtifactStore
    runner: CommandRunner
    workspace: Path
    image_uri: Optional[str] = None

    @property
    def mode(self) -> PipelineMode:
        return self.run.mode

    def format_command(self, command: str) -> str:
        return command.format(image=self.image_uri or '', workspace=self.workspace)


class Stage(Protocol):
    name: str

    async def run(self, ctx: StageContext) -> StageExecution:
        ...


class Scanner(Protocol):
    tool: str

    async def scan(self, target: ScanTarget) -> ScanReport:
        ...

    def health_check(self) -> bool:
        ...


class CommandStage:
    """Runs one build/test/push command; a non-zero exit fails the stage."""

    def __init__(
        self,
        name: str,
        command: str,
        *,
        classification: Classification = 'pipeline_error',
        remediation: Optional[str] = None,
        archive: Optional[str] = None,
    ):
        self.name = name
        self.command = command
        self.classification = classification
        self.remediation = remediation
        # Output file (relative to the workspace) archived on success
        self.archive = archive

    async def run(self, ctx: StageContext) -> StageExecution:
        started = time.monotonic()
        command = ctx.format_command(self.command)

        try:
            result = await ctx.runner.run(command, timeout=ctx.settings.command_timeout, cwd=ctx.workspace)
        except CommandError as e:
            decision = evaluate_operational_error(self.name, e)
            return StageExecution(
                StageResult(self.name, 'failed', duration_seconds=time.monotonic() - started),
                decision.context,
            )

        elapsed = time.monotonic() - started
        if not result.ok:
            context = FailureContext(
                classification=self.classification,
                stage=self.name,
                reason=f"`{command}` exited with code {result.returncode}",
                details=[line for line in result.tail(800).splitlines() if line.strip()][-5:],
                remediation=self.remediation or CommandError.remediation,
            )
            return StageExecution(StageResult(self.name, 'failed', duration_seconds=elapsed), context)

        artifacts: List[str] = []
        if self.archive:
            reference = await ctx.artifacts.archive_file(ctx.run.id, ctx.workspace / self.archive)
            if reference:
                artifacts.append(reference)

        return StageExecution(
            StageResult(self.name, 'passed', duration_seconds=elapsed, artifacts=artifacts),
            None,
        )


class ScanStage:
    """Runs one or more scanners and gates on their combined findings."""

    def __init__(self, name: str, scanners: Sequence[Scanner]):
        if not scanners:
            raise ValueError(f"Scan stage '{name}' needs at least one scanner")
        self.name = name
        self.scanners = list(scanners)

    def _evaluate_report(self, ctx: StageContext, report: ScanReport) -> tuple[GateDecision, SeverityTally]:
        if report.crashed:
            error = ScannerError(report.tool, report.error or 'crashed', report.exit_code)
            return evaluate_operational_error(self.name, error, report.tool), SeverityTally()

        try:
            findings = normalize(report.raw, report.tool)
        except ReportParseError as e:
            return evaluate_operational_error(self.name, e, report.tool), SeverityTally()

        is_critical = predicate_for(report.tool)
        tally = aggregate(findings, is_critical)
        logger.info(
            "Scanner tally",
            stage=self.name,
            tool=report.tool,
            critical=tally.critical,
            high=tally.high,
            medium=tally.medium,
            low=tally.low,
        )
        decision = evaluate(
            tally,
            ctx.mode,
            stage=self.name,
            tool=report.tool,
            findings=findings,
            is_critical=is_critical,
            max_details=ctx.settings.max_details_per_tool,
        )
        return decision, tally

    async def run(self, ctx: StageContext) -> StageExecution:
        started = time.monotonic()
        target = ScanTarget(workspace=ctx.workspace, image=ctx.image_uri)
        decisions: List[GateDecision] = []
        tally = SeverityTally()
        artifacts: List[str] = []

        for scanner in self.scanners:
            report = await scanner.scan(target)

            if report.raw:
                reference = await ctx.artifacts.archive(ctx.run.id, f"{report.tool}-report.json", report.raw)
                if reference:
                    artifacts.append(reference)

            decision, tool_tally = self._evaluate_report(ctx, report)
            decisions.append(decision)
            tally = tally + tool_tally

            if decision.context is not None and decision.context.is_operational:
                # The remaining tools' verdicts cannot change a pipeline error
                break

        outcome, context = combine(decisions, self.name)
        return StageExecution(
            StageResult(
                self.name,
                outcome,
                tallies=tally,
                duration_seconds=time.monotonic() - started,
                artifacts=artifacts,
            ),
            context,
        )


def build_scanners(settings: Settings, runner: CommandRunner) -> dict[str, Scanner]:
    """Instantiate the scanner adapters enabled by ``settings``."""
    timeout = settings.scanner_timeout
    scanners: dict[str, Scanner] = {
        'gitleaks': GitleaksAdapter(runner, timeout=timeout),
        'npm_audit': NpmAuditAdapter(runner, timeout=timeout),
        'trivy': TrivyAdapter(runner, timeout=timeout),
    }
    if settings.snyk_token:
        scanners['snyk'] = SnykAdapter(timeout=timeout, token=settings.snyk_token)
    if settings.sonar_host_url and settings.sonar_project_key:
        scanners['sonarqube'] = SonarQubeAdapter(
            settings.sonar_host_url,
            settings.sonar_token,
            settings.sonar_project_key,
        )
    return scanners


def build_default_stages(settings: Settings, runner: CommandRunner) -> List[Stage]:
    """The release stage sequence, in execution order (deployment excluded)."""
    scanners = build_scanners(settings, runner)

    stages: List[Stage] = [
        CommandStage("Install Dependencies", settings.install_command),
        ScanStage("Secret Scan", [scanners['gitleaks']]),
        CommandStage(
            "Unit Tests",
            settings.test_command,
            classification='app_critical',
            remediation="Fix the failing unit tests before releasing.",
        ),
    ]

    if 'sonarqube' in scanners:
        stages.append(CommandStage("Static Analysis", settings.sonar_command))
        stages.append(ScanStage("Quality Gate", [scanners['sonarqube']]))

    audit = [scanners['npm_audit']]
    if 'snyk' in scanners:
        audit.append(scanners['snyk'])
    stages.append(ScanStage("Dependency Audit", audit))

    stages += [
        CommandStage("Docker Build", settings.build_command),
        ScanStage("Image Scan", [scanners['trivy']]),
        CommandStage("SBOM", settings.sbom_command, archive="sbom.json"),
        CommandStage("Push Image", settings.push_command),
    ]
    return stages


def operational_failure(name: str, error: BaseException, started: float) -> StageExecution:
    """Stage execution for an error that escaped a stage."""
    decision = evaluate_operational_error(name, error)
    return StageExecution(
        StageResult(name, 'failed', duration_seconds=time.monotonic() - started),
        decision.context,
    )

