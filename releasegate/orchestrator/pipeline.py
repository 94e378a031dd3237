"""Main release pipeline orchestrator."""

import time
import uuid
from pathlib import Path
from typing import Any, List, Optional, Sequence

from ..adapters.artifacts import ArtifactStore
from ..adapters.commands import CommandRunner
from ..adapters.ecs_adapter import EcsAdapter
from ..adapters.slack_adapter import SlackNotifier
from ..config import Settings, get_settings
from ..errors import ConfigurationError
from ..logging import get_logger, log_pipeline_event, log_stage_event
from ..models.deployments import DeploymentTarget
from ..models.runs import PipelineMode, PipelineRun
from ..models.stages import StageResult
from .deployment import DeploymentController, DeployStage, VerifyStage
from .notifications import NotificationRouter
from .policy import evaluate_operational_error
from .stages import Stage, StageContext, StageExecution, build_default_stages, operational_failure

logger = get_logger(__name__)

CONFIGURATION_STAGE = "Configuration"


class ReleasePipeline:
    """Runs the release stages in order, deploys, then notifies."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        stages: Optional[Sequence[Stage]] = None,
        deployer: Optional[DeploymentController] = None,
        notifier: Any = None,
        router: Optional[NotificationRouter] = None,
        artifact_store: Optional[ArtifactStore] = None,
        runner: Optional[CommandRunner] = None,
    ):
        """Initialize the pipeline; every collaborator can be injected."""
        self.settings = settings or get_settings()
        self.runner = runner or CommandRunner()
        self._stages = list(stages) if stages is not None else None
        self._deployer = deployer
        self.notifier = notifier or SlackNotifier(
            self.settings.slack_bot_token,
            api_url=self.settings.slack_api_url,
            timeout=self.settings.notification_timeout,
        )
        self._router = router
        self.artifacts = artifact_store or ArtifactStore(
            self.settings.reports_dir,
            bucket=self.settings.artifact_bucket,
            prefix=self.settings.artifact_prefix,
            scratch_dir=self.settings.scratch_dir,
        )
        self._cancel_requested = False

    @property
    def stages(self) -> List[Stage]:
        if self._stages is None:
            self._stages = build_default_stages(self.settings, self.runner)
        return self._stages

    @property
    def deployer(self) -> DeploymentController:
        if self._deployer is None:
            self._deployer = DeploymentController(
                EcsAdapter(region=self.settings.aws_region, profile=self.settings.aws_profile),
                timeout=self.settings.deploy_timeout,
                poll_interval=self.settings.deploy_poll_interval,
                health_check_url=self.settings.health_check_url,
            )
        return self._deployer

    @property
    def router(self) -> Optional[NotificationRouter]:
        if self._router is None and self.settings.app_channel and self.settings.ops_channel:
            self._router = NotificationRouter(
                self.settings.app_channel,
                self.settings.ops_channel,
                max_details=self.settings.max_details_per_tool,
            )
        return self._router

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next stage starts."""
        if not self._cancel_requested:
            logger.warning("Cancellation requested")
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def new_run(self, image_tag: Optional[str] = None, mode: Optional[PipelineMode] = None) -> PipelineRun:
        """Create a run from the configured build metadata."""
        return PipelineRun(
            id=f"run_{uuid.uuid4().hex[:8]}",
            mode=mode or self.settings.pipeline_mode,
            build_id=self.settings.build_id,
            commit_ref=self.settings.commit_ref,
            build_url=self.settings.build_url,
            image_uri=self.settings.image_uri(image_tag),
        )

    def deployment_target(self) -> DeploymentTarget:
        return DeploymentTarget(
            cluster_ref=self.settings.cluster_name,
            service_ref=self.settings.service_name,
            revision_family=self.settings.task_family,
            desired_count=self.settings.desired_count,
            container_name=self.settings.container_name,
        )

    async def execute(self, run: PipelineRun, *, deploy: bool = True) -> PipelineRun:
        """Execute the release pipeline for ``run`` and return it finalized."""
        log_pipeline_event(logger, run_id=run.id, phase="started", mode=run.mode, build_id=run.build_id)

        ctx = StageContext(
            run=run,
            settings=self.settings,
            artifacts=self.artifacts,
            runner=self.runner,
            workspace=Path(self.settings.workspace_dir),
            image_uri=run.image_uri,
        )

        if self._check_configuration(run, deploy):
            await self._run_stages(run, ctx, self.stages)
            if deploy and not run.halted:
                await self._deploy(run, ctx)

        if self._cancel_requested and not run.cancelled:
            # Cancelled while the last stage was in flight
            last_stage = run.stages[-1].name if run.stages else CONFIGURATION_STAGE
            run.mark_cancelled(last_stage)
            log_stage_event(logger, run_id=run.id, stage=last_stage, state="cancelled")

        run.artifacts.update(self.artifacts.archived)
        outcome = run.finalize()
        log_pipeline_event(
            logger,
            run_id=run.id,
            phase="completed",
            mode=run.mode,
            build_id=run.build_id,
            outcome=outcome,
            classification=run.classification,
            failing_stage=run.failing_stage,
            duration_ms=int((run.duration_seconds or 0) * 1000),
        )

        # Notify strictly before the workspace scratch space goes away
        await self._notify(run)
        self.artifacts.cleanup()
        return run

    def _check_configuration(self, run: PipelineRun, deploy: bool) -> bool:
        missing = self.settings.missing_required(deploy=deploy)
        if not missing:
            return True

        error = ConfigurationError(f"missing required settings: {', '.join(missing)}")
        logger.error("Configuration invalid", run_id=run.id, missing=missing)
        decision = evaluate_operational_error(CONFIGURATION_STAGE, error)
        run.append_stage(StageResult(CONFIGURATION_STAGE, 'failed'))
        run.apply_failure(decision.context)
        return False

    def _cancelled_before(self, run: PipelineRun, stage_name: str) -> bool:
        if not self._cancel_requested:
            return False
        run.mark_cancelled(stage_name)
        log_stage_event(logger, run_id=run.id, stage=stage_name, state="cancelled")
        return True

    async def _run_stages(self, run: PipelineRun, ctx: StageContext, stages: Sequence[Stage]) -> None:
        for stage in stages:
            if self._cancelled_before(run, stage.name):
                return

            execution = await self._run_stage(run, ctx, stage)
            run.append_stage(execution.result)
            if execution.context is not None:
                run.apply_failure(execution.context)

            if execution.result.is_failed:
                logger.info("Halting pipeline", run_id=run.id, stage=stage.name)
                return

    async def _run_stage(self, run: PipelineRun, ctx: StageContext, stage: Stage) -> StageExecution:
        log_stage_event(logger, run_id=run.id, stage=stage.name, state="started")
        started = time.monotonic()

        try:
            execution = await stage.run(ctx)
        except Exception as e:
            logger.error("Stage raised unexpectedly", run_id=run.id, stage=stage.name, error=str(e), exc_info=True)
            execution = operational_failure(stage.name, e, started)

        log_stage_event(
            logger,
            run_id=run.id,
            stage=stage.name,
            state="completed",
            outcome=execution.result.outcome,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return execution

    async def _deploy(self, run: PipelineRun, ctx: StageContext) -> None:
        target = self.deployment_target()
        log_pipeline_event(
            logger,
            run_id=run.id,
            phase="deployment",
            cluster=target.cluster_ref,
            service=target.service_ref,
            image=ctx.image_uri,
        )
        await self._run_stages(run, ctx, [
            DeployStage(self.deployer, target),
            VerifyStage(self.deployer, target),
        ])

    async def _notify(self, run: PipelineRun) -> None:
        router = self.router
        if router is None:
            logger.warning("Notification channels not configured; skipping notification", run_id=run.id)
            return

        for channel, message in router.route(run):
            try:
                delivered = await self.notifier.send(channel, message)
            except Exception as e:
                # Delivery problems never change the recorded outcome
                logger.error("Notification sink raised", run_id=run.id, channel=channel, error=str(e))
                continue
            if not delivered:
                logger.warning("Notification not delivered", run_id=run.id, channel=channel)
