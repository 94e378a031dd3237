"""Rolling deployment to ECS and post-rollout verification."""

import asyncio
import copy
import functools
import time
from typing import Any, Dict, List, Optional

import aiohttp
import anyio
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_fixed

from ..errors import DeploymentError, VerificationError
from ..logging import get_logger
from ..models.deployments import DeploymentTarget, ServiceState
from ..models.stages import StageResult
from .policy import evaluate_operational_error
from .stages import StageContext, StageExecution

logger = get_logger(__name__)

DEPLOY_STAGE = "Deploy"
VERIFY_STAGE = "Verify"

# Fields describe_task_definition returns that register_task_definition rejects
GENERATED_FIELDS = (
    'taskDefinitionArn',
    'revision',
    'status',
    'requiresAttributes',
    'compatibilities',
    'registeredAt',
    'registeredBy',
    'deregisteredAt',
)

HEALTHY_TASK_STATES = frozenset({'HEALTHY', 'UNKNOWN'})


def build_revision(current: Dict[str, Any], image_uri: str, container_name: Optional[str] = None) -> Dict[str, Any]:
    """Copy a task definition with ``image_uri`` substituted and generated fields stripped."""
    descriptor = {k: copy.deepcopy(v) for k, v in current.items() if k not in GENERATED_FIELDS}
    containers = descriptor.get('containerDefinitions') or []
    if not containers:
        raise DeploymentError("task definition has no container definitions")

    if container_name is None:
        target = containers[0]
    else:
        target = next((c for c in containers if c.get('name') == container_name), None)
        if target is None:
            raise DeploymentError(f"container '{container_name}' not found in task definition")

    target['image'] = image_uri
    return descriptor


def verification_problems(
    state: ServiceState,
    target: DeploymentTarget,
    tasks: Optional[List[Dict[str, Any]]] = None,
) -> List[str]:
    """Everything wrong with the observed service; empty means verified."""
    problems = []
    if state.status != 'ACTIVE':
        problems.append(f"service status is {state.status}, expected ACTIVE")
    if state.desired_count != target.desired_count:
        problems.append(f"desired count is {state.desired_count}, expected {target.desired_count}")
    if state.running_count != state.desired_count:
        problems.append(f"running count {state.running_count} does not match desired {state.desired_count}")
    if state.pending_count:
        problems.append(f"{state.pending_count} task(s) still pending")
    if state.rollout_state == 'FAILED':
        problems.append("primary deployment rollout state is FAILED")

    if tasks is not None:
        healthy = [
            t for t in tasks
            if t.get('lastStatus') == 'RUNNING' and t.get('healthStatus', 'UNKNOWN') in HEALTHY_TASK_STATES
        ]
        if len(healthy) != target.desired_count:
            problems.append(f"{len(healthy)}/{target.desired_count} tasks running and healthy")
    return problems


class DeploymentController:
    """Registers a new revision, rolls it out and verifies the result."""

    def __init__(
        self,
        platform: Any,
        *,
        timeout: int = 600,
        poll_interval: int = 15,
        health_check_url: Optional[str] = None,
        health_check_attempts: int = 5,
        health_check_interval: float = 10,
        health_check_timeout: float = 10,
        check_tasks: bool = True,
    ):
        """Initialize the deployment controller."""
        self.platform = platform
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.health_check_url = health_check_url
        self.health_check_attempts = health_check_attempts
        self.health_check_interval = health_check_interval
        self.health_check_timeout = health_check_timeout
        self.check_tasks = check_tasks

    async def _platform(self, method: str, *args: Any, **kwargs: Any) -> Any:
        func = functools.partial(getattr(self.platform, method), *args, **kwargs)
        return await anyio.to_thread.run_sync(func)

    async def rollout(self, target: DeploymentTarget, image_uri: str) -> str:
        """Steps 1-5: describe, rebuild, register, update, wait. Returns the new revision ARN."""
        current = await self._platform('describe_revision', target.revision_family)
        descriptor = build_revision(current, image_uri, target.container_name)

        revision_arn = await self._platform('register_revision', descriptor)
        logger.info("Registered new revision", family=target.revision_family, revision_arn=revision_arn)

        await self._platform('update_service', target.cluster_ref, target.service_ref, revision_arn)
        logger.info("Rollout triggered", cluster=target.cluster_ref, service=target.service_ref)

        await self._platform(
            'wait_stable',
            target.cluster_ref,
            target.service_ref,
            timeout=self.timeout,
            poll_interval=self.poll_interval,
        )
        logger.info("Service reported stable", service=target.service_ref)
        return revision_arn

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(DeploymentError),
        reraise=True
    )
    async def read_state(self, target: DeploymentTarget) -> ServiceState:
        """Read the service state straight from the control plane."""
        service = await self._platform('describe_service', target.cluster_ref, target.service_ref)
        return ServiceState.from_ecs(service)

    async def probe_endpoint(self) -> None:
        """GET the health endpoint until it answers 2xx or attempts run out."""

        @retry(
            stop=stop_after_attempt(self.health_check_attempts),
            wait=wait_fixed(self.health_check_interval),
            retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
            reraise=True
        )
        async def probe() -> None:
            timeout = aiohttp.ClientTimeout(total=self.health_check_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.health_check_url) as response:
                    response.raise_for_status()

        try:
            await probe()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise VerificationError(f"health check {self.health_check_url} failed: {e}") from e

    async def verify(self, target: DeploymentTarget) -> ServiceState:
        """Step 6: independent re-read of counts, status and task health."""
        state = await self.read_state(target)
        tasks = None
        if self.check_tasks:
            tasks = await self._platform('list_service_tasks', target.cluster_ref, target.service_ref)

        problems = verification_problems(state, target, tasks)
        logger.info(
            "Deployment verification",
            service=target.service_ref,
            status=state.status,
            running=state.running_count,
            desired=state.desired_count,
            pending=state.pending_count,
            problems=problems,
        )
        if problems:
            raise VerificationError("; ".join(problems))

        if self.health_check_url:
            await self.probe_endpoint()
        return state


class DeployStage:
    """Registers and rolls out the built image."""

    name = DEPLOY_STAGE

    def __init__(self, controller: DeploymentController, target: DeploymentTarget):
        self.controller = controller
        self.target = target

    async def run(self, ctx: StageContext) -> StageExecution:
        started = time.monotonic()
        if not ctx.image_uri:
            error = DeploymentError("no image reference to deploy")
            return StageExecution(StageResult(self.name, 'failed'), evaluate_operational_error(self.name, error).context)

        try:
            revision_arn = await self.controller.rollout(self.target, ctx.image_uri)
        except DeploymentError as e:
            logger.error("Deployment failed", error=str(e), service=self.target.service_ref)
            return StageExecution(
                StageResult(self.name, 'failed', duration_seconds=time.monotonic() - started),
                evaluate_operational_error(self.name, e).context,
            )

        return StageExecution(
            StageResult(self.name, 'passed', duration_seconds=time.monotonic() - started, artifacts=[revision_arn]),
            None,
        )


class VerifyStage:
    """Confirms the rollout converged, independently of the stabilization wait."""

    name = VERIFY_STAGE

    def __init__(self, controller: DeploymentController, target: DeploymentTarget):
        self.controller = controller
        self.target = target

    async def run(self, ctx: StageContext) -> StageExecution:
        started = time.monotonic()
        try:
            await self.controller.verify(self.target)
        except DeploymentError as e:
            logger.error("Deployment verification failed", error=str(e), service=self.target.service_ref)
            return StageExecution(
                StageResult(self.name, 'failed', duration_seconds=time.monotonic() - started),
                evaluate_operational_error(self.name, e).context,
            )

        return StageExecution(
            StageResult(self.name, 'passed', duration_seconds=time.monotonic() - started),
            None,
        )
