"""AWS ECS adapter: the deployment platform API used by the rollout controller."""

import math
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from ..config import get_settings
from ..errors import DeploymentError, DeploymentTimeout
from ..logging import get_logger, log_platform_call

logger = get_logger(__name__)


class EcsAdapter:
    """Synchronous wrapper over the boto3 ECS client.

    Callers run these methods in a worker thread. Every failure surfaces as a
    :class:`DeploymentError`.
    """

    def __init__(self, client: Any = None, *, region: Optional[str] = None, profile: Optional[str] = None):
        """Initialize the ECS adapter."""
        if client is None:
            settings = get_settings()
            session = boto3.Session(
                profile_name=profile or settings.aws_profile,
                region_name=region or settings.aws_region,
            )
            client = session.client('ecs')
        self._client = client

    def _call(self, action: str, **kwargs: Any) -> Dict[str, Any]:
        log_platform_call(logger, service='ecs', action=action, payload=kwargs)
        try:
            return getattr(self._client, action)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise DeploymentError(f"ecs {action} failed: {e}") from e

    def describe_revision(self, family: str) -> Dict[str, Any]:
        """Latest ACTIVE task definition of ``family``."""
        response = self._call('describe_task_definition', taskDefinition=family)
        return response['taskDefinition']

    def register_revision(self, descriptor: Dict[str, Any]) -> str:
        """Register a task definition and return its ARN."""
        response = self._call('register_task_definition', **descriptor)
        return response['taskDefinition']['taskDefinitionArn']

    def update_service(self, cluster: str, service: str, revision_arn: str) -> Dict[str, Any]:
        """Point the service at ``revision_arn`` and force a new rollout."""
        response = self._call(
            'update_service',
            cluster=cluster,
            service=service,
            taskDefinition=revision_arn,
            forceNewDeployment=True,
        )
        return response['service']

    def wait_stable(self, cluster: str, service: str, *, timeout: int, poll_interval: int) -> None:
        """Block until the service is stable or ``timeout`` seconds elapse."""
        max_attempts = max(1, math.ceil(timeout / poll_interval))
        logger.info(
            "Waiting for service to stabilize",
            cluster=cluster,
            service=service,
            timeout=timeout,
            poll_interval=poll_interval,
        )
        waiter = self._client.get_waiter('services_stable')
        try:
            waiter.wait(
                cluster=cluster,
                services=[service],
                WaiterConfig={'Delay': poll_interval, 'MaxAttempts': max_attempts},
            )
        except WaiterError as e:
            if 'Max attempts exceeded' in str(e):
                raise DeploymentTimeout(
                    f"service {service} did not stabilize within {timeout}s"
                ) from e
            raise DeploymentError(f"waiting for service {service} failed: {e}") from e
        except (ClientError, BotoCoreError) as e:
            raise DeploymentError(f"waiting for service {service} failed: {e}") from e

    def describe_service(self, cluster: str, service: str) -> Dict[str, Any]:
        """Current control-plane view of the service."""
        response = self._call('describe_services', cluster=cluster, services=[service])
        services = response.get('services') or []
        if not services:
            failures = response.get('failures') or []
            reason = failures[0].get('reason') if failures else 'not found'
            raise DeploymentError(f"service {service} not found in {cluster}: {reason}")
        return services[0]

    def list_service_tasks(self, cluster: str, service: str) -> List[Dict[str, Any]]:
        """Describe every task currently belonging to the service."""
        arns = self._call('list_tasks', cluster=cluster, serviceName=service).get('taskArns') or []
        if not arns:
            return []
        return self._call('describe_tasks', cluster=cluster, tasks=arns).get('tasks') or []
