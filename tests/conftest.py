"""Pytest configuration and shared fakes for releasegate."""

import contextlib
import copy
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import test_utils, web

from releasegate.adapters.artifacts import ArtifactStore
from releasegate.config import Settings
from releasegate.errors import DeploymentError, DeploymentTimeout


TASK_DEFINITION = {
    'taskDefinitionArn': 'arn:aws:ecs:us-east-1:123456789012:task-definition/web:7',
    'family': 'web',
    'revision': 7,
    'status': 'ACTIVE',
    'requiresAttributes': [{'name': 'com.amazonaws.ecs.capability.logging-driver.awslogs'}],
    'compatibilities': ['EC2', 'FARGATE'],
    'registeredAt': '2024-01-15T10:30:00Z',
    'registeredBy': 'arn:aws:iam::123456789012:role/deployer',
    'cpu': '256',
    'memory': '512',
    'networkMode': 'awsvpc',
    'containerDefinitions': [
        {'name': 'web', 'image': 'registry.example.com/web:41', 'essential': True},
        {'name': 'log-router', 'image': 'amazon/aws-for-fluent-bit:stable', 'essential': False},
    ],
}


def ecs_service(
    status: str = 'ACTIVE',
    running: int = 2,
    desired: int = 2,
    pending: int = 0,
    rollout_state: str = 'COMPLETED',
) -> Dict[str, Any]:
    """A describe_services entry."""
    return {
        'serviceName': 'web',
        'status': status,
        'runningCount': running,
        'desiredCount': desired,
        'pendingCount': pending,
        'taskDefinition': 'arn:aws:ecs:us-east-1:123456789012:task-definition/web:8',
        'deployments': [
            {
                'status': 'PRIMARY',
                'rolloutState': rollout_state,
                'taskDefinition': 'arn:aws:ecs:us-east-1:123456789012:task-definition/web:8',
            },
        ],
    }


def ecs_task(last_status: str = 'RUNNING', health: str = 'HEALTHY') -> Dict[str, Any]:
    return {'lastStatus': last_status, 'healthStatus': health}


class FakeEcs:
    """In-memory stand-in for :class:`EcsAdapter`."""

    def __init__(
        self,
        service: Optional[Dict[str, Any]] = None,
        tasks: Optional[List[Dict[str, Any]]] = None,
        wait_error: Optional[DeploymentError] = None,
        register_error: Optional[DeploymentError] = None,
    ):
        self.task_definition = copy.deepcopy(TASK_DEFINITION)
        self.service = service if service is not None else ecs_service()
        self.tasks = tasks if tasks is not None else [ecs_task(), ecs_task()]
        self.wait_error = wait_error
        self.register_error = register_error
        self.calls: List[str] = []
        self.registered: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.wait_kwargs: Dict[str, Any] = {}

    def describe_revision(self, family: str) -> Dict[str, Any]:
        self.calls.append('describe_revision')
        return copy.deepcopy(self.task_definition)

    def register_revision(self, descriptor: Dict[str, Any]) -> str:
        self.calls.append('register_revision')
        if self.register_error:
            raise self.register_error
        self.registered.append(descriptor)
        return f"arn:aws:ecs:us-east-1:123456789012:task-definition/{descriptor['family']}:8"

    def update_service(self, cluster: str, service: str, revision_arn: str) -> Dict[str, Any]:
        self.calls.append('update_service')
        self.updated.append((cluster, service, revision_arn))
        return {'service': self.service}

    def wait_stable(self, cluster: str, service: str, *, timeout: int, poll_interval: int) -> None:
        self.calls.append('wait_stable')
        self.wait_kwargs = {'timeout': timeout, 'poll_interval': poll_interval}
        if self.wait_error:
            raise self.wait_error

    def describe_service(self, cluster: str, service: str) -> Dict[str, Any]:
        self.calls.append('describe_service')
        return copy.deepcopy(self.service)

    def list_service_tasks(self, cluster: str, service: str) -> List[Dict[str, Any]]:
        self.calls.append('list_service_tasks')
        return copy.deepcopy(self.tasks)


class FakeNotifier:
    """Records every message instead of posting it."""

    def __init__(self, fail: bool = False, raise_error: bool = False):
        self.sent: List[tuple] = []
        self.fail = fail
        self.raise_error = raise_error

    async def send(self, channel: str, notification: Any) -> bool:
        if self.raise_error:
            raise RuntimeError("sink exploded")
        self.sent.append((channel, notification))
        return not self.fail

    @property
    def channels(self) -> List[str]:
        return [channel for channel, _ in self.sent]


@pytest.fixture
def settings(tmp_path):
    """Fully configured settings rooted in a temporary workspace."""
    return Settings(
        _env_file=None,
        pipeline_mode='strict',
        cluster_name='prod-cluster',
        service_name='web',
        task_family='web',
        container_name='web',
        desired_count=2,
        image_repository='registry.example.com/web',
        build_id='42',
        commit_ref='0123456789abcdef0123',
        build_url='https://ci.example.com/job/web/42/',
        slack_bot_token='xoxb-test',
        app_channel='#web-team',
        ops_channel='#platform-ops',
        workspace_dir=tmp_path,
        reports_dir=tmp_path / 'reports',
    )


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(tmp_path / 'reports')


@pytest.fixture
def fake_ecs():
    return FakeEcs()


@pytest.fixture
def timed_out_ecs():
    return FakeEcs(wait_error=DeploymentTimeout("service web did not stabilize within 600s"))


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def ecs_factory():
    return FakeEcs


@pytest.fixture
def service_factory():
    return ecs_service


@pytest.fixture
def task_factory():
    return ecs_task


@pytest.fixture
def http_server():
    """Serve aiohttp routes on a local port: ``async with http_server(routes) as server``."""

    @contextlib.asynccontextmanager
    async def serve(routes):
        app = web.Application()
        app.add_routes(routes)
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            yield server
        finally:
            await server.close()

    return serve
