"""Deployment target and service state models for releasegate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from dataclasses_json import DataClassJsonMixin


@dataclass(frozen=True, slots=True)
class DeploymentTarget(DataClassJsonMixin):
    """External identifiers of the service being rolled out."""

    cluster_ref: str
    service_ref: str
    revision_family: str
    desired_count: int
    container_name: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate deployment target after initialization."""
        if not self.cluster_ref:
            raise ValueError("Cluster reference cannot be empty")
        if not self.service_ref:
            raise ValueError("Service reference cannot be empty")
        if not self.revision_family:
            raise ValueError("Revision family cannot be empty")
        if self.desired_count < 0:
            raise ValueError("Desired count cannot be negative")


@dataclass(frozen=True, slots=True)
class ServiceState(DataClassJsonMixin):
    """The control-plane view of a service, as read by describe_services."""

    status: str
    running_count: int
    desired_count: int
    pending_count: int = 0
    rollout_state: Optional[str] = None
    task_definition: Optional[str] = None

    @classmethod
    def from_ecs(cls, service: Dict[str, Any]) -> ServiceState:
        """Build a state snapshot from an ECS ``describe_services`` entry."""
        primary = next(
            (d for d in service.get('deployments', []) if d.get('status') == 'PRIMARY'),
            {}
        )
        return cls(
            status=service.get('status', 'UNKNOWN'),
            running_count=service.get('runningCount', 0),
            desired_count=service.get('desiredCount', 0),
            pending_count=service.get('pendingCount', 0),
            rollout_state=primary.get('rolloutState'),
            task_definition=primary.get('taskDefinition') or service.get('taskDefinition'),
        )
