"""Adapters for external systems integration."""

from .artifacts import ArtifactStore
from .commands import CommandResult, CommandRunner
from .ecs_adapter import EcsAdapter
from .scanners import GitleaksAdapter, NpmAuditAdapter, ScanReport, ScanTarget, SnykAdapter, TrivyAdapter
from .slack_adapter import SlackNotifier
from .sonarqube_adapter import SonarQubeAdapter

__all__ = [
    "ArtifactStore",
    "CommandResult",
    "CommandRunner",
    "EcsAdapter",
    "GitleaksAdapter",
    "NpmAuditAdapter",
    "ScanReport",
    "ScanTarget",
    "SlackNotifier",
    "SnykAdapter",
    "SonarQubeAdapter",
    "TrivyAdapter",
]
