"""Orchestration components for the release pipeline."""

from .deployment import DeploymentController
from .notifications import NotificationRouter
from .pipeline import ReleasePipeline

__all__ = ["DeploymentController", "NotificationRouter", "ReleasePipeline"]
