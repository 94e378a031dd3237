"""Data models for releasegate."""

from .deployments import DeploymentTarget, ServiceState
from .findings import Finding, ScannerTool, Severity
from .notifications import Notification
from .runs import Classification, FailureContext, FinalOutcome, PipelineMode, PipelineRun
from .stages import SeverityTally, StageOutcome, StageResult

__all__ = [
    "Classification",
    "DeploymentTarget",
    "FailureContext",
    "FinalOutcome",
    "Finding",
    "Notification",
    "PipelineMode",
    "PipelineRun",
    "ScannerTool",
    "ServiceState",
    "Severity",
    "SeverityTally",
    "StageOutcome",
    "StageResult",
]
