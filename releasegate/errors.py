"""Exception hierarchy for releasegate.

Every exception below is *operational*: it means the tooling or the
infrastructure misbehaved, not that the application has a finding. Stages
turn these into ``pipeline_error`` failure contexts, which always halt the
run and are routed to the operations channel.
"""

from typing import Optional


class ReleaseGateError(Exception):
    """Base class for releasegate errors."""


class OperationalError(ReleaseGateError):
    """A tooling or infrastructure failure."""

    remediation = "Check the build agent and tool logs; rerun once the tooling issue is fixed."


class ConfigurationError(OperationalError):
    """Required configuration is missing or invalid."""

    remediation = "Set the missing settings in the environment or .env file."


class ScannerError(OperationalError):
    """A scanner crashed or could not be executed."""

    def __init__(self, tool: str, message: str, exit_code: Optional[int] = None):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.exit_code = exit_code

    remediation = "Verify the scanner is installed and reachable from the build agent."


class ReportParseError(OperationalError):
    """A scanner report could not be parsed."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool} report unreadable: {message}")
        self.tool = tool

    remediation = "Check the scanner version; its report format may have changed."


class CommandError(OperationalError):
    """A build, test or push command failed to run."""

    def __init__(self, command: str, message: str, returncode: Optional[int] = None):
        super().__init__(f"`{command}` {message}")
        self.command = command
        self.returncode = returncode


class DeploymentError(OperationalError):
    """A deployment platform call failed."""

    remediation = "Inspect the ECS service events and task logs for the failed rollout."


class DeploymentTimeout(DeploymentError):
    """The service did not stabilize within the allotted time."""

    remediation = "Check ECS service events for failing tasks or health checks; the rollout was not rolled back."


class VerificationError(DeploymentError):
    """Post-rollout verification found a mismatch."""

    remediation = "Compare running and desired task counts in ECS and review unhealthy task logs."
