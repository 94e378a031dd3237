"""Command-line scanner adapters: gitleaks, npm audit, Snyk and Trivy.

Each adapter runs its tool and hands back the raw JSON report together with
an execution status. "Ran and found issues" and "crashed" are told apart by
the tool's documented exit codes; interpreting the findings is left to the
normalizer.
"""

import json
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, List, Literal, Optional

from ..errors import OperationalError
from ..logging import get_logger
from .commands import CommandResult, CommandRunner

logger = get_logger(__name__)

ScanStatus = Literal['completed', 'crashed']


@dataclass(frozen=True, slots=True)
class ScanReport:
    """Execution status and native report of one scanner run."""

    tool: str
    status: ScanStatus
    raw: bytes = b''
    exit_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def crashed(self) -> bool:
        return self.status == 'crashed'

    @classmethod
    def crash(cls, tool: str, error: str, exit_code: Optional[int] = None) -> 'ScanReport':
        return cls(tool=tool, status='crashed', exit_code=exit_code, error=error)


@dataclass(frozen=True, slots=True)
class ScanTarget:
    """What a scanner looks at: the source tree and/or the built image."""

    workspace: Path
    image: Optional[str] = None


class CommandScanner:
    """Base class for scanners invoked as a subprocess."""

    tool: str = ''
    executable: str = ''
    # Exit codes meaning "the scan ran", whether or not it found anything
    ok_exit_codes: FrozenSet[int] = frozenset({0})
    reads_report_file: bool = False

    def __init__(self, runner: Optional[CommandRunner] = None, *, timeout: int = 1800):
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    def build_command(self, target: ScanTarget, report_path: Path) -> List[str]:
        raise NotImplementedError

    def crash_reason(self, result: CommandResult) -> Optional[str]:
        """Tool-specific crash detection beyond exit codes."""
        if result.returncode not in self.ok_exit_codes:
            return f"exited with code {result.returncode}: {result.tail(500)}"
        return None

    async def scan(self, target: ScanTarget) -> ScanReport:
        """Run the scanner and return its report; never raises for tool failures."""
        with tempfile.TemporaryDirectory(prefix=f"releasegate-{self.tool}-") as tmp:
            report_path = Path(tmp) / f"{self.tool}.json"
            try:
                command = self.build_command(target, report_path)
                result = await self.runner.run(command, timeout=self.timeout, cwd=target.workspace)
            except OperationalError as e:
                logger.error("Scanner could not run", tool=self.tool, error=str(e))
                return ScanReport.crash(self.tool, str(e))

            reason = self.crash_reason(result)
            if reason:
                logger.error("Scanner crashed", tool=self.tool, exit_code=result.returncode, reason=reason)
                return ScanReport.crash(self.tool, reason, result.returncode)

            if self.reads_report_file:
                raw = report_path.read_bytes() if report_path.exists() else b''
            else:
                raw = result.stdout.encode('utf-8')

        logger.info("Scanner completed", tool=self.tool, exit_code=result.returncode, report_bytes=len(raw))
        return ScanReport(tool=self.tool, status='completed', raw=raw, exit_code=result.returncode)

    def health_check(self) -> bool:
        """Check if the scanner executable is on PATH."""
        found = shutil.which(self.executable) is not None
        if not found:
            logger.warning("Scanner executable not found", tool=self.tool, executable=self.executable)
        return found


class GitleaksAdapter(CommandScanner):
    """Secret scanning over the checked-out source tree."""

    tool = 'gitleaks'
    executable = 'gitleaks'
    # 1 means leaks were found
    ok_exit_codes = frozenset({0, 1})
    reads_report_file = True

    def build_command(self, target: ScanTarget, report_path: Path) -> List[str]:
        return [
            self.executable, "detect",
            "--source", str(target.workspace),
            "--report-format", "json",
            "--report-path", str(report_path),
            "--exit-code", "1",
            "--no-banner",
        ]


class NpmAuditAdapter(CommandScanner):
    """Dependency audit through ``npm audit``."""

    tool = 'npm_audit'
    executable = 'npm'
    # npm audit exits 1 whenever vulnerabilities exist
    ok_exit_codes = frozenset({0, 1})

    def build_command(self, target: ScanTarget, report_path: Path) -> List[str]:
        return [self.executable, "audit", "--json"]

    def crash_reason(self, result: CommandResult) -> Optional[str]:
        reason = super().crash_reason(result)
        if reason:
            return reason
        # Registry or lockfile problems still exit 1, with an error object
        try:
            data = json.loads(result.stdout or '{}')
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict) and isinstance(data.get('error'), dict):
            error = data['error']
            return f"{error.get('code', 'error')}: {error.get('summary', '')}".strip()
        return None


class SnykAdapter(CommandScanner):
    """Software composition analysis through the Snyk CLI."""

    tool = 'snyk'
    executable = 'snyk'
    # 1 = vulnerabilities found, 2 = failure, 3 = no supported projects
    ok_exit_codes = frozenset({0, 1})

    def __init__(self, runner: Optional[CommandRunner] = None, *, timeout: int = 1800, token: Optional[str] = None):
        if token and runner is None:
            runner = CommandRunner(env={"SNYK_TOKEN": token})
        super().__init__(runner, timeout=timeout)

    def build_command(self, target: ScanTarget, report_path: Path) -> List[str]:
        return [self.executable, "test", "--json"]


class TrivyAdapter(CommandScanner):
    """Container image CVE scanning through Trivy."""

    tool = 'trivy'
    executable = 'trivy'
    reads_report_file = True

    def build_command(self, target: ScanTarget, report_path: Path) -> List[str]:
        if not target.image:
            raise OperationalError("trivy needs an image reference to scan")
        return [
            self.executable, "image",
            "--format", "json",
            "--output", str(report_path),
            "--exit-code", "0",
            "--quiet",
            target.image,
        ]
