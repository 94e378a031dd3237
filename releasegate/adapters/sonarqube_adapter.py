"""SonarQube quality gate adapter."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from ..config import get_settings
from ..logging import get_logger
from .scanners import ScanReport, ScanTarget

logger = get_logger(__name__)

_PENDING_TASK_STATES = frozenset({'PENDING', 'IN_PROGRESS'})


def read_report_task(workspace: Path) -> Dict[str, str]:
    """Parse ``.scannerwork/report-task.txt`` written by sonar-scanner."""
    path = workspace / ".scannerwork" / "report-task.txt"
    if not path.exists():
        return {}
    entries = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            entries[key.strip()] = value.strip()
    return entries


class SonarQubeAdapter:
    """Reads the quality gate verdict of the latest analysis over the web API."""

    tool = 'sonarqube'

    def __init__(
        self,
        host_url: Optional[str] = None,
        token: Optional[str] = None,
        project_key: Optional[str] = None,
        *,
        timeout: float = 30,
        poll_attempts: int = 60,
        poll_interval: float = 5,
    ):
        """Initialize the SonarQube adapter."""
        settings = get_settings()
        self._host_url = (host_url or settings.sonar_host_url or '').rstrip('/')
        self._token = token or settings.sonar_token
        self._project_key = project_key or settings.sonar_project_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval

    def _auth(self) -> Optional[aiohttp.BasicAuth]:
        # SonarQube tokens are sent as the basic-auth login with an empty password
        return aiohttp.BasicAuth(self._token, '') if self._token else None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(aiohttp.ClientError),
        reraise=True
    )
    async def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        async with aiohttp.ClientSession(timeout=self._timeout, auth=self._auth()) as session:
            async with session.get(f"{self._host_url}{path}", params=params) as response:
                response.raise_for_status()
                return await response.json()

    async def wait_for_analysis(self, task_id: str) -> Optional[str]:
        """Poll the compute-engine task until it finishes; return its analysis id."""

        @retry(
            stop=stop_after_attempt(self._poll_attempts),
            wait=wait_fixed(self._poll_interval),
            retry=retry_if_result(lambda task: task.get('status') in _PENDING_TASK_STATES),
        )
        async def poll() -> Dict[str, Any]:
            data = await self._get("/api/ce/task", {"id": task_id})
            return data.get('task', {})

        try:
            task = await poll()
        except RetryError as e:
            raise asyncio.TimeoutError(f"SonarQube analysis task {task_id} still pending") from e

        if task.get('status') != 'SUCCESS':
            raise RuntimeError(f"SonarQube analysis task {task_id} ended as {task.get('status')}")
        return task.get('analysisId')

    async def scan(self, target: ScanTarget) -> ScanReport:
        """Fetch the quality gate status as a native JSON report."""
        if not self._host_url or not self._project_key:
            return ScanReport.crash(self.tool, "SonarQube host URL or project key not configured")

        task = read_report_task(target.workspace)
        try:
            params = {"projectKey": self._project_key}
            if task.get('ceTaskId'):
                analysis_id = await self.wait_for_analysis(task['ceTaskId'])
                if analysis_id:
                    params = {"analysisId": analysis_id}

            data = await self._get("/api/qualitygates/project_status", params)
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
            logger.error("SonarQube quality gate lookup failed", error=str(e), project_key=self._project_key)
            return ScanReport.crash(self.tool, f"quality gate lookup failed: {e}")

        logger.info(
            "SonarQube quality gate fetched",
            project_key=self._project_key,
            status=data.get('projectStatus', {}).get('status'),
        )
        return ScanReport(tool=self.tool, status='completed', raw=json.dumps(data).encode('utf-8'))

    def health_check(self) -> bool:
        """Check that the adapter is configured."""
        return bool(self._host_url and self._project_key)
