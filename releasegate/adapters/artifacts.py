"""Best-effort archival of scanner reports and SBOMs."""

import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import anyio
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..logging import get_logger

logger = get_logger(__name__)


class ArtifactStore:
    """Writes reports under ``reports_dir/<run_id>`` and optionally mirrors them to S3.

    Nothing here may influence a gate decision, so every write error is
    logged and swallowed.
    """

    def __init__(
        self,
        reports_dir: Path,
        *,
        bucket: Optional[str] = None,
        prefix: str = "releasegate",
        s3_client: Any = None,
        scratch_dir: Optional[Path] = None,
    ):
        self.reports_dir = Path(reports_dir)
        self.bucket = bucket
        self.prefix = prefix.strip('/')
        self._s3 = s3_client
        self.scratch_dir = scratch_dir
        self.archived: Dict[str, str] = {}

    def _s3_client(self) -> Any:
        if self._s3 is None:
            self._s3 = boto3.client('s3')
        return self._s3

    def _upload(self, path: Path, key: str) -> str:
        self._s3_client().upload_file(str(path), self.bucket, key)
        return f"s3://{self.bucket}/{key}"

    async def archive(self, run_id: str, name: str, data: bytes) -> Optional[str]:
        """Store ``data`` as ``name`` for ``run_id``; return its reference or None."""
        path = self.reports_dir / run_id / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.warning("Artifact write failed", artifact=name, error=str(e))
            return None

        reference = str(path)
        if self.bucket:
            key = f"{self.prefix}/{run_id}/{name}"
            try:
                reference = await anyio.to_thread.run_sync(self._upload, path, key)
            except (ClientError, BotoCoreError) as e:
                logger.warning("Artifact upload failed", artifact=name, bucket=self.bucket, error=str(e))

        self.archived[name] = reference
        logger.info("Artifact archived", artifact=name, reference=reference, size=len(data))
        return reference

    async def archive_file(self, run_id: str, source: Path) -> Optional[str]:
        """Archive an existing file (e.g. a generated SBOM)."""
        try:
            data = source.read_bytes()
        except OSError as e:
            logger.warning("Artifact read failed", artifact=str(source), error=str(e))
            return None
        return await self.archive(run_id, source.name, data)

    def cleanup(self) -> None:
        """Discard the transient scratch directory, if any."""
        if self.scratch_dir and self.scratch_dir.exists():
            shutil.rmtree(self.scratch_dir, ignore_errors=True)
            logger.info("Scratch directory removed", path=str(self.scratch_dir))
