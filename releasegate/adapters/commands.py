"""Thin subprocess runner for build, test, push and scanner commands."""

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import anyio

from ..errors import CommandError
from ..logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Exit status and captured output of one command."""

    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, limit: int = 1000) -> str:
        """The end of stderr (or stdout when stderr is empty)."""
        return (self.stderr or self.stdout)[-limit:]


class CommandRunner:
    """Runs external commands in a worker thread with a timeout."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        self._extra_env = env or {}

    def _get_environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self._extra_env)
        return env

    def _run_subprocess(
        self,
        argv: List[str],
        timeout: int,
        cwd: Optional[Path],
    ) -> subprocess.CompletedProcess:
        return subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=self._get_environment(),
        )

    async def run(
        self,
        command: Union[str, Sequence[str]],
        *,
        timeout: int,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        """Run ``command`` and return its result.

        A non-zero exit code is returned, not raised. A missing executable
        or a timeout raises :class:`CommandError`.
        """
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        display = command if isinstance(command, str) else shlex.join(argv)
        if not argv:
            raise CommandError(display, "is empty")

        logger.info("Running command", command=display, timeout=timeout, cwd=str(cwd) if cwd else None)

        try:
            completed = await anyio.to_thread.run_sync(self._run_subprocess, argv, timeout, cwd)
        except FileNotFoundError as e:
            raise CommandError(display, f"could not be started: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(display, f"timed out after {timeout}s") from e

        result = CommandResult(
            command=display,
            returncode=completed.returncode,
            stdout=completed.stdout or '',
            stderr=completed.stderr or '',
        )

        logger.info("Command finished", command=display, returncode=result.returncode)
        if not result.ok:
            logger.debug("Command output", command=display, output_tail=result.tail(2000))

        return result
