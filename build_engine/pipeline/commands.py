# build_engine/pipeline/commands.py
"""Subprocess execution with hard timeouts."""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from build_engine.core.errors import TransientInfraError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str
    duration: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, limit: int = 2000) -> str:
        """Last part of the combined output, for error messages."""
        text = (self.stderr or "") + (self.stdout or "")
        return text[-limit:]


class CommandRunner:
    """
    Runs shell commands in a project directory.

    A timeout kills the whole process group and raises TransientInfraError; a
    non-zero exit is returned to the caller.
    """

    def __init__(self, output_limit: int = 20 * 1024 * 1024):
        self.output_limit = output_limit

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        timeout: float,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        logger.info(f"[command] Running `{command}` in {cwd} (timeout {timeout}s)")
        started = time.monotonic()

        # Own session so a timeout can kill npm/next workers along with the shell
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(cwd),
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self._kill_group(proc)
            proc.communicate()
            logger.warning(f"[command] ❌ `{command}` killed after {timeout}s")
            raise TransientInfraError(
                f"Command `{command}` timed out after {timeout}s"
            ) from e

        duration = time.monotonic() - started
        result = CommandResult(
            command=command,
            returncode=proc.returncode,
            stdout=(stdout or "")[-self.output_limit:],
            stderr=(stderr or "")[-self.output_limit:],
            duration=duration,
        )

        if result.ok:
            logger.info(f"[command] ✅ `{command}` finished in {duration:.1f}s")
        else:
            logger.warning(
                f"[command] `{command}` exited with {result.returncode} after {duration:.1f}s"
            )

        return result

    @staticmethod
    def _kill_group(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
