"""Process execution port used by the helm executor."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from helm_conductor.errors import ExecError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs an external command and captures its output.

    Alternative implementations (an in-process package manager, a recording
    fake in tests) only need to provide :meth:`execute`.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or None

    def execute(
        self,
        args: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        logger.debug("run command: %s", " ".join(args))
        try:
            completed = subprocess.run(
                list(args),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecError(f"command timed out after {self.timeout}s: {args[0]}", stderr=str(e)) from e
        except OSError as e:
            raise ExecError(f"failed to start {args[0]}: {e}", stderr=str(e)) from e
        return ProcessResult(stdout=completed.stdout, stderr=completed.stderr, returncode=completed.returncode)
