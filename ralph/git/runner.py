"""Single entry point for invoking git."""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

# Never block an unattended loop on a credential prompt
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_git(args: list[str], cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GitResult:
    """
    Run `git -C cwd <args>` and capture its output.

    Never raises: a timeout or a missing git binary is reported through
    the returned GitResult (returncode -1 / 127).
    """
    cmd = ["git", "-C", str(cwd), *args]
    logger.debug(f"$ {' '.join(cmd)}")
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, **_GIT_ENV},
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"git {' '.join(args)} timed out after {timeout}s")
        return GitResult(-1, "", f"Command timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return GitResult(127, "", "git not found in PATH")

    return GitResult(proc.returncode, proc.stdout, proc.stderr)
