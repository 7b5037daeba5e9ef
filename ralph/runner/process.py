"""
External process runner.

Runs one agent or reviewer process, streaming its merged stdout/stderr to the
terminal while capturing everything for later signal detection. A nonzero exit,
a missing binary or a timeout is reported in the result, never raised.

The child runs in its own session; a timeout kills the whole process group,
and so does a finished child that left background processes on its output.
"""

import logging
import os
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)

# Seconds to wait for output to finish after the child has exited or been killed
DRAIN_TIMEOUT = 5


@dataclass
class ProcessResult:
    """Outcome of one external process invocation."""
    returncode: int
    output: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def _feed_stdin(proc: subprocess.Popen, text: str) -> None:
    try:
        proc.stdin.write(text)
    except (BrokenPipeError, OSError) as e:
        # Child exited without reading its prompt; its output tells the story
        logger.debug(f"stdin closed early: {e}")
    finally:
        try:
            proc.stdin.close()
        except OSError as e:
            logger.debug(f"stdin close failed: {e}")


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the child's whole session, grandchildren included."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError) as e:
        logger.debug(f"killpg {proc.pid}: {e}")


def run_process(
    cmd: list[str],
    cwd: Path,
    stdin_text: str | None = None,
    timeout: int | None = None,
    echo: TextIO | None = None,
    env: dict[str, str] | None = None,
) -> ProcessResult:
    """
    Run cmd in cwd, tee-ing combined output to echo (default: stdout).

    Args:
        cmd: argv
        cwd: working directory
        stdin_text: written to the child's stdin, which is then closed
        timeout: seconds before the child is killed (None = wait forever)
        echo: stream that receives live output (tests pass io.StringIO())
        env: child environment (None inherits ours)

    Returns:
        ProcessResult with the captured output
    """
    echo = sys.stdout if echo is None else echo

    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd),
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            env=env,
            start_new_session=True,
        )
    except FileNotFoundError:
        logger.error(f"Command not found: {cmd[0]}")
        return ProcessResult(returncode=127, output="")
    except OSError as e:
        logger.error(f"Failed to start {cmd[0]}: {e}")
        return ProcessResult(returncode=126, output="")

    writer = None
    if stdin_text is not None:
        writer = threading.Thread(target=_feed_stdin, args=(proc, stdin_text), daemon=True)
        writer.start()

    chunks: list[str] = []

    def _pump():
        for line in proc.stdout:
            chunks.append(line)
            echo.write(line)
            echo.flush()

    reader = threading.Thread(target=_pump, daemon=True)
    reader.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout or None)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning(f"{cmd[0]} killed after {timeout}s timeout")
        _kill_group(proc)
        proc.wait()

    reader.join(DRAIN_TIMEOUT)
    if reader.is_alive():
        # A background process left behind still holds the output pipe
        logger.warning(f"{cmd[0]} left processes holding its output open; killing them")
        _kill_group(proc)
        reader.join(DRAIN_TIMEOUT)
    if writer:
        writer.join(timeout=DRAIN_TIMEOUT)
    if not reader.is_alive():
        proc.stdout.close()

    return ProcessResult(
        returncode=proc.returncode,
        output="".join(chunks),
        timed_out=timed_out,
    )
