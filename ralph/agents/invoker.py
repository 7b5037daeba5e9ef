"""
Agent invocation for ralph.

The implementation agent and the reviewer are both external CLIs; each one is
an AgentInvoker. The loops never care which tool is behind it.
"""

import logging
from pathlib import Path
from typing import TextIO

from ralph.lib.agents_config import AgentsConfig, get_agent_command
from ralph.lib.config import SKIP_REVIEWER
from ralph.runner.process import ProcessResult, run_process

logger = logging.getLogger(__name__)


class AgentInvoker:
    """Runs one prompt against an agent in a working directory."""

    name = "agent"
    # False for a reviewer that approves without running anything
    reviews = True

    def invoke(self, prompt: str, cwd: Path) -> ProcessResult:
        raise NotImplementedError


class CommandAgent(AgentInvoker):
    """An agent CLI configured by a command template in agents.yaml."""

    def __init__(
        self,
        name: str,
        config: AgentsConfig,
        timeout: int | None = None,
        echo: TextIO | None = None,
    ):
        if name not in config.agents:
            raise ValueError(f"Unknown agent: {name}")
        self.name = name
        self.config = config
        self.timeout = timeout
        self.echo = echo

    def invoke(self, prompt: str, cwd: Path) -> ProcessResult:
        agent_cmd = get_agent_command(
            self.config, self.name, {"prompt": prompt, "workdir": str(cwd)}
        )
        logger.debug(f"Running {self.name}: {agent_cmd.cmd[0]} (stdin={agent_cmd.prompt_via_stdin})")
        result = run_process(
            agent_cmd.cmd,
            cwd,
            stdin_text=agent_cmd.get_stdin_input(prompt),
            timeout=self.timeout,
            echo=self.echo,
        )
        if not result.success:
            logger.warning(f"{self.name} exited with {result.returncode}"
                           + (" (timed out)" if result.timed_out else ""))
        return result


class SkipReviewer(AgentInvoker):
    """Reviewer for --reviewer skip: runs nothing, the round commits its own work."""

    name = SKIP_REVIEWER
    reviews = False

    def invoke(self, prompt: str, cwd: Path) -> ProcessResult:
        return ProcessResult(returncode=0, output="")


def build_agent(
    name: str,
    config: AgentsConfig,
    timeout: int | None = None,
    echo: TextIO | None = None,
) -> AgentInvoker:
    """Select the invoker for an agent name ("skip" only makes sense as reviewer)."""
    if name == SKIP_REVIEWER:
        return SkipReviewer()
    return CommandAgent(name, config, timeout=timeout, echo=echo)
