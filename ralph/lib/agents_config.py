"""
Agent command configuration.

Loads <run>/agents.yaml to determine which CLI command runs each agent, and
which output signatures mean "rate limited". Without a config file the
built-in defaults below apply.

COMMAND TEMPLATES
=================

Each agent name maps to a command template. Templates support {variable}
substitution from a context dict supplied by the caller.

- {prompt}:  The prompt text. If present in the template it is passed as a CLI
  argument. If absent, the prompt is written to the process's stdin (the
  usual case: prompts are long and full of shell metacharacters).
- {workdir}: The working directory (repository root) the agent operates in.

Example agents.yaml:

    agents:
      claude: claude --dangerously-skip-permissions --print --model opus
      gemini: gemini --yolo -p {prompt}
    rate_limit_signatures:
      - 'quota exceeded'
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import ConfigError
from .constants import AGENTS_FILE

logger = logging.getLogger(__name__)


DEFAULT_AGENT_COMMANDS = {
    "amp": "amp --dangerously-allow-all",
    "claude": "claude --dangerously-skip-permissions --print",
    "codex": "codex exec --full-auto -C {workdir}",
}

# Case-insensitive regexes. A false negative here means a rate-limited agent is
# treated as a normal (empty) round, so err on the side of matching.
DEFAULT_RATE_LIMIT_SIGNATURES = [
    r"\b429\b",
    r"rate[ _-]?limit",
    r"usage[ _-]?limit",
    r"too many requests",
    r"you'?ve hit your limit",
    r"quota exceeded",
    r"resource[ _-]?exhausted",
]

_PROMPT_PLACEHOLDER = "__RALPH_PROMPT__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    agents: dict[str, str] = field(default_factory=lambda: DEFAULT_AGENT_COMMANDS.copy())
    rate_limit_signatures: list[str] = field(
        default_factory=lambda: list(DEFAULT_RATE_LIMIT_SIGNATURES)
    )


def load_agents_config(run_dir: Path | None) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If run_dir is None or the file doesn't exist, returns defaults.

    Raises:
        ConfigError: if the file exists but is malformed
    """
    if run_dir is None:
        return AgentsConfig()

    config_path = run_dir / AGENTS_FILE
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from None

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: expected a mapping at top level")

    config = AgentsConfig()

    agents = data.get("agents") or {}
    if not isinstance(agents, dict):
        raise ConfigError(f"{config_path}: 'agents' must be a mapping of name -> command")
    for name, template in agents.items():
        if not isinstance(template, str) or not template.strip():
            raise ConfigError(f"{config_path}: command for agent '{name}' must be a non-empty string")
        config.agents[str(name)] = template

    signatures = data.get("rate_limit_signatures")
    if signatures is not None:
        if not isinstance(signatures, list) or not all(isinstance(s, str) for s in signatures):
            raise ConfigError(f"{config_path}: 'rate_limit_signatures' must be a list of strings")
        for sig in signatures:
            try:
                re.compile(sig)
            except re.error as e:
                raise ConfigError(f"{config_path}: bad rate limit signature {sig!r}: {e}") from None
        config.rate_limit_signatures = signatures

    logger.debug(f"Loaded agents config from {config_path}: {sorted(config.agents)}")
    return config


@dataclass
class AgentCommand:
    """Result of building an agent command."""
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def get_agent_command(
    config: AgentsConfig,
    agent: str,
    context: dict[str, str] | None = None,
) -> AgentCommand:
    """Build the argv for an agent with variable substitution.

    Raises:
        ValueError: If the agent is unknown or the template has unsubstituted variables.

    Example:
        >>> cmd = get_agent_command(AgentsConfig(), "codex", {"workdir": "/repo", "prompt": "x"})
        >>> cmd.cmd
        ['codex', 'exec', '--full-auto', '-C', '/repo']
        >>> cmd.prompt_via_stdin
        True
    """
    if agent not in config.agents:
        raise ValueError(f"Unknown agent: {agent}")

    template = config.agents[agent]
    prompt_via_stdin = "{prompt}" not in template

    # Keep the prompt out of shlex: it may contain quotes
    prompt_value = None
    if context and "prompt" in context:
        prompt_value = context["prompt"]
    template = template.replace("{prompt}", _PROMPT_PLACEHOLDER)

    if context:
        for key, value in context.items():
            if key != "prompt":
                template = template.replace(f"{{{key}}}", shlex.quote(value))

    remaining = re.findall(r'\{(\w+)\}', template)
    if remaining:
        raise ValueError(f"Agent '{agent}' has unsubstituted variables: {remaining}")

    cmd = shlex.split(template)
    if not prompt_via_stdin:
        cmd = [(prompt_value or "") if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]

    return AgentCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin)


def get_agent_binary(config: AgentsConfig, agent: str) -> str:
    """Get the binary name for an agent (first element of its command)."""
    if agent not in config.agents:
        raise ValueError(f"Unknown agent: {agent}")
    parts = shlex.split(config.agents[agent])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None
