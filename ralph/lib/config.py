"""
Configuration loaders for ralph.

Loop settings come from <run>/ralph.env, overridden by CLI flags.
Invalid values fail fast with ConfigError before any side effects.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from . import envparse
from .constants import RUN_ENV_FILE

logger = logging.getLogger(__name__)

DEFAULT_TOOL = "amp"
DEFAULT_REVIEWER = "codex"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_ROUNDS = 3
DEFAULT_RATE_LIMIT_DELAYS = (300, 900, 1800)
DEFAULT_ITERATION_PAUSE = 2.0

SKIP_REVIEWER = "skip"


class ConfigError(Exception):
    """Invalid configuration. Fatal: the run never starts."""
    pass


@dataclass
class LoopConfig:
    """Settings for one orchestrator invocation."""
    tool: str = DEFAULT_TOOL
    reviewer: str = DEFAULT_REVIEWER
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_rounds: int = DEFAULT_MAX_ROUNDS
    rate_limit_delays: tuple[int, ...] = field(default_factory=lambda: DEFAULT_RATE_LIMIT_DELAYS)
    rate_limit_max_wait: int = 0  # 0 = keep retrying forever
    agent_timeout: int | None = None
    iteration_pause: float = DEFAULT_ITERATION_PAUSE

    @property
    def review_enabled(self) -> bool:
        return self.reviewer != SKIP_REVIEWER


def _positive_int(key: str, raw: str, allow_zero: bool = False) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from None
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{key} must be {'>= 0' if allow_zero else '> 0'}, got {value}")
    return value


def parse_delays(raw: str) -> tuple[int, ...]:
    """Parse "300,900,1800" into a non-empty tuple of seconds."""
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        raise ConfigError("RATE_LIMIT_DELAYS must list at least one delay")
    delays = tuple(_positive_int("RATE_LIMIT_DELAYS", p, allow_zero=True) for p in parts)
    if list(delays) != sorted(delays):
        raise ConfigError(f"RATE_LIMIT_DELAYS must be non-decreasing, got {raw}")
    return delays


def load_loop_config(run_dir: Path, overrides: dict | None = None) -> LoopConfig:
    """Load <run>/ralph.env and apply CLI overrides (None values ignored).

    Raises:
        ConfigError: if the file is malformed or a value is out of range
    """
    try:
        env = envparse.load_env(run_dir / RUN_ENV_FILE)
    except ValueError as e:
        raise ConfigError(str(e)) from None

    for key, value in (overrides or {}).items():
        if value is not None:
            env[key] = str(value)

    config = LoopConfig()
    if "TOOL" in env:
        config.tool = env["TOOL"]
    if "REVIEWER" in env:
        config.reviewer = env["REVIEWER"]
    if "MAX_ITERATIONS" in env:
        config.max_iterations = _positive_int("MAX_ITERATIONS", env["MAX_ITERATIONS"])
    if "MAX_REVIEW_ROUNDS" in env:
        config.max_rounds = _positive_int("MAX_REVIEW_ROUNDS", env["MAX_REVIEW_ROUNDS"])
    if "RATE_LIMIT_DELAYS" in env:
        config.rate_limit_delays = parse_delays(env["RATE_LIMIT_DELAYS"])
    if "RATE_LIMIT_MAX_WAIT" in env:
        config.rate_limit_max_wait = _positive_int(
            "RATE_LIMIT_MAX_WAIT", env["RATE_LIMIT_MAX_WAIT"], allow_zero=True
        )
    if "AGENT_TIMEOUT" in env:
        timeout = _positive_int("AGENT_TIMEOUT", env["AGENT_TIMEOUT"], allow_zero=True)
        config.agent_timeout = timeout or None
    if "ITERATION_PAUSE" in env:
        try:
            config.iteration_pause = float(env["ITERATION_PAUSE"])
        except ValueError:
            raise ConfigError(f"ITERATION_PAUSE must be a number, got '{env['ITERATION_PAUSE']}'") from None
        if config.iteration_pause < 0:
            raise ConfigError("ITERATION_PAUSE must be >= 0")

    unknown = set(env) - {
        "TOOL", "REVIEWER", "MAX_ITERATIONS", "MAX_REVIEW_ROUNDS", "RATE_LIMIT_DELAYS",
        "RATE_LIMIT_MAX_WAIT", "AGENT_TIMEOUT", "ITERATION_PAUSE",
    }
    for key in sorted(unknown):
        logger.warning(f"Ignoring unknown setting {key} in {run_dir / RUN_ENV_FILE}")

    return config
