"""
ralph run - Execute the story loop for one run.
"""

import logging
from pathlib import Path

from ralph.agents.invoker import build_agent
from ralph.git import get_current_branch
from ralph.lib.agents_config import (
    AgentsConfig,
    check_binary_available,
    get_agent_binary,
    load_agents_config,
)
from ralph.lib.config import ConfigError, LoopConfig, SKIP_REVIEWER, load_loop_config
from ralph.lib.constants import (
    EXIT_COMPLETE,
    EXIT_INVALID,
    EXIT_MAX_ITERATIONS,
    EXIT_RATE_LIMITED,
    EXIT_STOPPED,
)
from ralph.lib.ratelimit import RateLimitController, RateLimitExhausted
from ralph.lib.update import notify_if_outdated
from ralph.runner.resolver import RunResolutionError, resolve_run
from ralph.runner.round_state import RoundStateStore
from ralph.runner.run_log import RunLog
from ralph.runner.run_store import RunStore, StateCorruptError
from ralph.workflow.round_loop import RoundLoop
from ralph.workflow.story_loop import COMPLETE, MAX_ITERATIONS, STOPPED, StoryLoop

logger = logging.getLogger(__name__)

EXIT_CODES = {
    COMPLETE: EXIT_COMPLETE,
    STOPPED: EXIT_STOPPED,
    MAX_ITERATIONS: EXIT_MAX_ITERATIONS,
}


def check_agents(config: LoopConfig, agents: AgentsConfig, binary_check=check_binary_available) -> None:
    """Fail fast on an unknown or missing tool/reviewer.

    Raises:
        ConfigError: naming the offending agent
    """
    if config.tool == SKIP_REVIEWER:
        raise ConfigError(f"'{SKIP_REVIEWER}' is only valid as a reviewer")

    wanted = [("tool", config.tool)]
    if config.review_enabled:
        wanted.append(("reviewer", config.reviewer))

    for role, name in wanted:
        if name not in agents.agents:
            known = ", ".join(sorted(agents.agents))
            raise ConfigError(f"Unknown {role} '{name}' (known: {known}, or define it in agents.yaml)")
        binary = get_agent_binary(agents, name)
        if not binary_check(binary):
            raise ConfigError(f"{role} '{name}' needs '{binary}', which is not in PATH")


def build_story_loop(
    workdir: Path,
    store: RunStore,
    config: LoopConfig,
    agents: AgentsConfig,
    run_log: RunLog,
) -> StoryLoop:
    markers = RoundStateStore(workdir)
    limiter = RateLimitController(
        delays=config.rate_limit_delays,
        signatures=agents.rate_limit_signatures,
        max_wait=config.rate_limit_max_wait,
    )
    agent = build_agent(config.tool, agents, timeout=config.agent_timeout)
    reviewer = build_agent(config.reviewer, agents, timeout=config.agent_timeout)
    round_loop = RoundLoop(
        workdir, store, markers, agent, reviewer, limiter, run_log, max_rounds=config.max_rounds
    )
    return StoryLoop(
        workdir, store, markers, round_loop, run_log,
        max_iterations=config.max_iterations,
        iteration_pause=config.iteration_pause,
    )


def cmd_run(args, workspace: Path, runs_root: Path) -> int:
    """Resolve the run, validate settings, then loop until done."""
    branch = get_current_branch(workspace)
    try:
        run_dir = resolve_run(runs_root, explicit=args.run, branch=branch)
    except RunResolutionError as e:
        print(f"ERROR: {e}")
        return EXIT_INVALID

    overrides = {
        "TOOL": args.tool,
        "REVIEWER": args.reviewer,
        "MAX_ITERATIONS": args.max_iterations,
        "MAX_REVIEW_ROUNDS": args.max_rounds,
    }
    try:
        config = load_loop_config(run_dir, overrides)
        agents = load_agents_config(run_dir)
        check_agents(config, agents)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return EXIT_INVALID

    store = RunStore(run_dir)
    try:
        store.load()
    except StateCorruptError as e:
        print(f"ERROR: {e}")
        return EXIT_INVALID

    if not args.no_update:
        notify_if_outdated()

    run_log = RunLog(run_dir)
    archived = store.archive_if_session_changed()
    if archived:
        run_log.say(f"Archived previous run to {archived}")

    run_log.say(
        f"Starting Ralph - Run: {store.name} - Tool: {config.tool} - Reviewer: {config.reviewer} "
        f"- Max iterations: {config.max_iterations} - Max review rounds: {config.max_rounds}"
    )

    loop = build_story_loop(workspace, store, config, agents, run_log)
    try:
        result = loop.run()
    except RateLimitExhausted as e:
        run_log.banner("Ralph gave up: rate limit wait budget exhausted", str(e))
        return EXIT_RATE_LIMITED

    return EXIT_CODES[result.status]
