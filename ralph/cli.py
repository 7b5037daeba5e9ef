#!/usr/bin/env python3
"""ralph CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from ralph import __version__
from ralph.commands import list as cmd_list_module
from ralph.commands import new as cmd_new_module
from ralph.commands import run as cmd_run_module
from ralph.git import get_repo_root
from ralph.lib.constants import EXIT_INVALID, RUNS_DIR

SUBCOMMANDS = ("run", "list", "new")


class RalphArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit with the invalid-arguments code."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_INVALID, f"{self.prog}: error: {message}\n")


def get_workspace(cwd: Path | None = None) -> Path:
    """Repository root containing cwd, or cwd itself outside a repository."""
    cwd = cwd or Path.cwd()
    return get_repo_root(cwd) or cwd


def _positive(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{value}'") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {n}")
    return n


def cmd_run(args):
    workspace = get_workspace()
    return cmd_run_module.cmd_run(args, workspace, workspace / RUNS_DIR)


def cmd_list(args):
    workspace = get_workspace()
    return cmd_list_module.cmd_list(args, workspace, workspace / RUNS_DIR)


def cmd_new(args):
    workspace = get_workspace()
    return cmd_new_module.cmd_new(args, workspace, workspace / RUNS_DIR)


def build_parser() -> argparse.ArgumentParser:
    parser = RalphArgumentParser(
        prog='ralph',
        description='Autonomous implement/review/commit loop over a run of stories',
    )
    parser.add_argument('--version', action='version', version=f'ralph {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True, parser_class=RalphArgumentParser)

    # ralph run (default)
    p_run = subparsers.add_parser('run', help='Run the story loop (default command)')
    p_run.add_argument('max_iterations', nargs='?', type=_positive, help='Maximum iterations (default 10)')
    p_run.add_argument('--tool', help='Implementation agent: amp, claude, codex (default amp)')
    p_run.add_argument('--reviewer', help='Reviewer: codex, claude, or skip (default codex)')
    p_run.add_argument('--max-rounds', type=_positive, help='Review rounds per story (default 3)')
    p_run.add_argument('--run', help='Run name under .ralph/runs (default: from branch)')
    p_run.add_argument('--no-update', action='store_true', help='Skip the update check')
    p_run.add_argument('--verbose', '-v', action='store_true', default=argparse.SUPPRESS, help='Debug logging')
    p_run.set_defaults(func=cmd_run)

    # ralph list
    p_list = subparsers.add_parser('list', help='List runs')
    p_list.set_defaults(func=cmd_list)

    # ralph new
    p_new = subparsers.add_parser('new', help='Create a run')
    p_new.add_argument('name', help='Run name')
    p_new.add_argument('--branch', '-b', help='branchName label (default ralph/<name>)')
    p_new.add_argument('--project', '-p', help='Project name (default: run name)')
    p_new.add_argument('--from', dest='from_file', help='Start from an existing prd.json')
    p_new.set_defaults(func=cmd_new)

    return parser


def normalize_argv(argv: list[str]) -> list[str]:
    """Insert the implicit 'run' subcommand: `ralph 5 --tool claude` == `ralph run 5 --tool claude`."""
    for i, arg in enumerate(argv):
        if arg in ("-h", "--help", "--version"):
            return argv
        if arg in ("-v", "--verbose"):
            continue
        if arg in SUBCOMMANDS:
            return argv
        return argv[:i] + ["run"] + argv[i:]
    return argv + ["run"]


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(normalize_argv(list(sys.argv[1:] if argv is None else argv)))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
