"""
Update availability check.

The installer records the commit it installed in $RALPH_HOME/.git-sha. On
start-up `ralph run` compares that with the remote HEAD and prints a notice
when they differ. Nothing is downloaded or replaced; the loop never depends
on this check succeeding.
"""

import logging
import os
from pathlib import Path

from ralph.git import run_git

logger = logging.getLogger(__name__)

DEFAULT_REPO = "https://github.com/Shooa/ralph.git"
SHA_FILE = ".git-sha"
LS_REMOTE_TIMEOUT = 10


def ralph_home() -> Path:
    return Path(os.environ.get("RALPH_HOME", Path.home() / ".ralph"))


def installed_sha(home: Path) -> str | None:
    try:
        value = (home / SHA_FILE).read_text().strip()
    except OSError:
        return None
    return value if value and value != "unknown" else None


def remote_sha(repo: str) -> str | None:
    result = run_git(["ls-remote", repo, "HEAD"], Path.cwd(), timeout=LS_REMOTE_TIMEOUT)
    if not result.success or not result.stdout.strip():
        logger.debug(f"Update check: ls-remote failed: {result.stderr.strip()}")
        return None
    return result.stdout.split()[0]


def check_for_update(home: Path | None = None, repo: str | None = None) -> str | None:
    """Return the newer remote SHA if one is available, else None."""
    home = home or ralph_home()
    current = installed_sha(home)
    if current is None:
        logger.debug(f"Update check skipped: no {SHA_FILE} in {home}")
        return None

    latest = remote_sha(repo or os.environ.get("RALPH_REPO", DEFAULT_REPO))
    if latest is None or latest == current:
        return None
    return latest


def notify_if_outdated(home: Path | None = None, repo: str | None = None) -> bool:
    latest = check_for_update(home, repo)
    if latest is None:
        return False
    print(f"A newer ralph is available ({latest[:10]}). Re-run the installer to update.")
    print("  (disable this check with --no-update)")
    return True
