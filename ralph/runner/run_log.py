"""
Run log for ralph.

Every user-visible progress line is printed and also appended, timestamped,
to <run>/ralph.log so an unattended run can be audited afterwards.
"""

import logging
from datetime import datetime
from pathlib import Path

from ralph.lib.constants import RUN_LOG_FILE

logger = logging.getLogger(__name__)


class RunLog:
    def __init__(self, run_dir: Path, quiet: bool = False):
        self.path = run_dir / RUN_LOG_FILE
        self.quiet = quiet

    def log(self, message: str):
        """Append to run log."""
        timestamp = datetime.now().isoformat(timespec="seconds")
        try:
            with open(self.path, "a") as f:
                f.write(f"[{timestamp}] {message}\n")
        except OSError as e:
            logger.warning(f"Cannot write {self.path}: {e}")

    def say(self, message: str = ""):
        """Print a progress line and record it."""
        if not self.quiet:
            print(message, flush=True)
        if message.strip():
            self.log(message.strip())

    def banner(self, *lines: str):
        self.say()
        self.say("=" * 63)
        for line in lines:
            self.say(f"  {line}")
        self.say("=" * 63)
