"""Shared constants for ralph."""

import re

# Run directory layout
RUNS_DIR = ".ralph/runs"
PRD_FILE = "prd.json"
PROGRESS_FILE = "progress.txt"
PROGRESS_ARCHIVE_FILE = "progress-archive.txt"
ARCHIVE_DIR = "archive"
LAST_BRANCH_FILE = ".last-branch"
RUN_LOG_FILE = "ralph.log"
RUN_ENV_FILE = "ralph.env"
AGENTS_FILE = "agents.yaml"

# Per-round markers (working directory, not the run directory)
STORY_MARKER = ".ralph-current-story"
REVIEW_FILE = ".ralph-review.json"
BASELINE_MARKER = ".ralph-review-base"
STOP_FILE = ".ralph-stop"

COMPLETE_SIGNAL = "<promise>COMPLETE</promise>"

# Progress log compaction
PROGRESS_COMPACT_THRESHOLD = 5
PROGRESS_KEEP_ENTRIES = 3

# Run names: what `ralph new` accepts and what branch normalisation produces
RUN_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')
BRANCH_FILLER = "-"

# Exit codes
EXIT_COMPLETE = 0
EXIT_INVALID = 1
EXIT_RATE_LIMITED = 2
EXIT_MAX_ITERATIONS = 3
EXIT_STOPPED = 4
