"""
Prompt templates for the implement, fix and review steps.

Packaged templates live in ralph/prompts/. A run may replace any of them by
shipping <run>/prompts/<name>.md. Placeholders use str.format() syntax
({prd_path}); JSON examples in a template need doubled braces.

<!-- ... --> blocks are template documentation and never reach the agent.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "clear_cache", "PROMPTS_DIR"]

_COMMENT_BLOCK = re.compile(r'<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


class PromptError(Exception):
    """Template missing, or rendered without one of its variables."""


def _find_prompt(name: str, run_dir: Path | None) -> Path:
    if run_dir is not None:
        override = run_dir / "prompts" / f"{name}.md"
        if override.is_file():
            logger.debug(f"Using run override for prompt '{name}': {override}")
            return override
    return PROMPTS_DIR / f"{name}.md"


@lru_cache(maxsize=32)
def _read_template(prompt_path: Path) -> str:
    return _COMMENT_BLOCK.sub('', prompt_path.read_text()).lstrip()


def load_prompt(name: str, run_dir: Path | None = None) -> str:
    """Return the comment-stripped template text for name.

    Raises:
        PromptError: If no template file exists for name
    """
    prompt_path = _find_prompt(name, run_dir)
    if not prompt_path.is_file():
        raise PromptError(f"Prompt template '{name}' not found (looked for {prompt_path})")
    return _read_template(prompt_path)


def render_prompt(name: str, run_dir: Path | None = None, **kwargs) -> str:
    """
    Fill a template's placeholders.

    Raises:
        PromptError: If template not found or required variable missing

    Example:
        render_prompt('implement', run_dir, prd_path='...', progress_path='...')
    """
    template = load_prompt(name, run_dir)
    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise PromptError(
            f"Missing required variable {e} in prompt '{name}' (have: {', '.join(sorted(kwargs))})"
        ) from e


def clear_cache():
    _read_template.cache_clear()
