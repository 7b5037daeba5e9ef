"""
KEY=value parser for ralph.env run settings.

The file is read as data, never sourced by a shell: values containing shell
syntax (substitution, chaining, pipes) are rejected outright.
"""

import re
from pathlib import Path

# Backticks, $( ), ${ }, ;, && and pipes (which also covers ||)
_SHELL_SYNTAX = re.compile(r'`|\$\(|\$\{|;|&&|\|')

_KEY = re.compile(r'^[A-Z][A-Z0-9_]*$')
_QUOTES = ('"', "'")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse KEY=value lines into a dict. Blank lines, comments and a leading
    `export ` are allowed; later keys override earlier ones.

    Raises:
        ValueError: naming source:line for bad syntax or shell syntax in a value
    """
    settings = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        line = line.removeprefix('export ').lstrip()

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{source}:{lineno}: invalid syntax (no '=')")
        key = key.strip()
        if not _KEY.match(key):
            raise ValueError(f"{source}:{lineno}: invalid key '{key}'")

        value = _unquote(value.strip())
        if _SHELL_SYNTAX.search(value):
            raise ValueError(f"{source}:{lineno}: forbidden pattern in value for {key}")
        settings[key] = value

    return settings


def load_env(path: Path) -> dict[str, str]:
    """Parse an env file; a missing file is simply no settings."""
    if not path.exists():
        return {}
    return parse_env(path.read_text(), source=str(path))
