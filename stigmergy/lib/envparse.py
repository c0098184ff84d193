"""
Workspace settings file reader (stigmergy.env).

The file uses shell-style KEY=value lines so the original shell tools can
still source it, but nothing here runs a shell. A value that only makes
sense to a shell (substitution, chaining, pipes) is rejected outright, so
a settings file can never smuggle a command into a script that sources it.

Errors and warnings name the file and line: "stigmergy.env:3: ...".
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# One assignment per line, optionally prefixed with `export`
ASSIGNMENT_RE = re.compile(r'^(?:export\s+)?(?P<key>[^=]*?)\s*=\s*(?P<value>.*)$')
KEY_RE = re.compile(r'^[A-Z][A-Z0-9_]*$')

# Backticks, $( and ${ expansion, ; && || and | chaining
SHELL_SYNTAX_RE = re.compile(r'`|\$[({]|;|&&|\|')

# Unquoted values may carry a trailing "  # note"
TRAILING_COMMENT_RE = re.compile(r'\s+#.*$')


def _value_of(raw: str) -> str:
    if raw[:1] in ('"', "'"):
        end = raw.find(raw[0], 1)
        if end != -1:
            return raw[1:end]
    return TRAILING_COMMENT_RE.sub('', raw)


def parse_env(text: str, source: str = "<env>", known_keys=None) -> dict[str, str]:
    """Parse settings text into a dict; a repeated key keeps its last value.

    Keys outside known_keys (when given) are kept and logged.

    Raises:
        ValueError: on a line that is not an assignment, a malformed key,
            or a value containing shell syntax
    """
    settings: dict[str, str] = {}
    seen_at: dict[str, int] = {}

    for lineno, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        where = f"{source}:{lineno}"
        match = ASSIGNMENT_RE.match(line)
        if match is None:
            raise ValueError(f"{where}: Invalid syntax (no '=')")

        key = match.group('key')
        if not KEY_RE.match(key):
            raise ValueError(f"{where}: Invalid key '{key}'")

        value = _value_of(match.group('value').strip())
        if SHELL_SYNTAX_RE.search(value):
            raise ValueError(f"{where}: Forbidden pattern in value for {key}")

        if key in seen_at:
            logger.warning(f"{where}: {key} already set on line {seen_at[key]}, last value wins")
        if known_keys is not None and key not in known_keys:
            logger.warning(f"{where}: Unknown setting {key} has no effect")

        settings[key] = value
        seen_at[key] = lineno

    return settings


def load_env(filepath: Path, required: bool = False, known_keys=None) -> dict[str, str]:
    """Read a settings file. A missing optional file means no settings.

    Raises:
        FileNotFoundError: if required and the file doesn't exist
        ValueError: on a malformed line (see parse_env)
    """
    path = Path(filepath)
    if not path.is_file():
        if required:
            raise FileNotFoundError(f"Settings file not found: {filepath}")
        return {}
    return parse_env(path.read_text(encoding="utf-8"), source=path.name, known_keys=known_keys)
