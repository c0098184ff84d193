"""
Configuration loader for a coordinated workspace.

Reads stigmergy.env at the workspace root. Every key is optional; a
workspace with no config file uses the docs/ layout the tools have
always used.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from stigmergy.lib import envparse
from stigmergy.lib.constants import DEFAULT_STALE_CLAIM_HOURS

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "stigmergy.env"

DEFAULT_TODOS_PATH = "docs/ToDos.md"
DEFAULT_COMPLETED_PATH = "docs/CompletedTasks.md"
DEFAULT_STORIES_PATH = "docs/UserStories.md"
DEFAULT_WORK_LOGS_DIR = "docs/work-logs"
DEFAULT_WORK_LOG_ARCHIVE_DIR = "docs/work-logs/archive"
DEFAULT_LOCK_TIMEOUT = 30

KNOWN_SETTINGS = {
    "TODOS_PATH",
    "COMPLETED_PATH",
    "STORIES_PATH",
    "WORK_LOGS_DIR",
    "WORK_LOG_ARCHIVE_DIR",
    "STALE_CLAIM_HOURS",
    "LOCK_TIMEOUT",
    "NOTIFY",
}

# Environment variables honoured by the original shell tools
ENV_OVERRIDES = {
    "TODOS_FILE": "TODOS_PATH",
    "USER_STORIES_FILE": "STORIES_PATH",
}


@dataclass
class CoordConfig:
    """Workspace configuration from stigmergy.env"""
    root: Path
    todos_path: Path
    completed_path: Path
    stories_path: Path
    work_logs_dir: Path
    work_log_archive_dir: Path
    stale_claim_hours: int
    lock_timeout: int
    notify: bool


def _int_setting(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key} '{raw}', using default {default}")
        return default
    if value <= 0:
        logger.warning(f"{key} must be positive, got {value}; using default {default}")
        return default
    return value


def _resolve(root: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else root / path


def load_config(root: Path) -> CoordConfig:
    """Load stigmergy.env from root and return CoordConfig."""
    root = Path(root)
    env = envparse.load_env(root / CONFIG_FILENAME, known_keys=KNOWN_SETTINGS)

    for env_var, key in ENV_OVERRIDES.items():
        if os.environ.get(env_var):
            env[key] = os.environ[env_var]

    return CoordConfig(
        root=root,
        todos_path=_resolve(root, env.get("TODOS_PATH", DEFAULT_TODOS_PATH)),
        completed_path=_resolve(root, env.get("COMPLETED_PATH", DEFAULT_COMPLETED_PATH)),
        stories_path=_resolve(root, env.get("STORIES_PATH", DEFAULT_STORIES_PATH)),
        work_logs_dir=_resolve(root, env.get("WORK_LOGS_DIR", DEFAULT_WORK_LOGS_DIR)),
        work_log_archive_dir=_resolve(root, env.get("WORK_LOG_ARCHIVE_DIR", DEFAULT_WORK_LOG_ARCHIVE_DIR)),
        stale_claim_hours=_int_setting(env, "STALE_CLAIM_HOURS", DEFAULT_STALE_CLAIM_HOURS),
        lock_timeout=_int_setting(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
        notify=env.get("NOTIFY", "false").lower() == "true",
    )
