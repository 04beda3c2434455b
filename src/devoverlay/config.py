"""Environment-driven settings and state-file locations."""

import os
from pathlib import Path
from typing import Optional

DEFAULT_PORT = 3001
DEFAULT_TARGET_PORT = 3000
DEFAULT_MODEL = "sonnet"
DEFAULT_CONFIRM_TIMEOUT = 120.0
STATE_DIR_NAME = ".devoverlay"


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_port() -> int:
    """Return the port the overlay server listens on."""
    return _int_env("DEVOVERLAY_PORT", DEFAULT_PORT)


def get_target_port() -> int:
    """Return the port of the user's dev server."""
    return _int_env("DEVOVERLAY_TARGET_PORT", DEFAULT_TARGET_PORT)


def get_default_model() -> str:
    return os.environ.get("DEVOVERLAY_MODEL") or DEFAULT_MODEL


def get_max_output_tokens() -> Optional[int]:
    return _int_env("DEVOVERLAY_MAX_OUTPUT_TOKENS", None)


def get_confirm_timeout() -> float:
    """Seconds a tool confirmation waits before counting as rejected."""
    value = os.environ.get("DEVOVERLAY_CONFIRM_TIMEOUT")
    if not value:
        return DEFAULT_CONFIRM_TIMEOUT
    try:
        return float(value)
    except ValueError:
        return DEFAULT_CONFIRM_TIMEOUT


def get_state_dir(project_dir: Path) -> Path:
    """Return the directory holding devoverlay's per-project state."""
    env = os.environ.get("DEVOVERLAY_STATE_DIR")
    if env:
        return Path(env)
    return Path(project_dir) / STATE_DIR_NAME


def get_session_path(project_dir: Path) -> Path:
    return get_state_dir(project_dir) / "session.json"


def get_history_path(project_dir: Path) -> Path:
    return get_state_dir(project_dir) / "history.json"


def get_script_path() -> Optional[Path]:
    """Return the transcript replayed by the scripted adapter, if configured."""
    env = os.environ.get("DEVOVERLAY_SCRIPT")
    if env:
        return Path(env)
    return None
