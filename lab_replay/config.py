from __future__ import annotations
import logging
import os

# Defaults
_DEFAULT_PORT = 5050
_DEFAULT_MAX_STEPS = 10_000
_DEFAULT_LOG_LEVEL = "INFO"

_TRUTHY = {"1", "true", "yes", "on"}


def _int_from_env(var: str, default: int) -> int:
    raw = os.environ.get(var)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{var} must be an integer, got {raw!r}") from None


def get_port() -> int:
    return _int_from_env("LAB_REPLAY_PORT", _DEFAULT_PORT)


def get_debug() -> bool:
    return os.environ.get("LAB_REPLAY_DEBUG", "").strip().lower() in _TRUTHY


def get_max_steps() -> int:
    """Upper bound for run-to-completion requests (guards against endless While loops)."""
    return _int_from_env("LAB_REPLAY_MAX_STEPS", _DEFAULT_MAX_STEPS)


def get_log_level() -> int:
    name = os.environ.get("LAB_REPLAY_LOG_LEVEL", _DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
