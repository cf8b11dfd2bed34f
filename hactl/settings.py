"""Runtime settings and paths."""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "hactl"


def _xdg_dir(env_var: str, fallback: str) -> Path:
    raw = os.getenv(env_var)
    base = Path(raw) if raw else Path.home() / fallback
    return base / APP_NAME


def cache_dir() -> Path:
    raw = os.getenv("HACTL_CACHE_DIR")
    if raw:
        return Path(raw)
    return _xdg_dir("XDG_CACHE_HOME", ".cache")


def state_dir() -> Path:
    raw = os.getenv("HACTL_STATE_DIR")
    if raw:
        return Path(raw)
    return _xdg_dir("XDG_STATE_HOME", ".local/state")


def config_path() -> Path:
    raw = os.getenv("HACTL_CONFIG")
    if raw:
        return Path(raw)
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / "config.yaml"


def request_timeout_seconds() -> float:
    value = os.getenv("HACTL_TIMEOUT", "30")
    try:
        return max(1.0, float(value))
    except ValueError:
        return 30.0


def context_ttl_seconds() -> float:
    value = os.getenv("HACTL_CONTEXT_TTL", "300")
    try:
        return max(1.0, float(value))
    except ValueError:
        return 300.0


def history_max_entries() -> int:
    value = os.getenv("HACTL_HISTORY_MAX", "1000")
    try:
        return max(1, int(value))
    except ValueError:
        return 1000


def match_threshold() -> float:
    value = os.getenv("HACTL_MATCH_THRESHOLD", "0.6")
    try:
        return min(1.0, max(0.0, float(value)))
    except ValueError:
        return 0.6
