"""YAML configuration loading with environment and flag overrides."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from . import settings
from .errors import ConfigError

DEFAULT_TTLS: Dict[str, float] = {
    "entities": 300.0,
    "services": 3600.0,
    "areas": 3600.0,
    "devices": 3600.0,
    "labels": 3600.0,
}

STALE_POLICIES = ("serve_stale", "block")
OUTPUT_FORMATS = ("text", "json", "yaml")


@dataclass
class AppConfig:
    server: Optional[str] = None
    token: Optional[str] = None
    timeout: float = 30.0
    insecure: bool = False
    cache_dir: Path = field(default_factory=settings.cache_dir)
    state_dir: Path = field(default_factory=settings.state_dir)
    cache_ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    stale_policy: str = "serve_stale"
    refresh_after_command: bool = True
    match_threshold: float = 0.6
    tie_tolerance: float = 1e-6
    suggestion_limit: int = 3
    context_ttl: float = 300.0
    history_max_entries: int = 1000
    default_step_pct: int = 10
    bulk_confirm_threshold: int = 3
    output_format: str = "text"

    def require_connection(self) -> None:
        if not self.server:
            raise ConfigError(
                "no Home Assistant server configured; set --server, HASS_SERVER or homeassistant.server"
            )
        if not self.token:
            raise ConfigError(
                "no access token configured; set --token, HASS_TOKEN or homeassistant.token"
            )

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        data["cache_dir"] = str(self.cache_dir)
        data["state_dir"] = str(self.state_dir)
        if redact and data.get("token"):
            data["token"] = "***"
        return data


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping")
    return value


def _number(section: Dict[str, Any], key: str, default: float, label: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{label} must be a number")
    return float(value)


def parse_config(data: Any) -> AppConfig:
    """Validate a decoded YAML document and build an AppConfig from it."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("config must be a mapping")
    cfg = AppConfig()

    ha = _section(data, "homeassistant")
    if ha.get("server") is not None:
        cfg.server = str(ha["server"])
    if ha.get("token") is not None:
        cfg.token = str(ha["token"])
    cfg.timeout = _number(ha, "timeout", cfg.timeout, "homeassistant.timeout")
    cfg.insecure = bool(ha.get("insecure", cfg.insecure))

    cache = _section(data, "cache")
    if cache.get("dir"):
        cfg.cache_dir = Path(str(cache["dir"])).expanduser()
    ttl = cache.get("ttl", {}) or {}
    if not isinstance(ttl, dict):
        raise ValueError("cache.ttl must be a mapping")
    for category, seconds in ttl.items():
        if category not in DEFAULT_TTLS:
            raise ValueError(f"cache.ttl has unknown category {category!r}")
        cfg.cache_ttls[category] = _number(ttl, category, DEFAULT_TTLS[category], f"cache.ttl.{category}")
    policy = cache.get("stale_policy", cfg.stale_policy)
    if policy not in STALE_POLICIES:
        raise ValueError(f"cache.stale_policy must be one of {', '.join(STALE_POLICIES)}")
    cfg.stale_policy = policy
    cfg.refresh_after_command = bool(cache.get("refresh_after_command", cfg.refresh_after_command))

    matcher = _section(data, "matcher")
    cfg.match_threshold = _number(matcher, "threshold", cfg.match_threshold, "matcher.threshold")
    if not 0.0 <= cfg.match_threshold <= 1.0:
        raise ValueError("matcher.threshold must be between 0 and 1")
    cfg.tie_tolerance = _number(matcher, "tie_tolerance", cfg.tie_tolerance, "matcher.tie_tolerance")
    cfg.suggestion_limit = int(
        _number(matcher, "suggestion_limit", cfg.suggestion_limit, "matcher.suggestion_limit")
    )

    context = _section(data, "context")
    cfg.context_ttl = _number(context, "ttl", cfg.context_ttl, "context.ttl")

    state = _section(data, "state")
    if state.get("dir"):
        cfg.state_dir = Path(str(state["dir"])).expanduser()

    history = _section(data, "history")
    cfg.history_max_entries = int(
        _number(history, "max_entries", cfg.history_max_entries, "history.max_entries")
    )

    resolver = _section(data, "resolver")
    cfg.default_step_pct = int(
        _number(resolver, "default_step_pct", cfg.default_step_pct, "resolver.default_step_pct")
    )
    cfg.bulk_confirm_threshold = int(
        _number(
            resolver,
            "bulk_confirm_threshold",
            cfg.bulk_confirm_threshold,
            "resolver.bulk_confirm_threshold",
        )
    )

    output = _section(data, "output")
    fmt = output.get("format", cfg.output_format)
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"output.format must be one of {', '.join(OUTPUT_FORMATS)}")
    cfg.output_format = fmt
    return cfg


def _apply_env(cfg: AppConfig) -> None:
    cfg.server = os.getenv("HASS_SERVER") or cfg.server
    cfg.token = os.getenv("HASS_TOKEN") or cfg.token
    if os.getenv("HACTL_CACHE_DIR"):
        cfg.cache_dir = settings.cache_dir()
    if os.getenv("HACTL_STATE_DIR"):
        cfg.state_dir = settings.state_dir()
    if os.getenv("HACTL_TIMEOUT"):
        cfg.timeout = settings.request_timeout_seconds()
    if os.getenv("HACTL_CONTEXT_TTL"):
        cfg.context_ttl = settings.context_ttl_seconds()
    if os.getenv("HACTL_HISTORY_MAX"):
        cfg.history_max_entries = settings.history_max_entries()
    if os.getenv("HACTL_MATCH_THRESHOLD"):
        cfg.match_threshold = settings.match_threshold()


def load_config(
    path: Optional[Path] = None,
    server: Optional[str] = None,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
    insecure: Optional[bool] = None,
) -> AppConfig:
    """Load the YAML file (if present), then apply environment and flag overrides."""
    config_file = Path(path) if path else settings.config_path()
    data: Any = {}
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"{config_file}: invalid YAML: {exc}") from exc
    elif path:
        raise ConfigError(f"config file not found: {config_file}")
    try:
        cfg = parse_config(data)
    except ValueError as exc:
        raise ConfigError(f"{config_file}: {exc}") from exc

    _apply_env(cfg)
    if server:
        cfg.server = server
    if token:
        cfg.token = token
    if timeout is not None:
        cfg.timeout = max(1.0, float(timeout))
    if insecure:
        cfg.insecure = True
    return cfg
