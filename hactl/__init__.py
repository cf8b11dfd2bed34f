"""hactl: natural-language command resolution for Home Assistant."""

__version__ = "0.3.0"

__all__ = [
    "actions",
    "cache",
    "config",
    "context",
    "core",
    "dispatch",
    "errors",
    "fuzzy",
    "ha_client",
    "history",
    "logging_utils",
    "parser",
    "registry",
    "resolver",
    "services",
    "settings",
    "storage",
]
