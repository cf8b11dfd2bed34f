"""Structured key=value logging with token redaction."""

from __future__ import annotations

import logging
import re
from typing import Any

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)
_JWT_RE = re.compile(r"eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")


def redact(text: Any) -> str:
    """Mask bearer tokens and JWT-shaped strings (HA long-lived tokens are JWTs)."""
    if text is None:
        return ""
    value = _BEARER_RE.sub(r"\1***", str(text))
    return _JWT_RE.sub("***", value)


def log_with_context(logger: logging.Logger, level: int, message: str, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    parts = [message]
    for key, value in fields.items():
        if value is None:
            continue
        parts.append(f"{key}={redact(value)}")
    logger.log(level, " | ".join(parts))
