"""Text, JSON and YAML output."""

from __future__ import annotations

import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

import yaml


def _plain(data: Any) -> Any:
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, Path):
        return str(data)
    if hasattr(data, "to_dict"):
        return _plain(data.to_dict())
    if isinstance(data, dict):
        return {str(k): _plain(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_plain(v) for v in data]
    return data


def emit(
    data: Any,
    fmt: str = "text",
    text: Optional[Callable[[Any], str]] = None,
    stream: Optional[TextIO] = None,
) -> None:
    out = stream or sys.stdout
    plain = _plain(data)
    if fmt == "json":
        out.write(json.dumps(plain, indent=2, ensure_ascii=False, default=str) + "\n")
    elif fmt == "yaml":
        out.write(yaml.safe_dump(plain, sort_keys=False, allow_unicode=True))
    elif text is not None:
        rendered = text(data)
        if rendered:
            out.write(rendered.rstrip("\n") + "\n")
    else:
        out.write(yaml.safe_dump(plain, sort_keys=False, allow_unicode=True))


def table(rows: Any, columns: Any) -> str:
    if not rows:
        return "(none)"
    widths = {c: max(len(c), *(len(str(row.get(c, ""))) for row in rows)) for c in columns}
    lines = ["  ".join(c.upper().ljust(widths[c]) for c in columns)]
    for row in rows:
        lines.append("  ".join(str(row.get(c, "")).ljust(widths[c]) for c in columns))
    return "\n".join(lines)
