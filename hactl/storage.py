"""On-disk JSON and JSONL helpers shared by the cache, context and history stores."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def atomic_write_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so readers see either the old or the new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(path.parent), prefix=f".{path.name}.", delete=False
    )
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        try:
            os.unlink(tmp.name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, ensure_ascii=True, indent=2, sort_keys=True) + "\n")


def read_json(path: Path) -> Optional[Any]:
    """Return decoded JSON, or None when the file is missing or unreadable."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("ignoring corrupt json file %s", path)
        return None


def append_jsonl(path: Path, entry: Dict[str, Any]) -> Dict[str, Any]:
    path.parent.mkdir(parents=True, exist_ok=True)
    entry = dict(entry)
    entry.setdefault("ts", utc_now_iso())
    line = json.dumps(entry, ensure_ascii=True) + "\n"
    with open(path, "a", encoding="utf-8") as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    return entry


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Read every decodable object line, oldest first."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return []
    entries: List[Dict[str, Any]] = []
    for line in data.decode("utf-8", errors="ignore").splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            logger.debug("skipping undecodable line in %s", path)
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def rewrite_jsonl(path: Path, entries: Iterable[Dict[str, Any]]) -> None:
    text = "".join(json.dumps(entry, ensure_ascii=True) + "\n" for entry in entries)
    atomic_write_text(path, text)


def remove_file(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
