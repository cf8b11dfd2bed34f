"""Append-only JSONL log of command resolutions."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import storage

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
SUCCESS_OUTCOMES = frozenset({"ok", "resolved", "dry_run"})


@dataclass
class HistoryLog:
    path: Path
    max_entries: int = DEFAULT_MAX_ENTRIES

    def append(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        entry = dict(entry)
        entry.setdefault("kind", "command")
        return storage.append_jsonl(Path(self.path), entry)

    def entries(
        self,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        outcome: Optional[str] = None,
        match_kind: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first, optionally filtered."""
        needle = search.lower() if search else None
        results: List[Dict[str, Any]] = []
        for entry in reversed(storage.read_jsonl(Path(self.path))):
            if outcome and entry.get("outcome") != outcome:
                continue
            if match_kind and entry.get("match_kind") != match_kind:
                continue
            if needle:
                haystack = " ".join(
                    [str(entry.get("utterance", "")), str(entry.get("action", ""))]
                    + [str(t) for t in entry.get("targets") or []]
                ).lower()
                if needle not in haystack:
                    continue
            results.append(entry)
            if limit is not None and len(results) >= limit:
                break
        return results

    def last(self) -> Optional[Dict[str, Any]]:
        latest = self.entries(limit=1)
        return latest[0] if latest else None

    def compact(self, max_entries: Optional[int] = None) -> int:
        """Keep only the newest ``max_entries``; returns how many entries were dropped."""
        keep = self.max_entries if max_entries is None else max(0, int(max_entries))
        current = storage.read_jsonl(Path(self.path))
        if len(current) <= keep:
            return 0
        kept = current[len(current) - keep :] if keep else []
        storage.rewrite_jsonl(Path(self.path), kept)
        removed = len(current) - len(kept)
        logger.info("history compacted: removed %d, kept %d", removed, len(kept))
        return removed

    def clear(self) -> bool:
        return storage.remove_file(Path(self.path))

    def stats(self, top: int = 5) -> Dict[str, Any]:
        entries = storage.read_jsonl(Path(self.path))
        kinds: Counter = Counter()
        errors: Counter = Counter()
        targets: Counter = Counter()
        outcomes: Counter = Counter()
        successes = 0
        for entry in entries:
            outcomes[str(entry.get("outcome", "unknown"))] += 1
            if entry.get("match_kind"):
                kinds[str(entry["match_kind"])] += 1
            if entry.get("error_kind"):
                errors[str(entry["error_kind"])] += 1
            if entry.get("outcome") in SUCCESS_OUTCOMES:
                successes += 1
                for target in entry.get("targets") or []:
                    targets[str(target)] += 1
        total = len(entries)
        return {
            "total": total,
            "successes": successes,
            "failures": total - successes,
            "success_rate": round(successes / total, 3) if total else 0.0,
            "by_match_kind": dict(kinds),
            "by_outcome": dict(outcomes),
            "by_error": dict(errors),
            "top_targets": [{"id": key, "count": count} for key, count in targets.most_common(top)],
        }
