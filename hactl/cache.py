"""Persisted TTL cache of the hub's registries (entities, services, areas, devices, labels)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from . import storage
from .config import DEFAULT_TTLS
from .errors import CacheRefreshError, CacheUnavailableError, TransportError
from .registry import CATEGORIES, RegistryEntry, build_entries

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

FETCHERS = {
    "entities": "fetch_entities",
    "services": "fetch_services",
    "areas": "fetch_areas",
    "devices": "fetch_devices",
    "labels": "fetch_labels",
}


@dataclass(frozen=True)
class CacheSnapshot:
    category: str
    entries: Dict[str, RegistryEntry]
    fetched_at: float
    ttl: float
    server_url: str = ""

    def age(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    def expires_in(self, now: float) -> float:
        return self.ttl - self.age(now)

    def is_stale(self, now: float) -> bool:
        return now - self.fetched_at > self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "category": self.category,
            "fetched_at": self.fetched_at,
            "ttl": self.ttl,
            "server_url": self.server_url,
            "entries": {key: entry.to_dict() for key, entry in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheSnapshot":
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"unsupported snapshot version {data.get('version')!r}")
        raw_entries = data.get("entries")
        if not isinstance(raw_entries, dict):
            raise ValueError("snapshot entries must be a mapping")
        return cls(
            category=str(data["category"]),
            entries={key: RegistryEntry.from_dict(value) for key, value in raw_entries.items()},
            fetched_at=float(data["fetched_at"]),
            ttl=float(data["ttl"]),
            server_url=str(data.get("server_url") or ""),
        )


def expand_categories(category: str) -> List[str]:
    if category == "all":
        return list(CATEGORIES)
    if category not in CATEGORIES:
        raise ValueError(f"unknown cache category {category!r}; expected one of all, {', '.join(CATEGORIES)}")
    return [category]


@dataclass
class RegistryCache:
    """One JSON file per category, replaced atomically on refresh.

    Reads tolerate staleness by default: a stale snapshot is served at once
    and the category is queued in ``pending`` for ``refresh_pending()``.
    With ``stale_policy="block"`` (or ``fresh=True``) stale reads refresh first.
    """

    directory: Path
    transport: Any = None
    server_url: str = ""
    ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TTLS))
    stale_policy: str = "serve_stale"
    clock: Callable[[], float] = time.time
    pending: Set[str] = field(default_factory=set)
    _loaded: Dict[str, CacheSnapshot] = field(default_factory=dict, repr=False)

    def path(self, category: str) -> Path:
        return Path(self.directory) / f"{category}.json"

    def ttl(self, category: str) -> float:
        return float(self.ttls.get(category, DEFAULT_TTLS[category]))

    def load(self, category: str) -> Optional[CacheSnapshot]:
        """Read the persisted snapshot, or None when absent, unreadable or from another server."""
        if category in self._loaded:
            return self._loaded[category]
        data = storage.read_json(self.path(category))
        if data is None:
            return None
        try:
            snapshot = CacheSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("discarding unreadable %s cache: %s", category, exc)
            return None
        if self.server_url and snapshot.server_url and snapshot.server_url != self.server_url.rstrip("/"):
            logger.info(
                "ignoring %s cache from %s (configured server is %s)",
                category,
                snapshot.server_url,
                self.server_url,
            )
            return None
        self._loaded[category] = snapshot
        return snapshot

    def get(self, category: str, fresh: bool = False) -> CacheSnapshot:
        if category not in CATEGORIES:
            raise ValueError(f"unknown cache category {category!r}")
        snapshot = self.load(category)
        if snapshot is None:
            if self.transport is None:
                raise CacheUnavailableError(category, "no cached snapshot and no connection configured")
            try:
                return self._refresh_one(category)
            except CacheRefreshError as exc:
                raise CacheUnavailableError(category, exc.reason) from exc
        now = self.clock()
        if not snapshot.is_stale(now):
            return snapshot
        if (fresh or self.stale_policy == "block") and self.transport is not None:
            try:
                return self._refresh_one(category)
            except CacheRefreshError as exc:
                logger.warning("%s; using stale snapshot (age %.0fs)", exc, snapshot.age(now))
                return snapshot
        logger.debug("serving stale %s snapshot (age %.0fs)", category, snapshot.age(now))
        self.pending.add(category)
        return snapshot

    def entries(self, category: str, fresh: bool = False) -> List[RegistryEntry]:
        return list(self.get(category, fresh=fresh).entries.values())

    def _refresh_one(self, category: str) -> CacheSnapshot:
        if self.transport is None:
            raise CacheRefreshError(category, "no connection configured")
        fetch = getattr(self.transport, FETCHERS[category])
        started = self.clock()
        try:
            records = fetch()
        except TransportError as exc:
            raise CacheRefreshError(category, exc.reason or exc.message) from exc
        if not isinstance(records, list):
            raise CacheRefreshError(category, "transport returned a non-list payload")
        snapshot = CacheSnapshot(
            category=category,
            entries=build_entries(category, records),
            fetched_at=started,
            ttl=self.ttl(category),
            server_url=self.server_url.rstrip("/"),
        )
        try:
            storage.atomic_write_json(self.path(category), snapshot.to_dict())
        except OSError as exc:
            raise CacheRefreshError(category, f"write failed: {exc}") from exc
        self._loaded[category] = snapshot
        self.pending.discard(category)
        logger.info("refreshed %s cache: %d entries", category, len(snapshot.entries))
        return snapshot

    def refresh(self, category: str = "all") -> Dict[str, CacheSnapshot]:
        """Fetch and persist ``category`` (or every category); failures leave old snapshots intact."""
        refreshed: Dict[str, CacheSnapshot] = {}
        failures: List[CacheRefreshError] = []
        for name in expand_categories(category):
            try:
                refreshed[name] = self._refresh_one(name)
            except CacheRefreshError as exc:
                failures.append(exc)
        if failures:
            if len(failures) == 1:
                raise failures[0]
            reason = "; ".join(f"{exc.category}: {exc.reason}" for exc in failures)
            raise CacheRefreshError(category, reason)
        return refreshed

    def refresh_pending(self) -> List[str]:
        done = []
        for category in sorted(self.pending):
            try:
                self._refresh_one(category)
                done.append(category)
            except CacheRefreshError as exc:
                logger.warning("%s", exc)
        return done

    def invalidate(self, category: str = "all") -> List[str]:
        removed = []
        for name in expand_categories(category):
            self._loaded.pop(name, None)
            self.pending.discard(name)
            if storage.remove_file(self.path(name)):
                removed.append(name)
        return removed

    def status(self) -> List[Dict[str, Any]]:
        now = self.clock()
        rows = []
        for category in CATEGORIES:
            path = self.path(category)
            row: Dict[str, Any] = {"category": category, "path": str(path), "exists": path.exists()}
            snapshot = self.load(category) if row["exists"] else None
            if snapshot is not None:
                row.update(
                    {
                        "count": len(snapshot.entries),
                        "size_bytes": path.stat().st_size,
                        "age_secs": round(snapshot.age(now), 1),
                        "expires_in_secs": round(snapshot.expires_in(now), 1),
                        "stale": snapshot.is_stale(now),
                        "server_url": snapshot.server_url,
                    }
                )
            rows.append(row)
        return rows
