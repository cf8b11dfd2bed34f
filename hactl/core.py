"""Session wiring: config -> transport, stores, matcher and resolver."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .cache import RegistryCache
from .config import AppConfig
from .context import ContextRecord, ContextStore
from .dispatch import Dispatcher
from .errors import AmbiguousMatchError, ConfigError, DispatchError, NoMatchError, ResolutionError
from .fuzzy import MatchKind, Matcher
from .ha_client import HassTransport
from .history import HistoryLog
from .resolver import ActionPlan, CommandResolver
from .services import ServiceResolver

logger = logging.getLogger(__name__)

CONTEXT_FILE = "context.json"
HISTORY_FILE = "history.jsonl"


class Session:
    def __init__(
        self,
        config: AppConfig,
        transport: Any = None,
        confirm: Optional[Callable[[ActionPlan], bool]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        if transport is None and config.server and config.token:
            transport = HassTransport(config.server, config.token, config.timeout, config.insecure)
        self.transport = transport
        self.cache = RegistryCache(
            directory=config.cache_dir,
            transport=transport,
            server_url=config.server or "",
            ttls=dict(config.cache_ttls),
            stale_policy=config.stale_policy,
            clock=clock,
        )
        self.context = ContextStore(config.state_dir / CONTEXT_FILE, ttl=config.context_ttl, clock=clock)
        self.history = HistoryLog(config.state_dir / HISTORY_FILE, max_entries=config.history_max_entries)
        self.matcher = Matcher(
            threshold=config.match_threshold,
            tie_tolerance=config.tie_tolerance,
            suggestion_limit=config.suggestion_limit,
        )
        self.dispatcher = Dispatcher(transport, self.cache) if transport is not None else None
        self.services = ServiceResolver(self.cache, self.matcher)
        self.resolver = CommandResolver(
            self.cache,
            self.context,
            self.history,
            matcher=self.matcher,
            dispatcher=self.dispatcher,
            confirm=confirm,
            default_step_pct=config.default_step_pct,
            bulk_confirm_threshold=config.bulk_confirm_threshold,
        )

    def resolve(self, utterance: str, exact_only: bool = False, dry_run: bool = False) -> ActionPlan:
        return self.resolver.resolve(utterance, exact_only=exact_only, dry_run=dry_run)

    def record_history(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        return self.history.append(entry)

    def get_history(self, **filters: Any) -> List[Dict[str, Any]]:
        return self.history.entries(**filters)

    def compact_history(self, max_entries: Optional[int] = None) -> int:
        return self.history.compact(max_entries)

    def get_context(self) -> Optional[ContextRecord]:
        return self.context.get()

    def clear_context(self) -> bool:
        return self.context.clear()

    def cache_status(self) -> List[Dict[str, Any]]:
        return self.cache.status()

    def cache_refresh(self, category: str = "all") -> Dict[str, int]:
        refreshed = self.cache.refresh(category)
        return {name: len(snapshot.entries) for name, snapshot in refreshed.items()}

    def cache_clear(self, category: str = "all") -> List[str]:
        return self.cache.invalidate(category)

    def refresh_stale(self) -> List[str]:
        if not self.config.refresh_after_command or not self.cache.pending:
            return []
        return self.cache.refresh_pending()

    def call_service(
        self,
        domain: str,
        service: str,
        target: str = "",
        data: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """Resolve and run ``<domain> <service> [target]``, with one history entry either way."""
        if not dry_run and self.dispatcher is None:
            self.config.require_connection()
            raise ConfigError("no connection configured")
        utterance = " ".join(part for part in ("call", domain, service, target) if part)
        entry: Dict[str, Any] = {"kind": "service", "utterance": utterance, "action": "call", "targets": []}
        try:
            call = self.services.resolve(domain, service, target, data)
        except ResolutionError as exc:
            entry.update(outcome="failed", match_kind=None, score=0.0, error_kind=exc.kind, error=exc.message)
            self.history.append(entry)
            raise
        entry.update(
            targets=[call.entity_id] if call.entity_id else [],
            match_kind=call.match_kind,
            score=round(call.score, 3),
        )
        result = call.to_dict()
        if dry_run:
            result["outcome"] = "dry_run"
        else:
            outcome = self.dispatcher.call(call.domain, call.service, call.payload())
            result["outcome"] = "ok" if outcome.get("ok") else "failed"
            if not outcome.get("ok"):
                entry.update(error_kind="dispatch_error", error=str(outcome.get("error")))
        entry["outcome"] = result["outcome"]
        self.history.append(entry)
        if result["outcome"] == "failed":
            raise DispatchError(f"{call.name} failed", [outcome])
        return result

    def entity_state(self, phrase: str) -> Dict[str, Any]:
        """Resolve ``phrase`` to one entity and fetch its live state, bypassing the cache."""
        if self.transport is None:
            self.config.require_connection()
            raise ConfigError("no connection configured")
        result = self.matcher.match(phrase, self.cache.entries("entities"))
        if result.kind is MatchKind.AMBIGUOUS:
            raise AmbiguousMatchError(phrase, [c.to_dict() for c in result.candidates])
        if not result.matched:
            raise NoMatchError(phrase, result.reason, [c.to_dict() for c in result.candidates])
        logger.debug("entity get phrase=%r -> %s (%s)", phrase, result.entry_id, result.kind.value)
        return self.transport.get_entity_state(result.entry_id)
