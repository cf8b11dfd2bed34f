"""Explicit service calls: ``<domain> <service> [target]`` with fuzzy lookup.

Domain, service and target are each matched through the same Matcher as
natural-language targets, so ``ligth trun_on kitchen light`` still reaches
``light.turn_on`` on ``light.kitchen_main`` when each part is unique.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import AmbiguousMatchError, NoMatchError
from .fuzzy import MatchKind, MatchResult, Matcher
from .registry import RegistryEntry

logger = logging.getLogger(__name__)

# Domains whose services act on entities of any domain.
GENERIC_DOMAINS = frozenset({"homeassistant"})

_KIND_RANK = {"exact": 0, "alias": 1, "fuzzy": 2}


@dataclass
class ServiceCall:
    domain: str
    service: str
    data: Dict[str, Any] = field(default_factory=dict)
    entity_id: Optional[str] = None
    matches: List[MatchResult] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.domain}.{self.service}"

    @property
    def match_kind(self) -> str:
        kinds = [m.kind.value for m in self.matches] or ["exact"]
        return max(kinds, key=lambda kind: _KIND_RANK.get(kind, 3))

    @property
    def score(self) -> float:
        return min((m.score for m in self.matches), default=1.0)

    def payload(self) -> Dict[str, Any]:
        data = dict(self.data)
        if self.entity_id:
            data["entity_id"] = self.entity_id
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.name,
            "entity_id": self.entity_id,
            "data": self.payload(),
            "match_kind": self.match_kind,
            "score": round(self.score, 3),
        }


def parse_data(pairs: Sequence[str]) -> Dict[str, Any]:
    """``["brightness_pct=40", "color_name=red"]`` -> typed service data."""
    data: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"service data must be key=value, got {pair!r}")
        try:
            value = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError as exc:
            raise ValueError(f"unreadable value for {key.strip()}: {exc}") from exc
        data[key.strip()] = value
    return data


def domain_entries(services: Sequence[RegistryEntry]) -> List[RegistryEntry]:
    seen = sorted({entry.domain for entry in services})
    return [RegistryEntry(id=domain, name=domain, category="domains", domain=domain) for domain in seen]


def _require(result: MatchResult, phrase: str) -> MatchResult:
    if result.kind is MatchKind.AMBIGUOUS:
        raise AmbiguousMatchError(phrase, [c.to_dict() for c in result.candidates])
    if not result.matched:
        raise NoMatchError(phrase, result.reason, [c.to_dict() for c in result.candidates])
    return result


class ServiceResolver:
    def __init__(self, cache: Any, matcher: Optional[Matcher] = None) -> None:
        self.cache = cache
        self.matcher = matcher or Matcher()

    def find_domain(self, phrase: str) -> MatchResult:
        services = self.cache.entries("services")
        return _require(self.matcher.match(phrase, domain_entries(services)), phrase)

    def find_service(self, domain: str, phrase: str) -> MatchResult:
        # a full "domain.service" id short-circuits the domain filter
        services = self.cache.entries("services")
        return _require(self.matcher.match(phrase, services, domains={domain}), phrase)

    def find_target(self, domain: str, phrase: str) -> MatchResult:
        entities = self.cache.entries("entities")
        domains = None if domain in GENERIC_DOMAINS else {domain}
        return _require(self.matcher.match(phrase, entities, domains=domains), phrase)

    def resolve(
        self,
        domain_phrase: str,
        service_phrase: str,
        target: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> ServiceCall:
        matches = []
        domain = self.find_domain(domain_phrase)
        matches.append(domain)
        service = self.find_service(domain.entry_id, service_phrase)
        matches.append(service)
        service_domain, service_name = service.entry_id.split(".", 1)
        entity_id = None
        if target.strip():
            entity = self.find_target(service_domain, target)
            matches.append(entity)
            entity_id = entity.entry_id
        call = ServiceCall(
            domain=service_domain,
            service=service_name,
            data=dict(data or {}),
            entity_id=entity_id,
            matches=matches,
        )
        logger.debug("service call resolved: %s -> %s %s", service_phrase, call.name, entity_id or "")
        return call
