"""Command resolution: utterance -> parsed intent -> concrete action plan.

The resolver walks a fixed sequence of states::

    parsing -> context_check -> matching -> disambiguating -> resolved
                                                          \\-> failed

and records exactly one history entry per call, whatever the outcome.
Context is only written for plans that resolved and were not cancelled,
dry-run, or rejected by the hub.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .actions import Action, Parameter, describe, domains_for
from .errors import (
    AmbiguousMatchError,
    CacheUnavailableError,
    DispatchError,
    NoContextError,
    NoMatchError,
    ResolutionError,
    UtteranceSyntaxError,
)
from .fuzzy import MatchKind, MatchResult, Matcher, singularize
from .logging_utils import log_with_context
from .parser import ParsedIntent, parse
from .registry import RegistryEntry

logger = logging.getLogger(__name__)

ALL_WORDS = frozenset({"all", "everything", "every"})
SCOPE_PREPOSITIONS = frozenset({"in", "on", "of", "at", "from", "inside", "outside"})
_SEPARATOR_RE = re.compile(r"\s*,\s*|\s+and\s+")

# Spoken names for entity domains, keyed by singular form.
DOMAIN_WORDS: Dict[str, str] = {
    "light": "light",
    "lamp": "light",
    "bulb": "light",
    "switch": "switch",
    "plug": "switch",
    "outlet": "switch",
    "fan": "fan",
    "cover": "cover",
    "blind": "cover",
    "shade": "cover",
    "curtain": "cover",
    "shutter": "cover",
    "garage": "cover",
    "lock": "lock",
    "speaker": "media_player",
    "tv": "media_player",
    "television": "media_player",
    "player": "media_player",
    "thermostat": "climate",
    "climate": "climate",
    "valve": "valve",
    "vacuum": "vacuum",
    "scene": "scene",
    "script": "script",
    "automation": "automation",
    "siren": "siren",
    "humidifier": "humidifier",
}

# Lower is stronger; a plan reports its weakest step.
_KIND_RANK = {"exact": 0, "alias": 1, "context": 1, "fuzzy": 2}


class State(str, Enum):
    PARSING = "parsing"
    CONTEXT_CHECK = "context_check"
    MATCHING = "matching"
    DISAMBIGUATING = "disambiguating"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class PlanStep:
    entity_id: str
    action: Action
    parameter: Parameter = None
    name: str = ""
    phrase: str = ""
    match_kind: str = "exact"
    score: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name,
            "action": self.action.value,
            "parameter": self.parameter,
            "phrase": self.phrase,
            "match_kind": self.match_kind,
            "score": round(self.score, 3),
        }


@dataclass
class ActionPlan:
    utterance: str
    intent: ParsedIntent
    steps: List[PlanStep]
    from_context: bool = False
    context_ids: List[str] = field(default_factory=list)
    bulk: bool = False
    dry_run: bool = False
    state: State = State.RESOLVED
    outcome: str = "resolved"
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def entity_ids(self) -> List[str]:
        return [step.entity_id for step in self.steps]

    @property
    def match_kind(self) -> str:
        if self.from_context:
            return "context"
        kinds = [step.match_kind for step in self.steps] or ["exact"]
        return max(kinds, key=lambda kind: _KIND_RANK.get(kind, 3))

    @property
    def score(self) -> float:
        return min((step.score for step in self.steps), default=0.0)

    def summary(self) -> str:
        names = ", ".join(step.name or step.entity_id for step in self.steps)
        return f"{describe(self.intent.action, self.steps[0].parameter if self.steps else None)}: {names}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "utterance": self.utterance,
            "intent": self.intent.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "match_kind": self.match_kind,
            "score": round(self.score, 3),
            "from_context": self.from_context,
            "dry_run": self.dry_run,
            "outcome": self.outcome,
        }
        if self.results:
            data["results"] = self.results
        return data


def split_targets(phrase: str) -> List[str]:
    return [part.strip() for part in _SEPARATOR_RE.split(phrase) if part.strip()]


def is_all_phrase(phrase: str) -> bool:
    words = phrase.split()
    return bool(words) and words[0] in ALL_WORDS


def choice_utterance(intent: ParsedIntent, phrase: str, entity_id: str) -> str:
    """Rebuild an utterance with ``phrase`` replaced by a concrete entity id."""
    target = intent.target.replace(phrase, entity_id, 1) if phrase else entity_id
    words = [intent.action.value.replace("_", " "), target]
    if isinstance(intent.parameter, int):
        words.append(f"{intent.parameter}%")
    elif intent.parameter:
        words.append(str(intent.parameter))
    return " ".join(words)


class CommandResolver:
    def __init__(
        self,
        cache: Any,
        context: Any,
        history: Any,
        matcher: Optional[Matcher] = None,
        parser: Callable[[str], ParsedIntent] = parse,
        dispatcher: Any = None,
        confirm: Optional[Callable[[ActionPlan], bool]] = None,
        default_step_pct: int = 10,
        bulk_confirm_threshold: int = 3,
    ) -> None:
        self.cache = cache
        self.context = context
        self.history = history
        self.matcher = matcher or Matcher()
        self.parser = parser
        self.dispatcher = dispatcher
        self.confirm = confirm
        self.default_step_pct = default_step_pct
        self.bulk_confirm_threshold = bulk_confirm_threshold

    # -- public -----------------------------------------------------------

    def resolve(self, utterance: str, exact_only: bool = False, dry_run: bool = False) -> ActionPlan:
        state = State.PARSING
        intent: Optional[ParsedIntent] = None
        try:
            intent = self.parser(utterance)
            if intent.is_elliptical:
                state = State.CONTEXT_CHECK
                plan = self._resolve_from_context(intent)
            else:
                state = State.MATCHING
                plan = self._resolve_targets(intent, exact_only)
        except ResolutionError as exc:
            exc.intent = intent
            if isinstance(exc, AmbiguousMatchError):
                state = State.DISAMBIGUATING
            log_with_context(
                logger, logging.INFO, "resolution failed", state=state.value, kind=exc.kind, utterance=utterance
            )
            self._record_failure(utterance, intent, exc)
            raise

        plan.dry_run = dry_run
        if dry_run:
            plan.outcome = "dry_run"
        elif self.confirm is not None and self.needs_confirmation(plan) and not self.confirm(plan):
            plan.outcome = "cancelled"
        elif self.dispatcher is not None:
            self._dispatch(plan)
        else:
            plan.outcome = "resolved"

        if plan.outcome in ("ok", "resolved"):
            self.context.record(
                plan.context_ids or plan.entity_ids,
                intent.action,
                parameter=intent.parameter,
                match_kind=plan.match_kind,
                score=plan.score,
                utterance=utterance,
            )
        self._record_plan(plan)
        if plan.outcome == "failed":
            failures = [r for r in plan.results if not r.get("ok")]
            raise DispatchError(f"{len(failures)} of {len(plan.steps)} service calls failed", failures)
        return plan

    def needs_confirmation(self, plan: ActionPlan) -> bool:
        return plan.bulk or len(plan.steps) >= self.bulk_confirm_threshold

    # -- states -----------------------------------------------------------

    def _resolve_from_context(self, intent: ParsedIntent) -> ActionPlan:
        previous = self.context.get()
        entity_ids = self.context.resolve_pronoun(intent)
        if entity_ids is None:
            if previous is not None:
                raise NoContextError(
                    f"the last target ({', '.join(previous.entity_ids)}) cannot "
                    f"{intent.action.value.replace('_', ' ')}; name the device explicitly"
                )
            raise NoContextError()
        parameter = self._parameter(intent)
        steps = [
            PlanStep(entity_id, intent.action, parameter, phrase="", match_kind="context", score=1.0)
            for entity_id in entity_ids
        ]
        # a narrowed follow-up keeps every stored target for the next one
        context_ids = list(previous.entity_ids) if previous is not None else []
        return ActionPlan(intent.text, intent, steps, from_context=True, context_ids=context_ids)

    def _resolve_targets(self, intent: ParsedIntent, exact_only: bool) -> ActionPlan:
        entities = self.cache.entries("entities")
        domains = domains_for(intent.action, intent.domain_hint)
        parameter = self._parameter(intent)

        matched: List[Tuple[str, Optional[MatchResult], List[RegistryEntry]]] = []
        bulk = False
        for phrase in self._target_phrases(intent.target, entities, domains):
            if is_all_phrase(phrase):
                bulk = True
                matched.append((phrase, None, self._expand_all(phrase, intent, entities, domains)))
                continue
            result = self.matcher.match(phrase, entities, exact_only=exact_only, domains=domains)
            log_with_context(
                logger,
                logging.DEBUG,
                "match",
                phrase=phrase,
                kind=result.kind.value,
                entry=result.entry_id,
                score=f"{result.score:.3f}",
            )
            matched.append((phrase, result, []))

        for phrase, result, _ in matched:
            if result is not None and result.kind is MatchKind.NONE:
                raise NoMatchError(phrase, result.reason, self._suggestions(phrase, result, entities))
        for phrase, result, _ in matched:
            if result is not None and result.kind is MatchKind.AMBIGUOUS:
                raise AmbiguousMatchError(phrase, [c.to_dict() for c in result.candidates])

        by_id = {entry.id: entry for entry in entities}
        steps: List[PlanStep] = []
        for phrase, result, expanded in matched:
            if result is None:
                steps.extend(
                    PlanStep(entry.id, intent.action, parameter, entry.name, phrase, "exact", 1.0)
                    for entry in expanded
                )
                continue
            entry = by_id[result.entry_id]
            steps.append(
                PlanStep(entry.id, intent.action, parameter, entry.name, phrase, result.kind.value, result.score)
            )
        return ActionPlan(intent.text, intent, _dedupe(steps), bulk=bulk)

    # -- helpers ----------------------------------------------------------

    def _parameter(self, intent: ParsedIntent) -> Parameter:
        if intent.parameter is None and intent.action in (Action.DIM, Action.BRIGHTEN):
            return self.default_step_pct
        return intent.parameter

    def _target_phrases(
        self, target: str, entities: Sequence[RegistryEntry], domains: Optional[Set[str]]
    ) -> List[str]:
        parts = split_targets(target)
        if len(parts) <= 1:
            return [target.replace(",", " ").strip()]
        whole = self.matcher.match(target.replace(",", " "), entities, exact_only=True, domains=domains)
        if whole.kind is MatchKind.EXACT:
            return [target.replace(",", " ").strip()]
        return parts

    def _suggestions(
        self, phrase: str, result: MatchResult, entities: Sequence[RegistryEntry]
    ) -> List[Dict[str, Any]]:
        if result.candidates:
            return [c.to_dict() for c in result.candidates]
        unfiltered = self.matcher.match(phrase, entities)
        return [c.to_dict() for c in unfiltered.candidates]

    def _expand_all(
        self,
        phrase: str,
        intent: ParsedIntent,
        entities: Sequence[RegistryEntry],
        domains: Optional[Set[str]],
    ) -> List[RegistryEntry]:
        words = phrase.split()[1:]
        known_domains = {entry.domain for entry in entities}
        named_domain: Optional[str] = None
        rest: List[str] = []
        for word in words:
            domain = DOMAIN_WORDS.get(singularize(word)) or (word if word in known_domains else None)
            if domain and named_domain is None:
                named_domain = domain
                continue
            rest.append(word)
        while rest and rest[0] in SCOPE_PREPOSITIONS:
            rest = rest[1:]
        qualifier = " ".join(w for w in rest if w not in SCOPE_PREPOSITIONS)

        scope = domains
        if named_domain:
            if domains is not None and named_domain not in domains:
                raise NoMatchError(
                    phrase, f"{named_domain} entities cannot {intent.action.value.replace('_', ' ')}"
                )
            scope = frozenset({named_domain})
        if scope is None and not qualifier:
            start = intent.text.lower().find(phrase.split()[0])
            span = (start, start + len(phrase.split()[0])) if start >= 0 else (0, len(intent.text))
            raise UtteranceSyntaxError(
                f"'{phrase}' needs a device type or area, e.g. 'all lights' or 'everything in kitchen'",
                intent.text,
                span,
            )

        pool = [entry for entry in entities if scope is None or entry.domain in scope]
        if qualifier:
            pool = self._scope_to_qualifier(qualifier, pool)
        if not pool:
            raise NoMatchError(phrase, "no entities in that scope")
        return sorted(pool, key=lambda entry: entry.id)

    def _scope_to_qualifier(self, qualifier: str, pool: List[RegistryEntry]) -> List[RegistryEntry]:
        areas = self.cache.entries("areas")
        area = self.matcher.match(qualifier, areas)
        if area.kind is MatchKind.AMBIGUOUS:
            raise AmbiguousMatchError(qualifier, [c.to_dict() for c in area.candidates])
        if area.matched:
            device_areas = self._device_areas()
            return [e for e in pool if (e.area_id or device_areas.get(e.attributes.get("device_id"))) == area.entry_id]

        try:
            labels = self.cache.entries("labels")
        except CacheUnavailableError as exc:
            logger.debug("labels unavailable for scoping: %s", exc.reason)
            labels = []
        label = self.matcher.match(qualifier, labels)
        if label.kind is MatchKind.AMBIGUOUS:
            raise AmbiguousMatchError(qualifier, [c.to_dict() for c in label.candidates])
        if label.matched:
            return [e for e in pool if label.entry_id in (e.attributes.get("labels") or [])]
        raise NoMatchError(
            qualifier, "no area or label matches", [c.to_dict() for c in area.candidates]
        )

    def _device_areas(self) -> Dict[str, str]:
        try:
            devices = self.cache.entries("devices")
        except CacheUnavailableError as exc:
            logger.debug("devices unavailable for area lookup: %s", exc.reason)
            return {}
        return {d.id: d.area_id for d in devices if d.area_id}

    def _dispatch(self, plan: ActionPlan) -> None:
        plan.results = [
            self.dispatcher.dispatch(step.entity_id, step.action, step.parameter) for step in plan.steps
        ]
        plan.outcome = "ok" if all(r.get("ok") for r in plan.results) else "failed"

    def _record_plan(self, plan: ActionPlan) -> None:
        entry: Dict[str, Any] = {
            "utterance": plan.utterance,
            "action": plan.intent.action.value,
            "targets": plan.entity_ids,
            "parameter": plan.steps[0].parameter if plan.steps else plan.intent.parameter,
            "match_kind": plan.match_kind,
            "score": round(plan.score, 3),
            "outcome": plan.outcome,
        }
        if plan.outcome == "failed":
            entry["error_kind"] = "dispatch_error"
            entry["error"] = "; ".join(
                f"{r.get('entity_id')}: {r.get('error')}" for r in plan.results if not r.get("ok")
            )
        self.history.append(entry)

    def _record_failure(self, utterance: str, intent: Optional[ParsedIntent], exc: ResolutionError) -> None:
        match_kind = {"ambiguous": "ambiguous", "no_match": "none"}.get(exc.kind)
        self.history.append(
            {
                "utterance": utterance,
                "action": intent.action.value if intent else None,
                "targets": [],
                "parameter": intent.parameter if intent else None,
                "match_kind": match_kind,
                "score": 0.0,
                "outcome": "failed",
                "error_kind": exc.kind,
                "error": exc.message,
            }
        )


def _dedupe(steps: List[PlanStep]) -> List[PlanStep]:
    seen = set()
    unique = []
    for step in steps:
        if step.entity_id in seen:
            continue
        seen.add(step.entity_id)
        unique.append(step)
    return unique
