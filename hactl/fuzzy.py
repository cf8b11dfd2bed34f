"""Fuzzy matching of free-text phrases against registry entries.

Scoring runs as an ordered pipeline, first hit wins per stage:

1. identifier exact (``light.kitchen_main``) -> 1.0, short-circuits everything
2. normalized display name / object id exact -> 1.0
3. registered alias exact -> ALIAS_SCORE
4. equal after singularizing each token -> PLURAL_SCORE
5. token-subset containment -> CONTAIN_BASE + CONTAIN_SPAN * phrase/name token ratio
6. whole-form typo within MAX_TYPO_DISTANCE edits -> TYPO_SCORE - TYPO_STEP * (distance - 1)
7. Levenshtein similarity over the full normalized strings, length-penalized

Ties at the top score are never broken: every candidate within
``tie_tolerance`` of the best is returned as ``ambiguous``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rapidfuzz.distance import Levenshtein

from .registry import RegistryEntry

ALIAS_SCORE = 0.99
PLURAL_SCORE = 0.97
CONTAIN_BASE = 0.6
CONTAIN_SPAN = 0.35
TOKEN_TYPO_PENALTY = 0.05
TYPO_SCORE = 0.8
TYPO_STEP = 0.05
MAX_TYPO_DISTANCE = 2
EDIT_WEIGHT = 0.9
LENGTH_PENALTY = 0.1
SUGGESTION_FLOOR = 0.3

_SEPARATORS_RE = re.compile(r"[_\-.]+")
_PUNCT_RE = re.compile(r"[^\w\s]+")
_SPACE_RE = re.compile(r"\s+")


class MatchKind(str, Enum):
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


@dataclass(frozen=True)
class Candidate:
    id: str
    name: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "score": round(self.score, 3)}


@dataclass(frozen=True)
class MatchResult:
    kind: MatchKind
    phrase: str
    entry_id: Optional[str] = None
    score: float = 0.0
    candidates: Tuple[Candidate, ...] = ()
    reason: str = ""

    @property
    def matched(self) -> bool:
        return self.kind in (MatchKind.EXACT, MatchKind.ALIAS, MatchKind.FUZZY)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "phrase": self.phrase,
            "entry_id": self.entry_id,
            "score": round(self.score, 3),
        }
        if self.candidates:
            data["candidates"] = [c.to_dict() for c in self.candidates]
        if self.reason:
            data["reason"] = self.reason
        return data


def normalize(text: str) -> str:
    lowered = _SEPARATORS_RE.sub(" ", text.lower())
    lowered = _PUNCT_RE.sub("", lowered)
    return _SPACE_RE.sub(" ", lowered).strip()


def singularize(word: str) -> str:
    if len(word) <= 3 or word.endswith("ss"):
        return word
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith(("ches", "shes", "xes", "zes", "sses")):
        return word[:-2]
    if word.endswith("s"):
        return word[:-1]
    return word


def singular_form(normalized: str) -> str:
    return " ".join(singularize(word) for word in normalized.split())


@dataclass(frozen=True)
class _Forms:
    names: Tuple[str, ...]
    aliases: Tuple[str, ...]


def _forms(entry: RegistryEntry) -> _Forms:
    names = []
    for raw in (entry.name, entry.object_id):
        form = normalize(raw)
        if form and form not in names:
            names.append(form)
    aliases = tuple(a for a in (normalize(alias) for alias in entry.aliases) if a)
    return _Forms(tuple(names), aliases)


def _containment(phrase_tokens: Sequence[str], form: str) -> float:
    form_tokens = singular_form(form).split()
    if not form_tokens or len(phrase_tokens) > len(form_tokens):
        return 0.0
    typos = 0
    for token in phrase_tokens:
        if token in form_tokens:
            continue
        if len(token) >= 4 and any(
            len(other) >= 4 and Levenshtein.distance(token, other) <= 1 for other in form_tokens
        ):
            typos += 1
            continue
        return 0.0
    ratio = min(1.0, len(phrase_tokens) / len(form_tokens))
    return CONTAIN_BASE + CONTAIN_SPAN * ratio - TOKEN_TYPO_PENALTY * typos


def _typo_score(phrase: str, form: str) -> float:
    # short forms tolerate fewer edits: "tv" must not absorb "on"
    allowed = min(MAX_TYPO_DISTANCE, (len(form) - 1) // 2)
    if allowed < 1:
        return 0.0
    distance = Levenshtein.distance(phrase, form, score_cutoff=allowed)
    if distance == 0 or distance > allowed:
        return 0.0
    return TYPO_SCORE - TYPO_STEP * (distance - 1)


def _edit_score(phrase: str, form: str) -> float:
    longest = max(len(phrase), len(form))
    if not longest:
        return 0.0
    similarity = 1.0 - Levenshtein.distance(phrase, form) / longest
    return max(0.0, EDIT_WEIGHT * similarity - LENGTH_PENALTY * abs(len(phrase) - len(form)) / longest)


def score_entry(phrase: str, entry: RegistryEntry, exact_only: bool = False) -> Tuple[float, MatchKind]:
    """Score one entry against an already-normalized phrase."""
    forms = _forms(entry)
    if phrase in forms.names:
        return 1.0, MatchKind.EXACT
    if exact_only:
        return 0.0, MatchKind.NONE
    if phrase in forms.aliases:
        return ALIAS_SCORE, MatchKind.ALIAS
    singular = singular_form(phrase)
    every_form = forms.names + forms.aliases
    if any(singular == singular_form(form) for form in every_form):
        return PLURAL_SCORE, MatchKind.FUZZY
    tokens = singular.split()
    best = max((_containment(tokens, form) for form in every_form), default=0.0)
    best = max([best] + [_typo_score(phrase, form) for form in every_form])
    best = max([best] + [_edit_score(phrase, form) for form in every_form])
    return best, MatchKind.FUZZY


@dataclass
class Matcher:
    threshold: float = 0.6
    tie_tolerance: float = 1e-6
    suggestion_limit: int = 3

    def match(
        self,
        phrase: str,
        candidates: Iterable[RegistryEntry],
        exact_only: bool = False,
        domains: Optional[Set[str]] = None,
    ) -> MatchResult:
        pool = list(candidates)
        raw = phrase.strip().lower()
        if not raw:
            return MatchResult(MatchKind.NONE, phrase, reason="empty phrase")

        for entry in pool:
            if entry.id.lower() == raw:
                return MatchResult(
                    MatchKind.EXACT, phrase, entry.id, 1.0, (Candidate(entry.id, entry.name, 1.0),)
                )

        if domains:
            pool = [entry for entry in pool if entry.domain in domains]
        if not pool:
            scope = f" in {', '.join(sorted(domains))}" if domains else ""
            return MatchResult(MatchKind.NONE, phrase, reason=f"no candidates{scope}")

        normalized = normalize(phrase)
        scored: List[Tuple[float, MatchKind, RegistryEntry]] = []
        exact_hits = []
        for entry in pool:
            score, kind = score_entry(normalized, entry, exact_only=exact_only)
            if kind is MatchKind.EXACT:
                exact_hits.append(entry)
            scored.append((score, kind, entry))

        if exact_hits:
            if len(exact_hits) == 1:
                entry = exact_hits[0]
                return MatchResult(
                    MatchKind.EXACT, phrase, entry.id, 1.0, (Candidate(entry.id, entry.name, 1.0),)
                )
            tied = tuple(Candidate(e.id, e.name, 1.0) for e in exact_hits)
            return MatchResult(MatchKind.AMBIGUOUS, phrase, None, 1.0, tied, "several entries share this name")

        if exact_only:
            return MatchResult(MatchKind.NONE, phrase, reason="no exact match")

        scored.sort(key=lambda item: (-item[0], item[2].id))
        top_score, top_kind, top_entry = scored[0]
        if top_score < self.threshold:
            suggestions = tuple(
                Candidate(entry.id, entry.name, score)
                for score, _, entry in scored[: self.suggestion_limit]
                if score >= SUGGESTION_FLOOR
            )
            return MatchResult(
                MatchKind.NONE,
                phrase,
                score=top_score,
                candidates=suggestions,
                reason=f"best score {top_score:.2f} is below threshold {self.threshold:.2f}",
            )

        tied = [item for item in scored if top_score - item[0] <= self.tie_tolerance]
        if len(tied) > 1:
            return MatchResult(
                MatchKind.AMBIGUOUS,
                phrase,
                None,
                top_score,
                tuple(Candidate(entry.id, entry.name, score) for score, _, entry in tied),
                f"{len(tied)} entries score {top_score:.2f}",
            )
        return MatchResult(
            top_kind,
            phrase,
            top_entry.id,
            top_score,
            (Candidate(top_entry.id, top_entry.name, top_score),),
        )


def match(
    phrase: str,
    candidates: Iterable[RegistryEntry],
    exact_only: bool = False,
    domains: Optional[Set[str]] = None,
) -> MatchResult:
    return Matcher().match(phrase, candidates, exact_only=exact_only, domains=domains)
