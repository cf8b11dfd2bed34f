"""Utterance parsing into (action, target phrase, parameter) intents."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .actions import (
    COLOR_NAMES,
    MAX_SYNONYM_WORDS,
    PARAMETER_ACTIONS,
    SYNONYMS,
    WEAK_VERBS,
    Action,
    Parameter,
)
from .errors import UtteranceSyntaxError

FILLER_WORDS = frozenset(
    {"the", "a", "an", "please", "to", "my", "can", "could", "would", "you", "kindly", "now"}
)
PRONOUNS = frozenset({"it", "them", "that", "this", "those", "these"})
PARAMETER_PREPOSITIONS = frozenset({"to", "by", "at"})
PERCENT_WORDS = frozenset({"percent", "pct", "%"})

_TOKEN_RE = re.compile(r"[^\s,]+|,")
_PERCENT_RE = re.compile(r"^(-?\d{1,4})%$")
_NUMBER_RE = re.compile(r"^-?\d{1,4}$")
_STRIP_CHARS = "\"'`?!;:()[]{}"


@dataclass(frozen=True)
class Token:
    text: str
    start: int
    end: int
    index: int


@dataclass(frozen=True)
class ParsedIntent:
    action: Action
    target: str
    parameter: Parameter = None
    domain_hint: Optional[str] = None
    text: str = ""

    @property
    def is_elliptical(self) -> bool:
        return not self.target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "target": self.target,
            "parameter": self.parameter,
            "domain_hint": self.domain_hint,
        }


def tokenize(text: str) -> List[Token]:
    tokens = []
    for match in _TOKEN_RE.finditer(text):
        raw = match.group(0)
        if raw == ",":
            cleaned = raw
        else:
            # a trailing period is punctuation, an inner one (light.kitchen) is not
            cleaned = raw.strip(_STRIP_CHARS).lower().rstrip(".")
        if not cleaned:
            continue
        tokens.append(Token(cleaned, match.start(), match.end(), len(tokens)))
    return tokens


def _span(tokens: List[Token]) -> Tuple[int, int]:
    return tokens[0].start, tokens[-1].end


def _find_actions(words: List[Token]) -> List[Tuple[int, int, Action, Optional[str]]]:
    """Longest-match scan for action synonyms: (position, width, action, implied domain)."""
    found = []
    texts = [w.text for w in words]
    i = 0
    while i < len(texts):
        for width in range(min(MAX_SYNONYM_WORDS, len(texts) - i), 0, -1):
            key = tuple(texts[i : i + width])
            if key in SYNONYMS:
                action, domain = SYNONYMS[key]
                found.append((i, width, action, domain))
                i += width
                break
        else:
            i += 1
    return found


def _choose_action(
    matches: List[Tuple[int, int, Action, Optional[str]]], words: List[Token]
) -> Tuple[int, int, Action, Optional[str]]:
    if len(matches) > 1:
        strong = [m for m in matches if not (m[1] == 1 and words[m[0]].text in WEAK_VERBS)]
        if strong:
            matches = strong
    for match in matches:
        if match[0] == 0:
            return match
    for match in matches:
        if match[0] + match[1] == len(words):
            return match
    return matches[0]


def _percentage(value: str, token: Token, text: str) -> int:
    pct = int(value)
    if pct < 0 or pct > 100:
        raise UtteranceSyntaxError(f"percentage {pct} is outside 0-100", text, (token.start, token.end))
    return pct


def _extract_number(
    rest: List[Token], all_tokens: List[Token], action: Action, text: str
) -> Tuple[Optional[int], List[Token]]:
    if not rest:
        return None, rest
    last = rest[-1]
    match = _PERCENT_RE.match(last.text)
    if match:
        return _percentage(match.group(1), last, text), _drop_preposition(rest[:-1])
    if last.text in PERCENT_WORDS and len(rest) >= 2 and _NUMBER_RE.match(rest[-2].text):
        return _percentage(rest[-2].text, rest[-2], text), _drop_preposition(rest[:-2])
    if _NUMBER_RE.match(last.text):
        preceding = all_tokens[last.index - 1].text if last.index > 0 else ""
        if action is Action.SET or preceding in PARAMETER_PREPOSITIONS:
            return _percentage(last.text, last, text), _drop_preposition(rest[:-1])
    return None, rest


def _drop_preposition(rest: List[Token]) -> List[Token]:
    if rest and rest[-1].text in PARAMETER_PREPOSITIONS:
        return rest[:-1]
    return rest


def _extract_color(rest: List[Token]) -> Tuple[Optional[str], List[Token]]:
    if len(rest) >= 2:
        tail = f"{rest[-2].text} {rest[-1].text}"
        if tail in COLOR_NAMES:
            return tail, _drop_preposition(rest[:-2])
        head = f"{rest[0].text} {rest[1].text}"
        if head in COLOR_NAMES and len(rest) > 2:
            return head, rest[2:]
    if rest and rest[-1].text in COLOR_NAMES:
        return rest[-1].text, _drop_preposition(rest[:-1])
    if len(rest) > 1 and rest[0].text in COLOR_NAMES:
        return rest[0].text, rest[1:]
    return None, rest


def _join_phrase(rest: List[Token]) -> str:
    parts: List[str] = []
    for token in rest:
        if token.text == ",":
            if parts and parts[-1] != ",":
                parts.append(",")
            continue
        parts.append(token.text)
    while parts and parts[0] == ",":
        parts.pop(0)
    while parts and parts[-1] == ",":
        parts.pop()
    return " ".join(parts).replace(" ,", ",")


def parse(text: str) -> ParsedIntent:
    """Parse ``text`` into a ParsedIntent or raise UtteranceSyntaxError."""
    tokens = tokenize(text)
    words = [t for t in tokens if t.text not in FILLER_WORDS]
    if not any(t.text != "," for t in words):
        raise UtteranceSyntaxError("empty command", text, (0, len(text)))

    matches = _find_actions(words)
    if not matches:
        content = [t for t in words if t.text != ","]
        raise UtteranceSyntaxError(
            "no recognized action (try on, off, toggle, dim, brighten, set, open, close, volume up)",
            text,
            _span(content),
        )
    position, width, action, domain_hint = _choose_action(matches, words)
    rest = words[:position] + words[position + width :]
    while rest and rest[0].text in WEAK_VERBS:
        rest = rest[1:]

    parameter: Parameter = None
    if action in PARAMETER_ACTIONS:
        parameter, rest = _extract_number(rest, tokens, action, text)
        if parameter is None:
            parameter, rest = _extract_color(rest)
        if parameter is None and action is Action.SET:
            span = _span(rest) if rest else _span(words)
            raise UtteranceSyntaxError("set needs a value, e.g. 'set kitchen light to 50%'", text, span)

    if rest and all(t.text in PRONOUNS or t.text == "," for t in rest):
        rest = []
    return ParsedIntent(
        action=action,
        target=_join_phrase(rest),
        parameter=parameter,
        domain_hint=domain_hint,
        text=text,
    )
