"""Closed action vocabulary, synonyms and action-to-service mapping."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

Parameter = Union[int, str, None]


class Action(str, Enum):
    ON = "on"
    OFF = "off"
    TOGGLE = "toggle"
    OPEN = "open"
    CLOSE = "close"
    DIM = "dim"
    BRIGHTEN = "brighten"
    SET = "set"
    VOLUME_UP = "volume_up"
    VOLUME_DOWN = "volume_down"
    MUTE = "mute"
    UNMUTE = "unmute"


# phrase -> (action, implied domain)
_SYNONYM_PHRASES: Dict[Action, Tuple[Union[str, Tuple[str, str]], ...]] = {
    Action.ON: ("on", "turn on", "switch on", "power on", "enable", "activate", "start"),
    Action.OFF: (
        "off",
        "turn off",
        "switch off",
        "shut off",
        "power off",
        "disable",
        "deactivate",
        "stop",
        "kill",
    ),
    Action.TOGGLE: ("toggle", "flip", "switch"),
    Action.OPEN: ("open", ("unlock", "lock")),
    Action.CLOSE: ("close", "shut", ("lock", "lock")),
    Action.DIM: ("dim", "dimmer", "darker", "lower", "decrease", "reduce"),
    Action.BRIGHTEN: ("brighten", "brighter", "lighter", "raise", "increase"),
    Action.SET: ("set",),
    Action.VOLUME_UP: ("volume up", "louder", "turn up"),
    Action.VOLUME_DOWN: ("volume down", "quieter", "softer", "turn down"),
    Action.MUTE: ("mute", "silence"),
    Action.UNMUTE: ("unmute",),
}


def _build_synonyms() -> Dict[Tuple[str, ...], Tuple[Action, Optional[str]]]:
    table: Dict[Tuple[str, ...], Tuple[Action, Optional[str]]] = {}
    for action, phrases in _SYNONYM_PHRASES.items():
        for phrase in phrases:
            domain = None
            if isinstance(phrase, tuple):
                phrase, domain = phrase
            key = tuple(phrase.split())
            if key in table:
                raise ValueError(f"duplicate action synonym: {phrase}")
            table[key] = (action, domain)
    return table


SYNONYMS = _build_synonyms()
MAX_SYNONYM_WORDS = max(len(key) for key in SYNONYMS)

# Verbs that only carry meaning together with a following or trailing on/off.
WEAK_VERBS = frozenset({"turn", "switch", "power"})

PARAMETER_ACTIONS = frozenset({Action.DIM, Action.BRIGHTEN, Action.SET})

ACTION_DOMAINS: Dict[Action, FrozenSet[str]] = {
    Action.DIM: frozenset({"light"}),
    Action.BRIGHTEN: frozenset({"light"}),
    Action.OPEN: frozenset({"cover", "lock", "valve"}),
    Action.CLOSE: frozenset({"cover", "lock", "valve"}),
    Action.VOLUME_UP: frozenset({"media_player"}),
    Action.VOLUME_DOWN: frozenset({"media_player"}),
    Action.MUTE: frozenset({"media_player"}),
    Action.UNMUTE: frozenset({"media_player"}),
}

STANDARD_DOMAINS = frozenset(
    {
        "automation",
        "button",
        "camera",
        "climate",
        "cover",
        "fan",
        "humidifier",
        "input_boolean",
        "light",
        "lock",
        "media_player",
        "remote",
        "scene",
        "script",
        "siren",
        "switch",
        "vacuum",
        "water_heater",
    }
)

COLOR_NAMES = frozenset(
    {
        "red",
        "green",
        "blue",
        "white",
        "warm white",
        "yellow",
        "orange",
        "purple",
        "pink",
        "cyan",
        "magenta",
        "violet",
        "teal",
        "gold",
        "lime",
        "indigo",
    }
)

_OPEN_CLOSE_SERVICES = {
    "cover": ("open_cover", "close_cover"),
    "lock": ("unlock", "lock"),
    "valve": ("open_valve", "close_valve"),
}


def domains_for(action: Action, domain_hint: Optional[str] = None) -> Optional[FrozenSet[str]]:
    """Domains an action can apply to, or None when it applies to any domain."""
    if domain_hint:
        return frozenset({domain_hint})
    return ACTION_DOMAINS.get(action)


def service_call(
    entity_id: str, action: Action, parameter: Parameter = None
) -> Tuple[str, str, Dict[str, Any]]:
    """Map one resolved step to ``(domain, service, data)`` for the hub's service API."""
    domain = entity_id.split(".", 1)[0]
    data: Dict[str, Any] = {"entity_id": entity_id}

    if action in (Action.ON, Action.OFF, Action.TOGGLE):
        service = {Action.ON: "turn_on", Action.OFF: "turn_off", Action.TOGGLE: "toggle"}[action]
        if domain not in STANDARD_DOMAINS:
            return "homeassistant", service, data
        return domain, service, data

    if action in (Action.OPEN, Action.CLOSE):
        opening, closing = _OPEN_CLOSE_SERVICES.get(domain, ("turn_on", "turn_off"))
        return domain, opening if action is Action.OPEN else closing, data

    if action in (Action.DIM, Action.BRIGHTEN):
        step = int(parameter) if isinstance(parameter, int) else 10
        data["brightness_step_pct"] = -step if action is Action.DIM else step
        if isinstance(parameter, str):
            data["color_name"] = parameter
        return "light", "turn_on", data

    if action is Action.SET:
        if isinstance(parameter, str):
            data["color_name"] = parameter
            return "light", "turn_on", data
        if parameter is None:
            return domain, "turn_on", data
        pct = int(parameter)
        if domain == "light":
            data["brightness_pct"] = pct
            return "light", "turn_on", data
        if domain == "media_player":
            data["volume_level"] = min(1.0, max(0.0, pct / 100.0))
            return "media_player", "volume_set", data
        if domain == "fan":
            data["percentage"] = pct
            return "fan", "set_percentage", data
        if domain == "cover":
            data["position"] = pct
            return "cover", "set_cover_position", data
        if domain == "climate":
            data["temperature"] = pct
            return "climate", "set_temperature", data
        return domain, "turn_on", data

    if action is Action.VOLUME_UP:
        return "media_player", "volume_up", data
    if action is Action.VOLUME_DOWN:
        return "media_player", "volume_down", data
    if action in (Action.MUTE, Action.UNMUTE):
        data["is_volume_muted"] = action is Action.MUTE
        return "media_player", "volume_mute", data
    raise ValueError(f"unsupported action: {action}")


def describe(action: Action, parameter: Parameter = None) -> str:
    label = action.value.replace("_", " ")
    if parameter is None:
        return label
    if isinstance(parameter, int):
        return f"{label} {parameter}%"
    return f"{label} {parameter}"
