from __future__ import annotations

import copy
from typing import Any, Dict, List

import pytest

from hactl.cache import RegistryCache
from hactl.context import ContextStore
from hactl.errors import TransportError
from hactl.fuzzy import Matcher
from hactl.history import HistoryLog
from hactl.registry import RegistryEntry
from hactl.resolver import CommandResolver

SERVER = "http://hass.local:8123"


def _state(entity_id: str, name: str, state: str = "off", **registry: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "entity_id": entity_id,
        "state": state,
        "attributes": {"friendly_name": name},
    }
    if registry:
        record["registry"] = dict(registry, entity_id=entity_id)
    return record


STATES = [
    _state("light.kitchen_main", "Kitchen Light", area_id="kitchen"),
    _state("light.kitchen_lamp", "Kitchen Lamp", device_id="dev_kitchen_lamp"),
    _state("light.hallway", "Hallway Light", area_id="hallway"),
    _state("light.living_room_floor", "Floor Lamp", area_id="living_room", labels=["cozy"]),
    _state("switch.porch", "Porch Switch", labels=["outdoor"]),
    _state("fan.ceiling", "Ceiling Fan", area_id="kitchen"),
    _state(
        "media_player.living_room_tv",
        "Living Room TV",
        state="playing",
        area_id="living_room",
        aliases=["Telly"],
    ),
    _state("lock.front_door", "Front Door", state="locked"),
    _state("cover.garage_door", "Garage Door", state="closed"),
    _state("sensor.outdoor_temp", "Outdoor Temperature", state="12.5"),
]

AREAS = [
    {"area_id": "kitchen", "name": "Kitchen", "aliases": []},
    {"area_id": "hallway", "name": "Hallway", "aliases": ["Entry"]},
    {"area_id": "living_room", "name": "Living Room", "aliases": ["Lounge"]},
]

DEVICES = [
    {"id": "dev_kitchen_lamp", "name": "Lamp Plug", "area_id": "kitchen", "manufacturer": "Acme"},
]

LABELS = [
    {"label_id": "outdoor", "name": "Outdoor"},
    {"label_id": "cozy", "name": "Cozy"},
]

SERVICES = [
    {"domain": "light", "services": {"turn_on": {"name": "Turn on"}, "turn_off": {}, "toggle": {}}},
    {"domain": "lock", "services": {"lock": {}, "unlock": {}}},
    {"domain": "media_player", "services": {"volume_up": {}, "volume_down": {}, "volume_mute": {}}},
]


class FakeTransport:
    """In-memory stand-in for HassTransport."""

    def __init__(self) -> None:
        self.states: List[Dict[str, Any]] = copy.deepcopy(STATES)
        self.areas = copy.deepcopy(AREAS)
        self.devices = copy.deepcopy(DEVICES)
        self.labels = copy.deepcopy(LABELS)
        self.services = copy.deepcopy(SERVICES)
        self.fail = False
        self.fail_services = False
        self.fetches: List[str] = []
        self.calls: List[Dict[str, Any]] = []

    def _fetch(self, what: str, data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self.fetches.append(what)
        if self.fail:
            raise TransportError(f"could not fetch {what}", "url_error")
        return copy.deepcopy(data)

    def fetch_entities(self):
        return self._fetch("entities", self.states)

    def fetch_services(self):
        return self._fetch("services", self.services)

    def fetch_areas(self):
        return self._fetch("areas", self.areas)

    def fetch_devices(self):
        return self._fetch("devices", self.devices)

    def fetch_labels(self):
        return self._fetch("labels", self.labels)

    def get_entity_state(self, entity_id: str) -> Dict[str, Any]:
        for state in self.states:
            if state["entity_id"] == entity_id:
                return copy.deepcopy(state)
        raise TransportError(f"could not fetch state of {entity_id}", "http_404")

    def call_service(self, domain: str, service: str, data: Dict[str, Any]) -> Any:
        if self.fail_services:
            raise TransportError(f"could not fetch {domain}.{service}", "http_500")
        self.calls.append({"domain": domain, "service": service, "data": dict(data)})
        return []


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path, transport, clock) -> RegistryCache:
    return RegistryCache(directory=tmp_path / "cache", transport=transport, server_url=SERVER, clock=clock)


@pytest.fixture
def context(tmp_path, clock) -> ContextStore:
    return ContextStore(tmp_path / "state" / "context.json", ttl=300, clock=clock)


@pytest.fixture
def history(tmp_path) -> HistoryLog:
    return HistoryLog(tmp_path / "state" / "history.jsonl", max_entries=1000)


@pytest.fixture
def resolver(cache, context, history) -> CommandResolver:
    return CommandResolver(cache, context, history, matcher=Matcher())


def entry(entity_id: str, name: str, **kwargs: Any) -> RegistryEntry:
    return RegistryEntry(
        id=entity_id,
        name=name,
        category="entities",
        domain=entity_id.split(".", 1)[0],
        **kwargs,
    )
