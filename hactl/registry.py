"""Registry entry model and conversion from raw Home Assistant records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CATEGORIES = ("entities", "services", "areas", "devices", "labels")


@dataclass(frozen=True)
class RegistryEntry:
    id: str
    name: str
    category: str
    domain: str = ""
    state: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    aliases: List[str] = field(default_factory=list)
    area_id: Optional[str] = None

    @property
    def object_id(self) -> str:
        if "." in self.id:
            return self.id.split(".", 1)[1]
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "domain": self.domain,
        }
        if self.state is not None:
            data["state"] = self.state
        if self.attributes:
            data["attributes"] = dict(self.attributes)
        if self.aliases:
            data["aliases"] = list(self.aliases)
        if self.area_id:
            data["area_id"] = self.area_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryEntry":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            category=str(data.get("category", "")),
            domain=str(data.get("domain", "")),
            state=data.get("state"),
            attributes=dict(data.get("attributes") or {}),
            aliases=[str(a) for a in data.get("aliases") or []],
            area_id=data.get("area_id"),
        )


def _clean_aliases(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw if isinstance(item, str) and item.strip()]


def _object_name(entity_id: str) -> str:
    object_id = entity_id.split(".", 1)[1] if "." in entity_id else entity_id
    return object_id.replace("_", " ")


def entity_from_record(record: Dict[str, Any]) -> Optional[RegistryEntry]:
    """Build an entity entry from a state record, optionally carrying a ``registry`` sub-record."""
    entity_id = record.get("entity_id")
    if not isinstance(entity_id, str) or "." not in entity_id:
        return None
    attributes = record.get("attributes")
    if not isinstance(attributes, dict):
        attributes = {}
    reg = record.get("registry")
    if not isinstance(reg, dict):
        reg = {}
    name = (
        attributes.get("friendly_name")
        or reg.get("name")
        or reg.get("original_name")
        or _object_name(entity_id)
    )
    attrs = dict(attributes)
    if reg.get("device_id"):
        attrs["device_id"] = reg["device_id"]
    if reg.get("labels"):
        attrs["labels"] = list(reg["labels"])
    state = record.get("state")
    return RegistryEntry(
        id=entity_id,
        name=str(name),
        category="entities",
        domain=entity_id.split(".", 1)[0],
        state=str(state) if state is not None else None,
        attributes=attrs,
        aliases=_clean_aliases(reg.get("aliases")),
        area_id=reg.get("area_id") or None,
    )


def services_from_record(record: Dict[str, Any]) -> List[RegistryEntry]:
    """Expand one ``/api/services`` domain record into one entry per service."""
    domain = record.get("domain")
    services = record.get("services")
    if not isinstance(domain, str) or not isinstance(services, dict):
        return []
    entries = []
    for service, meta in services.items():
        meta = meta if isinstance(meta, dict) else {}
        fields = meta.get("fields")
        entries.append(
            RegistryEntry(
                id=f"{domain}.{service}",
                name=str(meta.get("name") or service.replace("_", " ")),
                category="services",
                domain=domain,
                attributes={
                    "description": meta.get("description", ""),
                    "fields": sorted(fields.keys()) if isinstance(fields, dict) else [],
                },
            )
        )
    return entries


def area_from_record(record: Dict[str, Any]) -> Optional[RegistryEntry]:
    area_id = record.get("area_id") or record.get("id")
    if not isinstance(area_id, str):
        return None
    attrs = {}
    if record.get("floor_id"):
        attrs["floor_id"] = record["floor_id"]
    return RegistryEntry(
        id=area_id,
        name=str(record.get("name") or area_id.replace("_", " ")),
        category="areas",
        domain="area",
        attributes=attrs,
        aliases=_clean_aliases(record.get("aliases")),
        area_id=area_id,
    )


def device_from_record(record: Dict[str, Any]) -> Optional[RegistryEntry]:
    device_id = record.get("id")
    if not isinstance(device_id, str):
        return None
    attrs = {
        key: record[key]
        for key in ("manufacturer", "model", "sw_version")
        if record.get(key)
    }
    return RegistryEntry(
        id=device_id,
        name=str(record.get("name_by_user") or record.get("name") or device_id),
        category="devices",
        domain="device",
        attributes=attrs,
        area_id=record.get("area_id") or None,
    )


def label_from_record(record: Dict[str, Any]) -> Optional[RegistryEntry]:
    label_id = record.get("label_id") or record.get("id")
    if not isinstance(label_id, str):
        return None
    attrs = {key: record[key] for key in ("color", "icon", "description") if record.get(key)}
    return RegistryEntry(
        id=label_id,
        name=str(record.get("name") or label_id),
        category="labels",
        domain="label",
        attributes=attrs,
    )


def build_entries(category: str, records: List[Dict[str, Any]]) -> Dict[str, RegistryEntry]:
    """Convert raw transport records for ``category`` into an id-keyed mapping."""
    if category not in CATEGORIES:
        raise ValueError(f"unknown registry category: {category}")
    converter = {
        "entities": entity_from_record,
        "areas": area_from_record,
        "devices": device_from_record,
        "labels": label_from_record,
    }.get(category)
    entries: Dict[str, RegistryEntry] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        if converter is None:
            for entry in services_from_record(record):
                entries[entry.id] = entry
            continue
        entry = converter(record)
        if entry is not None:
            entries[entry.id] = entry
    return entries
