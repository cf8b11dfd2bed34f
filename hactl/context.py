"""Short-lived record of the last resolved targets, for follow-up commands."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from . import storage
from .actions import Action, domains_for

if TYPE_CHECKING:
    from .parser import ParsedIntent

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


@dataclass(frozen=True)
class ContextRecord:
    entity_ids: List[str]
    action: str
    created_at: float
    parameter: Union[int, str, None] = None
    match_kind: str = ""
    score: float = 0.0
    utterance: str = ""

    def age(self, now: float) -> float:
        return now - self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextRecord":
        entity_ids = data.get("entity_ids")
        if not isinstance(entity_ids, list) or not all(isinstance(e, str) for e in entity_ids):
            raise ValueError("entity_ids must be a list of strings")
        return cls(
            entity_ids=list(entity_ids),
            action=str(data.get("action", "")),
            created_at=float(data["created_at"]),
            parameter=data.get("parameter"),
            match_kind=str(data.get("match_kind", "")),
            score=float(data.get("score", 0.0)),
            utterance=str(data.get("utterance", "")),
        )


@dataclass
class ContextStore:
    """Single latest-wins record persisted as JSON; valid while ``now - created_at < ttl``."""

    path: Path
    ttl: float = DEFAULT_TTL
    clock: Callable[[], float] = field(default=time.time)

    def _read(self) -> Optional[ContextRecord]:
        data = storage.read_json(Path(self.path))
        if data is None:
            logger.debug("context: no record stored at %s", self.path)
            return None
        try:
            return ContextRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("context: discarding unreadable record: %s", exc)
            return None

    def get(self) -> Optional[ContextRecord]:
        record = self._read()
        if record is None:
            return None
        age = record.age(self.clock())
        if age >= self.ttl:
            logger.debug("context: record expired (age %.1fs, ttl %.0fs)", age, self.ttl)
            return None
        return record

    def record(
        self,
        entity_ids: List[str],
        action: Action,
        parameter: Union[int, str, None] = None,
        match_kind: str = "",
        score: float = 0.0,
        utterance: str = "",
    ) -> ContextRecord:
        record = ContextRecord(
            entity_ids=list(entity_ids),
            action=action.value,
            created_at=self.clock(),
            parameter=parameter,
            match_kind=match_kind,
            score=score,
            utterance=utterance,
        )
        storage.atomic_write_json(Path(self.path), record.to_dict())
        return record

    def resolve_pronoun(self, intent: ParsedIntent) -> Optional[List[str]]:
        """Entity ids from a live record that can take the intent's action, or None."""
        record = self.get()
        if record is None:
            return None
        action = intent.action
        domains = domains_for(action, intent.domain_hint)
        if domains is None:
            return list(record.entity_ids)
        usable = [e for e in record.entity_ids if e.split(".", 1)[0] in domains]
        if not usable:
            logger.debug(
                "context: none of %s accept %s", ", ".join(record.entity_ids), action.value
            )
            return None
        return usable

    def clear(self) -> bool:
        return storage.remove_file(Path(self.path))
