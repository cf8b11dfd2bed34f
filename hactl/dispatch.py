"""Execute resolved plan steps as Home Assistant service calls."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from . import actions
from .actions import Action, Parameter
from .errors import TransportError
from .logging_utils import log_with_context

logger = logging.getLogger(__name__)


class Dispatcher:
    def __init__(self, transport: Any, cache: Any = None) -> None:
        self.transport = transport
        self.cache = cache

    def _check_service(self, name: str) -> None:
        # Only consults an already-persisted snapshot; never triggers a fetch.
        if self.cache is None:
            return
        snapshot = self.cache.load("services")
        if snapshot is not None and name not in snapshot.entries:
            logger.warning("service %s is not in the cached service registry", name)

    def dispatch(self, entity_id: str, action: Action, parameter: Parameter = None) -> Dict[str, Any]:
        domain, service, data = actions.service_call(entity_id, action, parameter)
        return self.call(domain, service, data)

    def call(self, domain: str, service: str, data: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = data.get("entity_id")
        name = f"{domain}.{service}"
        self._check_service(name)
        log_with_context(logger, logging.INFO, "calling service", service=name, entity_id=entity_id, data=data)
        try:
            self.transport.call_service(domain, service, data)
        except TransportError as exc:
            logger.warning("service call %s failed: %s", name, exc.message)
            return {"ok": False, "entity_id": entity_id, "service": name, "error": exc.reason or exc.message}
        return {"ok": True, "entity_id": entity_id, "service": name, "data": data}


def describe_call(entity_id: str, action: Action, parameter: Optional[Parameter] = None) -> str:
    domain, service, data = actions.service_call(entity_id, action, parameter)
    extra = {k: v for k, v in data.items() if k != "entity_id"}
    suffix = " " + " ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""
    return f"{domain}.{service} {entity_id}{suffix}"
