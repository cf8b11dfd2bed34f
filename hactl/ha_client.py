"""Home Assistant REST/WebSocket client."""

from __future__ import annotations

import base64
import json
import logging
import os
import socket
import ssl
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import Request, urlopen

from .errors import TransportError
from .logging_utils import log_with_context

logger = logging.getLogger(__name__)


def _ssl_context(insecure: bool) -> Optional[ssl.SSLContext]:
    if not insecure:
        return None
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _request(
    base_url: str,
    token: str,
    path: str,
    timeout: float,
    method: str = "GET",
    payload: Optional[Dict[str, Any]] = None,
    insecure: bool = False,
) -> Dict[str, Any]:
    url = base_url.rstrip("/") + path
    req = Request(url, method=method)
    req.add_header("Authorization", f"Bearer {token}")
    req.add_header("Content-Type", "application/json")
    data = None
    if payload is not None:
        data = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    try:
        with urlopen(req, data=data, timeout=timeout, context=_ssl_context(insecure)) as resp:
            raw = resp.read().decode("utf-8")
        return {"ok": True, "data": json.loads(raw) if raw.strip() else None}
    except HTTPError as exc:
        return {"ok": False, "error": f"http_{exc.code}"}
    except URLError:
        return {"ok": False, "error": "url_error"}
    except (OSError, ValueError) as exc:
        return {"ok": False, "error": f"request_error:{type(exc).__name__}"}


def _fetch_list(
    base_url: str, token: str, path: str, key: str, timeout: float, insecure: bool = False
) -> Dict[str, Any]:
    result = _request(base_url, token, path, timeout, insecure=insecure)
    if not result.get("ok"):
        return result
    data = result.get("data")
    if not isinstance(data, list):
        return {"ok": False, "error": "unexpected_payload"}
    return {"ok": True, key: data}


def fetch_states(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    return _fetch_list(base_url, token, "/api/states", "states", timeout, insecure)


def fetch_entity_state(
    base_url: str, token: str, entity_id: str, timeout: float, insecure: bool = False
) -> Dict[str, Any]:
    path = f"/api/states/{quote(entity_id, safe='._')}"
    result = _request(base_url, token, path, timeout, insecure=insecure)
    if not result.get("ok"):
        return result
    data = result.get("data")
    if not isinstance(data, dict):
        return {"ok": False, "error": "unexpected_payload"}
    return {"ok": True, "state": data}


def fetch_services(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    return _fetch_list(base_url, token, "/api/services", "services", timeout, insecure)


def call_service(
    base_url: str,
    token: str,
    domain: str,
    service: str,
    payload: Dict[str, Any],
    timeout: float,
    insecure: bool = False,
) -> Dict[str, Any]:
    path = f"/api/services/{domain}/{service}"
    result = _request(base_url, token, path, timeout, method="POST", payload=payload, insecure=insecure)
    if not result.get("ok"):
        return result
    return {"ok": True, "result": result.get("data")}


def fetch_area_registry(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    http_result = _fetch_list(base_url, token, "/api/config/area_registry", "areas", timeout, insecure)
    if http_result.get("ok"):
        return http_result
    return ws_command(base_url, token, "config/area_registry/list", "areas", timeout, insecure)


def fetch_entity_registry(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    """Fetch entity registry with area, device and alias assignments."""
    http_result = _fetch_list(
        base_url, token, "/api/config/entity_registry", "entities", timeout, insecure
    )
    if http_result.get("ok"):
        return http_result
    return ws_command(base_url, token, "config/entity_registry/list", "entities", timeout, insecure)


def fetch_device_registry(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    """Fetch device registry to map devices to areas."""
    http_result = _fetch_list(
        base_url, token, "/api/config/device_registry", "devices", timeout, insecure
    )
    if http_result.get("ok"):
        return http_result
    return ws_command(base_url, token, "config/device_registry/list", "devices", timeout, insecure)


def fetch_label_registry(base_url: str, token: str, timeout: float, insecure: bool = False) -> Dict[str, Any]:
    return ws_command(base_url, token, "config/label_registry/list", "labels", timeout, insecure)


def ws_command(
    base_url: str,
    token: str,
    command: str,
    key: str,
    timeout: float,
    insecure: bool = False,
) -> Dict[str, Any]:
    """Run a single list command over the WebSocket API and return its result list."""
    sock: Optional[socket.socket] = None
    try:
        sock = _ws_connect(base_url, timeout, insecure)
        auth_msg = _ws_read_json(sock)
        for _ in range(3):
            if isinstance(auth_msg, dict) and auth_msg.get("type") == "auth_required":
                break
            auth_msg = _ws_read_json(sock)
        if not isinstance(auth_msg, dict) or auth_msg.get("type") != "auth_required":
            return {"ok": False, "error": "ws_auth_required_missing"}
        _ws_send_json(sock, {"type": "auth", "access_token": token})
        auth_reply = _ws_read_json(sock)
        if not isinstance(auth_reply, dict) or auth_reply.get("type") != "auth_ok":
            return {"ok": False, "error": "ws_auth_failed"}
        req_id = 1
        _ws_send_json(sock, {"id": req_id, "type": command})
        for _ in range(5):
            reply = _ws_read_json(sock)
            if isinstance(reply, dict) and reply.get("id") == req_id:
                if reply.get("success") is True and isinstance(reply.get("result"), list):
                    return {"ok": True, key: reply["result"]}
                return {"ok": False, "error": "ws_result_failed"}
        return {"ok": False, "error": "ws_no_result"}
    except (OSError, RuntimeError) as exc:
        return {"ok": False, "error": f"ws_error:{type(exc).__name__}"}
    finally:
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass


def _ws_connect(base_url: str, timeout: float, insecure: bool = False) -> socket.socket:
    url = base_url
    if "://" not in url:
        url = "http://" + url
    parsed = urlparse(url)
    scheme = parsed.scheme or "http"
    host = parsed.hostname or ""
    port = parsed.port or (443 if scheme == "https" else 80)
    path = parsed.path.rstrip("/") + "/api/websocket"
    sock = socket.create_connection((host, port), timeout=timeout)
    sock.settimeout(timeout)
    if scheme == "https":
        ctx = _ssl_context(insecure) or ssl.create_default_context()
        sock = ctx.wrap_socket(sock, server_hostname=host)
    key = base64.b64encode(os.urandom(16)).decode("ascii")
    host_header = host
    if (scheme == "http" and port != 80) or (scheme == "https" and port != 443):
        host_header = f"{host}:{port}"
    headers = [
        f"GET {path} HTTP/1.1",
        f"Host: {host_header}",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Key: {key}",
        "Sec-WebSocket-Version: 13",
        "",
        "",
    ]
    sock.sendall("\r\n".join(headers).encode("ascii"))
    response = _recv_until(sock, b"\r\n\r\n")
    if not response.startswith(b"HTTP/1.1 101"):
        sock.close()
        raise RuntimeError("ws_handshake_failed")
    return sock


def _ws_send_json(sock: socket.socket, payload: Dict[str, Any]) -> None:
    data = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    _ws_send_frame(sock, data)


def _ws_read_json(sock: socket.socket) -> Optional[Dict[str, Any]]:
    raw = _ws_recv_frame(sock)
    if raw is None:
        return None
    try:
        decoded = json.loads(raw.decode("utf-8"))
    except ValueError:
        return None
    if isinstance(decoded, dict):
        return decoded
    return None


def _ws_send_frame(sock: socket.socket, payload: bytes) -> None:
    length = len(payload)
    header = bytearray()
    header.append(0x81)
    if length < 126:
        header.append(0x80 | length)
    elif length < 65536:
        header.append(0x80 | 126)
        header.extend(length.to_bytes(2, "big"))
    else:
        header.append(0x80 | 127)
        header.extend(length.to_bytes(8, "big"))
    mask = os.urandom(4)
    masked = bytes(b ^ mask[i % 4] for i, b in enumerate(payload))
    sock.sendall(bytes(header) + mask + masked)


def _ws_recv_frame(sock: socket.socket) -> Optional[bytes]:
    # Registry listings can span continuation frames; reassemble until FIN.
    chunks: List[bytes] = []
    while True:
        first_two = _recv_exact(sock, 2)
        b1, b2 = first_two[0], first_two[1]
        opcode = b1 & 0x0F
        if opcode == 0x8:
            return None
        length = b2 & 0x7F
        if length == 126:
            length = int.from_bytes(_recv_exact(sock, 2), "big")
        elif length == 127:
            length = int.from_bytes(_recv_exact(sock, 8), "big")
        payload = _recv_exact(sock, length) if length else b""
        if opcode in (0x9, 0xA):
            continue
        chunks.append(payload)
        if b1 & 0x80:
            return b"".join(chunks)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            raise RuntimeError("ws_connection_closed")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _recv_until(sock: socket.socket, marker: bytes) -> bytes:
    data = b""
    while marker not in data:
        chunk = sock.recv(1024)
        if not chunk:
            break
        data += chunk
        if len(data) > 65536:
            break
    return data


class HassTransport:
    """Raising facade over the module functions, used by the cache and dispatcher."""

    def __init__(self, base_url: str, token: str, timeout: float = 30.0, insecure: bool = False) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.insecure = insecure

    def _unwrap(self, result: Dict[str, Any], key: str, what: str) -> Any:
        if not result.get("ok"):
            reason = str(result.get("error", "unknown_error"))
            log_with_context(logger, logging.DEBUG, "transport call failed", what=what, reason=reason)
            raise TransportError(f"could not fetch {what} from {self.base_url}: {reason}", reason)
        return result.get(key)

    def fetch_entities(self) -> List[Dict[str, Any]]:
        """States merged with the entity and device registries, when those are reachable."""
        states = self._unwrap(
            fetch_states(self.base_url, self.token, self.timeout, self.insecure), "states", "states"
        )
        registry = fetch_entity_registry(self.base_url, self.token, self.timeout, self.insecure)
        if not registry.get("ok"):
            logger.info("entity registry unavailable (%s); areas and aliases omitted", registry.get("error"))
            return states
        by_id = {
            item.get("entity_id"): item
            for item in registry.get("entities", [])
            if isinstance(item, dict)
        }
        devices = fetch_device_registry(self.base_url, self.token, self.timeout, self.insecure)
        device_areas = {}
        if devices.get("ok"):
            device_areas = {
                item.get("id"): item.get("area_id")
                for item in devices.get("devices", [])
                if isinstance(item, dict)
            }
        merged = []
        for state in states:
            if not isinstance(state, dict):
                continue
            reg = by_id.get(state.get("entity_id"))
            if reg:
                reg = dict(reg)
                if not reg.get("area_id") and reg.get("device_id"):
                    reg["area_id"] = device_areas.get(reg["device_id"])
                state = dict(state, registry=reg)
            merged.append(state)
        return merged

    def fetch_services(self) -> List[Dict[str, Any]]:
        return self._unwrap(
            fetch_services(self.base_url, self.token, self.timeout, self.insecure), "services", "services"
        )

    def fetch_areas(self) -> List[Dict[str, Any]]:
        return self._unwrap(
            fetch_area_registry(self.base_url, self.token, self.timeout, self.insecure), "areas", "areas"
        )

    def fetch_devices(self) -> List[Dict[str, Any]]:
        return self._unwrap(
            fetch_device_registry(self.base_url, self.token, self.timeout, self.insecure),
            "devices",
            "devices",
        )

    def fetch_labels(self) -> List[Dict[str, Any]]:
        return self._unwrap(
            fetch_label_registry(self.base_url, self.token, self.timeout, self.insecure), "labels", "labels"
        )

    def get_entity_state(self, entity_id: str) -> Dict[str, Any]:
        return self._unwrap(
            fetch_entity_state(self.base_url, self.token, entity_id, self.timeout, self.insecure),
            "state",
            f"state of {entity_id}",
        )

    def call_service(self, domain: str, service: str, data: Dict[str, Any]) -> Any:
        return self._unwrap(
            call_service(self.base_url, self.token, domain, service, data, self.timeout, self.insecure),
            "result",
            f"{domain}.{service}",
        )
