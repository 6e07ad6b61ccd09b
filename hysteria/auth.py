"""Authentication of connecting clients: passwords, commands and HTTP."""

from __future__ import annotations

import base64
import http.client
import json
import logging
import os
import subprocess
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .acl.entry import Action

logger = logging.getLogger(__name__)

AuthFunc = Callable[[Any, bytes, int, int], "tuple[bool, str]"]

WELCOME = "Welcome"
REJECTED_MESSAGE = "Wrong password"
INTERNAL_ERROR = "internal error"
EXTERNAL_AUTH_TIMEOUT = 10.0

_INT64_LIMIT = 1 << 63


class AuthConfigError(ValueError):
    """Raised when an authentication configuration is not usable."""


def _addr_to_str(addr: Any) -> str:
    if isinstance(addr, tuple):
        host, port = str(addr[0]), addr[1]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(addr)


def _as_signed(value: int) -> int:
    value &= (1 << 64) - 1
    return value - (1 << 64) if value >= _INT64_LIMIT else value


def _lookup(obj: dict, key: str) -> Any:
    if key in obj:
        return obj[key]
    for name, value in obj.items():
        if isinstance(name, str) and name.lower() == key:
            return value
    return None


@dataclass(frozen=True)
class CmdAuthProvider:
    """Asks an external command; exit status 0 admits the client.

    The command gets the address, the payload, and the send and receive
    rates as arguments; its trimmed output is the message.
    """

    cmd: str

    def auth(self, addr: Any, payload: bytes, s_send: int, s_recv: int) -> tuple[bool, str]:
        args = [
            self.cmd,
            _addr_to_str(addr),
            os.fsdecode(bytes(payload)),
            str(_as_signed(s_send)),
            str(_as_signed(s_recv)),
        ]
        try:
            proc = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except (OSError, ValueError) as exc:
            logger.error("Failed to execute auth command: %s", exc)
            return False, INTERNAL_ERROR
        out = proc.stdout.decode("utf-8", errors="replace").strip()
        return proc.returncode == 0, out


def _parse_auth_response(data: bytes) -> tuple[bool, str]:
    obj = json.loads(data)
    if obj is None:
        return False, ""
    if not isinstance(obj, dict):
        raise ValueError("auth response must be a JSON object")
    ok = _lookup(obj, "ok")
    msg = _lookup(obj, "msg")
    if ok is None:
        ok = False
    if msg is None:
        msg = ""
    if not isinstance(ok, bool) or not isinstance(msg, str):
        raise ValueError("auth response has fields of the wrong type")
    return ok, msg


@dataclass(frozen=True)
class HTTPAuthProvider:
    """Posts the client's details as JSON to a URL and obeys the reply."""

    url: str
    timeout: float = EXTERNAL_AUTH_TIMEOUT

    def auth(self, addr: Any, payload: bytes, s_send: int, s_recv: int) -> tuple[bool, str]:
        body = json.dumps(
            {
                "addr": _addr_to_str(addr),
                "payload": base64.b64encode(bytes(payload)).decode("ascii"),
                "send": s_send,
                "recv": s_recv,
            }
        ).encode("utf-8")
        request = urllib.request.Request(
            self.url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as resp:
                status = resp.status
                data = resp.read() if status == 200 else b""
        except urllib.error.HTTPError as exc:
            logger.error("Invalid status code from auth server: %s", exc.code)
            return False, INTERNAL_ERROR
        except (OSError, ValueError, http.client.HTTPException) as exc:
            logger.error("Failed to send auth request: %s", exc)
            return False, INTERNAL_ERROR
        if status != 200:
            logger.error("Invalid status code from auth server: %s", status)
            return False, INTERNAL_ERROR
        try:
            return _parse_auth_response(data)
        except ValueError as exc:
            logger.error("Failed to unmarshal auth response: %s", exc)
            return False, INTERNAL_ERROR


def _string_list(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    items = []
    for item in raw:
        if item is None:
            item = ""
        if not isinstance(item, str):
            return None
        items.append(item)
    return items


def _string_map(raw: Any) -> dict[str, str] | None:
    if not isinstance(raw, dict):
        return None
    mapping = {}
    for key, value in raw.items():
        if value is None:
            value = ""
        if not isinstance(value, str):
            return None
        mapping[key] = value
    return mapping


def password_auth_func(raw: Any) -> AuthFunc:
    """Build a check against a list of passwords, or ``{"password": ...}``."""
    accepted_values = _string_list(raw)
    if accepted_values is None:
        mapping = _string_map(raw)
        if mapping is None or not mapping.get("password"):
            raise AuthConfigError("invalid config")
        accepted_values = [mapping["password"]]
    accepted = [value.encode("utf-8") for value in accepted_values]

    def check(addr: Any, payload: bytes, s_send: int, s_recv: int) -> tuple[bool, str]:
        if bytes(payload) in accepted:
            return True, WELCOME
        return False, REJECTED_MESSAGE

    return check


def external_auth_func(raw: Any) -> AuthFunc:
    """Build a check that asks an HTTP endpoint (``http``) or a command (``cmd``)."""
    mapping = _string_map(raw)
    if mapping is None:
        raise AuthConfigError("invalid config")
    if mapping.get("http"):
        return HTTPAuthProvider(mapping["http"], EXTERNAL_AUTH_TIMEOUT).auth
    if mapping.get("cmd"):
        return CmdAuthProvider(mapping["cmd"]).auth
    raise AuthConfigError("invalid config")


_ACTION_NAMES = {
    Action.DIRECT: "Direct",
    Action.PROXY: "Proxy",
    Action.BLOCK: "Block",
}


def action_to_string(action: Any, arg: str) -> str:
    """Describe an ACL action for log output."""
    try:
        action = Action(action)
    except ValueError:
        return "Unknown"
    if action == Action.HIJACK:
        return "Hijack to " + arg
    return _ACTION_NAMES[action]