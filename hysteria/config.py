"""Client and server configuration: decoding, defaults and validation."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import MISSING, dataclass, field, fields
from typing import Any

logger = logging.getLogger(__name__)

MBPS_TO_BPS = 125_000
MIN_SPEED_BPS = 16_384
MIN_RECEIVE_WINDOW = 65_536

DEFAULT_STREAM_RECEIVE_WINDOW = 15_728_640  # 15 MB/s
DEFAULT_CONNECTION_RECEIVE_WINDOW = 67_108_864  # 64 MB/s
DEFAULT_MAX_INCOMING_STREAMS = 1024

DEFAULT_ALPN = "hysteria"
DEFAULT_MMDB_FILENAME = "GeoLite2-Country.mmdb"

KEEP_ALIVE_PERIOD = 10.0  # seconds

PASSWORD = "password"

_UINT64_MAX = (1 << 64) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT32_MAX = (1 << 32) - 1

_RATE_RE = re.compile(r"(\d+)[\t\n\f\r ]*([KMGT]?)([Bb])ps", re.ASCII)
_RATE_UNITS = {"": 1, "K": 1 << 10, "M": 1 << 20, "G": 1 << 30, "T": 1 << 40}


class ConfigError(ValueError):
    """Raised when a configuration cannot be decoded or is invalid."""


def string_to_bps(s: str) -> int:
    """Convert a rate such as ``"10 Mbps"`` or ``"100 KBps"`` to bytes per second.

    Returns 0 when the string is not a valid rate.
    """
    m = _RATE_RE.fullmatch(s)
    if m is None:
        return 0
    digits, unit, kind = m.groups()
    value = min(int(digits), _UINT64_MAX)
    n = (value * _RATE_UNITS[unit]) & _UINT64_MAX
    if kind == "b":
        n >>= 3
    return n


def _mbps_to_bps(mbps: int) -> int:
    return ((mbps & _UINT64_MAX) * MBPS_TO_BPS) & _UINT64_MAX


def _speed(up: str, up_mbps: int, down: str, down_mbps: int) -> tuple[int, int]:
    if up:
        up_bps = string_to_bps(up)
        if up_bps == 0:
            raise ConfigError("invalid speed format")
    else:
        up_bps = _mbps_to_bps(up_mbps)
    if down:
        down_bps = string_to_bps(down)
        if down_bps == 0:
            raise ConfigError("invalid speed format")
    else:
        down_bps = _mbps_to_bps(down_mbps)
    return up_bps, down_bps


# --- decoding -------------------------------------------------------------


def _opt(key: str, kind: Any, default: Any = MISSING, factory: Any = MISSING) -> Any:
    meta = {"json": key, "kind": kind}
    if factory is not MISSING:
        return field(default_factory=factory, metadata=meta)
    return field(default=default, metadata=meta)


def _text(key: str) -> Any:
    """A string field that defaults to the empty string."""
    return _opt(key, "str", "")


def _zero(kind: Any) -> Any:
    if isinstance(kind, tuple):
        return []
    if isinstance(kind, type):
        return kind()
    return {
        "str": "",
        "bool": False,
        "int": 0,
        "uint64": 0,
        "uint32": 0,
        "bytes": b"",
        "raw": None,
    }[kind]


def _fail(path: str, expected: str) -> ConfigError:
    return ConfigError(f"cannot decode {path or 'configuration'}: expected {expected}")


def _integer(value: Any, path: str, low: int, high: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(path, name)
    if not low <= value <= high:
        raise ConfigError(f"cannot decode {path}: {value} overflows {name}")
    return value


def _convert(kind: Any, value: Any, path: str) -> Any:
    if value is None:
        return _zero(kind)
    if isinstance(kind, tuple):
        if not isinstance(value, list):
            raise _fail(path, "an array")
        item_kind = kind[1]
        return [_convert(item_kind, item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(kind, type):
        return _decode(kind, value, path)
    if kind == "str":
        if not isinstance(value, str):
            raise _fail(path, "a string")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise _fail(path, "a boolean")
        return value
    if kind == "int":
        return _integer(value, path, _INT64_MIN, _INT64_MAX, "an integer")
    if kind == "uint64":
        return _integer(value, path, 0, _UINT64_MAX, "an unsigned integer")
    if kind == "uint32":
        return _integer(value, path, 0, _UINT32_MAX, "an unsigned 32-bit integer")
    if kind == "bytes":
        if not isinstance(value, str):
            raise _fail(path, "a base64 string")
        cleaned = value.replace("\r", "").replace("\n", "")
        try:
            return base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigError(f"cannot decode {path}: {exc}") from exc
    if kind == "raw":
        return value
    raise TypeError(f"unknown field kind {kind!r}")


def _decode(cls: type, data: Any, path: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise _fail(path, "an object")
    folded: dict[str, Any] = {}
    for key, value in data.items():
        folded.setdefault(key.lower(), value)
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = f.metadata["json"]
        if key in data:
            value = data[key]
        elif key.lower() in folded:
            value = folded[key.lower()]
        else:
            continue
        if value is None:
            continue
        kwargs[f.name] = _convert(f.metadata["kind"], value, f"{path}.{key}" if path else key)
    return cls(**kwargs)


def _load_json(data: str | bytes | bytearray) -> Any:
    def reject_constant(name: str) -> Any:
        raise ConfigError(f"invalid JSON value {name}")

    try:
        return json.loads(data, parse_constant=reject_constant)
    except ConfigError:
        raise
    except ValueError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


# --- shared -----------------------------------------------------------------


@dataclass
class Relay:
    """A TCP or UDP relay from a local address to a remote one."""

    listen: str = _opt("listen", "str", "")
    remote: str = _opt("remote", "str", "")
    timeout: int = _opt("timeout", "int", 0)

    def check(self) -> None:
        if not self.listen:
            raise ConfigError("no relay listen address")
        if not self.remote:
            raise ConfigError("no relay remote address")
        if self.timeout != 0 and self.timeout <= 4:
            raise ConfigError("invalid relay timeout")


# --- server -----------------------------------------------------------------


@dataclass
class ServerACME:
    domains: list[str] = _opt("domains", ("list", "str"), factory=list)
    email: str = _opt("email", "str", "")
    disable_http: bool = _opt("disable_http", "bool", False)
    disable_tlsalpn: bool = _opt("disable_tlsalpn", "bool", False)
    alt_http_port: int = _opt("alt_http_port", "int", 0)
    alt_tlsalpn_port: int = _opt("alt_tlsalpn_port", "int", 0)


@dataclass
class ServerAuth:
    mode: str = _opt("mode", "str", "")
    config: Any = _opt("config", "raw", None)


@dataclass
class SOCKS5Outbound:
    server: str = _opt("server", "str", "")
    user: str = _opt("user", "str", "")
    password: str = _text(PASSWORD)


@dataclass
class BindOutbound:
    address: str = _opt("address", "str", "")
    device: str = _opt("device", "str", "")


@dataclass
class ServerConfig:
    """Configuration of a server instance."""

    listen: str = _opt("listen", "str", "")
    protocol: str = _opt("protocol", "str", "")
    acme: ServerACME = _opt("acme", ServerACME, factory=ServerACME)
    cert_file: str = _opt("cert", "str", "")
    key_file: str = _opt("key", "str", "")
    up: str = _opt("up", "str", "")
    up_mbps: int = _opt("up_mbps", "int", 0)
    down: str = _opt("down", "str", "")
    down_mbps: int = _opt("down_mbps", "int", 0)
    disable_udp: bool = _opt("disable_udp", "bool", False)
    acl: str = _opt("acl", "str", "")
    mmdb: str = _opt("mmdb", "str", "")
    obfs: str = _opt("obfs", "str", "")
    auth: ServerAuth = _opt("auth", ServerAuth, factory=ServerAuth)
    alpn: str = _opt("alpn", "str", "")
    prometheus_listen: str = _opt("prometheus_listen", "str", "")
    receive_window_conn: int = _opt("recv_window_conn", "uint64", 0)
    receive_window_client: int = _opt("recv_window_client", "uint64", 0)
    max_conn_client: int = _opt("max_conn_client", "int", 0)
    disable_mtu_discovery: bool = _opt("disable_mtu_discovery", "bool", False)
    resolver: str = _opt("resolver", "str", "")
    resolve_preference: str = _opt("resolve_preference", "str", "")
    socks5_outbound: SOCKS5Outbound = _opt("socks5_outbound", SOCKS5Outbound, factory=SOCKS5Outbound)
    bind_outbound: BindOutbound = _opt("bind_outbound", BindOutbound, factory=BindOutbound)

    @classmethod
    def from_dict(cls, data: Any) -> ServerConfig:
        """Decode a configuration from parsed JSON without validating it."""
        return _decode(cls, data, "")

    def speed(self) -> tuple[int, int]:
        """Return ``(up, down)`` in bytes per second; 0 means unlimited."""
        return _speed(self.up, self.up_mbps, self.down, self.down_mbps)

    def check(self) -> None:
        if not self.listen:
            raise ConfigError("no listen address")
        if not self.acme.domains and (not self.cert_file or not self.key_file):
            raise ConfigError("ACME domain or TLS cert not provided")
        try:
            up, down = self.speed()
        except ConfigError:
            raise ConfigError("invalid speed") from None
        if (up != 0 and up < MIN_SPEED_BPS) or (down != 0 and down < MIN_SPEED_BPS):
            raise ConfigError("invalid speed")
        if (self.receive_window_conn != 0 and self.receive_window_conn < MIN_RECEIVE_WINDOW) or (
            self.receive_window_client != 0 and self.receive_window_client < MIN_RECEIVE_WINDOW
        ):
            raise ConfigError("invalid receive window size")
        if self.max_conn_client < 0:
            raise ConfigError("invalid max connections per client")


# --- client -----------------------------------------------------------------


@dataclass
class ClientSOCKS5:
    listen: str = _opt("listen", "str", "")
    timeout: int = _opt("timeout", "int", 0)
    disable_udp: bool = _opt("disable_udp", "bool", False)
    user: str = _opt("user", "str", "")
    password: str = _text(PASSWORD)


@dataclass
class ClientHTTP:
    listen: str = _opt("listen", "str", "")
    timeout: int = _opt("timeout", "int", 0)
    user: str = _opt("user", "str", "")
    password: str = _text(PASSWORD)
    cert: str = _opt("cert", "str", "")
    key: str = _opt("key", "str", "")


@dataclass
class ClientTUN:
    name: str = _opt("name", "str", "")
    timeout: int = _opt("timeout", "int", 0)
    mtu: int = _opt("mtu", "uint32", 0)


@dataclass
class ListenTimeout:
    """A listener with an idle timeout, used by TProxy and redirect modes."""

    listen: str = _opt("listen", "str", "")
    timeout: int = _opt("timeout", "int", 0)


@dataclass
class ClientConfig:
    """Configuration of a client instance."""

    server: str = _opt("server", "str", "")
    protocol: str = _opt("protocol", "str", "")
    up: str = _opt("up", "str", "")
    up_mbps: int = _opt("up_mbps", "int", 0)
    down: str = _opt("down", "str", "")
    down_mbps: int = _opt("down_mbps", "int", 0)
    retry: int = _opt("retry", "int", 0)
    retry_interval: int = _opt("retry_interval", "int", 0)
    socks5: ClientSOCKS5 = _opt("socks5", ClientSOCKS5, factory=ClientSOCKS5)
    http: ClientHTTP = _opt("http", ClientHTTP, factory=ClientHTTP)
    tun: ClientTUN = _opt("tun", ClientTUN, factory=ClientTUN)
    tcp_relays: list[Relay] = _opt("relay_tcps", ("list", Relay), factory=list)
    tcp_relay: Relay = _opt("relay_tcp", Relay, factory=Relay)  # deprecated
    udp_relays: list[Relay] = _opt("relay_udps", ("list", Relay), factory=list)
    udp_relay: Relay = _opt("relay_udp", Relay, factory=Relay)  # deprecated
    tcp_tproxy: ListenTimeout = _opt("tproxy_tcp", ListenTimeout, factory=ListenTimeout)
    udp_tproxy: ListenTimeout = _opt("tproxy_udp", ListenTimeout, factory=ListenTimeout)
    tcp_redirect: ListenTimeout = _opt("redirect_tcp", ListenTimeout, factory=ListenTimeout)
    acl: str = _opt("acl", "str", "")
    mmdb: str = _opt("mmdb", "str", "")
    obfs: str = _opt("obfs", "str", "")
    auth: bytes = _opt("auth", "bytes", b"")
    auth_string: str = _opt("auth_str", "str", "")
    alpn: str = _opt("alpn", "str", "")
    server_name: str = _opt("server_name", "str", "")
    insecure: bool = _opt("insecure", "bool", False)
    custom_ca: str = _opt("ca", "str", "")
    receive_window_conn: int = _opt("recv_window_conn", "uint64", 0)
    receive_window: int = _opt("recv_window", "uint64", 0)
    disable_mtu_discovery: bool = _opt("disable_mtu_discovery", "bool", False)
    resolver: str = _opt("resolver", "str", "")
    resolve_preference: str = _opt("resolve_preference", "str", "")

    @classmethod
    def from_dict(cls, data: Any) -> ClientConfig:
        """Decode a configuration from parsed JSON without validating it."""
        return _decode(cls, data, "")

    def speed(self) -> tuple[int, int]:
        """Return ``(up, down)`` in bytes per second."""
        return _speed(self.up, self.up_mbps, self.down, self.down_mbps)

    def check(self) -> None:
        modes = (
            self.socks5.listen,
            self.http.listen,
            self.tun.name,
            self.tcp_relay.listen,
            self.udp_relay.listen,
            self.tcp_relays,
            self.udp_relays,
            self.tcp_tproxy.listen,
            self.udp_tproxy.listen,
            self.tcp_redirect.listen,
        )
        if not any(modes):
            raise ConfigError("please enable at least one mode")
        if self.socks5.timeout != 0 and self.socks5.timeout <= 4:
            raise ConfigError("invalid SOCKS5 timeout")
        if self.http.timeout != 0 and self.http.timeout <= 4:
            raise ConfigError("invalid HTTP timeout")
        if self.tun.timeout != 0 and self.tun.timeout < 4:
            raise ConfigError("invalid TUN timeout")
        if self.tcp_relay.listen and not self.tcp_relay.remote:
            raise ConfigError("no TCP relay remote address")
        if self.udp_relay.listen and not self.udp_relay.remote:
            raise ConfigError("no UDP relay remote address")
        if self.tcp_relay.timeout != 0 and self.tcp_relay.timeout <= 4:
            raise ConfigError("invalid TCP relay timeout")
        if self.udp_relay.timeout != 0 and self.udp_relay.timeout <= 4:
            raise ConfigError("invalid UDP relay timeout")
        for relay in (*self.tcp_relays, *self.udp_relays):
            relay.check()
        if self.tcp_tproxy.timeout != 0 and self.tcp_tproxy.timeout <= 4:
            raise ConfigError("invalid TCP TProxy timeout")
        if self.udp_tproxy.timeout != 0 and self.udp_tproxy.timeout <= 4:
            raise ConfigError("invalid UDP TProxy timeout")
        if self.tcp_redirect.timeout != 0 and self.tcp_redirect.timeout <= 4:
            raise ConfigError("invalid TCP Redirect timeout")
        if not self.server:
            raise ConfigError("no server address")
        try:
            up, down = self.speed()
        except ConfigError:
            raise ConfigError("invalid speed") from None
        if up < MIN_SPEED_BPS or down < MIN_SPEED_BPS:
            raise ConfigError("invalid speed")
        if (self.receive_window_conn != 0 and self.receive_window_conn < MIN_RECEIVE_WINDOW) or (
            self.receive_window != 0 and self.receive_window < MIN_RECEIVE_WINDOW
        ):
            raise ConfigError("invalid receive window size")
        if self.tcp_relay.listen:
            logger.warning("'relay_tcp' is deprecated, please use 'relay_tcps' instead")
        if self.udp_relay.listen:
            logger.warning("config 'relay_udp' is deprecated, please use 'relay_udps' instead")


def parse_server_config(data: str | bytes | bytearray) -> ServerConfig:
    """Decode and validate a server configuration from JSON text."""
    config = ServerConfig.from_dict(_load_json(data))
    config.check()
    return config


def parse_client_config(data: str | bytes | bytearray) -> ClientConfig:
    """Decode and validate a client configuration from JSON text."""
    config = ClientConfig.from_dict(_load_json(data))
    config.check()
    return config