"""Access-control rules: actions, match conditions and the rule syntax."""

from __future__ import annotations

import ipaddress
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_DIGITS_RE = re.compile(r"[0-9]+")


class ACLError(ValueError):
    """Raised when an ACL rule cannot be parsed."""


class Action(IntEnum):
    DIRECT = 0
    PROXY = 1
    BLOCK = 2
    HIJACK = 3


class Protocol(IntEnum):
    ALL = 0
    TCP = 1
    UDP = 2


PROTOCOL_PORT_ALIASES = {
    "echo": "*/7",
    "ftp-data": "*/20",
    "ftp": "*/21",
    "ssh": "*/22",
    "telnet": "*/23",
    "domain": "*/53",
    "dns": "*/53",
    "http": "*/80",
    "sftp": "*/115",
    "ntp": "*/123",
    "https": "*/443",
    "quic": "udp/443",
    "socks": "*/1080",
}

_PROTOCOL_NAMES = {"tcp": Protocol.TCP, "udp": Protocol.UDP, "*": Protocol.ALL}


@dataclass(frozen=True)
class MatchRequest:
    """What a rule is matched against.

    ``db`` is a GeoIP lookup object whose ``country(ip)`` returns the ISO
    3166-1 alpha-2 code of an address.
    """

    ip: IPAddress | None = None
    domain: str = ""
    protocol: Protocol = Protocol.ALL
    port: int = 0
    db: Any = None


def _as_ipv4(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _as_ipv4_network(net: IPNetwork) -> IPNetwork:
    if isinstance(net, ipaddress.IPv6Network) and net.prefixlen >= 96:
        mapped = net.network_address.ipv4_mapped
        if mapped is not None:
            return ipaddress.IPv4Network((int(mapped), net.prefixlen - 96))
    return net


def _network_contains(net: IPNetwork, ip: IPAddress) -> bool:
    net = _as_ipv4_network(net)
    ip = _as_ipv4(ip)
    return ip.version == net.version and ip in net


@dataclass(frozen=True)
class Matcher(ABC):
    """A rule condition, optionally limited to a protocol and port (0: any)."""

    protocol: Protocol = field(default=Protocol.ALL, kw_only=True)
    port: int = field(default=0, kw_only=True)

    def match_protocol_port(self, protocol: Protocol, port: int) -> bool:
        return (self.protocol == Protocol.ALL or self.protocol == protocol) and (
            self.port == 0 or self.port == port
        )

    @abstractmethod
    def match(self, request: MatchRequest) -> bool:
        """Return whether the request satisfies this condition."""


@dataclass(frozen=True)
class NetMatcher(Matcher):
    net: IPNetwork

    def match(self, request: MatchRequest) -> bool:
        if request.ip is None:
            return False
        return _network_contains(self.net, request.ip) and self.match_protocol_port(
            request.protocol, request.port
        )


@dataclass(frozen=True)
class DomainMatcher(Matcher):
    domain: str
    suffix: bool = False

    def match(self, request: MatchRequest) -> bool:
        if not request.domain:
            return False
        domain = request.domain.lower()
        hit = self.domain == domain or (self.suffix and domain.endswith("." + self.domain))
        return hit and self.match_protocol_port(request.protocol, request.port)


@dataclass(frozen=True)
class CountryMatcher(Matcher):
    country: str  # ISO 3166-1 alpha-2, upper case

    def match(self, request: MatchRequest) -> bool:
        if request.ip is None or request.db is None:
            return False
        try:
            code = request.db.country(request.ip)
        except Exception:  # a failed lookup never matches
            return False
        return code == self.country and self.match_protocol_port(request.protocol, request.port)


@dataclass(frozen=True)
class AllMatcher(Matcher):
    def match(self, request: MatchRequest) -> bool:
        return self.match_protocol_port(request.protocol, request.port)


@dataclass(frozen=True)
class Entry:
    """One ACL rule: an action, its argument and a condition."""

    action: Action
    action_arg: str
    matcher: Matcher

    def match(self, request: MatchRequest) -> bool:
        return self.matcher.match(request)


def parse_protocol_port(s: str) -> tuple[Protocol, int]:
    """Parse ``proto/port`` (either part may be ``*``) or a named alias."""
    s = PROTOCOL_PORT_ALIASES.get(s, s)
    if s in ("", "*"):
        return Protocol.ALL, 0
    parts = s.split("/")
    if len(parts) != 2:
        raise ACLError("invalid protocol/port syntax")
    proto_name, port_text = parts
    protocol = _PROTOCOL_NAMES.get(proto_name)
    if protocol is None:
        raise ACLError("invalid protocol")
    if port_text == "*":
        return protocol, 0
    if not _DIGITS_RE.fullmatch(port_text) or int(port_text) > 0xFFFF:
        raise ACLError("invalid port")
    return protocol, int(port_text)


def _parse_ip(s: str) -> IPAddress | None:
    if "%" in s:
        return None
    try:
        return ipaddress.ip_address(s)
    except ValueError:
        return None


def _parse_cidr(s: str) -> IPNetwork:
    addr, sep, prefix = s.partition("/")
    ip = _parse_ip(addr)
    if not sep or ip is None or not _DIGITS_RE.fullmatch(prefix):
        raise ACLError(f"invalid CIDR address: {s}")
    try:
        return ipaddress.ip_network(f"{ip}/{int(prefix)}", strict=False)
    except ValueError:
        raise ACLError(f"invalid CIDR address: {s}") from None


def _value_matcher(kind: str, value: str, protocol: Protocol, port: int) -> Matcher:
    if kind == "domain":
        return DomainMatcher(value, suffix=False, protocol=protocol, port=port)
    if kind == "domain-suffix":
        return DomainMatcher(value, suffix=True, protocol=protocol, port=port)
    if kind == "cidr":
        return NetMatcher(_parse_cidr(value), protocol=protocol, port=port)
    if kind == "ip":
        ip = _parse_ip(value)
        if ip is None:
            raise ACLError(f"invalid ip: {value}")
        ip = _as_ipv4(ip)
        return NetMatcher(ipaddress.ip_network((int(ip), ip.max_prefixlen) if ip.version == 6 else ip),
                          protocol=protocol, port=port)
    return CountryMatcher(value.upper(), protocol=protocol, port=port)


_VALUE_CONDITIONS = ("domain", "domain-suffix", "cidr", "ip", "country")


def conds_to_matcher(conds: list[str]) -> Matcher:
    """Build a matcher from a condition type followed by its arguments."""
    if not conds:
        raise ACLError("no condition specified")
    typ, args = conds[0], conds[1:]
    kind = typ.lower()
    if kind == "all":
        if len(args) > 1:
            raise ACLError(f"invalid number of arguments for all: {len(args)}, expected 0 or 1")
        protocol, port = parse_protocol_port(args[0]) if args else (Protocol.ALL, 0)
        return AllMatcher(protocol=protocol, port=port)
    if kind not in _VALUE_CONDITIONS:
        raise ACLError(f"invalid condition type: {typ}")
    if not args or len(args) > 2:
        raise ACLError(
            f"invalid number of arguments for {kind}: {len(args)}, expected 1 or 2"
        )
    protocol, port = parse_protocol_port(args[1]) if len(args) == 2 else (Protocol.ALL, 0)
    return _value_matcher(kind, args[0], protocol, port)


_ACTIONS = {"direct": Action.DIRECT, "proxy": Action.PROXY, "block": Action.BLOCK}


def parse_entry(s: str) -> Entry:
    """Parse one rule line such as ``block cidr 8.8.8.0/24 */53``."""
    words = s.split()
    if len(words) < 2:
        raise ACLError(f"expected at least 2 fields, got {len(words)}")
    name, conds = words[0], words[1:]
    kind = name.lower()
    arg = ""
    if kind == "hijack":
        if len(conds) < 2:
            raise ACLError(f"hijack requires at least 3 fields, got {len(words)}")
        action = Action.HIJACK
        arg, conds = conds[-1], conds[:-1]
    elif kind in _ACTIONS:
        action = _ACTIONS[kind]
    else:
        raise ACLError(f"invalid action {name}")
    return Entry(action, arg, conds_to_matcher(conds))