"""ACL engine: resolves a host and finds the first matching rule."""

from __future__ import annotations

import ipaddress
from collections.abc import Callable, Iterable, MutableMapping
from dataclasses import dataclass
from typing import Any

from cachetools import LRUCache

from .entry import (
    Action,
    CountryMatcher,
    Entry,
    IPAddress,
    MatchRequest,
    Protocol,
    parse_entry,
)

ENTRY_CACHE_SIZE = 1024


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a lookup.

    ``error`` holds the resolution failure for a domain, if any; the action
    is still valid then.
    """

    action: Action
    arg: str
    is_domain: bool
    ip: IPAddress | None
    zone: str = ""
    error: Exception | None = None


def _parse_ip_zone(host: str) -> tuple[IPAddress | None, str]:
    addr, zone = host, ""
    i = host.rfind("%")
    if i > 0:
        addr, zone = host[:i], host[i + 1 :]
    if "%" in addr:
        return None, ""
    try:
        ip = ipaddress.ip_address(addr)
    except ValueError:
        return None, ""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip, zone


class Engine:
    """Matches requests against an ordered list of ACL entries, with caching."""

    def __init__(
        self,
        entries: Iterable[Entry],
        resolve_ip_addr: Callable[[str], Any],
        default_action: Action = Action.PROXY,
        geoip_reader: Any = None,
        cache: MutableMapping | None = None,
    ) -> None:
        self.entries = list(entries)
        self.resolve_ip_addr = resolve_ip_addr
        self.default_action = default_action
        self.geoip_reader = geoip_reader
        self.cache: MutableMapping = LRUCache(ENTRY_CACHE_SIZE) if cache is None else cache

    def _resolve(self, host: str) -> tuple[IPAddress | None, Exception | None]:
        try:
            value = self.resolve_ip_addr(host)
        except Exception as exc:  # reported alongside the match result
            return None, exc
        if value is None or isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            return value, None
        return ipaddress.ip_address(value), None

    def _match(self, request: MatchRequest) -> tuple[Action, str]:
        for entry in self.entries:
            if entry.match(request):
                return entry.action, entry.action_arg
        return self.default_action, ""

    def _lookup(self, key: tuple[str, int, bool], request: MatchRequest) -> tuple[Action, str]:
        cached = self.cache.get(key)
        if cached is None:
            cached = self._match(request)
            self.cache[key] = cached
        return cached

    def resolve_and_match(self, host: str, port: int, is_udp: bool) -> MatchResult:
        """Resolve ``host`` if it is a domain and return the action for it."""
        protocol = Protocol.UDP if is_udp else Protocol.TCP
        ip, zone = _parse_ip_zone(host)
        if ip is None:
            resolved, error = self._resolve(host)
            request = MatchRequest(
                ip=resolved, domain=host, protocol=protocol, port=port, db=self.geoip_reader
            )
            action, arg = self._lookup((host, port, is_udp), request)
            resolved_zone = ""
            if isinstance(resolved, ipaddress.IPv6Address) and resolved.scope_id:
                resolved_zone = resolved.scope_id
            return MatchResult(action, arg, True, resolved, resolved_zone, error)
        request = MatchRequest(ip=ip, protocol=protocol, port=port, db=self.geoip_reader)
        action, arg = self._lookup((str(ip), port, is_udp), request)
        return MatchResult(action, arg, False, ip, zone)


def load_from_file(
    filename: str,
    resolve_ip_addr: Callable[[str], Any],
    geoip_load_func: Callable[[], Any],
) -> Engine:
    """Read ACL rules from a file; the GeoIP reader is loaded only if needed."""
    entries: list[Entry] = []
    geoip_reader = None
    with open(filename, encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            entry = parse_entry(line)
            if isinstance(entry.matcher, CountryMatcher) and geoip_reader is None:
                geoip_reader = geoip_load_func()
            entries.append(entry)
    return Engine(entries, resolve_ip_addr, Action.PROXY, geoip_reader)