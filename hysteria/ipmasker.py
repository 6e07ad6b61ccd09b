"""Masking of IP addresses in log output with a CIDR prefix."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass


def _split_host_port(hostport: str) -> tuple[str, str] | None:
    i = hostport.rfind(":")
    if i < 0:
        return None
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0 or end + 1 == len(hostport) or end + 1 != i:
            return None
        host = hostport[1:end]
        j, k = 1, end + 1
    else:
        host = hostport[:i]
        if ":" in host:
            return None
        j = k = 0
    if "[" in hostport[j:] or "]" in hostport[k:]:
        return None
    return host, hostport[i + 1 :]


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _prefix_mask(bits: int, prefix: int) -> int:
    return ((1 << bits) - 1) ^ ((1 << (bits - prefix)) - 1)


def _format_16(value: int) -> str:
    if value >> 32 == 0xFFFF:
        return str(ipaddress.IPv4Address(value & 0xFFFFFFFF))
    return str(ipaddress.IPv6Address(value))


@dataclass(frozen=True)
class IPMasker:
    """Masks IPv4 and IPv6 addresses with the configured prefix lengths.

    A prefix of ``None`` leaves addresses of that family untouched.
    """

    ipv4_prefix: int | None = None
    ipv6_prefix: int | None = None

    def __post_init__(self) -> None:
        if self.ipv4_prefix is not None and not 0 <= self.ipv4_prefix <= 32:
            raise ValueError(f"invalid IPv4 prefix length {self.ipv4_prefix}")
        if self.ipv6_prefix is not None and not 0 <= self.ipv6_prefix <= 128:
            raise ValueError(f"invalid IPv6 prefix length {self.ipv6_prefix}")

    def mask(self, addr: str) -> str:
        """Mask ``addr``, which is either ``host:port`` or a bare host."""
        if self.ipv4_prefix is None and self.ipv6_prefix is None:
            return addr
        split = _split_host_port(addr)
        host, port = split if split is not None else (addr, "")
        if "%" in host:
            return addr
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            return addr

        if isinstance(ip, ipaddress.IPv4Address):
            v4 = ip
        else:
            v4 = ip.ipv4_mapped

        if v4 is not None and self.ipv4_prefix is not None:
            host = str(ipaddress.IPv4Address(int(v4) & _prefix_mask(32, self.ipv4_prefix)))
        elif self.ipv6_prefix is not None:
            value = (0xFFFF << 32 | int(v4)) if v4 is not None else int(ip)
            host = _format_16(value & _prefix_mask(128, self.ipv6_prefix))

        if port:
            return _join_host_port(host, port)
        return host