"""Packet connections that obfuscate every datagram they carry."""

from __future__ import annotations

import random
import struct
import threading
from typing import Any, Protocol

UDP_BUFFER_SIZE = 65535
WECHAT_HEADER_SIZE = 13

_WECHAT_PREFIX = bytes([0xA1, 0x08])
_WECHAT_SUFFIX = bytes([0x00, 0x10, 0x11, 0x18, 0x30, 0x22, 0x30])


class Obfuscator(Protocol):
    """Turns payloads into wire packets and back.

    ``deobfuscate`` returns an empty result for a packet that is not valid.
    """

    def obfuscate(self, data: bytes) -> bytes: ...

    def deobfuscate(self, data: bytes) -> bytes: ...


class ObfsPacketConn:
    """Wraps a datagram socket so that each packet is obfuscated.

    ``conn`` needs ``recvfrom``, ``sendto``, ``close`` and ``settimeout``,
    as a UDP socket has. Invalid incoming packets are skipped silently.
    """

    def __init__(self, conn: Any, obfs: Obfuscator) -> None:
        self._conn = conn
        self._obfs = obfs
        self._read_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def _decode(self, packet: bytes) -> bytes | None:
        return self._obfs.deobfuscate(packet)

    def _encode(self, data: bytes) -> bytes:
        return self._obfs.obfuscate(data)

    def read_from(self) -> tuple[bytes, Any]:
        """Return the next valid payload and its sender.

        An empty or too short packet yields an empty payload.
        """
        while True:
            with self._read_lock:
                packet, addr = self._conn.recvfrom(UDP_BUFFER_SIZE)
                if not packet:
                    return b"", addr
                payload = self._decode(packet)
            if payload is None:
                return b"", addr
            if payload:
                return payload, addr

    def write_to(self, data: bytes, addr: Any) -> int:
        """Send ``data`` to ``addr`` and return the payload length."""
        with self._write_lock:
            self._conn.sendto(self._encode(data), addr)
        return len(data)

    def close(self) -> None:
        self._conn.close()

    def settimeout(self, timeout: float | None) -> None:
        self._conn.settimeout(timeout)

    @property
    def local_addr(self) -> Any:
        return self._conn.getsockname()

    def __enter__(self) -> ObfsPacketConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ObfsWeChatPacketConn(ObfsPacketConn):
    """Obfuscated packets dressed with a 13-byte video-call style header."""

    def __init__(self, conn: Any, obfs: Obfuscator, sn: int | None = None) -> None:
        super().__init__(conn, obfs)
        self.sn = random.getrandbits(32) & 0xFFFF if sn is None else sn & 0xFFFFFFFF

    def _decode(self, packet: bytes) -> bytes | None:
        if len(packet) <= WECHAT_HEADER_SIZE:
            return None
        return self._obfs.deobfuscate(packet[WECHAT_HEADER_SIZE:])

    def _encode(self, data: bytes) -> bytes:
        header = _WECHAT_PREFIX + struct.pack(">I", self.sn) + _WECHAT_SUFFIX
        self.sn = (self.sn + 1) & 0xFFFFFFFF
        return header + self._obfs.obfuscate(data)

    def read_from(self) -> tuple[bytes, Any]:
        """Return the next valid payload, its header stripped, and its sender."""
        return super().read_from()

    def write_to(self, data: bytes, addr: Any) -> int:
        """Send ``data`` behind a fresh header and return the payload length."""
        return super().write_to(data, addr)

    def close(self) -> None:
        super().close()

    def settimeout(self, timeout: float | None) -> None:
        super().settimeout(timeout)