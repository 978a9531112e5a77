"""
Socket address values, byte-order helpers and datagram sender decoding.

Incoming addresses are decoded by looking at the family actually present in
the received address, not at the family the connection was configured with.
Both raw ``sockaddr_in``/``sockaddr_in6`` buffers and the address tuples
returned by ``socket.recvfrom`` are understood.
"""

import logging
import socket
import struct
import sys
from dataclasses import dataclass
from typing import Any, Optional

from udp_broadcast.core.types import Endpoint

logger = logging.getLogger(__name__)

# BSD-derived stacks prefix every sockaddr with a one-byte length field
HAS_SIN_LEN = sys.platform == "darwin" or sys.platform.startswith(
    ("freebsd", "openbsd", "netbsd", "dragonfly")
)


def htons(port: int) -> int:
    """Convert a 16-bit port from host to network byte order."""
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Port out of range: {port}")
    return struct.unpack("=H", struct.pack("!H", port))[0]


def ntohs(value: int) -> int:
    """Convert a 16-bit value from network to host byte order."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Value out of 16-bit range: {value}")
    return struct.unpack("!H", struct.pack("=H", value))[0]


@dataclass(frozen=True)
class SocketAddress:
    """A family-specific destination or source address."""

    family: int
    host: str
    port: int
    flowinfo: int = 0
    scope_id: int = 0

    def to_tuple(self) -> tuple:
        """Return the address in the form ``socket.sendto`` expects."""
        if self.family == socket.AF_INET6:
            return (self.host, self.port, self.flowinfo, self.scope_id)
        return (self.host, self.port)

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(self.host, self.port)


def _raw_family(raw: bytes) -> Optional[int]:
    if len(raw) < 2:
        return None
    if HAS_SIN_LEN:
        return raw[1]
    return struct.unpack_from("=H", raw)[0]


def _strip_scope(host: str) -> str:
    return host.split("%", 1)[0]


def _is_address(family: int, host: str) -> bool:
    try:
        socket.inet_pton(family, host)
    except (OSError, ValueError):
        return False
    return True


def family_of(address: Any) -> Optional[int]:
    """
    Detect the address family of a received socket address.

    Returns ``socket.AF_INET``, ``socket.AF_INET6`` or ``None`` when the
    family is not recognised.
    """
    if isinstance(address, SocketAddress):
        return address.family
    if isinstance(address, (bytes, bytearray, memoryview)):
        family = _raw_family(bytes(address))
        if family in (socket.AF_INET, socket.AF_INET6):
            return family
        return None
    if isinstance(address, tuple) and address and isinstance(address[0], str):
        host = address[0]
        if len(address) == 2 and _is_address(socket.AF_INET, host):
            return socket.AF_INET
        if len(address) == 4 and _is_address(socket.AF_INET6, _strip_scope(host)):
            return socket.AF_INET6
    return None


def _decode_raw(raw: bytes) -> Optional[Endpoint]:
    family = family_of(raw)
    offset = 2
    if family == socket.AF_INET:
        if len(raw) < offset + 6:
            return None
        port, packed = struct.unpack_from("!H4s", raw, offset)
        return Endpoint(socket.inet_ntop(socket.AF_INET, packed), port)
    if family == socket.AF_INET6:
        if len(raw) < offset + 22:
            return None
        port, _flowinfo, packed = struct.unpack_from("!HI16s", raw, offset)
        return Endpoint(socket.inet_ntop(socket.AF_INET6, packed), port)
    return None


def _decode_tuple(address: tuple) -> Optional[Endpoint]:
    family = family_of(address)
    if family is None:
        return None
    port = address[1]
    if not isinstance(port, int) or not 0 <= port <= 0xFFFF:
        return None
    host = address[0] if family == socket.AF_INET else _strip_scope(address[0])
    # normalise through the packed form so the textual host is canonical
    host = socket.inet_ntop(family, socket.inet_pton(family, host))
    return Endpoint(host, port)


def decode_endpoint(address: Any) -> Optional[Endpoint]:
    """
    Convert a received socket address into a host string and port.

    Args:
        address: Raw sockaddr bytes, a ``recvfrom`` address tuple or a
            :class:`SocketAddress`.

    Returns:
        The sender as an :class:`Endpoint`, or ``None`` when the address
        family is not recognised or the address is malformed.
    """
    if isinstance(address, SocketAddress):
        return address.endpoint
    if isinstance(address, (bytes, bytearray, memoryview)):
        return _decode_raw(bytes(address))
    if isinstance(address, tuple):
        return _decode_tuple(address)
    logger.debug(f"Cannot decode socket address of type {type(address).__name__}")
    return None
