"""
Address-family strategies.

Each strategy knows how to build the destination address for its family and
how to create a socket configured for broadcast (IPv4) or link-local
multicast (IPv6). A connection holds exactly one of them.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional, Union

from udp_broadcast.core.types import (
    DEFAULT_INTERFACE,
    IPV4_BROADCAST_ADDRESS,
    IPV6_LINK_LOCAL_ALL_NODES,
    AddressFamily,
)
from udp_broadcast.errors import (
    AddressCreationFailed,
    BindNotImplemented,
    BindSocketFailed,
    BroadcastEnableFailed,
    SocketCreationFailed,
)
from udp_broadcast.sockaddr import SocketAddress

logger = logging.getLogger(__name__)


def _check_port(port: int):
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Port out of range: {port}")


def _new_socket(family: int) -> socket.socket:
    try:
        return socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as e:
        logger.error(f"Couldn't create UDP socket: {e}")
        raise SocketCreationFailed(e.errno) from e


@dataclass(frozen=True)
class IPv4Broadcast:
    """Broadcast to 255.255.255.255 (or a configured broadcast address)."""

    port: int
    broadcast_address: str = IPV4_BROADCAST_ADDRESS
    bind: bool = False

    def __post_init__(self):
        _check_port(self.port)

    @property
    def family(self) -> AddressFamily:
        return AddressFamily.IPV4

    def destination(self) -> SocketAddress:
        try:
            socket.inet_pton(socket.AF_INET, self.broadcast_address)
        except OSError as e:
            raise AddressCreationFailed(f"Invalid address {self.broadcast_address!r}: {e}") from e
        return SocketAddress(socket.AF_INET, self.broadcast_address, self.port)

    def create_socket(self) -> socket.socket:
        sock = _new_socket(socket.AF_INET)

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            logger.error(f"Couldn't enable broadcast on socket: {e}")
            sock.close()
            raise BroadcastEnableFailed(e.errno) from e

        if self.bind:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(("", self.port))
            except OSError as e:
                logger.error(f"Couldn't bind socket to port {self.port}: {e}")
                sock.close()
                raise BindSocketFailed(e.errno) from e

        return sock


@dataclass(frozen=True)
class IPv6Multicast:
    """Multicast to all link-local nodes, scoped by an outbound interface."""

    port: int
    interface: str = DEFAULT_INTERFACE
    group: str = IPV6_LINK_LOCAL_ALL_NODES
    bind: bool = False

    def __post_init__(self):
        _check_port(self.port)

    @property
    def family(self) -> AddressFamily:
        return AddressFamily.IPV6

    def destination(self) -> SocketAddress:
        try:
            packed = socket.inet_pton(socket.AF_INET6, self.group)
        except OSError as e:
            if e.errno:
                raise AddressCreationFailed(f"Failed: {e.strerror} ({e.errno})") from e
            raise AddressCreationFailed("Invalid address") from e
        # scope stays 0, the outbound interface is chosen with IPV6_MULTICAST_IF
        return SocketAddress(
            socket.AF_INET6, socket.inet_ntop(socket.AF_INET6, packed), self.port, 0, 0
        )

    def create_socket(self) -> socket.socket:
        sock = _new_socket(socket.AF_INET6)

        try:
            index = socket.if_nametoindex(self.interface)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)
        except OSError as e:
            logger.error(f"Couldn't enable multicast on interface {self.interface}: {e}")
            sock.close()
            raise BroadcastEnableFailed(e.errno, f"interface {self.interface!r}") from e

        if self.bind:
            logger.error("Binding IPv6 sockets is not implemented")
            sock.close()
            raise BindNotImplemented("ipv6")

        return sock


FamilyStrategy = Union[IPv4Broadcast, IPv6Multicast]


def strategy_for(
    family: AddressFamily,
    port: int,
    interface: str = DEFAULT_INTERFACE,
    bind: bool = False,
    broadcast_address: Optional[str] = None,
) -> FamilyStrategy:
    """Return the strategy for ``family``."""
    family = AddressFamily(family)
    if family is AddressFamily.IPV4:
        return IPv4Broadcast(
            port=port,
            broadcast_address=broadcast_address or IPV4_BROADCAST_ADDRESS,
            bind=bind,
        )
    if family is AddressFamily.IPV6:
        return IPv6Multicast(port=port, interface=interface, bind=bind)
    raise ValueError(f"Unsupported address family: {family}")
