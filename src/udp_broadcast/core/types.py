"""Core types shared by the connection engine and its address-family strategies."""

import socket
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from udp_broadcast.errors import BroadcastConnectionError


# Size of the buffer a single receive reads into
RECEIVE_BUFFER_SIZE = 4096

# Limited broadcast, delivered to every host on the local link
IPV4_BROADCAST_ADDRESS = "255.255.255.255"

# Multicast to all link-local nodes (must be scoped to an interface)
IPV6_LINK_LOCAL_ALL_NODES = "ff02::1"

DEFAULT_INTERFACE = "en0"


class AddressFamily(str, Enum):
    """Address family a connection broadcasts on."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def socket_family(self) -> int:
        """The matching ``socket.AF_*`` constant."""
        if self is AddressFamily.IPV4:
            return socket.AF_INET
        return socket.AF_INET6


@dataclass(frozen=True)
class Endpoint:
    """Host and port a datagram was received from."""

    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


ResponseHandler = Callable[[str, int, bytes], None]
ErrorHandler = Callable[["BroadcastConnectionError"], None]
