"""Core module initialization."""

from udp_broadcast.core.types import (
    DEFAULT_INTERFACE,
    IPV4_BROADCAST_ADDRESS,
    IPV6_LINK_LOCAL_ALL_NODES,
    RECEIVE_BUFFER_SIZE,
    AddressFamily,
    Endpoint,
    ErrorHandler,
    ResponseHandler,
)

__all__ = [
    "DEFAULT_INTERFACE",
    "IPV4_BROADCAST_ADDRESS",
    "IPV6_LINK_LOCAL_ALL_NODES",
    "RECEIVE_BUFFER_SIZE",
    "AddressFamily",
    "Endpoint",
    "ErrorHandler",
    "ResponseHandler",
]
