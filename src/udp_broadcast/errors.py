"""
Errors raised or reported by a broadcast connection.

Every failure point (address construction, socket creation, send, receive and
reopen) maps to exactly one of the classes below. Send-path errors are raised
to the caller of ``send_broadcast``; receive-path errors are delivered to the
connection's error handler.
"""

import os
from typing import Optional


class BroadcastConnectionError(Exception):
    """Base class for all connection errors."""


def _describe(code: Optional[int]) -> str:
    if code is None:
        return "unknown error"
    return f"{os.strerror(code)} (errno {code})"


class AddressCreationFailed(BroadcastConnectionError):
    """The destination socket address could not be built."""

    def __init__(self, message: str):
        super().__init__(f"Could not create destination address: {message}")
        self.message = message


class SocketCreationFailed(BroadcastConnectionError):
    """The operating system refused to allocate a socket."""

    def __init__(self, code: Optional[int] = None):
        super().__init__(f"Could not create socket: {_describe(code)}")
        self.code = code


class BroadcastEnableFailed(BroadcastConnectionError):
    """Broadcast (IPv4) or the outbound multicast interface (IPv6) could not be set."""

    def __init__(self, code: Optional[int] = None, detail: str = ""):
        message = f"Could not enable broadcast on socket: {_describe(code)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.code = code
        self.detail = detail


class BindSocketFailed(BroadcastConnectionError):
    """The socket could not be bound to its local port."""

    def __init__(self, code: Optional[int] = None):
        super().__init__(f"Could not bind socket: {_describe(code)}")
        self.code = code


class BindNotImplemented(BindSocketFailed, NotImplementedError):
    """Binding is not supported for this address family."""

    def __init__(self, family: str = "ipv6"):
        BroadcastConnectionError.__init__(self, f"Binding is not implemented for {family} sockets")
        self.code = None
        self.family = family


class MessageEncodingFailed(BroadcastConnectionError):
    """A text message could not be encoded as UTF-8."""

    def __init__(self, error: Optional[UnicodeError] = None):
        super().__init__(f"Could not encode message as UTF-8: {error}")
        self.error = error


class SendFailed(BroadcastConnectionError):
    """The datagram was rejected by the operating system."""

    def __init__(self, code: int):
        super().__init__(f"Sending message failed: {_describe(code)}")
        self.code = code


class ReceivedEndOfFile(BroadcastConnectionError):
    """A receive returned zero bytes."""

    def __init__(self):
        super().__init__("Received end of file")


class ReceiveFailed(BroadcastConnectionError):
    """A receive call failed."""

    def __init__(self, code: int):
        super().__init__(f"Receiving data failed: {_describe(code)}")
        self.code = code


class ReopeningSocketFailed(BroadcastConnectionError):
    """Recreating the socket after a receive failure failed as well."""

    def __init__(self, error: BroadcastConnectionError):
        super().__init__(f"Reopening socket failed: {error}")
        self.error = error


class UnderlyingError(BroadcastConnectionError):
    """Any other exception raised on the receive path."""

    def __init__(self, error: BaseException):
        super().__init__(f"{type(error).__name__}: {error}")
        self.error = error


__all__ = [
    "BroadcastConnectionError",
    "AddressCreationFailed",
    "SocketCreationFailed",
    "BroadcastEnableFailed",
    "BindSocketFailed",
    "BindNotImplemented",
    "MessageEncodingFailed",
    "SendFailed",
    "ReceivedEndOfFile",
    "ReceiveFailed",
    "ReopeningSocketFailed",
    "UnderlyingError",
]
