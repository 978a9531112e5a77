"""
UDP broadcast connection.

A single connection object sends datagrams to the IPv4 broadcast address or
the IPv6 link-local all-nodes group and receives the replies peers send back
to the same socket:
- The socket is created lazily on first send (or immediately with ``bind``)
- Incoming data is delivered through an asyncio read-readiness registration
- Receive failures close the socket and recreate it on the event loop
"""

import asyncio
import logging
import socket
import weakref
from typing import Optional, Union

from udp_broadcast.core.types import (
    DEFAULT_INTERFACE,
    RECEIVE_BUFFER_SIZE,
    AddressFamily,
    ErrorHandler,
    ResponseHandler,
)
from udp_broadcast.errors import (
    BroadcastConnectionError,
    MessageEncodingFailed,
    ReceivedEndOfFile,
    ReceiveFailed,
    ReopeningSocketFailed,
    SendFailed,
    SocketCreationFailed,
    UnderlyingError,
)
from udp_broadcast.notification import AsyncioReadSource, ReadinessSource, SourceFactory
from udp_broadcast.sockaddr import SocketAddress, decode_endpoint
from udp_broadcast.strategies import FamilyStrategy, strategy_for

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, bytearray, memoryview]


def set_no_sigpipe(sock: socket.socket):
    """Keep writes on a half-closed socket from raising SIGPIPE, where the platform allows it."""
    option = getattr(socket, "SO_NOSIGPIPE", None)
    if option is None:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, option, 1)
    except OSError as e:
        logger.warning(f"Couldn't disable SIGPIPE on socket: {e}")


class BroadcastConnection:
    """
    Broadcast/multicast sender that receives replies asynchronously.

    All socket work and every handler call happens on one event loop, the
    running loop at construction time unless ``loop`` is given.

    Usage:
        connection = BroadcastConnection(AddressFamily.IPV4, 35602, handler, error_handler)
        connection.send_broadcast("Hello world")
    """

    def __init__(
        self,
        address_family: AddressFamily,
        port: int,
        handler: Optional[ResponseHandler] = None,
        error_handler: Optional[ErrorHandler] = None,
        *,
        interface: str = DEFAULT_INTERFACE,
        bind: bool = False,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        broadcast_address: Optional[str] = None,
        source_factory: SourceFactory = AsyncioReadSource,
    ):
        """
        Initialize the connection. No socket is opened unless ``bind`` is set.

        Args:
            address_family: IPv4 broadcast or IPv6 link-local multicast
            port: UDP port to send to
            handler: Called with (host, port, payload) for every datagram received
            error_handler: Called with errors encountered while receiving
            interface: Outbound interface for IPv6 multicast, ignored for IPv4
            bind: Open and bind the socket immediately
            loop: Event loop for the receive loop and callbacks
            broadcast_address: Override the IPv4 broadcast address
            source_factory: Builds the readiness registration for each socket

        Raises:
            AddressCreationFailed: The destination address could not be built
            ValueError: The port is out of range
        """
        self.address_family = AddressFamily(address_family)
        self.interface = interface
        self.handler = handler
        self.error_handler = error_handler
        self.source_factory = source_factory

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError(
                    "BroadcastConnection needs an event loop: pass loop= or create it from a coroutine"
                ) from None
        self.loop = loop

        self.strategy: FamilyStrategy = strategy_for(
            self.address_family,
            port,
            interface=interface,
            bind=bind,
            broadcast_address=broadcast_address,
        )
        self.destination: SocketAddress = self.strategy.destination()

        self.response_source: Optional[ReadinessSource] = None
        self._reopen_handle: Optional[asyncio.Handle] = None
        self._send_flags = getattr(socket, "MSG_NOSIGNAL", 0)

        if bind:
            self.open()

    def __del__(self):
        source = getattr(self, "response_source", None)
        if source is not None:
            source.cancel()

    def __enter__(self) -> "BroadcastConnection":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close_connection(reopen=False)

    @property
    def port(self) -> int:
        return self.destination.port

    @property
    def socket(self) -> Optional[socket.socket]:
        """The live socket, if any."""
        if self.response_source is None:
            return None
        return self.response_source.handle

    @property
    def is_open(self) -> bool:
        return self.response_source is not None

    def open(self):
        """
        Create the socket and start watching it for incoming data.

        Does nothing if a socket is already open.

        Raises:
            BroadcastConnectionError: The socket could not be created or configured
        """
        if self.response_source is not None:
            return

        sock = self.strategy.create_socket()
        try:
            sock.setblocking(False)
            set_no_sigpipe(sock)
            source = self.source_factory(sock, self.loop, self._make_reader())
            source.resume()
        except Exception as e:
            # e.g. NotImplementedError from add_reader on a proactor loop
            logger.error(f"Couldn't set up UDP socket: {e}")
            sock.close()
            raise SocketCreationFailed(getattr(e, "errno", None)) from e

        self.response_source = source
        logger.debug(f"Opened {self.address_family.value} socket for port {self.port}")

    def close_connection(self, reopen: bool = True):
        """
        Close the connection.

        Args:
            reopen: Automatically reopens the connection if true. Defaults to true.
        """
        source = self.response_source
        if source is not None:
            self.response_source = None
            source.cancel()

        if self._reopen_handle is not None:
            self._reopen_handle.cancel()
            self._reopen_handle = None

        if reopen:
            if self.loop.is_closed():
                logger.debug("Event loop closed, not reopening socket")
                return
            self._reopen_handle = self.loop.call_soon(self._reopen)

    def send_broadcast(self, payload: Payload):
        """
        Send a broadcast message.

        Text is encoded as UTF-8, bytes-like payloads are sent unchanged.

        Args:
            payload: Message to send via broadcast

        Raises:
            MessageEncodingFailed: Text could not be encoded
            SendFailed: The operating system rejected the datagram
            BroadcastConnectionError: The socket could not be opened
        """
        if isinstance(payload, str):
            try:
                data = payload.encode("utf-8")
            except UnicodeEncodeError as e:
                raise MessageEncodingFailed(e) from e
        else:
            data = bytes(payload)

        if self.response_source is None:
            self.open()

        sock = self.response_source.handle
        try:
            sent = sock.sendto(data, self._send_flags, self.destination.to_tuple())
        except OSError as e:
            logger.error(f"UDP connection failed to send data: {e}")
            self.close_connection(reopen=False)
            raise SendFailed(e.errno) from e

        if sent <= 0 and data:
            logger.error("UDP connection failed to send data: no bytes accepted")
            self.close_connection(reopen=False)
            raise SendFailed(0)

        if sent == len(data):
            logger.debug(f"UDP connection sent {sent} bytes")
        else:
            logger.warning(f"UDP connection sent {sent} of {len(data)} bytes")

    def _make_reader(self):
        # the registration must not keep the connection alive
        ref = weakref.ref(self)

        def on_readable():
            connection = ref()
            if connection is not None:
                connection._on_readable()

        return on_readable

    def _reopen(self):
        self._reopen_handle = None
        try:
            self.open()
        except BroadcastConnectionError as e:
            self._report(ReopeningSocketFailed(e))

    def _report(self, error: BroadcastConnectionError):
        if self.error_handler is None:
            logger.error(f"Unhandled UDP connection error: {error}")
            return
        self.error_handler(error)

    def _on_readable(self):
        """Drain one datagram and hand it to the response handler."""
        source = self.response_source
        if source is None:
            return

        try:
            try:
                data, address = source.handle.recvfrom(RECEIVE_BUFFER_SIZE)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                logger.error(f"recvfrom failed: {e}")
                self.close_connection()
                raise ReceiveFailed(e.errno) from e

            if not data:
                logger.debug("recvfrom returned EOF")
                self.close_connection()
                raise ReceivedEndOfFile()

            endpoint = decode_endpoint(address)
            if endpoint is None:
                logger.debug(f"Failed to get the address and port from {address!r}")
                self.close_connection()
                return

            logger.debug(f"UDP connection received {len(data)} bytes from {endpoint}")

            if self.handler is not None:
                self.handler(endpoint.host, endpoint.port, bytes(data))

        except BroadcastConnectionError as e:
            self._report(e)
        except Exception as e:
            logger.error(f"Error in receive handler: {e}")
            self._report(UnderlyingError(e))
