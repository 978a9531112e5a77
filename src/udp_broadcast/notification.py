"""
Readiness notification sources.

A source watches one socket for "ready to read" and invokes a callback on the
event loop it was created for. Cancelling a source is the only way its
socket gets closed, and it closes it exactly once.
"""

import asyncio
import errno
import logging
import socket
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)


class ReadinessSource(ABC):
    """Abstract read-readiness registration for a socket."""

    def __init__(self, sock: socket.socket, loop: asyncio.AbstractEventLoop, on_readable: Callable[[], None]):
        self.handle = sock
        self.loop = loop
        self.on_readable = on_readable
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @abstractmethod
    def resume(self):
        """Start delivering readiness notifications."""
        pass

    @abstractmethod
    def _unregister(self):
        """Stop watching the descriptor."""
        pass

    def cancel(self):
        """Stop notifications and close the socket. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._unregister()
        self._close_socket()

    def _close_socket(self):
        logger.debug("Closing UDP socket")
        try:
            self.handle.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # unconnected datagram sockets report ENOTCONN here
            if e.errno not in (errno.ENOTCONN, errno.EBADF):
                logger.warning(f"Socket shutdown failed: {e}")
        self.handle.close()


class AsyncioReadSource(ReadinessSource):
    """Readiness source backed by ``loop.add_reader``."""

    def __init__(self, sock: socket.socket, loop: asyncio.AbstractEventLoop, on_readable: Callable[[], None]):
        super().__init__(sock, loop, on_readable)
        self._fd = sock.fileno()
        self._registered = False

    def resume(self):
        if self._cancelled or self._registered:
            return
        self.loop.add_reader(self._fd, self.on_readable)
        self._registered = True

    def _unregister(self):
        if self._registered and not self.loop.is_closed():
            self.loop.remove_reader(self._fd)
        self._registered = False


SourceFactory = Callable[[socket.socket, asyncio.AbstractEventLoop, Callable[[], None]], ReadinessSource]
