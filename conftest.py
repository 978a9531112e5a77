"""
Shared fixtures for the udp-broadcast test suite.

Provides fake sockets and a recording readiness source so the connection
engine can be driven without touching the network.
"""

import errno
import socket
import struct
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from udp_broadcast.notification import ReadinessSource
from udp_broadcast.sockaddr import HAS_SIN_LEN
from udp_broadcast.strategies import IPv4Broadcast, IPv6Multicast


def pack_sockaddr(address):
    """Build the raw ``sockaddr_in``/``sockaddr_in6`` bytes the kernel would hand back."""
    if address.family == socket.AF_INET:
        size = 16
        body = struct.pack("!H4s8x", address.port, socket.inet_pton(socket.AF_INET, address.host))
    else:
        size = 28
        body = struct.pack(
            "!HI16s", address.port, address.flowinfo, socket.inet_pton(socket.AF_INET6, address.host)
        )
        # scope id stays in host byte order
        body += struct.pack("=I", address.scope_id)
    if HAS_SIN_LEN:
        return struct.pack("=BB", size, address.family) + body
    return struct.pack("=H", address.family) + body


class FakeSocket:
    """Stands in for a UDP socket; scripted receive results, recorded sends."""

    _next_fd = 1000

    def __init__(self, family=socket.AF_INET):
        FakeSocket._next_fd += 1
        self.family = family
        self._fd = FakeSocket._next_fd
        self.blocking = True
        self.sockopts = {}
        self.bound_to = None
        self.fail_setsockopt = None
        self.fail_bind = None
        self.recv_results = []
        self.send_result = None
        self.sent = []
        self.shutdown_calls = 0
        self.close_count = 0

    @property
    def closed(self):
        return self.close_count > 0

    def fileno(self):
        return -1 if self.closed else self._fd

    def setblocking(self, flag):
        self.blocking = flag

    def setsockopt(self, level, option, value):
        if self.fail_setsockopt is not None:
            raise self.fail_setsockopt
        self.sockopts[(level, option)] = value

    def bind(self, address):
        if self.fail_bind is not None:
            raise self.fail_bind
        self.bound_to = address

    def recvfrom(self, size):
        result = self.recv_results.pop(0)
        if isinstance(result, BaseException):
            raise result
        data, address = result
        return data[:size], address

    def sendto(self, data, flags, address):
        if isinstance(self.send_result, BaseException):
            raise self.send_result
        self.sent.append((bytes(data), address))
        if self.send_result is None:
            return len(data)
        return self.send_result

    def shutdown(self, how):
        self.shutdown_calls += 1
        raise OSError(errno.ENOTCONN, "Transport endpoint is not connected")

    def close(self):
        self.close_count += 1


class RecordingSource(ReadinessSource):
    """Readiness source that records registration instead of watching a descriptor."""

    def __init__(self, sock, loop, on_readable):
        super().__init__(sock, loop, on_readable)
        self.resumed = False
        self.unregister_count = 0

    def resume(self):
        self.resumed = True

    def _unregister(self):
        self.unregister_count += 1

    def fire(self):
        """Simulate a readiness notification."""
        self.on_readable()


class SourceList(list):
    """Readiness sources created so far; ``factory`` builds and records them."""

    factory = None


@pytest.fixture
def sources():
    """List of every readiness source created, plus the factory that fills it."""
    created = SourceList()

    def factory(sock, loop, on_readable):
        source = RecordingSource(sock, loop, on_readable)
        created.append(source)
        return source

    created.factory = factory
    return created


@pytest.fixture
def fake_sockets(monkeypatch):
    """Make every strategy hand out a new FakeSocket; returns the list of them."""
    created = []

    def create_socket(self):
        sock = FakeSocket(self.family.socket_family)
        created.append(sock)
        return sock

    monkeypatch.setattr(IPv4Broadcast, "create_socket", create_socket)
    monkeypatch.setattr(IPv6Multicast, "create_socket", create_socket)
    return created
