#!/usr/bin/env python3
"""Tests for the IPv4 broadcast and IPv6 multicast socket strategies."""

import errno
import socket

import pytest

from conftest import FakeSocket, pack_sockaddr
from udp_broadcast import strategies
from udp_broadcast.core.types import IPV6_LINK_LOCAL_ALL_NODES, AddressFamily
from udp_broadcast.errors import (
    AddressCreationFailed,
    BindNotImplemented,
    BindSocketFailed,
    BroadcastEnableFailed,
    SocketCreationFailed,
)
from udp_broadcast.strategies import IPv4Broadcast, IPv6Multicast, strategy_for


@pytest.fixture
def fake_socket(monkeypatch):
    """Replace socket allocation inside the strategies with one FakeSocket."""
    sock = FakeSocket()

    def new_socket(family):
        sock.family = family
        return sock

    monkeypatch.setattr(strategies, "_new_socket", new_socket)
    return sock


def test_ipv4_destination_is_limited_broadcast():
    destination = IPv4Broadcast(35602).destination()

    assert destination.family == socket.AF_INET
    assert destination.to_tuple() == ("255.255.255.255", 35602)
    # port is stored in network byte order in the raw address
    assert pack_sockaddr(destination)[2:4] == b"\x8b\x12"


def test_ipv4_invalid_broadcast_address():
    with pytest.raises(AddressCreationFailed):
        IPv4Broadcast(35602, broadcast_address="not an address").destination()


def test_ipv6_destination_is_link_local_all_nodes():
    destination = IPv6Multicast(35602, interface="en0").destination()

    assert destination.family == socket.AF_INET6
    assert destination.host == "ff02::1"
    assert destination.scope_id == 0
    assert destination.to_tuple() == ("ff02::1", 35602, 0, 0)


def test_ipv6_invalid_group():
    with pytest.raises(AddressCreationFailed) as excinfo:
        IPv6Multicast(35602, group="ff02::zz").destination()

    assert "Invalid address" in str(excinfo.value)


def test_ipv6_group_is_normalised():
    destination = IPv6Multicast(35602, group="ff02:0000:0000:0000:0000:0000:0000:0001").destination()

    assert destination.host == IPV6_LINK_LOCAL_ALL_NODES


@pytest.mark.parametrize("port", [-1, 65536])
def test_port_out_of_range(port):
    with pytest.raises(ValueError):
        IPv4Broadcast(port)
    with pytest.raises(ValueError):
        IPv6Multicast(port)


def test_ipv4_socket_enables_broadcast(fake_socket):
    sock = IPv4Broadcast(35602).create_socket()

    assert sock is fake_socket
    assert fake_socket.sockopts[(socket.SOL_SOCKET, socket.SO_BROADCAST)] == 1
    assert fake_socket.bound_to is None


def test_ipv4_broadcast_enable_failure_closes_socket(fake_socket):
    fake_socket.fail_setsockopt = OSError(errno.EPERM, "Operation not permitted")

    with pytest.raises(BroadcastEnableFailed) as excinfo:
        IPv4Broadcast(35602).create_socket()

    assert excinfo.value.code == errno.EPERM
    assert fake_socket.close_count == 1


def test_ipv4_bind(fake_socket):
    IPv4Broadcast(35602, bind=True).create_socket()

    assert fake_socket.bound_to == ("", 35602)
    assert fake_socket.sockopts[(socket.SOL_SOCKET, socket.SO_REUSEADDR)] == 1


def test_ipv4_bind_failure_closes_socket(fake_socket):
    fake_socket.fail_bind = OSError(errno.EADDRINUSE, "Address already in use")

    with pytest.raises(BindSocketFailed) as excinfo:
        IPv4Broadcast(35602, bind=True).create_socket()

    assert excinfo.value.code == errno.EADDRINUSE
    assert fake_socket.close_count == 1


def test_socket_creation_failure(monkeypatch):
    def refuse(*args, **kwargs):
        raise OSError(errno.EMFILE, "Too many open files")

    monkeypatch.setattr(strategies.socket, "socket", refuse)

    with pytest.raises(SocketCreationFailed) as excinfo:
        IPv4Broadcast(35602).create_socket()

    assert excinfo.value.code == errno.EMFILE


def test_ipv6_socket_sets_multicast_interface(fake_socket, monkeypatch):
    monkeypatch.setattr(strategies.socket, "if_nametoindex", lambda name: 7)

    IPv6Multicast(35602, interface="en0").create_socket()

    assert fake_socket.family == socket.AF_INET6
    assert fake_socket.sockopts[(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF)] == 7


def test_ipv6_unknown_interface_closes_socket(fake_socket):
    with pytest.raises(BroadcastEnableFailed) as excinfo:
        IPv6Multicast(35602, interface="no-such-if0").create_socket()

    assert "no-such-if0" in str(excinfo.value)
    assert fake_socket.close_count == 1


def test_ipv6_bind_is_not_implemented(fake_socket, monkeypatch):
    monkeypatch.setattr(strategies.socket, "if_nametoindex", lambda name: 1)

    with pytest.raises(BindNotImplemented) as excinfo:
        IPv6Multicast(35602, interface="lo", bind=True).create_socket()

    assert isinstance(excinfo.value, NotImplementedError)
    assert isinstance(excinfo.value, BindSocketFailed)
    assert fake_socket.close_count == 1


def test_strategy_for_dispatches_on_family():
    ipv4 = strategy_for(AddressFamily.IPV4, 1234, interface="ignored")
    ipv6 = strategy_for("ipv6", 1234, interface="eth0")

    assert isinstance(ipv4, IPv4Broadcast)
    assert ipv4.family is AddressFamily.IPV4
    assert isinstance(ipv6, IPv6Multicast)
    assert ipv6.interface == "eth0"

    with pytest.raises(ValueError):
        strategy_for("ipx", 1234)
