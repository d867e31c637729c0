"""Tests for the network module."""

import socket
import struct

import pytest

from mcast_probe.address import ResolvedAddress
from mcast_probe.errors import (
    BindError,
    BufferTuneError,
    MembershipError,
    ResolutionError,
    SocketCreationError,
    TransportError,
    UnsupportedFamilyError,
)
from mcast_probe.network import (
    Role,
    create_receiver_socket,
    create_sender_socket,
    join_group,
    receive_buffer_size,
    receive_multicast,
    send_multicast,
    tune_receive_buffer,
)

GROUP4 = "239.1.1.1"
GROUP6 = "ff15::1"
ANY4 = b"\x00\x00\x00\x00"


def test_sender_ipv4_sets_ttl_and_interface(fake_sockets):
    """IPv4 senders set TTL, IP_MULTICAST_IF=INADDR_ANY and loopback."""
    msock, destination = create_sender_socket(GROUP4, 9999)
    sock = fake_sockets.last

    assert sock.family == socket.AF_INET
    assert msock.role is Role.SENDER
    assert msock.destination == destination
    assert destination.sockaddr == (GROUP4, 9999)
    assert sock.calls == [
        (socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1),
        (socket.IPPROTO_IP, socket.IP_MULTICAST_IF, ANY4),
        (socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1),
    ]


def test_sender_ipv6_sets_hops_and_interface(fake_sockets):
    """IPv6 senders set hop limit, interface index 0 and loopback."""
    msock, destination = create_sender_socket(GROUP6, 2001, ttl=5)
    sock = fake_sockets.last

    assert sock.family == socket.AF_INET6
    assert msock.family == socket.AF_INET6
    assert sock.calls == [
        (socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, 5),
        (socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, 0),
        (socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1),
    ]


def test_sender_bad_address_opens_nothing(fake_sockets):
    """Resolution fails before any socket is opened."""
    with pytest.raises(ResolutionError):
        create_sender_socket("not-an-address", 9999)
    assert fake_sockets.created == []


def test_sender_option_failure_closes_socket(fake_sockets):
    """A rejected TTL option raises SocketCreationError and closes the socket."""
    fake_sockets.fail("setsockopt", socket.IPPROTO_IP, socket.IP_MULTICAST_TTL)

    with pytest.raises(SocketCreationError, match="IPv4"):
        create_sender_socket(GROUP4, 9999)
    assert fake_sockets.last.closed


def test_sender_socket_open_failure(monkeypatch):
    """socket() failing is a SocketCreationError."""
    def refuse(*args):
        raise OSError("no sockets left")

    monkeypatch.setattr(socket, "socket", refuse)
    with pytest.raises(SocketCreationError, match="no sockets left"):
        create_sender_socket(GROUP4, 9999)


@pytest.mark.parametrize("group,family,level,option,wildcard,mreq", [
    (GROUP4, socket.AF_INET, socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, "0.0.0.0",
     socket.inet_aton(GROUP4) + ANY4),
    (GROUP6, socket.AF_INET6, socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, "::",
     socket.inet_pton(socket.AF_INET6, GROUP6) + struct.pack("=I", 0)),
])
def test_receiver_joins_with_family_request(fake_sockets, group, family, level, option,
                                           wildcard, mreq):
    """Receivers bind a wildcard of the group's family and join with its mreq."""
    msock = create_receiver_socket(group, 9999, buffer_size=65536)
    sock = fake_sockets.last

    assert msock.role is Role.RECEIVER
    assert msock.family == family
    assert msock.group.host == group
    assert sock.family == family
    assert sock.bound[:2] == (wildcard, 9999)
    assert (socket.SOL_SOCKET, socket.SO_REUSEADDR, 1) in sock.calls
    assert (level, option, mreq) in sock.calls
    assert not sock.closed


def test_receiver_reports_buffer(fake_sockets):
    """The receive buffer report is attached to the socket."""
    msock = create_receiver_socket(GROUP4, 9999, buffer_size=65536)

    assert msock.buffer.requested == 65536
    assert msock.buffer.before == 212992
    assert msock.buffer.after == 65536


def test_receiver_tunes_buffer_before_join(fake_sockets):
    """SO_RCVBUF is set before the group is joined."""
    create_receiver_socket(GROUP4, 9999, buffer_size=65536)
    options = [(level, option) for level, option, _ in fake_sockets.last.calls]
    rcvbuf = options.index((socket.SOL_SOCKET, socket.SO_RCVBUF))
    join = options.index((socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP))

    assert rcvbuf < join


def test_receiver_timeout(fake_sockets):
    """An optional timeout is applied to the socket."""
    create_receiver_socket(GROUP4, 9999, timeout=0.5)

    assert fake_sockets.last.timeout == 0.5


def test_receiver_bind_failure(fake_sockets):
    """BindError when no candidate binds; every opened socket is closed."""
    fake_sockets.fail("bind")

    with pytest.raises(BindError, match="couldn't bind"):
        create_receiver_socket(GROUP4, 9999)
    assert fake_sockets.created
    assert all(s.closed for s in fake_sockets.created)


def test_receiver_join_failure_closes_socket(fake_sockets):
    """A rejected join is a MembershipError and the socket is closed."""
    fake_sockets.fail("setsockopt", socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP)

    with pytest.raises(MembershipError, match=GROUP4):
        create_receiver_socket(GROUP4, 9999)
    assert fake_sockets.last.close_count == 1


def test_receiver_buffer_failure_closes_socket(fake_sockets):
    """A failed SO_RCVBUF query is a BufferTuneError and the socket is closed."""
    fake_sockets.fail("getsockopt", socket.SOL_SOCKET, socket.SO_RCVBUF)

    with pytest.raises(BufferTuneError):
        create_receiver_socket(GROUP4, 9999)
    assert fake_sockets.last.closed


def test_join_unknown_family(fake_sockets):
    """Joining with a non-IP family is an internal error."""
    group = ResolvedAddress(socket.AF_UNIX, socket.SOCK_DGRAM, 0, ("/tmp/x", 0))

    with pytest.raises(UnsupportedFamilyError):
        join_group(fake_sockets(), group)


def test_tune_smaller_than_current():
    """Asking for less than the current buffer is not an error."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        current = receive_buffer_size(sock)
        report = tune_receive_buffer(sock, current // 2)

        assert report.before == current
        assert report.requested == current // 2
        assert report.after == receive_buffer_size(sock)


def test_tune_reports_kernel_value():
    """The reported size is what the socket reports afterwards."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        report = tune_receive_buffer(sock, 65536)

        assert report.after > 0
        assert report.after == sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)


def test_multicast_socket_close_once(fake_sockets):
    """close() is idempotent and the context manager closes."""
    with create_sender_socket(GROUP4, 9999)[0] as msock:
        pass
    msock.close()

    assert msock.closed
    assert fake_sockets.last.close_count == 1


def test_send_multicast_to_destination(fake_sockets):
    """send_multicast() addresses the resolved destination."""
    msock, destination = create_sender_socket(GROUP4, 9999)

    assert send_multicast(msock, b"abcd") == 4
    assert fake_sockets.last.sent == [(b"abcd", destination.sockaddr)]


def test_short_send_is_transport_error(fake_sockets):
    """A send that writes fewer bytes than asked fails."""
    fake_sockets.short_send = 1
    msock, _ = create_sender_socket(GROUP4, 9999)

    with pytest.raises(TransportError, match="3 bytes instead of 4"):
        msock.send(b"abcd")


def test_send_failure_is_transport_error(fake_sockets):
    """sendto() errors are wrapped."""
    fake_sockets.fail("sendto")
    msock, _ = create_sender_socket(GROUP4, 9999)

    with pytest.raises(TransportError, match="sendto"):
        msock.send(b"abcd")


def test_send_needs_destination(fake_sockets):
    """Receiver sockets have nowhere to send to."""
    msock = create_receiver_socket(GROUP4, 9999)

    with pytest.raises(TransportError, match="destination"):
        send_multicast(msock, b"abcd")


def test_receive_timeout_passes_through(fake_sockets):
    """Timeouts are left to the caller's poll loop."""
    msock = create_receiver_socket(GROUP4, 9999, timeout=0.1)

    with pytest.raises(socket.timeout):
        receive_multicast(msock)


def test_receive_failure_is_transport_error(fake_sockets):
    """recvfrom() errors are wrapped."""
    fake_sockets.fail("recvfrom")
    msock = create_receiver_socket(GROUP4, 9999)

    with pytest.raises(TransportError, match="recvfrom"):
        msock.receive()


def test_receive_returns_datagram(fake_sockets):
    """receive() returns data and source address."""
    fake_sockets.inbox.append(b"\x00\x00\x00\x01ss")
    msock = create_receiver_socket(GROUP4, 9999)

    data, source = msock.receive(4)

    assert data == b"\x00\x00\x00\x01"
    assert source == ("192.0.2.7", 4000)

