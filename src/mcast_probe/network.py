"""Cross-platform IPv4/IPv6 UDP multicast sockets."""

import logging
import socket
import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .address import FamilyProfile, Port, ResolvedAddress, profile_for, resolve, resolve_one
from .errors import (
    BindError,
    BufferTuneError,
    MembershipError,
    SocketCreationError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Multicast configuration
DEFAULT_TTL = 1  # Stay on local network
DEFAULT_RECEIVE_BUFFER = 327680  # SO_RCVBUF requested by receivers
MAX_DATAGRAM = 65535


class Role(Enum):
    """What a multicast socket was built for."""
    SENDER = "sender"
    RECEIVER = "receiver"


@dataclass(frozen=True)
class BufferReport:
    """Receive buffer size before and after tuning, as the kernel reports it."""
    requested: int
    before: int
    after: int


@dataclass
class MulticastSocket:
    """An open datagram socket together with its multicast setup."""
    sock: socket.socket
    role: Role
    profile: FamilyProfile
    destination: Optional[ResolvedAddress] = None
    group: Optional[ResolvedAddress] = None
    buffer: Optional[BufferReport] = None
    closed: bool = False

    @property
    def family(self) -> int:
        return self.profile.family

    def send(self, data: bytes) -> int:
        return send_multicast(self, data)

    def receive(self, bufsize: int = MAX_DATAGRAM) -> Tuple[bytes, tuple]:
        return receive_multicast(self, bufsize)

    def close(self) -> None:
        """Close the socket; further calls do nothing."""
        if self.closed:
            return
        self.closed = True
        self.sock.close()

    def __enter__(self) -> "MulticastSocket":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


def create_sender_socket(
    group: str, port: Port, ttl: int = DEFAULT_TTL
) -> Tuple[MulticastSocket, ResolvedAddress]:
    """
    Create a socket for sending to a multicast group.

    The family (IPv4 or IPv6) follows the group address. The outgoing
    interface is left to the system default.

    Args:
        group: Numeric multicast group address
        port: Destination port
        ttl: Multicast TTL (IPv4) or hop limit (IPv6)

    Returns:
        Tuple of (sender socket, resolved destination)

    Raises:
        ResolutionError: If the group address cannot be resolved
        SocketCreationError: If the socket cannot be opened or configured
    """
    destination = resolve_one(group, port)
    profile = destination.profile

    try:
        sock = socket.socket(destination.family, destination.socktype, destination.proto)
    except OSError as e:
        raise SocketCreationError(f"cannot open {profile.name} socket: {e}") from e

    try:
        # Set TTL / hop limit for multicast packets
        sock.setsockopt(profile.level, profile.ttl_option, ttl)
        # Send through the default interface
        sock.setsockopt(profile.level, profile.interface_option, profile.interface_value)
        # Enable loopback so local receivers get our packets
        sock.setsockopt(profile.level, profile.loop_option, 1)
    except OSError as e:
        sock.close()
        logger.error("configuring %s sender socket failed: %s", profile.name, e)
        raise SocketCreationError(f"cannot configure {profile.name} sender socket: {e}") from e

    logger.debug("sender socket ready for %s (ttl %d)", destination, ttl)
    return MulticastSocket(sock, Role.SENDER, profile, destination=destination), destination


def create_receiver_socket(
    group: str,
    port: Port,
    buffer_size: int = DEFAULT_RECEIVE_BUFFER,
    timeout: Optional[float] = None,
) -> MulticastSocket:
    """
    Create a socket for receiving multicast datagrams.

    Binds a wildcard address of the group's family on `port`, enlarges
    the receive buffer and joins the group on any interface.

    Args:
        group: Numeric multicast group address
        port: Port to receive on
        buffer_size: Requested SO_RCVBUF in bytes
        timeout: Socket timeout in seconds (None for blocking)

    Returns:
        Bound and joined receiver socket; its `buffer` holds the tuning report

    Raises:
        ResolutionError: If an address cannot be resolved
        BindError: If no local address could be bound
        BufferTuneError: If the receive buffer cannot be queried or set
        MembershipError: If the group join is rejected
    """
    group_address = resolve_one(group)
    profile = group_address.profile
    candidates = resolve(None, port, passive=True, family=group_address.family)

    sock = _bind_first(candidates)
    try:
        report = tune_receive_buffer(sock, buffer_size)
        join_group(sock, group_address)
        if timeout is not None:
            sock.settimeout(timeout)
    except BaseException:
        sock.close()
        raise

    logger.debug("joined %s on port %s", group_address.host, port)
    return MulticastSocket(
        sock, Role.RECEIVER, profile, group=group_address, buffer=report
    )


def _bind_first(candidates: List[ResolvedAddress]) -> socket.socket:
    """Open and bind a socket on the first local address that accepts it."""
    last_error: Optional[OSError] = None

    for candidate in candidates:
        try:
            sock = socket.socket(candidate.family, candidate.socktype, candidate.proto)
        except OSError as e:
            last_error = e
            continue

        try:
            # Allow multiple processes to bind to the same port
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

            # macOS requires SO_REUSEPORT for multiple listeners
            if sys.platform == "darwin":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)

            sock.bind(candidate.sockaddr)
            return sock
        except OSError as e:
            logger.debug("bind to %s failed: %s", candidate, e)
            last_error = e
            sock.close()

    raise BindError(
        "couldn't bind the socket on any of the proposed addresses: "
        + ", ".join(str(c) for c in candidates)
    ) from last_error


def join_group(sock: socket.socket, group: ResolvedAddress) -> None:
    """
    Join a multicast group on any interface.

    Raises:
        UnsupportedFamilyError: If the group is neither IPv4 nor IPv6
        MembershipError: If the join is rejected
    """
    profile = profile_for(group.family)
    request = profile.build_membership(group.packed)
    try:
        sock.setsockopt(profile.level, profile.membership_option, request)
    except OSError as e:
        logger.error("joining %s failed: %s", group.host, e)
        raise MembershipError(f"cannot join multicast group {group.host}: {e}") from e


def tune_receive_buffer(sock: socket.socket, desired: int) -> BufferReport:
    """
    Request a receive buffer size and report what the kernel made of it.

    The system may cap or round the value (Linux doubles it), so the
    reported `after` is re-read from the socket.

    Raises:
        BufferTuneError: If getting or setting SO_RCVBUF fails
    """
    try:
        before = sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, desired)
        after = sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)
    except OSError as e:
        raise BufferTuneError(f"cannot set receive buffer to {desired} bytes: {e}") from e

    logger.debug("receive buffer: requested %d, was %d, now %d", desired, before, after)
    return BufferReport(requested=desired, before=before, after=after)


def receive_buffer_size(sock: socket.socket) -> int:
    """Query the current SO_RCVBUF of a socket."""
    try:
        return sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)
    except OSError as e:
        raise BufferTuneError(f"cannot query receive buffer: {e}") from e


def send_multicast(msock: MulticastSocket, data: bytes) -> int:
    """
    Send data to the sender socket's multicast destination.

    Args:
        msock: Socket created by create_sender_socket()
        data: Bytes to send

    Returns:
        Number of bytes sent

    Raises:
        TransportError: If the send fails or is short
    """
    if msock.destination is None:
        raise TransportError("socket has no multicast destination")

    try:
        sent = msock.sock.sendto(data, msock.destination.sockaddr)
    except OSError as e:
        raise TransportError(f"sendto() failed: {e}") from e

    if sent != len(data):
        raise TransportError(
            f"sendto() sent {sent} bytes instead of {len(data)}"
        )
    return sent


def receive_multicast(msock: MulticastSocket, bufsize: int = MAX_DATAGRAM) -> Tuple[bytes, tuple]:
    """
    Receive one datagram from the multicast group.

    Args:
        msock: Socket created by create_receiver_socket()
        bufsize: Maximum number of bytes to read

    Returns:
        Tuple of (data, sender address)

    Raises:
        socket.timeout: If the socket has a timeout and no data arrived
        TransportError: If the receive fails
    """
    try:
        return msock.sock.recvfrom(bufsize)
    except socket.timeout:
        raise
    except OSError as e:
        raise TransportError(f"recvfrom() failed: {e}") from e
