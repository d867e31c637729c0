"""Numeric address resolution and per-family multicast socket options."""

import logging
import socket
import struct
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .errors import ResolutionError, UnsupportedFamilyError

logger = logging.getLogger(__name__)

Port = Union[int, str, None]


@dataclass(frozen=True)
class ResolvedAddress:
    """A family-qualified address as returned by getaddrinfo."""
    family: int
    socktype: int
    proto: int
    sockaddr: tuple

    @property
    def host(self) -> str:
        return self.sockaddr[0]

    @property
    def port(self) -> int:
        return self.sockaddr[1]

    @property
    def packed(self) -> bytes:
        """Binary form of the address (4 bytes for IPv4, 16 for IPv6)."""
        return socket.inet_pton(self.family, self.host.split("%", 1)[0])

    @property
    def profile(self) -> "FamilyProfile":
        return profile_for(self.family)

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class MulticastEndpoint:
    """A multicast group and port as given by the user."""
    address: str
    port: Port = None

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"

    def resolve(self) -> ResolvedAddress:
        return resolve_one(self.address, self.port)


def _ipv4_membership(group: bytes) -> bytes:
    # struct ip_mreq: group address, then the local interface (any)
    return group + struct.pack("!I", socket.INADDR_ANY)


def _ipv6_membership(group: bytes) -> bytes:
    # struct ipv6_mreq: group address, then interface index 0 (default)
    return group + struct.pack("=I", 0)


@dataclass(frozen=True)
class FamilyProfile:
    """Socket options that differ between IPv4 and IPv6 multicast."""
    name: str
    family: int
    level: int
    ttl_option: int
    interface_option: int
    interface_value: Union[int, bytes]
    loop_option: int
    membership_option: int
    build_membership: Callable[[bytes], bytes]


IPV4 = FamilyProfile(
    name="IPv4",
    family=socket.AF_INET,
    level=socket.IPPROTO_IP,
    ttl_option=socket.IP_MULTICAST_TTL,
    interface_option=socket.IP_MULTICAST_IF,
    interface_value=struct.pack("!I", socket.INADDR_ANY),
    loop_option=socket.IP_MULTICAST_LOOP,
    membership_option=socket.IP_ADD_MEMBERSHIP,
    build_membership=_ipv4_membership,
)

IPV6 = FamilyProfile(
    name="IPv6",
    family=socket.AF_INET6,
    level=socket.IPPROTO_IPV6,
    ttl_option=socket.IPV6_MULTICAST_HOPS,
    interface_option=socket.IPV6_MULTICAST_IF,
    interface_value=0,
    loop_option=socket.IPV6_MULTICAST_LOOP,
    membership_option=socket.IPV6_JOIN_GROUP,
    build_membership=_ipv6_membership,
)

PROFILES = {IPV4.family: IPV4, IPV6.family: IPV6}


def profile_for(family: int) -> FamilyProfile:
    """Return the option profile for an address family."""
    try:
        return PROFILES[family]
    except KeyError:
        raise UnsupportedFamilyError(
            f"address family {family!r} is neither IPv4 nor IPv6"
        ) from None


def resolve(
    address: Optional[str],
    port: Port = None,
    passive: bool = False,
    family: int = socket.AF_UNSPEC,
) -> List[ResolvedAddress]:
    """
    Resolve a numeric address into getaddrinfo candidates.

    No DNS lookup is made: the address must be an IPv4 or IPv6 literal.
    With passive=True the address is ignored and wildcard addresses that
    can be bound locally are returned instead; pass the family of the
    multicast group so the bind address matches it.

    Args:
        address: Numeric IPv4/IPv6 address (ignored when passive)
        port: Port number or service string, or None
        passive: Return bindable wildcard addresses
        family: Restrict results to this address family

    Returns:
        Candidate addresses in getaddrinfo order

    Raises:
        ResolutionError: If the address cannot be resolved
    """
    if passive:
        host = None
        flags = socket.AI_PASSIVE
    else:
        if not address:
            raise ResolutionError("no address given")
        host = address
        flags = socket.AI_NUMERICHOST

    service = str(port) if isinstance(port, int) else port

    try:
        infos = socket.getaddrinfo(host, service, family, socket.SOCK_DGRAM, 0, flags)
    except socket.gaierror as e:
        what = "local address" if passive else repr(address)
        raise ResolutionError(f"cannot resolve {what} (port {port}): {e.strerror}") from e
    except UnicodeError as e:
        raise ResolutionError(f"cannot resolve {address!r}: {e}") from e

    candidates = [
        ResolvedAddress(fam, socktype, proto, sockaddr)
        for fam, socktype, proto, _, sockaddr in infos
        if fam in PROFILES
    ]
    if not candidates:
        raise ResolutionError(f"{address!r} did not resolve to an IPv4 or IPv6 address")

    logger.debug("resolved %r port %r -> %s", address, port, candidates[0])
    return candidates


def resolve_one(address: Optional[str], port: Port = None, passive: bool = False,
                family: int = socket.AF_UNSPEC) -> ResolvedAddress:
    """Resolve and return the first candidate."""
    return resolve(address, port, passive=passive, family=family)[0]

