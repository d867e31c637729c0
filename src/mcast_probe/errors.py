"""Exceptions raised while setting up and operating multicast sockets."""


class MulticastError(Exception):
    """Base class for all mcast-probe errors."""


class ResolutionError(MulticastError):
    """A textual address could not be resolved to an IPv4/IPv6 address."""


class SocketCreationError(MulticastError):
    """Opening or configuring a sender socket failed."""


class BindError(MulticastError):
    """No local address candidate could be bound."""


class MembershipError(MulticastError):
    """The multicast group join was rejected."""


class BufferTuneError(MulticastError):
    """Querying or setting the receive buffer size failed."""


class UnsupportedFamilyError(MulticastError):
    """Address family is neither IPv4 nor IPv6."""


class TransportError(MulticastError):
    """A send or receive call failed during steady-state operation."""
