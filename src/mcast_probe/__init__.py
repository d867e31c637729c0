"""mcast-probe - IPv4/IPv6 multicast sockets and packet loss measurement."""

__version__ = "0.1.0"

from .address import MulticastEndpoint, ResolvedAddress, resolve
from .config import ReceiverConfig, SenderConfig
from .errors import (
    BindError,
    BufferTuneError,
    MembershipError,
    MulticastError,
    ResolutionError,
    SocketCreationError,
    TransportError,
    UnsupportedFamilyError,
)
from .network import (
    BufferReport,
    MulticastSocket,
    create_receiver_socket,
    create_sender_socket,
    tune_receive_buffer,
)
from .protocol import PacketHeader, decode_header, encode_header
from .receiver import MulticastReceiver, PacketEvent
from .sender import MulticastSender
from .tracker import LossSnapshot, SequenceTracker

__all__ = [
    "BindError",
    "BufferReport",
    "BufferTuneError",
    "LossSnapshot",
    "MembershipError",
    "MulticastEndpoint",
    "MulticastError",
    "MulticastReceiver",
    "MulticastSender",
    "MulticastSocket",
    "PacketEvent",
    "PacketHeader",
    "ReceiverConfig",
    "ResolutionError",
    "ResolvedAddress",
    "SenderConfig",
    "SequenceTracker",
    "SocketCreationError",
    "TransportError",
    "UnsupportedFamilyError",
    "create_receiver_socket",
    "create_sender_socket",
    "decode_header",
    "encode_header",
    "resolve",
    "tune_receive_buffer",
    "__version__",
]
