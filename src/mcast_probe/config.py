"""Sender and receiver settings."""

from dataclasses import dataclass
from typing import Optional

from .address import MulticastEndpoint, Port
from .network import DEFAULT_RECEIVE_BUFFER, DEFAULT_TTL, MAX_DATAGRAM
from .protocol import HEADER_SIZE, MAX_PACKET_SIZE, check_sender_id

DEFAULT_POLL_INTERVAL = 1.0  # seconds between stop checks while receiving


def _check_port(port: Port) -> None:
    if port is None or port == "":
        raise ValueError("port is required")
    if isinstance(port, int) and not 0 <= port <= 65535:
        raise ValueError(f"port must be in [0, 65535], got {port}")


@dataclass
class SenderConfig:
    """Settings for a multicast sender."""
    sender_id: int
    group: str
    port: Port
    packet_size: int
    delay_ms: float = 0
    ttl: int = DEFAULT_TTL
    count: Optional[int] = None  # None sends until stopped

    def __post_init__(self):
        check_sender_id(self.sender_id)
        _check_port(self.port)
        if not HEADER_SIZE <= self.packet_size <= MAX_PACKET_SIZE:
            raise ValueError(
                f"packet size must be in [{HEADER_SIZE}, {MAX_PACKET_SIZE}], got {self.packet_size}"
            )
        if self.delay_ms < 0:
            raise ValueError(f"delay must not be negative, got {self.delay_ms}")
        if not 0 <= self.ttl <= 255:
            raise ValueError(f"ttl must be in [0, 255], got {self.ttl}")
        if self.count is not None and self.count < 0:
            raise ValueError(f"count must not be negative, got {self.count}")

    @property
    def endpoint(self) -> MulticastEndpoint:
        return MulticastEndpoint(self.group, self.port)


@dataclass
class ReceiverConfig:
    """Settings for a multicast receiver."""
    group: str
    port: Port
    buffer_size: int = DEFAULT_RECEIVE_BUFFER
    max_datagram: int = MAX_DATAGRAM
    poll_interval: float = DEFAULT_POLL_INTERVAL
    count: Optional[int] = None  # None receives until stopped

    def __post_init__(self):
        _check_port(self.port)
        if self.buffer_size <= 0:
            raise ValueError(f"buffer size must be positive, got {self.buffer_size}")
        if self.max_datagram < HEADER_SIZE:
            raise ValueError(
                f"max datagram must be at least {HEADER_SIZE} bytes, got {self.max_datagram}"
            )
        if self.poll_interval <= 0:
            raise ValueError(f"poll interval must be positive, got {self.poll_interval}")
        if self.count is not None and self.count < 0:
            raise ValueError(f"count must not be negative, got {self.count}")

    @property
    def endpoint(self) -> MulticastEndpoint:
        return MulticastEndpoint(self.group, self.port)
