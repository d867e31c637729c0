"""Wire format shared by sender and receiver."""

import struct
from dataclasses import dataclass

HEADER_FORMAT = "!I"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

SENDER_ID_BITS = 2
SEQUENCE_BITS = 32 - SENDER_ID_BITS
MAX_SENDERS = 1 << SENDER_ID_BITS
SEQUENCE_MODULO = 1 << SEQUENCE_BITS
SEQUENCE_MASK = SEQUENCE_MODULO - 1

FILLER = b"s"
MAX_PACKET_SIZE = 65507  # largest UDP payload over IPv4


@dataclass(frozen=True)
class PacketHeader:
    """The first four bytes of every datagram."""
    sender_id: int
    sequence: int


def check_sender_id(sender_id: int) -> None:
    if not 0 <= sender_id < MAX_SENDERS:
        raise ValueError(f"sender id must be in [0, {MAX_SENDERS - 1}], got {sender_id}")


def encode_header(sender_id: int, sequence: int) -> bytes:
    """Pack sender id (top 2 bits) and sequence (low 30 bits), big-endian."""
    check_sender_id(sender_id)
    if not 0 <= sequence <= SEQUENCE_MASK:
        raise ValueError(f"sequence must be in [0, {SEQUENCE_MASK}], got {sequence}")
    return struct.pack(HEADER_FORMAT, (sender_id << SEQUENCE_BITS) | sequence)


def decode_header(data: bytes) -> PacketHeader:
    """Unpack the header from the start of a datagram; the rest is ignored."""
    if len(data) < HEADER_SIZE:
        raise ValueError(f"datagram too short for header: {len(data)} bytes")
    (word,) = struct.unpack_from(HEADER_FORMAT, data)
    return PacketHeader(sender_id=word >> SEQUENCE_BITS, sequence=word & SEQUENCE_MASK)


def build_packet(sender_id: int, sequence: int, size: int, filler: bytes = FILLER) -> bytes:
    """Create a datagram of `size` bytes: header followed by filler padding."""
    if size < HEADER_SIZE:
        raise ValueError(f"packet size must be at least {HEADER_SIZE} bytes, got {size}")
    if not filler:
        raise ValueError("filler must not be empty")
    padding = size - HEADER_SIZE
    return encode_header(sender_id, sequence) + (filler * padding)[:padding]


def next_sequence(sequence: int) -> int:
    """Advance a sequence number, wrapping at 2**30."""
    return (sequence + 1) & SEQUENCE_MASK
