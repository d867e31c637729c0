"""Per-sender sequence tracking and loss accounting."""

import threading
from dataclasses import dataclass
from typing import List, Tuple

from .protocol import MAX_SENDERS, PacketHeader, decode_header

GAP_MASK = 0xFFFFFFFF  # gaps are unsigned 32-bit differences


@dataclass(frozen=True)
class LossSnapshot:
    """Counters after a datagram has been accounted for."""
    received: int
    lost: int
    last_sequences: Tuple[int, ...]

    @property
    def loss_ratio(self) -> float:
        total = self.received + self.lost
        return self.lost / total if total else 0.0


class SequenceTracker:
    """
    Tracks the last sequence number seen from each sender and counts gaps.

    Every sequence number strictly between the last one seen from a sender
    and the current one counts as lost. Slots start at 0, so a sender's
    first packet with sequence 0 looks the same as "nothing seen yet".
    The gap is taken modulo 2**32, so a sequence going backwards (a
    restarted sender, 30-bit wraparound, reordering) shows up as one large
    loss spike; the slot is overwritten either way.
    """

    def __init__(self, max_senders: int = MAX_SENDERS):
        self._last: List[int] = [0] * max_senders
        self._received = 0
        self._lost = 0
        self._lock = threading.Lock()

    def observe(self, sender_id: int, sequence: int) -> LossSnapshot:
        """
        Account for one received datagram.

        Args:
            sender_id: Id decoded from the packet header
            sequence: Sequence number decoded from the packet header

        Returns:
            Counters including this datagram

        Raises:
            ValueError: If sender_id has no slot
        """
        if not 0 <= sender_id < len(self._last):
            raise ValueError(
                f"sender id must be in [0, {len(self._last) - 1}], got {sender_id}"
            )

        with self._lock:
            self._received += 1
            gap = (sequence - self._last[sender_id]) & GAP_MASK
            if gap > 1:
                self._lost += gap - 1
            self._last[sender_id] = sequence
            return self._snapshot()

    def observe_header(self, header: PacketHeader) -> LossSnapshot:
        return self.observe(header.sender_id, header.sequence)

    def observe_packet(self, data: bytes) -> Tuple[PacketHeader, LossSnapshot]:
        """Decode a datagram's header and account for it."""
        header = decode_header(data)
        return header, self.observe_header(header)

    def snapshot(self) -> LossSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> LossSnapshot:
        return LossSnapshot(
            received=self._received,
            lost=self._lost,
            last_sequences=tuple(self._last),
        )

    @property
    def received(self) -> int:
        return self._received

    @property
    def lost(self) -> int:
        return self._lost

    @property
    def loss_ratio(self) -> float:
        return self.snapshot().loss_ratio
