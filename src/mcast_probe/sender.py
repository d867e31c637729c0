"""Multicast sender emitting sequence-numbered packets."""

import logging
import threading
from typing import Callable, List, Optional

from .config import SenderConfig
from .network import create_sender_socket
from .protocol import PacketHeader, build_packet, next_sequence

logger = logging.getLogger(__name__)

SentHandler = Callable[[PacketHeader, int], None]  # (header, bytes sent) -> None


class MulticastSender:
    """
    Sends fixed-size packets carrying (sender id, sequence) to a group.

    Example:
        sender = MulticastSender(SenderConfig(2, "239.1.1.1", 9999, 64, delay_ms=10))

        @sender.on_sent
        def sent(header, size):
            print(f"packet {header.sender_id}/{header.sequence} sent")

        sender.run()  # blocks until stopped or count is reached
    """

    def __init__(self, config: SenderConfig):
        self.config = config
        self.error: Optional[BaseException] = None
        self._handlers: List[SentHandler] = []
        self._sent = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def sent(self) -> int:
        """Number of packets sent by the current or last run."""
        return self._sent

    def on_sent(self, handler: SentHandler) -> SentHandler:
        """Register a per-packet callback (can be used as decorator)."""
        self._handlers.append(handler)
        return handler

    def add_handler(self, handler: SentHandler) -> None:
        self._handlers.append(handler)

    def run(self, stop_event: Optional[threading.Event] = None) -> int:
        """
        Send packets until stopped, `count` is reached or an error occurs.

        Args:
            stop_event: Cancellation signal checked between packets
                (defaults to the one set by stop())

        Returns:
            Number of packets sent

        Raises:
            MulticastError: On setup failure or a failed send
        """
        stop = stop_event or self._stop
        config = self.config
        endpoint = config.endpoint
        delay = config.delay_ms / 1000.0
        self._sent = 0

        msock, destination = create_sender_socket(endpoint.address, endpoint.port, ttl=config.ttl)
        logger.info("sending as id %d to %s", config.sender_id, destination)

        with msock:
            sequence = 0
            while not stop.is_set():
                if config.count is not None and self._sent >= config.count:
                    break

                packet = build_packet(config.sender_id, sequence, config.packet_size)
                size = msock.send(packet)
                self._sent += 1
                logger.debug("packet %d/%d sent", config.sender_id, sequence)

                header = PacketHeader(config.sender_id, sequence)
                for handler in self._handlers:
                    try:
                        handler(header, size)
                    except Exception as e:
                        logger.error("error in sent handler: %s", e)

                sequence = next_sequence(sequence)
                if delay:
                    stop.wait(delay)

        return self._sent

    def start(self) -> None:
        """Run the send loop on a background thread."""
        if self._thread and self._thread.is_alive():
            return

        self._stop.clear()
        self.error = None
        self._thread = threading.Thread(
            target=self._run_background,
            daemon=True,
            name=f"MulticastSender-{self.config.sender_id}",
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the send loop to stop and wait for it."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0 + self.config.delay_ms / 1000.0)
            if not self._thread.is_alive():
                self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for a background run to finish; True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run_background(self) -> None:
        try:
            self.run()
        except Exception as e:
            self.error = e
            logger.error("sender stopped: %s", e)

    def __enter__(self) -> "MulticastSender":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
