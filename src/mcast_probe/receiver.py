"""Multicast receiver tracking per-sender packet loss."""

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import ReceiverConfig
from .errors import TransportError
from .network import BufferReport, create_receiver_socket
from .protocol import PacketHeader
from .tracker import LossSnapshot, SequenceTracker

logger = logging.getLogger(__name__)

# How long start() waits for the socket to be set up
STARTUP_TIMEOUT = 5.0


@dataclass(frozen=True)
class PacketEvent:
    """A received datagram after loss accounting."""
    header: PacketHeader
    size: int
    source: tuple
    snapshot: LossSnapshot


PacketHandler = Callable[[PacketEvent], None]
ReadyHandler = Callable[[BufferReport], None]


class MulticastReceiver:
    """
    Joins a multicast group and accounts for every datagram received.

    Example:
        receiver = MulticastReceiver(ReceiverConfig("239.1.1.1", 9999))

        @receiver.on_packet
        def handle(event):
            print(event.header, event.snapshot.loss_ratio)

        with receiver:
            ...  # receiving on a background thread
    """

    def __init__(self, config: ReceiverConfig, tracker: Optional[SequenceTracker] = None):
        self.config = config
        self.tracker = tracker or SequenceTracker()
        self.buffer: Optional[BufferReport] = None
        self.error: Optional[BaseException] = None
        self._handlers: List[PacketHandler] = []
        self._ready_handlers: List[ReadyHandler] = []
        self._stop = threading.Event()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def on_packet(self, handler: PacketHandler) -> PacketHandler:
        """
        Register a packet handler (can be used as decorator).

        Handlers are called on the receiving thread with a PacketEvent.
        """
        self._handlers.append(handler)
        return handler

    def add_handler(self, handler: PacketHandler) -> None:
        self._handlers.append(handler)

    def on_ready(self, handler: ReadyHandler) -> ReadyHandler:
        """Register a callback run once the socket is joined, with the buffer report."""
        self._ready_handlers.append(handler)
        return handler

    def snapshot(self) -> LossSnapshot:
        return self.tracker.snapshot()

    def run(self, stop_event: Optional[threading.Event] = None) -> LossSnapshot:
        """
        Receive datagrams until stopped, `count` is reached or an error occurs.

        Args:
            stop_event: Cancellation signal checked between datagrams and
                at least every `poll_interval` seconds

        Returns:
            Final loss counters

        Raises:
            MulticastError: On setup failure or a failed receive
        """
        stop = stop_event or self._stop
        config = self.config
        endpoint = config.endpoint

        msock = create_receiver_socket(
            endpoint.address,
            endpoint.port,
            buffer_size=config.buffer_size,
            timeout=config.poll_interval,
        )

        handled = 0
        with msock:
            self.buffer = msock.buffer
            self._ready.set()
            logger.info(
                "receiving on %s, receive buffer %d -> %d (requested %d)",
                endpoint, msock.buffer.before, msock.buffer.after, msock.buffer.requested,
            )
            for ready in self._ready_handlers:
                try:
                    ready(msock.buffer)
                except Exception as e:
                    logger.error("error in ready handler: %s", e)

            while not stop.is_set():
                if config.count is not None and handled >= config.count:
                    break

                try:
                    data, source = msock.receive(config.max_datagram)
                except socket.timeout:
                    # Normal timeout, check for stop and continue
                    continue
                except TransportError:
                    if stop.is_set():
                        break
                    raise

                if self._handle_datagram(data, source):
                    handled += 1

        return self.tracker.snapshot()

    def _handle_datagram(self, data: bytes, source: tuple) -> bool:
        """Account for one datagram; False if it was not a valid packet."""
        try:
            header, snapshot = self.tracker.observe_packet(data)
        except ValueError as e:
            logger.warning("ignoring datagram from %s: %s", source, e)
            return False

        logger.debug(
            "packet (%d,%d) %d bytes from %s",
            header.sender_id, header.sequence, len(data), source,
        )
        event = PacketEvent(header=header, size=len(data), source=source, snapshot=snapshot)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("error in packet handler: %s", e)
        return True

    def start(self) -> None:
        """
        Run the receive loop on a background thread.

        Returns once the socket is bound and joined.

        Raises:
            MulticastError: If the socket could not be set up
        """
        if self._thread and self._thread.is_alive():
            return

        self._stop.clear()
        self._ready.clear()
        self.error = None
        self._thread = threading.Thread(
            target=self._run_background,
            daemon=True,
            name=f"MulticastReceiver-{self.config.endpoint}",
        )
        self._thread.start()

        self._ready.wait(STARTUP_TIMEOUT)
        if self.error is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
            raise self.error

    def stop(self) -> None:
        """Signal the receive loop to stop and wait for it."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.config.poll_interval + 2.0)
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
            logger.error("receiver stopped: %s", e)
        finally:
            # wake up start() if setup failed
            self._ready.set()

    def __enter__(self) -> "MulticastReceiver":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.stop()
