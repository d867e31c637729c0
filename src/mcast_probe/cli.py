"""Command-line interface for mcast-probe."""

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from .config import ReceiverConfig, SenderConfig
from .errors import MulticastError
from .network import BufferReport, DEFAULT_RECEIVE_BUFFER, MAX_DATAGRAM
from .protocol import PacketHeader
from .receiver import MulticastReceiver, PacketEvent
from .sender import MulticastSender


def format_timestamp(ts: datetime) -> str:
    """Format a timestamp for display."""
    return ts.strftime("%a %b %d %H:%M:%S %Y")


def format_packet_line(event: PacketEvent, now: datetime) -> str:
    """One line of receiver output for a datagram."""
    snap = event.snapshot
    last = ",".join(str(s) for s in snap.last_sequences)
    return (
        f"Packets recvd {snap.received} ({last}) lost {snap.lost}, "
        f"loss ratio {snap.loss_ratio:f}    "
        f"Time Received: {format_timestamp(now)} : "
        f"packet ({event.header.sender_id},{event.header.sequence}) {event.size} bytes"
    )


def format_buffer_line(report: BufferReport) -> str:
    return (
        f"tried to set socket receive buffer from {report.before} "
        f"to {report.requested}, got {report.after}"
    )


@contextmanager
def stop_on_interrupt() -> Iterator[threading.Event]:
    """Yield an event that Ctrl+C sets instead of raising KeyboardInterrupt."""
    stop = threading.Event()

    def signal_handler(sig, frame):
        print("\nStopping...", file=sys.stderr)
        stop.set()

    previous = signal.signal(signal.SIGINT, signal_handler)
    try:
        yield stop
    finally:
        signal.signal(signal.SIGINT, previous)


def cmd_send(args: argparse.Namespace) -> None:
    """Send sequence-numbered packets until Ctrl+C or --count."""
    config = SenderConfig(
        sender_id=args.sender_id,
        group=args.group,
        port=args.port,
        packet_size=args.packet_size,
        delay_ms=args.delay_ms,
        ttl=args.ttl,
        count=args.count,
    )
    sender = MulticastSender(config)

    @sender.on_sent
    def sent(header: PacketHeader, size: int):
        print(f"packet {header.sender_id}/{header.sequence} sent", file=sys.stderr)

    with stop_on_interrupt() as stop:
        total = sender.run(stop)
    print(f"Sent {total} packet(s)", file=sys.stderr)


def cmd_receive(args: argparse.Namespace) -> None:
    """Receive packets and report loss until Ctrl+C or --count."""
    config = ReceiverConfig(
        group=args.group,
        port=args.port,
        buffer_size=args.buffer_size,
        max_datagram=args.max_datagram,
        count=args.count,
    )
    receiver = MulticastReceiver(config)

    @receiver.on_ready
    def ready(report: BufferReport):
        print(format_buffer_line(report))
        print(f"Listening on {config.endpoint}... (Ctrl+C to stop)")

    @receiver.on_packet
    def handle(event: PacketEvent):
        print(format_packet_line(event, datetime.now()))

    with stop_on_interrupt() as stop:
        snap = receiver.run(stop)
    print(
        f"Received {snap.received} packet(s), lost {snap.lost}, "
        f"loss ratio {snap.loss_ratio:f}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcast-probe",
        description="IPv4/IPv6 multicast sender and loss-measuring receiver",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # send command
    send_parser = subparsers.add_parser("send", help="Send numbered packets to a group")
    send_parser.add_argument("sender_id", type=int, choices=range(4), metavar="sender_id",
                             help="Sender id (0-3)")
    send_parser.add_argument("group", help="Multicast address, e.g. 224.0.22.1 or ff15::1")
    send_parser.add_argument("port", help="Destination port")
    send_parser.add_argument("packet_size", type=int, help="Bytes per packet")
    send_parser.add_argument("delay_ms", type=float, help="Milliseconds to wait between packets")
    send_parser.add_argument("ttl", type=int, nargs="?", default=1,
                             help="Multicast TTL / hop limit (default: 1)")
    send_parser.add_argument("--count", type=int, default=None,
                             help="Stop after this many packets")

    # receive command
    receive_parser = subparsers.add_parser("receive", help="Receive packets and report loss")
    receive_parser.add_argument("group", help="Multicast address to join")
    receive_parser.add_argument("port", help="Port to receive on")
    receive_parser.add_argument(
        "--buffer-size",
        type=int,
        default=DEFAULT_RECEIVE_BUFFER,
        help=f"Socket receive buffer in bytes (default: {DEFAULT_RECEIVE_BUFFER})",
    )
    receive_parser.add_argument(
        "--max-datagram",
        type=int,
        default=MAX_DATAGRAM,
        help=f"Largest datagram to read (default: {MAX_DATAGRAM})",
    )
    receive_parser.add_argument("--count", type=int, default=None,
                                help="Stop after this many packets")

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "send":
            cmd_send(args)
        elif args.command == "receive":
            cmd_receive(args)
    except (MulticastError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
