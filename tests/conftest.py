"""Shared fixtures: a recording fake socket and a multicast loopback check."""

import socket
import struct
import time

import pytest

from mcast_probe import network
from mcast_probe.errors import MulticastError

DEFAULT_RCVBUF = 212992


class FakeSocket:
    """Records socket calls instead of touching the network."""

    def __init__(self, family=socket.AF_INET, type=socket.SOCK_DGRAM, proto=0, factory=None):
        self.family = family
        self.type = type
        self.proto = proto
        self.factory = factory
        self.calls = []
        self.options = {(socket.SOL_SOCKET, socket.SO_RCVBUF): DEFAULT_RCVBUF}
        self.bound = None
        self.timeout = None
        self.close_count = 0
        self.sent = []

    @property
    def closed(self):
        return self.close_count > 0

    def _check(self, name, *key):
        if self.factory and (name, *key) in self.factory.failures:
            raise OSError(f"{name} failed")

    def setsockopt(self, level, option, value):
        self._check("setsockopt", level, option)
        self.calls.append((level, option, value))
        self.options[(level, option)] = value

    def getsockopt(self, level, option):
        self._check("getsockopt", level, option)
        return self.options.get((level, option), 0)

    def bind(self, address):
        self._check("bind")
        self.bound = address

    def settimeout(self, timeout):
        self.timeout = timeout

    def sendto(self, data, address):
        self._check("sendto")
        self.sent.append((data, address))
        return len(data) - (self.factory.short_send if self.factory else 0)

    def recvfrom(self, bufsize):
        self._check("recvfrom")
        if self.factory and self.factory.inbox:
            return self.factory.inbox.pop(0)[:bufsize], ("192.0.2.7", 4000)
        if self.timeout:
            time.sleep(self.timeout)
        raise socket.timeout("timed out")

    def close(self):
        self.close_count += 1


class FakeSocketFactory:
    def __init__(self):
        self.created = []
        self.failures = set()
        self.inbox = []
        self.short_send = 0

    def __call__(self, family=socket.AF_INET, type=socket.SOCK_DGRAM, proto=0):
        sock = FakeSocket(family, type, proto, factory=self)
        self.created.append(sock)
        return sock

    def fail(self, name, *key):
        self.failures.add((name, *key))

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def fake_sockets(monkeypatch):
    """Replace socket.socket with a recording fake for the duration of a test."""
    factory = FakeSocketFactory()
    monkeypatch.setattr(network.socket, "socket", factory)
    return factory


def _multicast_loops_back(group, port):
    try:
        receiver = network.create_receiver_socket(group, port, timeout=1.0)
    except MulticastError:
        return False
    try:
        sender, _ = network.create_sender_socket(group, port)
        with sender:
            sender.send(struct.pack("!I", 0))
            deadline = time.time() + 1.0
            while time.time() < deadline:
                try:
                    receiver.receive()
                    return True
                except socket.timeout:
                    continue
    except MulticastError:
        return False
    finally:
        receiver.close()
    return False


@pytest.fixture(scope="session")
def ipv4_multicast():
    """Skip unless this host can loop IPv4 multicast back to itself."""
    if not _multicast_loops_back("239.1.1.1", 19998):
        pytest.skip("IPv4 multicast loopback not available on this host")
