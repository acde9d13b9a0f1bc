from __future__ import annotations

from collections import deque

import pytest

from flowxfer.net import ConnectionStats


class MemoryConnection:
    """In-process stand-in for the UDP connection, wired to a peer."""

    def __init__(self, rtt_ms: float = 50.0):
        self.rtt_ms = rtt_ms
        self.peer: MemoryConnection | None = None
        self.inbox: deque[bytes] = deque()
        self.sent: list[bytes] = []
        self.connected = False
        self.failed = False
        self.fail_on_connect = False
        self.bind_ok = True
        self.started_port: int | None = None
        self.updates: list[float] = []
        self.drop = lambda index, data: False
        self.refuse = lambda data: False

    def start(self, port: int) -> bool:
        self.started_port = port
        return self.bind_ok

    def connect(self, address) -> None:
        if self.fail_on_connect:
            self.failed = True
        else:
            self.connected = True

    def listen(self) -> None:
        self.connected = True

    def is_connected(self) -> bool:
        return self.connected

    def connect_failed(self) -> bool:
        return self.failed

    def send_packet(self, data: bytes) -> bool:
        if self.refuse(data):
            return False
        index = len(self.sent)
        self.sent.append(bytes(data))
        if self.peer is not None and not self.drop(index, data):
            self.peer.inbox.append(bytes(data))
        return True

    def receive_packet(self, max_size: int = 1024) -> bytes | None:
        while self.inbox:
            data = self.inbox.popleft()
            if data and len(data) <= max_size:
                return data
        return None

    def update(self, dt: float) -> None:
        self.updates.append(dt)

    def stats(self) -> ConnectionStats:
        sent = len(self.sent)
        return ConnectionStats(rtt_ms=self.rtt_ms, sent_packets=sent, acked_packets=sent)


@pytest.fixture
def link():
    a, b = MemoryConnection(), MemoryConnection()
    a.peer, b.peer = b, a
    return a, b


@pytest.fixture
def make_file(tmp_path):
    src_dir = tmp_path / "src"
    src_dir.mkdir()

    def make(name: str, content: bytes):
        path = src_dir / name
        path.write_bytes(content)
        return path

    return make
