from __future__ import annotations

import enum
import logging
import random
import socket
import struct
from collections import deque
from dataclasses import dataclass
from typing import Protocol, Tuple

from .constants import MAX_PACKET_SIZE, PROTOCOL_ID, TIMEOUT

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

HEADER = struct.Struct("!IIII")  # protocol id, sequence, ack, ack bits
MAX_SEQUENCE = 0xFFFFFFFF
ACK_BITS = 32
RTT_MAX = 1.0
RTT_SMOOTHING = 0.1


@dataclass(frozen=True, slots=True)
class ConnectionStats:
    rtt_ms: float = 0.0
    sent_packets: int = 0
    acked_packets: int = 0
    lost_packets: int = 0
    sent_bandwidth: float = 0.0  # kbps
    acked_bandwidth: float = 0.0  # kbps


class Connection(Protocol):
    def start(self, port: int) -> bool: ...

    def connect(self, address: Address) -> None: ...

    def listen(self) -> None: ...

    def is_connected(self) -> bool: ...

    def connect_failed(self) -> bool: ...

    def send_packet(self, data: bytes) -> bool: ...

    def receive_packet(self, max_size: int) -> bytes | None: ...

    def update(self, dt: float) -> None: ...

    def stats(self) -> ConnectionStats: ...


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate


def sequence_more_recent(s1: int, s2: int, max_sequence: int = MAX_SEQUENCE) -> bool:
    half = max_sequence // 2
    return (s1 > s2 and s1 - s2 <= half) or (s2 > s1 and s2 - s1 > half)


@dataclass(slots=True)
class PacketRecord:
    sequence: int
    age: float  # seconds since sent / received
    size: int


class ReliabilitySystem:
    """Sequence, ack and ack-bit bookkeeping for one virtual connection.

    Tracks which sent packets were acknowledged, estimates RTT from the age
    of a packet when its ack arrives, and counts as lost anything left
    unacked for longer than ``rtt_max``. Nothing is ever resent.
    """

    def __init__(self, max_sequence: int = MAX_SEQUENCE, rtt_max: float = RTT_MAX):
        self.max_sequence = max_sequence
        self.rtt_max = rtt_max
        self.reset()

    def reset(self) -> None:
        self.local_sequence = 0
        self.remote_sequence = 0
        self.sent_packets = 0
        self.recv_packets = 0
        self.acked_packets = 0
        self.lost_packets = 0
        self.rtt = 0.0
        self.sent_bandwidth = 0.0
        self.acked_bandwidth = 0.0
        self._sent_queue: deque[PacketRecord] = deque()
        self._pending_ack: list[PacketRecord] = []
        self._received_queue: deque[PacketRecord] = deque()
        self._acked_queue: deque[PacketRecord] = deque()

    def _distance(self, newer: int, older: int) -> int:
        return (newer - older) % (self.max_sequence + 1)

    def packet_sent(self, size: int) -> None:
        self._sent_queue.append(PacketRecord(self.local_sequence, 0.0, size))
        self._pending_ack.append(PacketRecord(self.local_sequence, 0.0, size))
        self.sent_packets += 1
        self.local_sequence = (self.local_sequence + 1) % (self.max_sequence + 1)

    def packet_received(self, sequence: int, size: int) -> None:
        self.recv_packets += 1
        if any(r.sequence == sequence for r in self._received_queue):
            return
        self._received_queue.append(PacketRecord(sequence, 0.0, size))
        if sequence_more_recent(sequence, self.remote_sequence, self.max_sequence):
            self.remote_sequence = sequence

    def generate_ack_bits(self) -> int:
        bits = 0
        for r in self._received_queue:
            if r.sequence == self.remote_sequence:
                continue
            if not sequence_more_recent(self.remote_sequence, r.sequence, self.max_sequence):
                continue
            distance = self._distance(self.remote_sequence, r.sequence)
            if distance <= ACK_BITS:
                bits |= 1 << (distance - 1)
        return bits

    def process_ack(self, ack: int, ack_bits: int) -> None:
        still_pending = []
        for r in self._pending_ack:
            acked = r.sequence == ack
            if not acked and sequence_more_recent(ack, r.sequence, self.max_sequence):
                distance = self._distance(ack, r.sequence)
                acked = distance <= ACK_BITS and bool(ack_bits & (1 << (distance - 1)))
            if acked:
                self.rtt += (r.age - self.rtt) * RTT_SMOOTHING
                self._acked_queue.append(PacketRecord(r.sequence, r.age, r.size))
                self.acked_packets += 1
            else:
                still_pending.append(r)
        self._pending_ack = still_pending

    def update(self, dt: float) -> None:
        for queue in (self._sent_queue, self._received_queue, self._acked_queue):
            for r in queue:
                r.age += dt
        for r in self._pending_ack:
            r.age += dt

        while self._sent_queue and self._sent_queue[0].age > self.rtt_max:
            self._sent_queue.popleft()
        while self._acked_queue and self._acked_queue[0].age > self.rtt_max * 2:
            self._acked_queue.popleft()
        while len(self._received_queue) > ACK_BITS + 2:
            self._received_queue.popleft()

        pending = []
        for r in self._pending_ack:
            if r.age > self.rtt_max:
                self.lost_packets += 1
            else:
                pending.append(r)
        self._pending_ack = pending

        sent_bytes = sum(r.size for r in self._sent_queue)
        acked_bytes = sum(r.size for r in self._acked_queue if r.age >= self.rtt_max)
        self.sent_bandwidth = sent_bytes / self.rtt_max * 8 / 1000
        self.acked_bandwidth = acked_bytes / self.rtt_max * 8 / 1000


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    LISTENING = "listening"
    CONNECTING = "connecting"
    CONNECT_FAILED = "connect_failed"
    CONNECTED = "connected"


class ReliableConnection:
    """Virtual connection over a non-blocking UDP socket.

    Every packet carries the protocol id plus sequence/ack/ack-bits, which
    feed the ``ReliabilitySystem`` statistics. Delivery, ordering and
    retransmission are not guaranteed.
    """

    def __init__(
        self,
        protocol_id: int = PROTOCOL_ID,
        timeout: float = TIMEOUT,
        impairment: Impairment | None = None,
        host: str = "0.0.0.0",
    ):
        self.protocol_id = protocol_id
        self.timeout = timeout
        self.impairment = impairment or Impairment()
        self.host = host
        self.sock: socket.socket | None = None
        self.reliability = ReliabilitySystem()
        self.state = ConnectionState.DISCONNECTED
        self.peer: Address | None = None
        self._server = False
        self._timeout_accumulator = 0.0

    def start(self, port: int) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, port))
        except OSError as e:
            sock.close()
            logger.error("could not bind %s:%d: %s", self.host, port, e)
            return False
        sock.setblocking(False)
        self.sock = sock
        logger.info("connection started on %s:%d", *self.local_address)
        return True

    def stop(self) -> None:
        self._clear()
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    @property
    def local_address(self) -> Address:
        if self.sock is None:
            raise RuntimeError("connection not started")
        return self.sock.getsockname()

    def listen(self) -> None:
        logger.info("server listening for connection")
        self._clear()
        self._server = True
        self.state = ConnectionState.LISTENING

    def connect(self, address: Address) -> None:
        logger.info("client connecting to %s:%d", *address)
        self._clear()
        self._server = False
        self.peer = address
        self.state = ConnectionState.CONNECTING

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def is_connecting(self) -> bool:
        return self.state == ConnectionState.CONNECTING

    def is_listening(self) -> bool:
        return self.state == ConnectionState.LISTENING

    def connect_failed(self) -> bool:
        return self.state == ConnectionState.CONNECT_FAILED

    def _clear(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.peer = None
        self._timeout_accumulator = 0.0
        self.reliability.reset()

    def update(self, dt: float) -> None:
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self.reliability.update(dt)
        self._timeout_accumulator += dt
        if self._timeout_accumulator <= self.timeout:
            return
        if self.state == ConnectionState.CONNECTING:
            logger.error("connect timed out")
            self._clear()
            self.state = ConnectionState.CONNECT_FAILED
        elif self.state == ConnectionState.CONNECTED:
            logger.warning("connection timed out")
            self._clear()
            if self._server:
                self.state = ConnectionState.LISTENING

    def send_packet(self, data: bytes) -> bool:
        if self.sock is None or self.peer is None:
            return False
        r = self.reliability
        packet = HEADER.pack(self.protocol_id, r.local_sequence, r.remote_sequence, r.generate_ack_bits()) + data
        r.packet_sent(len(packet))
        if self.impairment.should_drop():
            logger.debug("DROPPED outbound %d bytes", len(packet))
            return True
        self.sock.sendto(packet, self.peer)
        return True

    def receive_packet(self, max_size: int = MAX_PACKET_SIZE) -> bytes | None:
        if self.sock is None:
            return None
        while True:
            try:
                raw, addr = self.sock.recvfrom(65535)
            except BlockingIOError:
                return None
            except ConnectionResetError:
                # ICMP port unreachable from an earlier send, on some platforms
                logger.debug("peer unreachable")
                continue
            if len(raw) < HEADER.size:
                continue
            protocol_id, sequence, ack, ack_bits = HEADER.unpack_from(raw)
            if protocol_id != self.protocol_id:
                continue

            if self._server and self.state == ConnectionState.LISTENING:
                logger.info("server accepts connection from client %s:%d", *addr)
                self.state = ConnectionState.CONNECTED
                self.peer = addr
            if addr != self.peer:
                continue
            if self.state == ConnectionState.CONNECTING:
                logger.info("client completes connection with server")
                self.state = ConnectionState.CONNECTED
            if self.state != ConnectionState.CONNECTED:
                continue

            self._timeout_accumulator = 0.0
            self.reliability.packet_received(sequence, len(raw))
            self.reliability.process_ack(ack, ack_bits)

            payload = raw[HEADER.size :]
            if not payload:
                continue  # keep-alive
            if len(payload) > max_size:
                logger.warning("dropping %d byte payload (limit %d)", len(payload), max_size)
                continue
            return payload

    def stats(self) -> ConnectionStats:
        r = self.reliability
        return ConnectionStats(
            rtt_ms=r.rtt * 1000.0,
            sent_packets=r.sent_packets,
            acked_packets=r.acked_packets,
            lost_packets=r.lost_packets,
            sent_bandwidth=r.sent_bandwidth,
            acked_bandwidth=r.acked_bandwidth,
        )
