from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from .config import Pacing, Role, TransferConfig
from .constants import MAX_PACKET_SIZE
from .errors import BindError, FrameError, IntegrityMismatch, NoActiveTransfer, WriteFailed
from .flow import FlowControl, SendSchedule
from .net import Connection
from .packet import make_codec
from .receiver import FileReceiver, TransferResult
from .sender import SenderPipeline
from .telemetry import TelemetryReport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunSummary:
    role: Role
    ticks: int = 0
    connect_failed: bool = False
    connection_lost: bool = False
    packets_sent: int = 0
    frames_dropped: int = 0
    integrity_failures: int = 0
    write_failures: int = 0
    reports: int = 0
    last_report: TelemetryReport | None = None
    sentinel_sent: bool = False
    transfers: list[TransferResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.connect_failed or self.connection_lost or self.integrity_failures or self.write_failures:
            return False
        if self.role == Role.SENDER:
            return self.sentinel_sent
        return bool(self.transfers)


class Driver:
    """Fixed-timestep loop tying the flow controller and both pipelines to a connection.

    All state is owned here and only touched from ``tick()``; the one
    suspension point is the wait for the next tick boundary in ``run()``.
    """

    def __init__(
        self,
        config: TransferConfig,
        connection: Connection,
        flow: FlowControl | None = None,
        on_report: Callable[[TelemetryReport], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.connection = connection
        self.flow = flow or FlowControl()
        self.on_report = on_report
        self.clock = clock
        self.sleep = sleep

        self.codec = make_codec(config.framing, config.max_chunk_size)
        self.receiver = FileReceiver(config.output_dir)
        self.sender: SenderPipeline | None = None
        if config.role == Role.SENDER:
            self.sender = SenderPipeline(config.source, config.max_chunk_size)
        self.schedule = SendSchedule()
        self.summary = RunSummary(role=config.role)

        self.connected = False
        self.running = True
        self.opened = False
        self._stats_accumulator = 0.0

    def open(self) -> None:
        cfg = self.config
        if not self.connection.start(cfg.local_port):
            raise BindError(f"could not start connection on port {cfg.local_port}")
        if cfg.role == Role.SENDER:
            self.connection.connect(cfg.remote_address)
        else:
            self.connection.listen()
        self.opened = True

    def stop(self) -> None:
        self.running = False

    def close(self) -> None:
        self.receiver.close()
        if self.sender is not None:
            self.sender.close()

    def run(self) -> RunSummary:
        if not self.opened:
            self.open()
        dt = self.config.delta_time
        next_tick = self.clock()
        try:
            while self.running:
                self.tick()
                if not self.running:
                    break
                next_tick += dt
                delay = next_tick - self.clock()
                if delay > 0:
                    self.sleep(delay)
        finally:
            self.close()
        return self.summary

    def tick(self) -> None:
        dt = self.config.delta_time
        conn = self.connection

        if conn.is_connected():
            self.flow.update(dt, conn.stats().rtt_ms)

        if self.connected and not conn.is_connected():
            logger.info("disconnected; reset flow control")
            self.flow.reset()
            self.connected = False
            if self.sender is not None:
                logger.error("connection lost before the transfer finished")
                self.summary.connection_lost = True
                self.running = False
                return

        if not self.connected and conn.is_connected():
            logger.info("connected")
            self.connected = True

        if not self.connected and conn.connect_failed():
            logger.error("connection failed")
            self.summary.connect_failed = True
            self.running = False
            return

        self._send(dt)
        self._drain()
        conn.update(dt)
        self._report(dt)
        self.summary.ticks += 1

    def _send(self, dt: float) -> None:
        sender = self.sender
        if sender is not None and not sender.started:
            sender.start()
            if self.config.pacing == Pacing.BURST:
                self.summary.packets_sent += sender.send_all(self.connection, self.codec)

        # A due slot with no transfer frame carries an empty keep-alive.
        # A refused transfer frame stays due for the next slot.
        for _ in range(self.schedule.advance(dt, self.flow.send_rate())):
            frame = sender.next_frame() if sender is not None else None
            if frame is None:
                if self.connection.send_packet(b""):
                    self.summary.packets_sent += 1
                continue
            if not self.connection.send_packet(self.codec.encode(frame)):
                break
            sender.mark_sent()
            self.summary.packets_sent += 1

        if sender is not None and sender.sentinel_sent:
            self.summary.sentinel_sent = True
            self.running = False

    def _drain(self) -> None:
        while True:
            raw = self.connection.receive_packet(MAX_PACKET_SIZE)
            if raw is None:
                return
            try:
                result = self.receiver.handle(self.codec.decode(raw))
            except FrameError as e:
                logger.warning("dropping malformed frame: %s", e)
                self.summary.frames_dropped += 1
                continue
            except NoActiveTransfer as e:
                logger.warning("%s", e)
                self.summary.frames_dropped += 1
                continue
            except IntegrityMismatch as e:
                logger.error("%s", e)
                self.summary.integrity_failures += 1
                result = e.result
            except WriteFailed as e:
                logger.error("%s", e)
                self.summary.write_failures += 1
                result = e.result

            if result is None:
                continue
            self.summary.transfers.append(result)
            if self.config.role == Role.RECEIVER and self.config.exit_after_transfer:
                self.running = False
                return

    def _report(self, dt: float) -> None:
        if not self.connection.is_connected():
            return
        interval = self.config.stats_interval
        self._stats_accumulator += dt
        while self._stats_accumulator >= interval:
            report = TelemetryReport.from_stats(self.connection.stats())
            logger.info("%s", report.format_line())
            if self.on_report is not None:
                self.on_report(report)
            self.summary.reports += 1
            self.summary.last_report = report
            self._stats_accumulator -= interval
