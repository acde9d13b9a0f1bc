from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from .config import Framing, Pacing, Role, TransferConfig
from .constants import TIMEOUT
from .driver import Driver, RunSummary
from .net import Impairment, ReliableConnection

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


@dataclass(frozen=True, slots=True)
class LoopbackResult:
    bytes_transferred: int
    ticks: int
    completed: bool
    matched: bool
    sender: RunSummary
    receiver: RunSummary


def run_loopback(
    source: Path,
    output_dir: Path,
    *,
    framing: Framing = Framing.TAGGED,
    pacing: Pacing = Pacing.GATED,
    loss_rate: float = 0.0,
    timeout: float = TIMEOUT,
    max_ticks: int = 100_000,
) -> LoopbackResult:
    """Send ``source`` to ``output_dir`` over UDP on localhost, in one thread.

    Both drivers tick alternately without waiting between ticks, so the
    run takes as long as the packets need rather than the wall-clock
    cadence. Loss is applied to the sender's outbound packets only.
    """
    recv_cfg = TransferConfig(
        role=Role.RECEIVER,
        address=LOOPBACK,
        port=0,
        output_dir=output_dir,
        framing=framing,
        pacing=pacing,
        timeout=timeout,
    )
    recv_conn = ReliableConnection(recv_cfg.protocol_id, recv_cfg.timeout, host=LOOPBACK)
    send_conn = ReliableConnection(recv_cfg.protocol_id, recv_cfg.timeout, Impairment(loss_rate), host=LOOPBACK)
    receiver = Driver(recv_cfg, recv_conn)
    sender: Driver | None = None
    try:
        receiver.open()
        send_cfg = replace(
            recv_cfg,
            role=Role.SENDER,
            port=recv_conn.local_address[1],
            bind_port=0,
            source=source,
            loss_rate=loss_rate,
        )
        sender = Driver(send_cfg, send_conn)
        sender.open()

        ticks = 0
        while receiver.running and ticks < max_ticks:
            if sender.running:
                sender.tick()
            receiver.tick()
            ticks += 1
            if not sender.running and (sender.summary.connect_failed or sender.summary.connection_lost):
                break
    finally:
        receiver.close()
        if sender is not None:
            sender.close()
        recv_conn.stop()
        send_conn.stop()

    transfers = receiver.summary.transfers
    completed = bool(transfers)
    matched = completed and transfers[-1].ok and transfers[-1].path.read_bytes() == Path(source).read_bytes()
    if not completed:
        logger.warning("loopback run ended after %d ticks without a completed transfer", ticks)
    return LoopbackResult(
        bytes_transferred=transfers[-1].bytes_received if completed else 0,
        ticks=ticks,
        completed=completed,
        matched=matched,
        sender=sender.summary,
        receiver=receiver.summary,
    )
