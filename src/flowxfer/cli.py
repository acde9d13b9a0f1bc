from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .bench import run_loopback
from .config import Framing, Pacing, Role, TransferConfig
from .constants import CLIENT_PORT, SERVER_PORT, TIMEOUT
from .driver import Driver, RunSummary
from .errors import BindError, ConfigError, FileNotFound, FrameError, TransferIOError
from .net import Impairment, ReliableConnection

logger = logging.getLogger(__name__)


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def _summary_payload(summary: RunSummary) -> dict:
    return {
        "role": summary.role.value,
        "ok": summary.ok,
        "ticks": summary.ticks,
        "packets_sent": summary.packets_sent,
        "frames_dropped": summary.frames_dropped,
        "integrity_failures": summary.integrity_failures,
        "connect_failed": summary.connect_failed,
        "connection_lost": summary.connection_lost,
        "write_failures": summary.write_failures,
        "telemetry": summary.last_report.to_dict() if summary.last_report is not None else None,
        "transfers": [
            {
                "name": t.metadata.name,
                "path": str(t.path),
                "bytes": t.bytes_received,
                "expected_bytes": t.metadata.size,
                "crc32": t.checksum,
                "expected_crc32": t.metadata.checksum,
                "ok": t.ok,
            }
            for t in summary.transfers
        ],
    }


def _run(cfg: TransferConfig, as_json: bool) -> int:
    conn = ReliableConnection(cfg.protocol_id, cfg.timeout, Impairment(cfg.loss_rate))
    driver = Driver(cfg, conn)
    try:
        summary = driver.run()
    except KeyboardInterrupt:
        logger.info("interrupted")
        summary = driver.summary
    except (BindError, FileNotFound, FrameError, TransferIOError) as e:
        logger.error("%s", e)
        return 1
    finally:
        conn.stop()

    _emit(_summary_payload(summary), as_json)
    return 0 if summary.ok else 1


def _common_config(args: argparse.Namespace) -> dict:
    return {
        "framing": Framing(args.framing),
        "pacing": Pacing(args.pacing),
        "timeout": args.timeout,
        "loss_rate": args.loss_rate,
    }


def cmd_send(args: argparse.Namespace) -> int:
    cfg = TransferConfig(
        role=Role.SENDER,
        address=args.address,
        port=args.port,
        bind_port=args.bind_port,
        source=Path(args.file),
        **_common_config(args),
    )
    return _run(cfg, args.json)


def cmd_recv(args: argparse.Namespace) -> int:
    cfg = TransferConfig(
        role=Role.RECEIVER,
        port=args.port,
        output_dir=Path(args.out_dir),
        exit_after_transfer=not args.keep_listening,
        **_common_config(args),
    )
    return _run(cfg, args.json)


def cmd_bench(args: argparse.Namespace) -> int:
    try:
        r = run_loopback(
            Path(args.file),
            Path(args.out_dir),
            framing=Framing(args.framing),
            pacing=Pacing(args.pacing),
            loss_rate=args.loss_rate,
            timeout=args.timeout,
            max_ticks=args.max_ticks,
        )
    except (BindError, FileNotFound, FrameError, TransferIOError) as e:
        logger.error("%s", e)
        return 1
    payload = {
        "role": "bench",
        "bytes": r.bytes_transferred,
        "ticks": r.ticks,
        "completed": r.completed,
        "matched": r.matched,
        "sender_packets": r.sender.packets_sent,
        "receiver_packets": r.receiver.packets_sent,
        "telemetry": r.sender.last_report.to_dict() if r.sender.last_report is not None else None,
    }
    _emit(payload, args.json)
    return 0 if r.matched else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="flowxfer", description="Flow-controlled file transfer over UDP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--framing", choices=[f.value for f in Framing], default=Framing.TAGGED.value)
        x.add_argument("--pacing", choices=[m.value for m in Pacing], default=Pacing.GATED.value)
        x.add_argument("--timeout", type=float, default=TIMEOUT)
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate outbound packet loss")
        x.add_argument("--json", action="store_true")

    send = sub.add_parser("send", help="send a file to a receiver")
    add_common(send)
    send.add_argument("--file", required=True)
    send.add_argument("--address", default="127.0.0.1")
    send.add_argument("--port", type=int, default=SERVER_PORT)
    send.add_argument("--bind-port", type=int, default=CLIENT_PORT)
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("recv", help="receive files into a directory")
    add_common(recv)
    recv.add_argument("--port", type=int, default=SERVER_PORT)
    recv.add_argument("--out-dir", default=".")
    recv.add_argument("--keep-listening", action="store_true", help="wait for further transfers after the first")
    recv.set_defaults(func=cmd_recv)

    bench = sub.add_parser("bench", help="send a file to itself over loopback")
    add_common(bench)
    bench.add_argument("--file", required=True)
    bench.add_argument("--out-dir", required=True)
    bench.add_argument("--max-ticks", type=int, default=100_000)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except ConfigError as e:
        parser.error(str(e))


if __name__ == "__main__":
    raise SystemExit(main())
