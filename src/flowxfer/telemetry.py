from __future__ import annotations

from dataclasses import asdict, dataclass

from .net import ConnectionStats


@dataclass(frozen=True, slots=True)
class TelemetryReport:
    rtt_ms: float
    sent_packets: int
    acked_packets: int
    lost_packets: int
    loss_percent: float
    sent_bandwidth_kbps: float
    acked_bandwidth_kbps: float

    @classmethod
    def from_stats(cls, stats: ConnectionStats) -> "TelemetryReport":
        loss = stats.lost_packets / stats.sent_packets * 100.0 if stats.sent_packets > 0 else 0.0
        return cls(
            rtt_ms=stats.rtt_ms,
            sent_packets=stats.sent_packets,
            acked_packets=stats.acked_packets,
            lost_packets=stats.lost_packets,
            loss_percent=loss,
            sent_bandwidth_kbps=stats.sent_bandwidth,
            acked_bandwidth_kbps=stats.acked_bandwidth,
        )

    def format_line(self) -> str:
        return (
            f"rtt {self.rtt_ms:.1f}ms, sent {self.sent_packets}, acked {self.acked_packets}, "
            f"lost {self.lost_packets} ({self.loss_percent:.1f}%), "
            f"sent bandwidth = {self.sent_bandwidth_kbps:.1f}kbps, "
            f"acked bandwidth = {self.acked_bandwidth_kbps:.1f}kbps"
        )

    def to_dict(self) -> dict:
        return asdict(self)
