from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    CLIENT_PORT,
    DELTA_TIME,
    MAX_CHUNK_SIZE,
    MAX_PACKET_SIZE,
    PROTOCOL_ID,
    SERVER_PORT,
    STATS_INTERVAL,
    TIMEOUT,
)
from .errors import ConfigError, FrameError
from .packet import Framing, MAX_METADATA_SIZE, TaggedCodec, check_name


class Role(str, enum.Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class Pacing(str, enum.Enum):
    GATED = "gated"
    BURST = "burst"


@dataclass(frozen=True, slots=True)
class TransferConfig:
    """Everything a run needs, built once and handed to the driver."""

    role: Role
    address: str = "127.0.0.1"
    port: int = SERVER_PORT
    bind_port: int = CLIENT_PORT
    protocol_id: int = PROTOCOL_ID
    delta_time: float = DELTA_TIME
    timeout: float = TIMEOUT
    max_chunk_size: int = MAX_CHUNK_SIZE
    stats_interval: float = STATS_INTERVAL
    source: Path | None = None
    output_dir: Path = Path(".")
    framing: Framing = Framing.TAGGED
    pacing: Pacing = Pacing.GATED
    exit_after_transfer: bool = True
    loss_rate: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            raise ConfigError(f"unknown role: {self.role!r}")
        if self.role == Role.SENDER and self.source is None:
            raise ConfigError("sender role requires a source file")
        if self.source is not None:
            try:
                check_name(Path(self.source).name)
            except FrameError as e:
                raise ConfigError(f"unusable source file name: {e}") from e
        for name in ("port", "bind_port"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFF:
                raise ConfigError(f"{name} out of range: {value}")
        if not 0 <= self.protocol_id <= 0xFFFFFFFF:
            raise ConfigError(f"protocol id must fit in 32 bits: {self.protocol_id:#x}")
        if self.delta_time <= 0:
            raise ConfigError("delta_time must be positive")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.stats_interval <= 0:
            raise ConfigError("stats_interval must be positive")
        largest_frame = TaggedCodec.header.size + max(self.max_chunk_size, MAX_METADATA_SIZE)
        if self.max_chunk_size < 1 or largest_frame > MAX_PACKET_SIZE:
            raise ConfigError(f"max_chunk_size out of range: {self.max_chunk_size}")
        if not 0.0 <= self.loss_rate < 1.0:
            raise ConfigError(f"loss_rate must be in [0, 1): {self.loss_rate}")

    @property
    def local_port(self) -> int:
        return self.port if self.role == Role.RECEIVER else self.bind_port

    @property
    def remote_address(self) -> tuple[str, int]:
        return (self.address, self.port)
