from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from .checksum import crc32_bytes
from .errors import IntegrityMismatch, NoActiveTransfer, WriteFailed
from .packet import Frame, FrameKind, TransferMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferResult:
    metadata: TransferMetadata
    path: Path
    bytes_received: int
    checksum: int

    @property
    def ok(self) -> bool:
        return self.bytes_received == self.metadata.size and self.checksum == self.metadata.checksum


@dataclass(slots=True)
class ActiveTransfer:
    metadata: TransferMetadata
    path: Path
    checksum: int = 0
    bytes_received: int = 0
    out: BinaryIO | None = field(default=None, repr=False)

    def append(self, chunk: bytes) -> None:
        if self.out is None:
            self.out = open(self.path, "wb")
        self.out.write(chunk)
        self.checksum = crc32_bytes(chunk, self.checksum)
        self.bytes_received += len(chunk)

    def close(self) -> None:
        if self.out is not None:
            self.out.close()
            self.out = None


class FileReceiver:
    """Rebuilds files from inbound frames, one transfer at a time.

    Data is appended in arrival order to the file named by the most recent
    metadata frame. There is no reordering, gap detection or duplicate
    suppression: loss shows up only as an ``IntegrityMismatch`` when the
    sentinel arrives.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.active: ActiveTransfer | None = None
        self.completed: list[TransferResult] = []

    def handle(self, frame: Frame) -> TransferResult | None:
        if frame.kind == FrameKind.METADATA:
            self._begin(frame.metadata)
            return None
        if frame.kind == FrameKind.SENTINEL:
            return self._finish()

        if self.active is None:
            raise NoActiveTransfer(f"dropping {len(frame.payload)} byte chunk: no metadata received yet")
        try:
            self.active.append(frame.payload)
        except OSError as e:
            raise self._fail(e) from e
        return None

    def _begin(self, meta: TransferMetadata) -> None:
        if self.active is not None:
            logger.warning(
                "abandoning %s after %d of %d bytes",
                self.active.metadata.name,
                self.active.bytes_received,
                self.active.metadata.size,
            )
            self.active.close()
        self.active = ActiveTransfer(metadata=meta, path=self.output_dir / meta.name)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise self._fail(e) from e
        logger.info("receiving %s (%d bytes, crc32=%#010x)", meta.name, meta.size, meta.checksum)

    def _finish(self) -> TransferResult:
        active = self.active
        if active is None:
            raise NoActiveTransfer("sentinel received with no transfer in progress")
        try:
            if active.out is None:
                active.path.write_bytes(b"")
            active.close()
        except OSError as e:
            raise self._fail(e) from e
        self.active = None

        result = TransferResult(
            metadata=active.metadata,
            path=active.path,
            bytes_received=active.bytes_received,
            checksum=active.checksum,
        )
        self.completed.append(result)
        if not result.ok:
            raise IntegrityMismatch(result)
        logger.info("received %s (%d bytes) -> %s", active.metadata.name, result.bytes_received, result.path)
        return result

    def _fail(self, error: OSError) -> WriteFailed:
        active = self.active
        self.active = None
        try:
            active.close()
        except OSError as e:
            logger.debug("close after write failure: %s", e)
        result = TransferResult(
            metadata=active.metadata,
            path=active.path,
            bytes_received=active.bytes_received,
            checksum=active.checksum,
        )
        self.completed.append(result)
        return WriteFailed(result, error)

    def close(self) -> None:
        if self.active is not None:
            self.active.close()
