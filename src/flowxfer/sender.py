from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Generator

from .constants import MAX_CHUNK_SIZE
from .errors import FileNotFound, TransferIOError
from .net import Connection
from .packet import Codec, Frame, FrameKind, TransferMetadata

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SenderPipeline:
    """Turns one source file into metadata, data chunks and a sentinel.

    ``start()`` gathers the metadata and opens the file, so a missing
    source fails before anything is sent. Frames are then pulled one at a
    time with ``next_frame()`` and confirmed with ``mark_sent()``, or pushed
    with ``send_all()``. A frame the connection refuses stays due.
    Nothing waits for acknowledgement and nothing is resent.
    """

    path: Path
    chunk_size: int = MAX_CHUNK_SIZE
    metadata: TransferMetadata | None = None
    frames_sent: int = 0
    bytes_sent: int = 0
    sentinel_sent: bool = False
    _frames: Generator[Frame, None, None] | None = field(default=None, repr=False)
    _due: Frame | None = field(default=None, repr=False)

    @property
    def started(self) -> bool:
        return self._frames is not None

    def start(self) -> TransferMetadata:
        if self.started:
            raise RuntimeError("transfer already started")
        self.metadata = TransferMetadata.from_path(self.path)
        try:
            f = open(self.path, "rb")
        except OSError as e:
            raise FileNotFound(f"cannot open source file {os.fspath(self.path)!r}: {e}") from e
        self._frames = self._generate(f, self.metadata)
        logger.info(
            "sending %s (%d bytes, crc32=%#010x)",
            self.metadata.name,
            self.metadata.size,
            self.metadata.checksum,
        )
        return self.metadata

    def _generate(self, f: BinaryIO, meta: TransferMetadata) -> Generator[Frame, None, None]:
        with f:
            yield Frame.for_metadata(meta)
            while True:
                try:
                    chunk = f.read(self.chunk_size)
                except OSError as e:
                    raise TransferIOError(f"read failed on {meta.name!r}: {e}") from e
                if not chunk:
                    break
                yield Frame.data(chunk)
        yield Frame.sentinel()

    def next_frame(self) -> Frame | None:
        """Return the frame due next. It stays due until ``mark_sent()``."""
        if self._frames is None:
            raise RuntimeError("transfer not started")
        if self._due is None:
            self._due = next(self._frames, None)
        return self._due

    def mark_sent(self) -> None:
        frame = self._due
        if frame is None:
            raise RuntimeError("no frame is due")
        self._due = None
        self.frames_sent += 1
        if frame.kind == FrameKind.DATA:
            self.bytes_sent += len(frame.payload)
        elif frame.kind == FrameKind.SENTINEL:
            self.sentinel_sent = True
            logger.info("sent %s: %d frames, %d bytes", self.metadata.name, self.frames_sent, self.bytes_sent)

    def send_all(self, connection: Connection, codec: Codec) -> int:
        """Push remaining frames onto ``connection`` until it refuses one; returns how many went out."""
        count = 0
        while True:
            frame = self.next_frame()
            if frame is None:
                return count
            if not connection.send_packet(codec.encode(frame)):
                logger.warning("connection refused frame %d; holding it", self.frames_sent)
                return count
            self.mark_sent()
            count += 1

    def close(self) -> None:
        self._due = None
        if self._frames is not None:
            self._frames.close()
