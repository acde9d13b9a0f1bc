from __future__ import annotations

import enum
import os
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .checksum import crc32_file
from .constants import (
    DELIMITER,
    MAX_CHUNK_SIZE,
    MAX_NAME_BYTES,
    SENTINEL,
    TAGGED_HEADER_FORMAT,
    TAGGED_VERSION,
)
from .errors import FileNotFound, FrameError

# name|size|checksum, size up to 20 digits (uint64), checksum up to 10 (uint32)
METADATA_PATTERN = re.compile(rb"([^|\x00]{1,%d})\|([0-9]{1,20})\|([0-9]{1,10})" % MAX_NAME_BYTES)
MAX_METADATA_SIZE = MAX_NAME_BYTES + 20 + 10 + 2 * len(DELIMITER)
MAX_TRANSFER_SIZE = 0xFFFFFFFFFFFFFFFF


def check_name(name: str) -> None:
    if not name or name in (".", ".."):
        raise FrameError(f"invalid transfer name: {name!r}")
    if any(c in name for c in (DELIMITER, "\x00", "/", "\\")):
        raise FrameError(f"transfer name contains a reserved character: {name!r}")
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise FrameError(f"transfer name longer than {MAX_NAME_BYTES} bytes")


class FrameKind(enum.IntEnum):
    METADATA = 1
    DATA = 2
    SENTINEL = 3


class Framing(str, enum.Enum):
    TAGGED = "tagged"
    SNIFFED = "sniffed"


@dataclass(frozen=True, slots=True)
class TransferMetadata:
    name: str
    size: int
    checksum: int

    def __post_init__(self) -> None:
        check_name(self.name)
        if not 0 <= self.size <= MAX_TRANSFER_SIZE:
            raise FrameError(f"size out of 64-bit range: {self.size}")
        if not 0 <= self.checksum <= 0xFFFFFFFF:
            raise FrameError(f"checksum out of 32-bit range: {self.checksum}")

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "TransferMetadata":
        p = Path(path)
        try:
            with open(p, "rb") as f:
                size = os.fstat(f.fileno()).st_size
        except OSError as e:
            raise FileNotFound(f"cannot open source file {os.fspath(p)!r}: {e}") from e
        return cls(name=p.name, size=size, checksum=crc32_file(p))

    def to_record(self) -> bytes:
        return DELIMITER.join((self.name, str(self.size), str(self.checksum))).encode("utf-8")

    @classmethod
    def from_record(cls, raw: bytes) -> "TransferMetadata":
        m = METADATA_PATTERN.fullmatch(raw)
        if m is None:
            raise FrameError("not a metadata record")
        try:
            name = m.group(1).decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameError("metadata name is not valid UTF-8") from e
        return cls(name=name, size=int(m.group(2)), checksum=int(m.group(3)))


@dataclass(frozen=True, slots=True)
class Frame:
    kind: FrameKind
    payload: bytes = b""

    @property
    def metadata(self) -> TransferMetadata:
        if self.kind != FrameKind.METADATA:
            raise FrameError(f"{self.kind.name} frame carries no metadata")
        return TransferMetadata.from_record(self.payload)

    @staticmethod
    def for_metadata(meta: TransferMetadata) -> "Frame":
        return Frame(kind=FrameKind.METADATA, payload=meta.to_record())

    @staticmethod
    def data(chunk: bytes) -> "Frame":
        return Frame(kind=FrameKind.DATA, payload=chunk)

    @staticmethod
    def sentinel() -> "Frame":
        return Frame(kind=FrameKind.SENTINEL, payload=SENTINEL)


class Codec(Protocol):
    max_chunk_size: int

    def encode(self, frame: Frame) -> bytes: ...

    def decode(self, raw: bytes) -> Frame: ...


def _check_chunk(chunk: bytes, max_chunk_size: int) -> None:
    if not chunk:
        raise FrameError("empty data chunk")
    if len(chunk) > max_chunk_size:
        raise FrameError(f"data chunk of {len(chunk)} bytes exceeds {max_chunk_size}")


class SniffedCodec:
    """Untagged channel format: frame kind is inferred from the payload.

    Decoding tries metadata first, then the sentinel literal, and treats
    everything else as data. A data chunk that happens to look like
    ``name|size|checksum`` is therefore decoded as metadata.
    """

    def __init__(self, max_chunk_size: int = MAX_CHUNK_SIZE):
        self.max_chunk_size = max_chunk_size

    def encode(self, frame: Frame) -> bytes:
        if frame.kind == FrameKind.METADATA:
            return frame.metadata.to_record()
        if frame.kind == FrameKind.SENTINEL:
            return SENTINEL
        _check_chunk(frame.payload, self.max_chunk_size)
        return frame.payload

    def decode(self, raw: bytes) -> Frame:
        if len(raw) <= MAX_METADATA_SIZE:
            try:
                meta = TransferMetadata.from_record(raw)
            except FrameError:
                pass
            else:
                return Frame.for_metadata(meta)
        if raw == SENTINEL:
            return Frame.sentinel()
        _check_chunk(raw, self.max_chunk_size)
        return Frame.data(raw)


class TaggedCodec:
    """Explicitly tagged format: ``!BBH`` version, kind, length, then payload."""

    header = struct.Struct(TAGGED_HEADER_FORMAT)

    def __init__(self, max_chunk_size: int = MAX_CHUNK_SIZE):
        self.max_chunk_size = max_chunk_size

    def encode(self, frame: Frame) -> bytes:
        if frame.kind == FrameKind.METADATA:
            payload = frame.metadata.to_record()
        elif frame.kind == FrameKind.SENTINEL:
            payload = b""
        else:
            _check_chunk(frame.payload, self.max_chunk_size)
            payload = frame.payload
        return self.header.pack(TAGGED_VERSION, int(frame.kind), len(payload)) + payload

    def decode(self, raw: bytes) -> Frame:
        if len(raw) < self.header.size:
            raise FrameError("datagram too small to be a valid frame")
        version, kind, length = self.header.unpack_from(raw)
        if version != TAGGED_VERSION:
            raise FrameError(f"version mismatch: expected {TAGGED_VERSION}, got {version}")
        payload = raw[self.header.size :]
        if len(payload) != length:
            raise FrameError(f"length mismatch: header says {length}, got {len(payload)}")
        try:
            kind = FrameKind(kind)
        except ValueError as e:
            raise FrameError(f"unknown frame kind {kind}") from e

        if kind == FrameKind.METADATA:
            return Frame.for_metadata(TransferMetadata.from_record(payload))
        if kind == FrameKind.SENTINEL:
            if payload:
                raise FrameError("sentinel frame with a payload")
            return Frame.sentinel()
        _check_chunk(payload, self.max_chunk_size)
        return Frame.data(payload)


def make_codec(framing: Framing, max_chunk_size: int = MAX_CHUNK_SIZE) -> Codec:
    if framing == Framing.SNIFFED:
        return SniffedCodec(max_chunk_size)
    return TaggedCodec(max_chunk_size)
