from __future__ import annotations

import os
import zlib

from .errors import TransferIOError

READ_BLOCK = 64 * 1024


def crc32_bytes(data: bytes, crc: int = 0) -> int:
    return zlib.crc32(data, crc) & 0xFFFFFFFF


def crc32_file(path: str | os.PathLike[str]) -> int:
    crc = 0
    try:
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(READ_BLOCK), b""):
                crc = zlib.crc32(block, crc)
    except OSError as e:
        raise TransferIOError(f"could not checksum {os.fspath(path)!r}: {e}") from e
    return crc & 0xFFFFFFFF
