from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .receiver import TransferResult


class TransferError(Exception):
    """Base class for every error raised by flowxfer."""


class ConfigError(TransferError, ValueError):
    pass


class FileNotFound(TransferError, FileNotFoundError):
    """The source file could not be opened; raised before any frame is sent."""


class TransferIOError(TransferError, OSError):
    """A read failed part-way through checksumming or chunking the source."""


class BindError(TransferError, OSError):
    pass


class FrameError(TransferError, ValueError):
    """A frame is malformed or violates a size bound."""


class NoActiveTransfer(TransferError):
    """A data or sentinel frame arrived before any metadata frame."""


class IntegrityMismatch(TransferError):
    """The received bytes do not match the declared size and checksum.

    Non-fatal: the receiver has already closed the file and recorded the
    result, which is attached as ``result``.
    """

    def __init__(self, result: TransferResult):
        self.result = result
        super().__init__(
            f"integrity mismatch for {result.metadata.name!r}: "
            f"expected {result.metadata.size} bytes crc32={result.metadata.checksum:#010x}, "
            f"got {result.bytes_received} bytes crc32={result.checksum:#010x}"
        )


class WriteFailed(TransferError):
    """The output file could not be written; the transfer was abandoned."""

    def __init__(self, result: TransferResult, cause: OSError):
        self.result = result
        self.cause = cause
        super().__init__(f"could not write {result.path}: {cause}")
