from __future__ import annotations

import struct
import zlib

import pytest

from flowxfer.errors import FileNotFound, FrameError
from flowxfer.packet import (
    Frame,
    FrameKind,
    Framing,
    SniffedCodec,
    TaggedCodec,
    TransferMetadata,
    make_codec,
)

METAS = [
    TransferMetadata("a.txt", 10, 123456789),
    TransferMetadata("empty.bin", 0, 0),
    TransferMetadata("résumé.pdf", 2**40, 0xFFFFFFFF),
    TransferMetadata("n" * 255, 1, 1),
]


@pytest.mark.parametrize("codec", [SniffedCodec(), TaggedCodec()], ids=["sniffed", "tagged"])
@pytest.mark.parametrize("meta", METAS, ids=lambda m: m.name[:12])
def test_metadata_roundtrip(codec, meta):
    frame = codec.decode(codec.encode(Frame.for_metadata(meta)))
    assert frame.kind == FrameKind.METADATA
    assert frame.metadata == meta


def test_record_format():
    assert TransferMetadata("a.txt", 10, 42).to_record() == b"a.txt|10|42"


def test_metadata_from_path(make_file):
    path = make_file("a.txt", b"0123456789")
    meta = TransferMetadata.from_path(path)
    assert meta == TransferMetadata("a.txt", 10, zlib.crc32(b"0123456789"))


def test_metadata_from_missing_path(tmp_path):
    with pytest.raises(FileNotFound):
        TransferMetadata.from_path(tmp_path / "nope.txt")


@pytest.mark.parametrize(
    "name",
    ["", ".", "..", "a|b", "dir/a.txt", "dir\\a.txt", "nul\x00", "n" * 256, "é" * 128],
)
def test_invalid_names_rejected(name):
    with pytest.raises(FrameError):
        TransferMetadata(name, 1, 1)


def test_invalid_numbers_rejected():
    with pytest.raises(FrameError):
        TransferMetadata("a", -1, 0)
    with pytest.raises(FrameError):
        TransferMetadata("a", 0, 2**32)
    with pytest.raises(FrameError):
        TransferMetadata("a", 2**64, 0)


@pytest.mark.parametrize("codec", [SniffedCodec(), TaggedCodec()], ids=["sniffed", "tagged"])
def test_largest_size_roundtrips(codec):
    meta = TransferMetadata("big.bin", 2**64 - 1, 7)
    assert codec.decode(codec.encode(Frame.for_metadata(meta))).metadata == meta


def test_sniffed_classification_order():
    codec = SniffedCodec()
    assert codec.decode(b"a.txt|10|42").kind == FrameKind.METADATA
    assert codec.decode(b"complete").kind == FrameKind.SENTINEL
    assert codec.decode(b"completed").kind == FrameKind.DATA
    assert codec.decode(b"\x00\x01\x02").payload == b"\x00\x01\x02"


def test_sniffed_out_of_range_checksum_is_data():
    frame = SniffedCodec().decode(b"a|1|9999999999")
    assert frame.kind == FrameKind.DATA


def test_sniffed_misclassifies_lookalike_chunk():
    # Known hazard of the untagged format: data that looks like a record
    # (or like the sentinel) is not delivered as data.
    codec = SniffedCodec()
    raw = codec.encode(Frame.data(b"x|1|2"))
    assert codec.decode(raw).kind == FrameKind.METADATA
    assert codec.decode(codec.encode(Frame.data(b"complete"))).kind == FrameKind.SENTINEL


def test_tagged_keeps_lookalike_chunk_as_data():
    codec = TaggedCodec()
    for chunk in (b"x|1|2", b"complete"):
        frame = codec.decode(codec.encode(Frame.data(chunk)))
        assert frame.kind == FrameKind.DATA
        assert frame.payload == chunk


def test_tagged_sentinel_and_data():
    codec = TaggedCodec()
    assert codec.decode(codec.encode(Frame.sentinel())).kind == FrameKind.SENTINEL
    chunk = bytes(range(256))
    assert codec.decode(codec.encode(Frame.data(chunk))) == Frame.data(chunk)


@pytest.mark.parametrize("codec", [SniffedCodec(16), TaggedCodec(16)], ids=["sniffed", "tagged"])
def test_chunk_bounds(codec):
    codec.encode(Frame.data(b"x" * 16))
    with pytest.raises(FrameError):
        codec.encode(Frame.data(b"x" * 17))
    with pytest.raises(FrameError):
        codec.encode(Frame.data(b""))


def test_sniffed_rejects_oversized_datagram():
    with pytest.raises(FrameError):
        SniffedCodec(16).decode(b"x" * 17)


def test_tagged_rejects_oversized_datagram():
    raw = struct.pack("!BBH", 1, int(FrameKind.DATA), 17) + b"x" * 17
    with pytest.raises(FrameError):
        TaggedCodec(16).decode(raw)


def test_tagged_length_mismatch():
    raw = TaggedCodec().encode(Frame.data(b"hello"))
    with pytest.raises(FrameError):
        TaggedCodec().decode(raw + b"!")
    with pytest.raises(FrameError):
        TaggedCodec().decode(raw[:-1])


def test_tagged_bad_header():
    codec = TaggedCodec()
    with pytest.raises(FrameError):
        codec.decode(b"\x01")
    with pytest.raises(FrameError):
        codec.decode(struct.pack("!BBH", 2, int(FrameKind.SENTINEL), 0))
    with pytest.raises(FrameError):
        codec.decode(struct.pack("!BBH", 1, 9, 0))
    with pytest.raises(FrameError):
        codec.decode(struct.pack("!BBH", 1, int(FrameKind.SENTINEL), 1) + b"x")
    with pytest.raises(FrameError):
        codec.decode(struct.pack("!BBH", 1, int(FrameKind.METADATA), 3) + b"abc")


def test_metadata_of_data_frame():
    with pytest.raises(FrameError):
        Frame.data(b"abc").metadata


def test_make_codec():
    assert isinstance(make_codec(Framing.SNIFFED, 32), SniffedCodec)
    codec = make_codec(Framing.TAGGED, 32)
    assert isinstance(codec, TaggedCodec)
    assert codec.max_chunk_size == 32
