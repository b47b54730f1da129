"""Tests for the bounds-checked binary reader and writer."""

import pytest

from egs_dl.binary import BinaryReader, BinaryWriter
from egs_dl.exceptions import CorruptManifest, TruncatedManifest
from egs_dl.models import ChunkGuid


def test_read_integers_little_endian():
    """Fixed width integers are little-endian."""
    reader = BinaryReader(bytes([1, 2, 3, 4]))
    assert reader.read_u32() == 67305985
    assert reader.remaining == 0

    assert BinaryReader(bytes([237, 201, 255, 255])).read_i32() == -13843
    assert BinaryReader(bytes([0, 0, 0, 0, 0, 1, 2, 3])).read_u64() == 216736831578832896
    assert BinaryReader(bytes([237, 201, 255, 255, 255, 255, 255, 255])).read_i64() == -13843


def test_read_fstring_utf8():
    """Positive length: UTF-8 including the terminator."""
    reader = BinaryReader(bytes([5, 0, 0, 0, 97, 98, 99, 100, 0]))
    assert reader.read_fstring() == "abcd"
    assert reader.offset == 9


def test_read_fstring_utf16():
    """Negative length: UTF-16LE code units including the terminator."""
    reader = BinaryReader(bytes([251, 255, 255, 255, 97, 0, 98, 0, 99, 0, 100, 0, 0, 0]))
    assert reader.read_fstring() == "abcd"
    assert reader.offset == 14


def test_read_fstring_empty():
    reader = BinaryReader(bytes([0, 0, 0, 0]))
    assert reader.read_fstring() == ""
    assert reader.offset == 4


def test_read_fstring_length_past_end():
    """A string length larger than the buffer is a truncation, not a crash."""
    reader = BinaryReader(bytes([100, 0, 0, 0, 97, 98]))
    with pytest.raises(TruncatedManifest) as exc_info:
        reader.read_fstring("app name")

    assert exc_info.value.offset == 4
    assert exc_info.value.needed == 100
    assert exc_info.value.available == 2
    assert exc_info.value.field == "app name"


def test_read_fstring_invalid_utf8():
    reader = BinaryReader(bytes([3, 0, 0, 0, 0xFF, 0xFE, 0]))
    with pytest.raises(CorruptManifest):
        reader.read_fstring()


def test_read_past_end_reports_offset():
    reader = BinaryReader(bytes([1, 2, 3, 4, 5, 6]))
    reader.read_u32()
    with pytest.raises(TruncatedManifest) as exc_info:
        reader.read_u32("chunk count")

    assert exc_info.value.offset == 4
    assert exc_info.value.needed == 4
    assert exc_info.value.available == 2


def test_read_count_rejects_oversized_count():
    """A count whose elements cannot fit in the remaining bytes fails up front."""
    reader = BinaryReader(bytes([0xFF, 0xFF, 0xFF, 0x0F]) + bytes(16))
    with pytest.raises(TruncatedManifest) as exc_info:
        reader.read_count(16, "chunk count")
    assert exc_info.value.offset == 0


def test_seek_outside_buffer():
    reader = BinaryReader(bytes(8))
    reader.seek(8)
    assert reader.remaining == 0
    with pytest.raises(TruncatedManifest):
        reader.seek(9)


def test_writer_reader_strings():
    """Non-ASCII strings are written as UTF-16 and read back unchanged."""
    writer = BinaryWriter()
    writer.write_fstring("Content/Paks/pakchunk0.pak")
    writer.write_fstring("Données/ゲーム.pak")
    writer.write_fstring("")
    writer.write_fstring_list(["tag1", "tag2"])

    reader = BinaryReader(writer.getvalue())
    assert reader.read_fstring() == "Content/Paks/pakchunk0.pak"
    assert reader.read_fstring() == "Données/ゲーム.pak"
    assert reader.read_fstring() == ""
    assert reader.read_fstring_list() == ["tag1", "tag2"]
    assert reader.remaining == 0


def test_guid_wire_form():
    guid = ChunkGuid(0x01234567, 0x89ABCDEF, 0xDEADBEEF, 0x00C0FFEE)
    writer = BinaryWriter()
    writer.write_guid(guid)

    data = writer.getvalue()
    assert data[:4] == bytes([0x67, 0x45, 0x23, 0x01])
    assert BinaryReader(data).read_guid() == guid
