"""
Bounds-checked binary reader and writer for EGS manifest structures.

Manifests are untrusted input: every read goes through BinaryReader, which
checks the remaining length before touching the buffer and raises
TruncatedManifest with the offset and the missing byte count.
"""

import struct
from typing import List

from egs_dl.exceptions import CorruptManifest, TruncatedManifest
from egs_dl.models import ChunkGuid


class BinaryReader:
    """Little-endian cursor over an immutable byte buffer."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = memoryview(data)
        self.offset = offset

    def __len__(self) -> int:
        return len(self.data)

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def _require(self, size: int, field: str) -> None:
        if size < 0 or size > self.remaining:
            raise TruncatedManifest(self.offset, size, max(self.remaining, 0), field)

    def read_bytes(self, size: int, field: str = "bytes") -> bytes:
        self._require(size, field)
        value = bytes(self.data[self.offset:self.offset + size])
        self.offset += size
        return value

    def _unpack(self, fmt: str, field: str):
        size = struct.calcsize(fmt)
        self._require(size, field)
        value = struct.unpack_from(fmt, self.data, self.offset)[0]
        self.offset += size
        return value

    def read_u8(self, field: str = "u8") -> int:
        return self._unpack("<B", field)

    def read_u32(self, field: str = "u32") -> int:
        return self._unpack("<I", field)

    def read_i32(self, field: str = "i32") -> int:
        return self._unpack("<i", field)

    def read_u64(self, field: str = "u64") -> int:
        return self._unpack("<Q", field)

    def read_i64(self, field: str = "i64") -> int:
        return self._unpack("<q", field)

    def read_guid(self, field: str = "guid") -> ChunkGuid:
        return ChunkGuid.from_bytes(self.read_bytes(16, field))

    def read_count(self, item_size: int, field: str = "count") -> int:
        """
        Read a u32 element count and check that ``count * item_size`` bytes remain.

        Stops a corrupt count from driving a huge allocation before the
        per-element reads would fail.
        """
        start = self.offset
        count = self.read_u32(field)
        if count * item_size > self.remaining:
            raise TruncatedManifest(start, count * item_size, self.remaining, field)
        return count

    def read_fstring(self, field: str = "string") -> str:
        """
        Read an FString.

        Positive length: UTF-8 bytes including the NUL terminator.
        Negative length: UTF-16LE code units including the NUL terminator.
        Zero: empty string.
        """
        start = self.offset
        length = self.read_i32(field)
        if length == 0:
            return ""
        if length < 0:
            raw = self.read_bytes(-length * 2, field)
            encoding = "utf-16-le"
            raw = raw[:-2]
        else:
            raw = self.read_bytes(length, field)
            encoding = "utf-8"
            raw = raw[:-1]
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise CorruptManifest(f"undecodable {field}: {e}", start)

    def read_fstring_list(self, field: str = "string list") -> List[str]:
        count = self.read_count(4, field)
        return [self.read_fstring(field) for _ in range(count)]

    def seek(self, offset: int, field: str = "section") -> None:
        """Move to an absolute offset inside the buffer."""
        if offset < 0 or offset > len(self.data):
            raise TruncatedManifest(self.offset, offset - self.offset, max(self.remaining, 0), field)
        self.offset = offset


class BinaryWriter:
    """Little-endian byte builder, the inverse of BinaryReader."""

    def __init__(self):
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def write_bytes(self, data: bytes) -> None:
        self._buffer += data

    def write_u8(self, value: int) -> None:
        self._buffer += struct.pack("<B", value)

    def write_u32(self, value: int) -> None:
        self._buffer += struct.pack("<I", value)

    def write_i32(self, value: int) -> None:
        self._buffer += struct.pack("<i", value)

    def write_u64(self, value: int) -> None:
        self._buffer += struct.pack("<Q", value)

    def write_i64(self, value: int) -> None:
        self._buffer += struct.pack("<q", value)

    def write_guid(self, guid: ChunkGuid) -> None:
        self._buffer += guid.to_bytes()

    def write_fstring(self, value: str) -> None:
        """Write an FString, UTF-8 when ASCII, UTF-16LE otherwise."""
        if not value:
            self.write_i32(0)
            return
        if value.isascii():
            encoded = value.encode("utf-8") + b"\x00"
            self.write_i32(len(encoded))
        else:
            encoded = value.encode("utf-16-le") + b"\x00\x00"
            self.write_i32(-(len(encoded) // 2))
        self._buffer += encoded

    def write_fstring_list(self, values) -> None:
        self.write_u32(len(values))
        for value in values:
            self.write_fstring(value)
