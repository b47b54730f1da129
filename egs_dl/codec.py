"""
Chunk decompression and the CDN .chunk container
Based on the EGS chunk header (FChunkHeader)
"""

import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from egs_dl import constants
from egs_dl.binary import BinaryReader, BinaryWriter
from egs_dl.exceptions import (
    DecompressionFailed, InvalidChunkFile, SizeMismatch, TruncatedManifest
)
from egs_dl.models import ChunkGuid, CompressionMethod, HashAlgorithm

logger = logging.getLogger("egs_dl.codec")

_MIN_HEADER_SIZES = {
    1: constants.CHUNK_HEADER_SIZE_V1,
    2: constants.CHUNK_HEADER_SIZE_V2,
}


def inflate(buffer: bytes, max_size: int) -> bytes:
    """
    Inflate a zlib stream, producing at most ``max_size`` bytes.

    Output is capped while decoding, so a small stream that expands far past
    the declared size fails without being decoded in full.

    Raises:
        DecompressionFailed: Malformed, truncated or trailing data
        SizeMismatch: The stream decodes to more than ``max_size`` bytes
            (``actual`` is then ``max_size + 1``, the point decoding stopped)
    """
    decompressor = zlib.decompressobj()
    try:
        data = decompressor.decompress(buffer, max_size + 1)
    except zlib.error as e:
        raise DecompressionFailed(CompressionMethod.ZLIB.value, str(e))
    if len(data) > max_size:
        raise SizeMismatch(max_size, len(data))
    if not decompressor.eof:
        raise DecompressionFailed(CompressionMethod.ZLIB.value, "truncated stream")
    if decompressor.unused_data:
        raise DecompressionFailed(
            CompressionMethod.ZLIB.value,
            f"{len(decompressor.unused_data)} trailing bytes after stream"
        )
    return data


def decompress(buffer: bytes, expected_uncompressed_size: int,
               method: CompressionMethod = CompressionMethod.ZLIB) -> bytes:
    """
    Decode a chunk payload and check its size.

    Args:
        buffer: Payload as downloaded (container header already removed)
        expected_uncompressed_size: Window size declared by the manifest
        method: Compression method of the payload

    Returns:
        Uncompressed data

    Raises:
        DecompressionFailed: Malformed compressed data
        SizeMismatch: Decoded length differs from the expected size
    """
    if method is CompressionMethod.STORED:
        data = bytes(buffer)
    elif method is CompressionMethod.ZLIB:
        data = inflate(buffer, max(expected_uncompressed_size, 0))
    else:
        raise ValueError(f"Unsupported compression method: {method}")

    if len(data) != expected_uncompressed_size:
        raise SizeMismatch(expected_uncompressed_size, len(data))
    return data


def compress(data: bytes, method: CompressionMethod = CompressionMethod.ZLIB) -> bytes:
    """Encode a payload; the inverse of ``decompress``."""
    if method is CompressionMethod.STORED:
        return bytes(data)
    elif method is CompressionMethod.ZLIB:
        return zlib.compress(data)
    raise ValueError(f"Unsupported compression method: {method}")


class CompressionCodec:
    """Decompresses chunk payloads using a fixed method."""

    def __init__(self, method: CompressionMethod = CompressionMethod.ZLIB):
        self.method = method

    def decompress(self, buffer: bytes, expected_uncompressed_size: int) -> bytes:
        return decompress(buffer, expected_uncompressed_size, self.method)

    def compress(self, data: bytes) -> bytes:
        return compress(data, self.method)


@dataclass
class ChunkFile:
    """
    A .chunk file as served by the CDN: header plus (usually zlib) payload.

    Attributes:
        guid: Chunk identifier
        rolling_hash: Rolling hash of the uncompressed data
        compression: Payload compression from the stored_as flags
        data: Payload bytes (still compressed)
        sha_hash: SHA-1 of the uncompressed data (header version 2+)
        hash_type: Bit set of CHUNK_HASH_ROLLING / CHUNK_HASH_SHA1
        uncompressed_size: Window size (header version 3+)
        header_version: Container header version
    """
    guid: ChunkGuid
    rolling_hash: int
    compression: CompressionMethod
    data: bytes
    sha_hash: bytes = b""
    hash_type: int = 0
    uncompressed_size: Optional[int] = None
    header_version: int = constants.CHUNK_HEADER_VERSION

    @staticmethod
    def is_chunk_file(data: bytes) -> bool:
        """Check for the chunk container magic."""
        return len(data) >= 4 and int.from_bytes(data[:4], "little") == constants.CHUNK_MAGIC

    @classmethod
    def from_bytes(cls, data: bytes) -> "ChunkFile":
        """Parse a .chunk container."""
        reader = BinaryReader(data)
        try:
            magic = reader.read_u32("magic")
            if magic != constants.CHUNK_MAGIC:
                raise InvalidChunkFile(f"bad magic 0x{magic:08X}")
            header_version = reader.read_u32("header version")
            header_size = reader.read_u32("header size")
            compressed_size = reader.read_u32("compressed size")
            guid = reader.read_guid()
            hash_value = reader.read_u64("rolling hash")
            stored_as = reader.read_u8("stored as")
            sha_hash = b""
            hash_type = constants.CHUNK_HASH_ROLLING
            uncompressed_size = None
            if header_version >= 2:
                sha_hash = reader.read_bytes(20, "sha hash")
                hash_type = reader.read_u8("hash type")
            if header_version >= 3:
                uncompressed_size = reader.read_u32("uncompressed size")
            if header_size < _MIN_HEADER_SIZES.get(header_version, constants.CHUNK_HEADER_SIZE_V3):
                raise InvalidChunkFile(f"header size {header_size} too small for version {header_version}")
            reader.seek(header_size, "header")
            payload = reader.read_bytes(compressed_size, "payload")
        except TruncatedManifest as e:
            raise InvalidChunkFile(str(e))

        compression = (CompressionMethod.ZLIB if stored_as & constants.CHUNK_STORED_COMPRESSED
                       else CompressionMethod.STORED)
        logger.debug(f"Chunk {guid}: v{header_version}, {compression.value}, {compressed_size:,} bytes")
        return cls(
            guid=guid,
            rolling_hash=hash_value,
            compression=compression,
            data=payload,
            sha_hash=sha_hash,
            hash_type=hash_type,
            uncompressed_size=uncompressed_size,
            header_version=header_version,
        )

    def to_bytes(self) -> bytes:
        """Serialize to the container format (header version 3)."""
        writer = BinaryWriter()
        writer.write_u32(constants.CHUNK_MAGIC)
        writer.write_u32(constants.CHUNK_HEADER_VERSION)
        writer.write_u32(constants.CHUNK_HEADER_SIZE_V3)
        writer.write_u32(len(self.data))
        writer.write_guid(self.guid)
        writer.write_u64(self.rolling_hash)
        writer.write_u8(constants.CHUNK_STORED_COMPRESSED
                        if self.compression is CompressionMethod.ZLIB else 0)
        writer.write_bytes(self.sha_hash.ljust(20, b"\x00")[:20])
        writer.write_u8(self.hash_type)
        writer.write_u32(self.uncompressed_size or 0)
        writer.write_bytes(self.data)
        return writer.getvalue()

    @property
    def hash_algorithm(self) -> HashAlgorithm:
        if self.hash_type & constants.CHUNK_HASH_SHA1 and self.sha_hash:
            return HashAlgorithm.SHA1
        return HashAlgorithm.ROLLING

    def decompress(self, expected_uncompressed_size: Optional[int] = None) -> bytes:
        """Decode the payload, checking against the header size when none is given."""
        if expected_uncompressed_size is None:
            expected_uncompressed_size = self.uncompressed_size
        if expected_uncompressed_size is None:
            raise ValueError("Uncompressed size unknown for header version < 3")
        return decompress(self.data, expected_uncompressed_size, self.compression)
