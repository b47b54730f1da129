"""
Chunk integrity verification
Based on the EGS rolling hash (FRollingHash)
"""

import hashlib
import hmac
import struct
from typing import Any, List, Optional, Union

from egs_dl import constants
from egs_dl.exceptions import IntegrityMismatch
from egs_dl.models import ChunkEntry, HashAlgorithm

_MASK64 = 0xFFFFFFFFFFFFFFFF


def _build_hash_table() -> List[int]:
    table = []
    for i in range(256):
        value = i
        for _ in range(8):
            if value & 1:
                value = (value >> 1) ^ constants.ROLLING_HASH_POLY
            else:
                value >>= 1
        table.append(value)
    return table


_HASH_TABLE = _build_hash_table()


def rolling_hash(data: bytes) -> int:
    """
    Compute the 64-bit rolling hash Epic uses for chunk names.

    Args:
        data: Uncompressed chunk data

    Returns:
        Hash as an unsigned 64-bit integer
    """
    value = 0
    table = _HASH_TABLE
    for byte in data:
        value = (((value << 1) | (value >> 63)) & _MASK64) ^ table[byte]
    return value


def rolling_digest(data: bytes) -> bytes:
    """Rolling hash packed as 8 little-endian bytes."""
    return struct.pack("<Q", rolling_hash(data))


def sha1_digest(data: bytes) -> bytes:
    return hashlib.sha1(data).digest()


def compute_digest(data: bytes, algorithm: HashAlgorithm) -> bytes:
    """Compute the digest of ``data`` for the given algorithm."""
    if algorithm is HashAlgorithm.SHA1:
        return sha1_digest(data)
    elif algorithm is HashAlgorithm.ROLLING:
        return rolling_digest(data)
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def _to_bytes(digest: Union[bytes, str]) -> bytes:
    if isinstance(digest, str):
        return bytes.fromhex(digest)
    return bytes(digest)


class HashVerifier:
    """
    Verifies uncompressed chunk buffers against expected digests.

    The algorithm is fixed per verifier (chosen from the manifest), not per call.
    """

    def __init__(self, algorithm: HashAlgorithm = HashAlgorithm.SHA1):
        self.algorithm = algorithm

    @classmethod
    def for_chunk(cls, chunk: ChunkEntry) -> "HashVerifier":
        return cls(chunk.hash_algorithm)

    def digest(self, buffer: bytes) -> bytes:
        return compute_digest(buffer, self.algorithm)

    def verify(self, buffer: bytes, expected_digest: Union[bytes, str], guid: Optional[Any] = None) -> None:
        """
        Check ``buffer`` against ``expected_digest``.

        Args:
            buffer: Uncompressed chunk data
            expected_digest: Expected digest as bytes or hex string
            guid: Chunk GUID, only used in the error

        Raises:
            IntegrityMismatch: If the digests differ
        """
        expected = _to_bytes(expected_digest)
        actual = self.digest(buffer)
        if not hmac.compare_digest(actual, expected):
            raise IntegrityMismatch(self.algorithm.value, expected.hex(), actual.hex(), guid)


def verify(buffer: bytes, expected_digest: Union[bytes, str],
           algorithm: HashAlgorithm = HashAlgorithm.SHA1) -> None:
    """Module level shortcut for ``HashVerifier(algorithm).verify``."""
    HashVerifier(algorithm).verify(buffer, expected_digest)


def verify_chunk(buffer: bytes, chunk: ChunkEntry) -> None:
    """Verify an uncompressed buffer against a manifest chunk entry."""
    HashVerifier.for_chunk(chunk).verify(buffer, chunk.digest, chunk.guid)
