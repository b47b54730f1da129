"""
Data models for EGS build manifests, chunks and download plans
Based on the EGS manifest structures (FManifestMeta, FChunkInfo, FFileManifest)
"""

import struct
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple


class CompressionMethod(Enum):
    """How a chunk payload is stored on the CDN."""
    STORED = "stored"
    ZLIB = "zlib"


class HashAlgorithm(Enum):
    """Digest used to verify an uncompressed chunk."""
    SHA1 = "sha1"
    ROLLING = "rolling"


@dataclass(frozen=True, order=True)
class ChunkGuid:
    """
    Chunk identifier made of four little-endian 32-bit words.

    The lowercase hex form (``hex``) is what manifests and logs use;
    ``str()`` gives the uppercase form used in CDN file names.
    """
    a: int
    b: int
    c: int
    d: int

    @classmethod
    def from_hex(cls, value: str) -> "ChunkGuid":
        """Create a ChunkGuid from its 32 character hex form (any case)."""
        value = value.strip().replace("-", "")
        if len(value) != 32:
            raise ValueError(f"Chunk GUID must be 32 hex characters: {value!r}")
        words = [int(value[i:i + 8], 16) for i in range(0, 32, 8)]
        return cls(*words)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ChunkGuid":
        """Create a ChunkGuid from its 16 byte wire form."""
        return cls(*struct.unpack("<4I", data))

    def to_bytes(self) -> bytes:
        """Serialize to the 16 byte wire form."""
        return struct.pack("<4I", self.a, self.b, self.c, self.d)

    @property
    def hex(self) -> str:
        return f"{self.a:08x}{self.b:08x}{self.c:08x}{self.d:08x}"

    def __str__(self) -> str:
        return self.hex.upper()


@dataclass(frozen=True)
class ChunkPart:
    """
    A contiguous slice of a chunk's uncompressed window placed into a file.

    Attributes:
        guid: Chunk the bytes come from
        offset: Offset within the chunk's uncompressed window
        size: Number of bytes
        file_offset: Offset within the output file
    """
    guid: ChunkGuid
    offset: int
    size: int
    file_offset: int = 0

    @property
    def file_end(self) -> int:
        return self.file_offset + self.size


@dataclass(frozen=True)
class FileEntry:
    """
    Represents one output file of a build.

    Attributes:
        path: Relative path (forward slashes)
        size: Total size in bytes (sum of part sizes)
        parts: Chunk parts in file-offset order
        sha_hash: SHA-1 of the complete file
        md5_hash: MD5 of the complete file (feature level dependent)
        sha256_hash: SHA-256 of the complete file (feature level dependent)
        mime_type: MIME type string
        symlink_target: Target path if the file is a symlink
        flags: Read-only / compressed / executable bit flags
        install_tags: Selective install tags
    """
    path: str
    size: int
    parts: Tuple[ChunkPart, ...] = ()
    sha_hash: bytes = b""
    md5_hash: bytes = b""
    sha256_hash: bytes = b""
    mime_type: str = ""
    symlink_target: str = ""
    flags: int = 0
    install_tags: Tuple[str, ...] = ()

    @classmethod
    def from_parts(cls, path: str, parts: List[Tuple[ChunkGuid, int, int]], **kwargs) -> "FileEntry":
        """
        Create a FileEntry from (guid, chunk_offset, size) triples.

        File offsets are assigned contiguously in the given order.
        """
        file_parts = []
        file_offset = 0
        for guid, offset, size in parts:
            file_parts.append(ChunkPart(guid=guid, offset=offset, size=size, file_offset=file_offset))
            file_offset += size
        return cls(path=path, size=file_offset, parts=tuple(file_parts), **kwargs)

    @property
    def chunk_guids(self) -> List[ChunkGuid]:
        """Distinct chunk GUIDs in first-use order."""
        seen: Dict[ChunkGuid, None] = {}
        for part in self.parts:
            seen.setdefault(part.guid, None)
        return list(seen)


@dataclass(frozen=True)
class ChunkEntry:
    """
    Represents one downloadable chunk.

    Attributes:
        guid: Chunk identifier
        rolling_hash: 64-bit rolling hash of the uncompressed data (part of the CDN name)
        sha_hash: SHA-1 of the uncompressed data (empty for legacy JSON manifests)
        group_num: Data group, the CDN sub directory
        window_size: Expected uncompressed size
        file_size: Expected download (compressed) size
        compression: Compression method of the payload
    """
    guid: ChunkGuid
    rolling_hash: int = 0
    sha_hash: bytes = b""
    group_num: int = 0
    window_size: int = 0
    file_size: int = 0
    compression: CompressionMethod = CompressionMethod.ZLIB

    @property
    def hash_algorithm(self) -> HashAlgorithm:
        if self.sha_hash and any(self.sha_hash):
            return HashAlgorithm.SHA1
        return HashAlgorithm.ROLLING

    @property
    def digest(self) -> bytes:
        """Expected digest of the uncompressed data for ``hash_algorithm``."""
        if self.hash_algorithm is HashAlgorithm.SHA1:
            return self.sha_hash
        return struct.pack("<Q", self.rolling_hash)


@dataclass(frozen=True)
class BuildManifest:
    """
    A parsed build manifest.

    Attributes:
        version: Feature level (manifest format version)
        app_id: Legacy numeric app ID
        app_name: App name string
        build_version: Build version string
        build_id: Build ID (data version 1+)
        launch_exe: Launch executable
        launch_command: Launch command line
        prereq_ids: Prerequisite IDs
        prereq_name: Prerequisite display name
        prereq_path: Prerequisite installer path
        prereq_args: Prerequisite installer arguments
        uninstall_action_path: Uninstall action path (data version 2+)
        uninstall_action_args: Uninstall action arguments (data version 2+)
        is_file_data: Whether the build is file data (not chunked)
        files: Files in manifest order
        chunks: Chunks, unique by GUID
        custom_fields: Key/value pairs in manifest order
    """
    version: int
    app_id: int = 0
    app_name: str = ""
    build_version: str = ""
    build_id: str = ""
    launch_exe: str = ""
    launch_command: str = ""
    prereq_ids: Tuple[str, ...] = ()
    prereq_name: str = ""
    prereq_path: str = ""
    prereq_args: str = ""
    uninstall_action_path: str = ""
    uninstall_action_args: str = ""
    is_file_data: bool = False
    files: Tuple[FileEntry, ...] = ()
    chunks: Tuple[ChunkEntry, ...] = ()
    custom_fields: Tuple[Tuple[str, str], ...] = ()
    _chunk_index: Dict[ChunkGuid, ChunkEntry] = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self):
        # Read-only lookup built once; the manifest itself never changes
        object.__setattr__(self, "_chunk_index", {chunk.guid: chunk for chunk in self.chunks})

    def chunk(self, guid: ChunkGuid) -> Optional[ChunkEntry]:
        """Get a chunk by GUID."""
        return self._chunk_index.get(guid)

    def has_chunk(self, guid: ChunkGuid) -> bool:
        return guid in self._chunk_index

    def file(self, path: str) -> Optional[FileEntry]:
        """Get a file by exact path."""
        for entry in self.files:
            if entry.path == path:
                return entry
        return None

    def custom_field(self, key: str) -> Optional[str]:
        """Get a custom field value (last one wins)."""
        value = None
        for k, v in self.custom_fields:
            if k == key:
                value = v
        return value

    def with_custom_fields(self, **fields: str) -> "BuildManifest":
        """Return a copy with the given custom fields set or replaced."""
        merged = dict(self.custom_fields)
        merged.update(fields)
        return replace(self, custom_fields=tuple(merged.items()))

    @property
    def total_size(self) -> int:
        """Installed size of all files."""
        return sum(entry.size for entry in self.files)

    @property
    def total_download_size(self) -> int:
        """Download size of all chunks."""
        return sum(chunk.file_size for chunk in self.chunks)


# ========== Download plan ==========

@dataclass(frozen=True)
class ChunkWrite:
    """
    Destination write instruction for a fetched chunk.

    Copies ``size`` bytes from ``chunk_offset`` of the uncompressed chunk
    to ``file_offset`` of ``path``.
    """
    path: str
    file_offset: int
    chunk_offset: int
    size: int

    @property
    def file_range(self) -> Tuple[int, int]:
        """Half-open destination range [start, end)."""
        return self.file_offset, self.file_offset + self.size


@dataclass(frozen=True)
class ChunkFetchTask:
    """
    A single chunk download with everything needed to check and place it.

    Attributes:
        guid: Chunk identifier
        url: Resolved CDN URL
        compressed_size: Expected download size
        uncompressed_size: Expected size after decompression
        expected_digest: Expected digest of the uncompressed data
        hash_algorithm: Algorithm for expected_digest
        compression: Decompression instruction
        writes: Destination writes, in plan order
    """
    guid: ChunkGuid
    url: str
    compressed_size: int
    uncompressed_size: int
    expected_digest: bytes
    hash_algorithm: HashAlgorithm
    compression: CompressionMethod
    writes: Tuple[ChunkWrite, ...] = ()


@dataclass(frozen=True)
class FilePlan:
    """A selected file and the tasks feeding it, in first-use order."""
    file: FileEntry
    tasks: Tuple[ChunkFetchTask, ...] = ()


@dataclass(frozen=True)
class DownloadPlan:
    """
    Ordered, verifiable fetch plan for a set of files.

    ``tasks`` holds every distinct chunk once, ordered by first use; a chunk
    shared by several files carries one write per use.
    """
    files: Tuple[FilePlan, ...]
    tasks: Tuple[ChunkFetchTask, ...]
    cdn_base: str = ""

    def __iter__(self) -> Iterator[FilePlan]:
        return iter(self.files)

    def task(self, guid: ChunkGuid) -> Optional[ChunkFetchTask]:
        for task in self.tasks:
            if task.guid == guid:
                return task
        return None

    def writes_for(self, path: str) -> List[Tuple[ChunkFetchTask, ChunkWrite]]:
        """All writes targeting ``path`` in file-offset order."""
        result = []
        for task in self.tasks:
            for write in task.writes:
                if write.path == path:
                    result.append((task, write))
        result.sort(key=lambda item: item[1].file_offset)
        return result

    @property
    def download_size(self) -> int:
        return sum(task.compressed_size for task in self.tasks)

    @property
    def total_size(self) -> int:
        return sum(file_plan.file.size for file_plan in self.files)
