"""
Build manifest parsing, validation and encoding
Based on the EGS launcher manifest format (FManifestHeader, FManifestMeta,
FChunkDataList, FFileManifestList, FCustomFields)

The layout is pluggable: ManifestParser tries each registered layout's
``detect`` on the leading bytes and hands the buffer to the first match.
Two layouts ship by default, the binary format and the legacy JSON format.
"""

import hashlib
import json
import logging
import zlib
from typing import Dict, List, Optional, Sequence, Tuple

from egs_dl import constants, utils
from egs_dl.binary import BinaryReader, BinaryWriter
from egs_dl.codec import inflate
from egs_dl.exceptions import (
    CodecError, CorruptManifest, InconsistentReference, InvalidChunkPart, SizeMismatch, TruncatedManifest,
    UnsupportedVersion
)
from egs_dl.models import BuildManifest, ChunkEntry, ChunkGuid, ChunkPart, CompressionMethod, FileEntry

logger = logging.getLogger("egs_dl.manifest")

SUPPORTED_VERSIONS = range(constants.MIN_FEATURE_LEVEL, constants.MAX_FEATURE_LEVEL + 1)


def _hash_or_empty(value: bytes) -> bytes:
    """Treat an all-zero hash field as absent."""
    return value if any(value) else b""


def validate(manifest: BuildManifest) -> None:
    """
    Check the structural invariants of a manifest.

    - chunk GUIDs are unique
    - every chunk part references a chunk of the manifest
    - parts are contiguous from file offset 0 and sum to the file size
    - every part stays inside its chunk's uncompressed window

    Raises:
        CorruptManifest: Duplicate chunk GUIDs
        InconsistentReference: Dangling chunk part
        InvalidChunkPart: Contiguity or window violation
    """
    seen = set()
    for chunk in manifest.chunks:
        if chunk.guid in seen:
            raise CorruptManifest(f"duplicate chunk {chunk.guid}")
        seen.add(chunk.guid)

    for entry in manifest.files:
        expected_offset = 0
        for index, part in enumerate(entry.parts):
            chunk = manifest.chunk(part.guid)
            if chunk is None:
                raise InconsistentReference(part.guid, entry.path, index)
            if part.offset < 0 or part.size < 0:
                raise InvalidChunkPart(entry.path, index, f"negative offset or size ({part.offset}, {part.size})")
            if part.file_offset != expected_offset:
                raise InvalidChunkPart(
                    entry.path, index,
                    f"starts at file offset {part.file_offset}, expected {expected_offset}"
                )
            if part.offset + part.size > chunk.window_size:
                raise InvalidChunkPart(
                    entry.path, index,
                    f"range [{part.offset}, {part.offset + part.size}) outside chunk {part.guid} "
                    f"window of {chunk.window_size} bytes"
                )
            expected_offset += part.size
        if expected_offset != entry.size:
            raise InvalidChunkPart(
                entry.path, None,
                f"parts cover {expected_offset} bytes, file size is {entry.size}"
            )


class ManifestLayout:
    """Base class for a versioned manifest wire layout."""

    name = "abstract"
    supported_versions: Sequence[int] = SUPPORTED_VERSIONS

    def detect(self, data: bytes) -> bool:
        raise NotImplementedError

    def parse(self, data: bytes) -> BuildManifest:
        raise NotImplementedError

    def check_version(self, version: int) -> None:
        if version not in self.supported_versions:
            raise UnsupportedVersion(version, self.supported_versions)


class BinaryManifestLayout(ManifestLayout):
    """The binary manifest format served by the EGS CDN."""

    name = "binary"

    def detect(self, data: bytes) -> bool:
        return len(data) >= 4 and int.from_bytes(data[:4], "little") == constants.MANIFEST_MAGIC

    def parse(self, data: bytes) -> BuildManifest:
        body, header_version = self._read_header(BinaryReader(data))
        reader = BinaryReader(body)

        meta = self._read_meta(reader)
        self.check_version(meta["version"])
        chunks = self._read_chunks(reader)
        files = self._read_files(reader)
        custom_fields: Tuple[Tuple[str, str], ...] = ()
        if reader.remaining:
            custom_fields = self._read_custom_fields(reader)
        if reader.remaining:
            logger.warning(f"{reader.remaining} unread bytes at end of manifest body")

        logger.debug(f"Parsed binary manifest v{header_version}: "
                     f"{len(files)} files, {len(chunks)} chunks, {len(custom_fields)} custom fields")
        return BuildManifest(files=tuple(files), chunks=tuple(chunks),
                             custom_fields=custom_fields, **meta)

    # ========== Header ==========

    def _read_header(self, reader: BinaryReader) -> Tuple[bytes, int]:
        reader.read_u32("magic")
        header_size = reader.read_u32("header size")
        size_uncompressed = reader.read_u32("uncompressed size")
        size_compressed = reader.read_u32("compressed size")
        sha_hash = reader.read_bytes(20, "header hash")
        stored_as = reader.read_u8("stored as")
        version = reader.read_u32("header version")
        self.check_version(version)
        logger.debug(f"Manifest header: size={header_size}, version={version}, stored_as={stored_as}, "
                     f"uncompressed={size_uncompressed:,}, compressed={size_compressed:,}")

        if header_size < reader.offset:
            raise CorruptManifest(f"header size {header_size} smaller than the header fields", 4)
        if stored_as & constants.MANIFEST_STORED_ENCRYPTED:
            raise CorruptManifest("encrypted manifests are not supported")

        reader.seek(header_size, "header")
        if stored_as & constants.MANIFEST_STORED_COMPRESSED:
            payload = reader.read_bytes(size_compressed, "compressed body")
            try:
                body = inflate(payload, size_uncompressed)
            except SizeMismatch:
                raise CorruptManifest(
                    f"body inflates past the declared {size_uncompressed:,} bytes", header_size
                )
            except CodecError as e:
                raise CorruptManifest(f"body decompression failed: {e}", header_size)
        else:
            body = reader.read_bytes(size_uncompressed, "body")

        if len(body) != size_uncompressed:
            raise CorruptManifest(
                f"body is {len(body):,} bytes, header declares {size_uncompressed:,}", header_size
            )
        actual = hashlib.sha1(body).digest()
        if actual != sha_hash:
            raise CorruptManifest(f"body SHA-1 {actual.hex()} does not match header {sha_hash.hex()}")
        return body, version

    # ========== Sections ==========

    @staticmethod
    def _begin_section(reader: BinaryReader, name: str) -> Tuple[int, int, int]:
        start = reader.offset
        size = reader.read_u32(f"{name} size")
        if size < 5:
            raise CorruptManifest(f"{name} section size {size} too small", start)
        if size - 4 > reader.remaining:
            raise TruncatedManifest(start, size, reader.remaining + 4, name)
        version = reader.read_u8(f"{name} version")
        return start, size, version

    @staticmethod
    def _end_section(reader: BinaryReader, start: int, size: int, name: str) -> None:
        end = start + size
        if reader.offset > end:
            raise CorruptManifest(f"{name} section overruns its declared size of {size} bytes", start)
        if reader.offset < end:
            logger.debug(f"Skipping {end - reader.offset} unknown bytes in {name} section")
        reader.seek(end, name)

    def _read_meta(self, reader: BinaryReader) -> Dict:
        start, size, data_version = self._begin_section(reader, "meta")
        meta = {
            "version": reader.read_u32("feature level"),
            "is_file_data": reader.read_u8("is file data") != 0,
            "app_id": reader.read_u32("app id"),
            "app_name": reader.read_fstring("app name"),
            "build_version": reader.read_fstring("build version"),
            "launch_exe": reader.read_fstring("launch exe"),
            "launch_command": reader.read_fstring("launch command"),
            "prereq_ids": tuple(reader.read_fstring_list("prereq ids")),
            "prereq_name": reader.read_fstring("prereq name"),
            "prereq_path": reader.read_fstring("prereq path"),
            "prereq_args": reader.read_fstring("prereq args"),
        }
        if data_version >= 1:
            meta["build_id"] = reader.read_fstring("build id")
        if data_version >= 2:
            meta["uninstall_action_path"] = reader.read_fstring("uninstall action path")
            meta["uninstall_action_args"] = reader.read_fstring("uninstall action args")
        self._end_section(reader, start, size, "meta")
        logger.debug(f"Meta: {meta['app_name']} {meta['build_version']} (feature level {meta['version']})")
        return meta

    def _read_chunks(self, reader: BinaryReader) -> List[ChunkEntry]:
        start, size, _version = self._begin_section(reader, "chunk list")
        # guid + hash + sha + group + window + file size
        count = reader.read_count(16 + 8 + 20 + 1 + 4 + 8, "chunk count")
        logger.debug(f"Reading {count} chunks")

        guids = [reader.read_guid("chunk guid") for _ in range(count)]
        hashes = [reader.read_u64("chunk hash") for _ in range(count)]
        shas = [_hash_or_empty(reader.read_bytes(20, "chunk sha")) for _ in range(count)]
        groups = [reader.read_u8("chunk group") for _ in range(count)]
        windows = [reader.read_u32("chunk window size") for _ in range(count)]
        file_sizes = [reader.read_i64("chunk file size") for _ in range(count)]
        self._end_section(reader, start, size, "chunk list")

        chunks = []
        for i in range(count):
            if file_sizes[i] < 0:
                raise CorruptManifest(f"chunk {guids[i]} has negative file size {file_sizes[i]}")
            chunks.append(ChunkEntry(
                guid=guids[i],
                rolling_hash=hashes[i],
                sha_hash=shas[i],
                group_num=groups[i],
                window_size=windows[i],
                file_size=file_sizes[i],
                compression=CompressionMethod.ZLIB,
            ))
        return chunks

    def _read_files(self, reader: BinaryReader) -> List[FileEntry]:
        start, size, fm_version = self._begin_section(reader, "file list")
        # the smallest possible file is an empty name, symlink, hash, flags, tags and parts
        count = reader.read_count(4 + 4 + 20 + 1 + 4 + 4, "file count")
        logger.debug(f"Reading {count} files (file list version {fm_version})")

        names = [reader.read_fstring("file name") for _ in range(count)]
        symlinks = [reader.read_fstring("symlink target") for _ in range(count)]
        hashes = [_hash_or_empty(reader.read_bytes(20, "file hash")) for _ in range(count)]
        flags = [reader.read_u8("file flags") for _ in range(count)]
        tags = [tuple(reader.read_fstring_list("install tags")) for _ in range(count)]
        parts = [self._read_parts(reader, names[i]) for i in range(count)]

        md5s = [b""] * count
        mime_types = [""] * count
        sha256s = [b""] * count
        if fm_version >= 1:
            for i in range(count):
                if reader.read_u32("md5 flag"):
                    md5s[i] = reader.read_bytes(16, "file md5")
            mime_types = [reader.read_fstring("mime type") for _ in range(count)]
        if fm_version >= 2:
            sha256s = [_hash_or_empty(reader.read_bytes(32, "file sha256")) for _ in range(count)]
        self._end_section(reader, start, size, "file list")

        files = []
        for i in range(count):
            file_parts = parts[i]
            files.append(FileEntry(
                path=names[i],
                size=sum(part.size for part in file_parts),
                parts=file_parts,
                sha_hash=hashes[i],
                md5_hash=md5s[i],
                sha256_hash=sha256s[i],
                mime_type=mime_types[i],
                symlink_target=symlinks[i],
                flags=flags[i],
                install_tags=tags[i],
            ))
        return files

    @staticmethod
    def _read_parts(reader: BinaryReader, path: str) -> Tuple[ChunkPart, ...]:
        count = reader.read_count(constants.CHUNK_PART_SIZE, "chunk part count")
        parts = []
        file_offset = 0
        for index in range(count):
            part_start = reader.offset
            part_size = reader.read_u32("chunk part size")
            if part_size < constants.CHUNK_PART_SIZE:
                raise CorruptManifest(f"file {path!r} part {index} has record size {part_size}", part_start)
            guid = reader.read_guid("chunk part guid")
            offset = reader.read_u32("chunk part offset")
            size = reader.read_u32("chunk part size")
            reader.seek(part_start + part_size, "chunk part")
            parts.append(ChunkPart(guid=guid, offset=offset, size=size, file_offset=file_offset))
            file_offset += size
        return tuple(parts)

    def _read_custom_fields(self, reader: BinaryReader) -> Tuple[Tuple[str, str], ...]:
        start, size, _version = self._begin_section(reader, "custom fields")
        count = reader.read_count(8, "custom field count")
        keys = [reader.read_fstring("custom field key") for _ in range(count)]
        values = [reader.read_fstring("custom field value") for _ in range(count)]
        self._end_section(reader, start, size, "custom fields")
        return tuple(zip(keys, values))


class JsonManifestLayout(ManifestLayout):
    """
    Legacy JSON manifests.

    Numbers and hashes are Epic "blob" strings; chunk window sizes are not
    stored and default to DEFAULT_WINDOW_SIZE.
    """

    name = "json"

    def detect(self, data: bytes) -> bool:
        return bytes(data[:64]).lstrip()[:1] == b"{"

    def parse(self, data: bytes) -> BuildManifest:
        try:
            doc = json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptManifest(f"invalid JSON: {e}")
        if not isinstance(doc, dict):
            raise CorruptManifest("JSON manifest is not an object")

        try:
            version = utils.blob_to_num(doc.get("ManifestFileVersion", "000"))
            self.check_version(version)
            chunks = self._chunks(doc)
            files = [self._file(item) for item in doc.get("FileManifestList", [])]
            manifest = BuildManifest(
                version=version,
                is_file_data=bool(doc.get("bIsFileData", False)),
                app_id=utils.blob_to_num(doc.get("AppID", "000")),
                app_name=doc.get("AppNameString", ""),
                build_version=doc.get("BuildVersionString", ""),
                launch_exe=doc.get("LaunchExeString", ""),
                launch_command=doc.get("LaunchCommand", ""),
                prereq_ids=tuple(doc.get("PrereqIds") or ()),
                prereq_name=doc.get("PrereqName", ""),
                prereq_path=doc.get("PrereqPath", ""),
                prereq_args=doc.get("PrereqArgs", ""),
                uninstall_action_path=doc.get("UninstallActionPath") or "",
                uninstall_action_args=doc.get("UninstallActionArgs") or "",
                files=tuple(files),
                chunks=tuple(chunks),
                custom_fields=tuple((doc.get("CustomFields") or {}).items()),
            )
        except (ValueError, TypeError, AttributeError, LookupError) as e:
            raise CorruptManifest(f"invalid JSON manifest field: {e}")

        logger.debug(f"Parsed JSON manifest v{version}: {len(files)} files, {len(chunks)} chunks")
        return manifest

    @staticmethod
    def _chunks(doc: Dict) -> List[ChunkEntry]:
        sha_list = doc.get("ChunkShaList") or {}
        groups = doc.get("DataGroupList", {})
        file_sizes = doc.get("ChunkFilesizeList", {})
        chunks = []
        for guid_hex, hash_blob in doc.get("ChunkHashList", {}).items():
            chunks.append(ChunkEntry(
                guid=ChunkGuid.from_hex(guid_hex),
                rolling_hash=utils.blob_to_num(hash_blob),
                sha_hash=bytes.fromhex(sha_list[guid_hex]) if guid_hex in sha_list else b"",
                group_num=utils.blob_to_num(groups.get(guid_hex, "000")),
                window_size=constants.DEFAULT_WINDOW_SIZE,
                file_size=utils.blob_to_num(file_sizes.get(guid_hex, "000")),
                compression=CompressionMethod.ZLIB,
            ))
        return chunks

    @staticmethod
    def _file(item: Dict) -> FileEntry:
        flags = 0
        if item.get("bIsReadOnly"):
            flags |= 0x1
        if item.get("bIsCompressed"):
            flags |= 0x2
        if item.get("bIsUnixExecutable"):
            flags |= 0x4

        parts = [
            (ChunkGuid.from_hex(part["Guid"]), utils.blob_to_num(part["Offset"]), utils.blob_to_num(part["Size"]))
            for part in item.get("FileChunkParts", [])
        ]
        return FileEntry.from_parts(
            item.get("Filename", ""),
            parts,
            sha_hash=_hash_or_empty(utils.blob_to_bytes(item.get("FileHash", ""))),
            symlink_target=item.get("SymlinkTarget", ""),
            flags=flags,
            install_tags=tuple(item.get("InstallTags", ())),
        )


class ManifestParser:
    """
    Parses manifest bytes with the first layout that recognises them.

    Parsing is pure: the same bytes always give an equal BuildManifest, and
    no partially parsed manifest is ever returned.
    """

    def __init__(self, layouts: Optional[Sequence[ManifestLayout]] = None):
        if layouts is None:
            layouts = [BinaryManifestLayout(), JsonManifestLayout()]
        self.layouts: List[ManifestLayout] = list(layouts)

    def register(self, layout: ManifestLayout) -> None:
        """Add a layout; it is tried before the existing ones."""
        self.layouts.insert(0, layout)

    def parse(self, data: bytes) -> BuildManifest:
        """
        Parse a manifest.

        Args:
            data: Raw manifest bytes as downloaded

        Returns:
            Validated BuildManifest

        Raises:
            ManifestError: UnsupportedVersion, TruncatedManifest,
                InconsistentReference, InvalidChunkPart or CorruptManifest
        """
        for layout in self.layouts:
            if layout.detect(data):
                logger.debug(f"Parsing {len(data):,} byte manifest with {layout.name} layout")
                manifest = layout.parse(data)
                validate(manifest)
                return manifest

        if len(data) < 4:
            raise TruncatedManifest(0, 4, len(data), "magic")
        raise UnsupportedVersion(magic=int.from_bytes(data[:4], "little"))


_default_parser = ManifestParser()


def parse(data: bytes) -> BuildManifest:
    """Parse manifest bytes with the default layouts."""
    return _default_parser.parse(data)


# ========== Encoding ==========

def _section(writer: BinaryWriter, version: int, body: BinaryWriter) -> None:
    writer.write_u32(len(body) + 5)
    writer.write_u8(version)
    writer.write_bytes(body.getvalue())


def _fixed(value: bytes, size: int, what: str) -> bytes:
    if not value:
        return b"\x00" * size
    if len(value) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(value)}")
    return value


def encode(manifest: BuildManifest, compress: bool = True) -> bytes:
    """
    Serialize a manifest in the binary layout.

    All optional sections are written (meta data version 2, file list
    version 2), so ``parse(encode(m)) == m``.

    Args:
        manifest: Manifest to serialize
        compress: Whether to zlib-compress the body

    Returns:
        Manifest bytes

    Raises:
        ValueError: If a field cannot be expressed in the binary layout
    """
    meta = BinaryWriter()
    meta.write_u32(manifest.version)
    meta.write_u8(1 if manifest.is_file_data else 0)
    meta.write_u32(manifest.app_id)
    meta.write_fstring(manifest.app_name)
    meta.write_fstring(manifest.build_version)
    meta.write_fstring(manifest.launch_exe)
    meta.write_fstring(manifest.launch_command)
    meta.write_fstring_list(manifest.prereq_ids)
    meta.write_fstring(manifest.prereq_name)
    meta.write_fstring(manifest.prereq_path)
    meta.write_fstring(manifest.prereq_args)
    meta.write_fstring(manifest.build_id)
    meta.write_fstring(manifest.uninstall_action_path)
    meta.write_fstring(manifest.uninstall_action_args)

    chunks = BinaryWriter()
    chunks.write_u32(len(manifest.chunks))
    for chunk in manifest.chunks:
        if chunk.compression is not CompressionMethod.ZLIB:
            raise ValueError(f"Chunk {chunk.guid}: binary manifests only describe zlib chunks")
        chunks.write_guid(chunk.guid)
    for chunk in manifest.chunks:
        chunks.write_u64(chunk.rolling_hash)
    for chunk in manifest.chunks:
        chunks.write_bytes(_fixed(chunk.sha_hash, 20, "chunk SHA-1"))
    for chunk in manifest.chunks:
        chunks.write_u8(chunk.group_num)
    for chunk in manifest.chunks:
        chunks.write_u32(chunk.window_size)
    for chunk in manifest.chunks:
        chunks.write_i64(chunk.file_size)

    files = BinaryWriter()
    files.write_u32(len(manifest.files))
    for entry in manifest.files:
        files.write_fstring(entry.path)
    for entry in manifest.files:
        files.write_fstring(entry.symlink_target)
    for entry in manifest.files:
        files.write_bytes(_fixed(entry.sha_hash, 20, "file SHA-1"))
    for entry in manifest.files:
        files.write_u8(entry.flags)
    for entry in manifest.files:
        files.write_fstring_list(entry.install_tags)
    for entry in manifest.files:
        files.write_u32(len(entry.parts))
        for part in entry.parts:
            files.write_u32(constants.CHUNK_PART_SIZE)
            files.write_guid(part.guid)
            files.write_u32(part.offset)
            files.write_u32(part.size)
    for entry in manifest.files:
        if entry.md5_hash:
            files.write_u32(1)
            files.write_bytes(_fixed(entry.md5_hash, 16, "file MD5"))
        else:
            files.write_u32(0)
    for entry in manifest.files:
        files.write_fstring(entry.mime_type)
    for entry in manifest.files:
        files.write_bytes(_fixed(entry.sha256_hash, 32, "file SHA-256"))

    custom = BinaryWriter()
    custom.write_u32(len(manifest.custom_fields))
    for key, _value in manifest.custom_fields:
        custom.write_fstring(key)
    for _key, value in manifest.custom_fields:
        custom.write_fstring(value)

    body = BinaryWriter()
    _section(body, constants.META_DATA_VERSION, meta)
    _section(body, constants.CHUNK_LIST_VERSION, chunks)
    _section(body, constants.FILE_LIST_VERSION, files)
    _section(body, constants.CUSTOM_FIELDS_VERSION, custom)
    data = body.getvalue()

    payload = zlib.compress(data) if compress else data
    header = BinaryWriter()
    header.write_u32(constants.MANIFEST_MAGIC)
    header.write_u32(constants.MANIFEST_HEADER_SIZE)
    header.write_u32(len(data))
    header.write_u32(len(payload))
    header.write_bytes(hashlib.sha1(data).digest())
    header.write_u8(constants.MANIFEST_STORED_COMPRESSED if compress else 0)
    header.write_u32(manifest.version)
    return header.getvalue() + payload
