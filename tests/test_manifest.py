"""Tests for manifest parsing, validation and encoding."""

import dataclasses
import hashlib
import json
import struct
import zlib

import pytest

from egs_dl import constants
from egs_dl.exceptions import (
    CorruptManifest, InconsistentReference, InvalidChunkPart, TruncatedManifest, UnsupportedVersion
)
from egs_dl.manifest import ManifestLayout, ManifestParser, encode, parse, validate
from egs_dl.models import BuildManifest, ChunkEntry, ChunkPart, CompressionMethod, FileEntry
from egs_dl.utils import bytes_to_blob, num_to_blob

from conftest import make_chunk, make_guid


def _wrap(body: bytes, version: int = 18) -> bytes:
    """Put an uncompressed manifest header in front of a body."""
    header = struct.pack("<IIII", constants.MANIFEST_MAGIC, constants.MANIFEST_HEADER_SIZE, len(body), len(body))
    header += hashlib.sha1(body).digest() + bytes([0]) + struct.pack("<I", version)
    return header + body


def _body(manifest: BuildManifest) -> bytes:
    return encode(manifest, compress=False)[constants.MANIFEST_HEADER_SIZE:]


@pytest.mark.parametrize("compress", [True, False])
def test_round_trip(shared_manifest, compress):
    """Encoding then parsing gives back an equal manifest."""
    data = encode(shared_manifest, compress=compress)
    assert parse(data) == shared_manifest


def test_parse_is_deterministic(shared_manifest):
    data = encode(shared_manifest)
    assert parse(data) == parse(data)


def test_parsed_fields(shared_manifest):
    manifest = parse(encode(shared_manifest))

    assert manifest.version == 18
    assert manifest.app_name == "SharedGame"
    assert manifest.build_id == "c0ffee-build"
    assert manifest.prereq_ids == ("prereq-1", "prereq-2")
    assert [entry.path for entry in manifest.files] == ["a.bin", "b.bin", "docs/readme.txt"]
    assert manifest.file("a.bin").install_tags == ("core", "binaries")
    assert manifest.file("a.bin").md5_hash == hashlib.md5(b"a").digest()
    assert manifest.file("docs/readme.txt").sha_hash == b""
    assert manifest.custom_field("SourceURL") == shared_manifest.custom_field("SourceURL")
    assert all(chunk.compression is CompressionMethod.ZLIB for chunk in manifest.chunks)


def test_unicode_file_names(shared_manifest):
    entry = dataclasses.replace(shared_manifest.files[2], path="Docs/Lisez-moi é.txt")
    manifest = dataclasses.replace(shared_manifest, files=shared_manifest.files[:2] + (entry,))
    assert parse(encode(manifest)).files[2].path == "Docs/Lisez-moi é.txt"


def test_truncated_body(shared_manifest):
    data = encode(shared_manifest, compress=False)
    with pytest.raises(TruncatedManifest):
        parse(data[:-10])


def test_truncated_header():
    data = struct.pack("<III", constants.MANIFEST_MAGIC, 41, 100)
    with pytest.raises(TruncatedManifest) as exc_info:
        parse(data)
    assert exc_info.value.offset == 12


def test_truncated_section(shared_manifest):
    """A section whose declared size runs past the body is a truncation."""
    body = _body(shared_manifest)
    with pytest.raises(TruncatedManifest):
        parse(_wrap(body[:-3]))


def test_unknown_section_bytes_are_skipped(shared_manifest):
    """Newer writers may append fields to a section; readers skip them."""
    body = _body(shared_manifest)
    meta_size = struct.unpack_from("<I", body)[0]
    extended = struct.pack("<I", meta_size + 4) + body[4:meta_size] + b"\xde\xad\xbe\xef" + body[meta_size:]

    assert parse(_wrap(extended)) == shared_manifest


def test_too_short_for_magic():
    with pytest.raises(TruncatedManifest):
        parse(b"\x0c\xc0")


def test_unknown_magic():
    with pytest.raises(UnsupportedVersion) as exc_info:
        parse(b"\x00\x01\x02\x03" + bytes(60))
    assert exc_info.value.magic == 0x03020100
    assert exc_info.value.version is None


def test_unsupported_version(shared_manifest):
    data = encode(dataclasses.replace(shared_manifest, version=99))
    with pytest.raises(UnsupportedVersion) as exc_info:
        parse(data)
    assert exc_info.value.version == 99


def test_body_hash_mismatch(shared_manifest):
    data = bytearray(encode(shared_manifest, compress=False))
    data[-1] ^= 0xFF
    with pytest.raises(CorruptManifest):
        parse(bytes(data))


def test_corrupt_compressed_body(shared_manifest):
    data = bytearray(encode(shared_manifest))
    for i in range(constants.MANIFEST_HEADER_SIZE + 2, constants.MANIFEST_HEADER_SIZE + 12):
        data[i] ^= 0x5A
    with pytest.raises(CorruptManifest):
        parse(bytes(data))


def test_encrypted_manifest_rejected(shared_manifest):
    data = bytearray(encode(shared_manifest))
    data[36] |= constants.MANIFEST_STORED_ENCRYPTED
    with pytest.raises(CorruptManifest):
        parse(bytes(data))


def test_dangling_chunk_reference(shared_manifest):
    """A part pointing at a GUID missing from the chunk list names the file and part."""
    manifest = dataclasses.replace(shared_manifest, chunks=shared_manifest.chunks[:2])
    with pytest.raises(InconsistentReference) as exc_info:
        parse(encode(manifest))

    assert exc_info.value.guid == shared_manifest.chunks[2].guid
    assert exc_info.value.path == "b.bin"
    assert exc_info.value.part_index == 1


def test_part_outside_chunk_window(shared_manifest):
    y = shared_manifest.chunks[1]
    bad = FileEntry.from_parts("bad.bin", [(y.guid, 60, 50)])
    manifest = dataclasses.replace(shared_manifest, files=shared_manifest.files + (bad,))

    with pytest.raises(InvalidChunkPart) as exc_info:
        parse(encode(manifest))
    assert exc_info.value.path == "bad.bin"
    assert exc_info.value.part_index == 0


def test_validate_gap_between_parts():
    chunk = make_chunk(b"x" * 100, 0)
    entry = FileEntry(
        path="gap.bin",
        size=60,
        parts=(
            ChunkPart(chunk.guid, 0, 30, file_offset=0),
            ChunkPart(chunk.guid, 30, 30, file_offset=40),
        ),
    )
    with pytest.raises(InvalidChunkPart) as exc_info:
        validate(BuildManifest(version=18, files=(entry,), chunks=(chunk,)))
    assert exc_info.value.part_index == 1


def test_validate_size_mismatch():
    chunk = make_chunk(b"x" * 100, 0)
    entry = FileEntry(path="short.bin", size=99, parts=(ChunkPart(chunk.guid, 0, 100),))
    with pytest.raises(InvalidChunkPart) as exc_info:
        validate(BuildManifest(version=18, files=(entry,), chunks=(chunk,)))
    assert exc_info.value.part_index is None


def test_validate_duplicate_chunks():
    chunk = make_chunk(b"x" * 100, 0)
    with pytest.raises(CorruptManifest):
        validate(BuildManifest(version=18, chunks=(chunk, chunk)))


def test_encode_rejects_stored_chunks(three_chunk_manifest):
    """The binary layout has no per-chunk compression column."""
    with pytest.raises(ValueError):
        encode(three_chunk_manifest)


def test_parse_json_manifest():
    guid = make_guid(7)
    key = str(guid)
    sha = hashlib.sha1(b"payload").digest()
    doc = {
        "ManifestFileVersion": num_to_blob(13),
        "bIsFileData": False,
        "AppID": num_to_blob(0),
        "AppNameString": "LegacyGame",
        "BuildVersionString": "1.0.0-CL-42",
        "LaunchExeString": "Game.exe",
        "LaunchCommand": "",
        "PrereqIds": [],
        "FileManifestList": [
            {
                "Filename": "Game.exe",
                "FileHash": bytes_to_blob(sha),
                "bIsUnixExecutable": True,
                "InstallTags": ["core"],
                "FileChunkParts": [
                    {"Guid": key, "Offset": num_to_blob(0), "Size": num_to_blob(100)},
                    {"Guid": key, "Offset": num_to_blob(200), "Size": num_to_blob(50)},
                ],
            }
        ],
        "ChunkHashList": {key: num_to_blob(0x1122334455667788, 8)},
        "ChunkShaList": {key: sha.hex()},
        "DataGroupList": {key: num_to_blob(5, 1)},
        "ChunkFilesizeList": {key: num_to_blob(123456, 8)},
        "CustomFields": {"BuildLabel": "Live"},
    }

    manifest = parse(json.dumps(doc).encode("utf-8"))

    assert manifest.version == 13
    assert manifest.app_name == "LegacyGame"
    chunk = manifest.chunk(guid)
    assert chunk == ChunkEntry(
        guid=guid,
        rolling_hash=0x1122334455667788,
        sha_hash=sha,
        group_num=5,
        window_size=constants.DEFAULT_WINDOW_SIZE,
        file_size=123456,
    )
    entry = manifest.file("Game.exe")
    assert entry.size == 150
    assert entry.flags == 0x4
    assert entry.sha_hash == sha
    assert entry.install_tags == ("core",)
    assert [part.file_offset for part in entry.parts] == [0, 100]
    assert manifest.custom_field("BuildLabel") == "Live"


def test_parse_json_bad_blob():
    doc = {"ManifestFileVersion": "13", "FileManifestList": []}
    with pytest.raises(CorruptManifest):
        parse(json.dumps(doc).encode("utf-8"))


def test_parse_json_part_missing_offset():
    """A chunk part without one of its keys is a corrupt manifest, not a KeyError."""
    key = str(make_guid(7))
    doc = {
        "ManifestFileVersion": num_to_blob(13),
        "FileManifestList": [
            {"Filename": "Game.exe", "FileChunkParts": [{"Guid": key, "Size": num_to_blob(100)}]},
        ],
        "ChunkHashList": {key: num_to_blob(1, 8)},
    }
    with pytest.raises(CorruptManifest) as exc_info:
        parse(json.dumps(doc).encode("utf-8"))
    assert "Offset" in exc_info.value.reason


def test_registered_layout_is_tried_first(shared_manifest):
    class FixedLayout(ManifestLayout):
        name = "fixed"

        def detect(self, data):
            return data[:4] == b"TEST"

        def parse(self, data):
            return shared_manifest

    parser = ManifestParser()
    parser.register(FixedLayout())

    assert parser.parse(b"TEST") is shared_manifest
    assert parser.parse(encode(shared_manifest)) == shared_manifest


def test_compressed_body_larger_than_declared(shared_manifest):
    """The body is inflated no further than the size the header declares."""
    body = _body(shared_manifest)
    payload = zlib.compress(body + bytes(8 * 1024 * 1024), 9)
    header = struct.pack(
        "<IIII", constants.MANIFEST_MAGIC, constants.MANIFEST_HEADER_SIZE, len(body), len(payload)
    )
    header += hashlib.sha1(body).digest() + bytes([constants.MANIFEST_STORED_COMPRESSED])
    header += struct.pack("<I", 18)

    with pytest.raises(CorruptManifest) as exc_info:
        parse(header + payload)
    assert "inflates past" in exc_info.value.reason
