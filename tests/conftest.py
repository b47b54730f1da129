"""Shared pytest fixtures for all tests."""

import hashlib
import zlib

import pytest

from egs_dl.models import BuildManifest, ChunkEntry, ChunkGuid, CompressionMethod, FileEntry
from egs_dl.verify import rolling_hash

CDN_BASE = "https://cdn.example.com/Builds/Org/o-abc123/f00dfeed/default"


def make_guid(index: int) -> ChunkGuid:
    return ChunkGuid(0x1000 + index, 0x2000 + index, 0x3000 + index, 0x4000 + index)


def make_chunk(data: bytes, index: int, compression=CompressionMethod.ZLIB) -> ChunkEntry:
    """Chunk entry whose hashes and sizes describe ``data``."""
    stored = data if compression is CompressionMethod.STORED else zlib.compress(data)
    return ChunkEntry(
        guid=make_guid(index),
        rolling_hash=rolling_hash(data),
        sha_hash=hashlib.sha1(data).digest(),
        group_num=index % 100,
        window_size=len(data),
        file_size=len(stored),
        compression=compression,
    )


@pytest.fixture
def cdn_base():
    """CDN base used for plan building."""
    return CDN_BASE


@pytest.fixture
def three_chunk_data():
    """Three distinct 100-byte chunk payloads (A, B, C)."""
    return [b"A" * 100, b"B" * 100, b"C" * 100]


@pytest.fixture
def three_chunk_manifest(three_chunk_data):
    """
    One 300-byte file built from three stored 100-byte chunks.

    Returns:
        BuildManifest with chunks A, B, C in order
    """
    chunks = [make_chunk(data, i, CompressionMethod.STORED) for i, data in enumerate(three_chunk_data)]
    entry = FileEntry.from_parts(
        "Game/Content/data.pak",
        [(chunk.guid, 0, 100) for chunk in chunks],
    )
    return BuildManifest(
        version=18,
        app_name="TestGame",
        build_version="1.0.0",
        files=(entry,),
        chunks=tuple(chunks),
    )


@pytest.fixture
def shared_chunk_data():
    """Payloads for chunks X (200 bytes), Y and Z (100 bytes each)."""
    return {
        "X": bytes(range(200)),
        "Y": b"y" * 100,
        "Z": b"z" * 50 + b"Z" * 50,
    }


@pytest.fixture
def shared_manifest(shared_chunk_data):
    """
    Three files over three zlib chunks, with chunk X shared by two files.

    a.bin = X[0:100] + Y[0:100]
    b.bin = X[100:200] + Z[0:50]
    docs/readme.txt = Z[50:100]
    """
    x = make_chunk(shared_chunk_data["X"], 0)
    y = make_chunk(shared_chunk_data["Y"], 1)
    z = make_chunk(shared_chunk_data["Z"], 2)

    a = FileEntry.from_parts(
        "a.bin", [(x.guid, 0, 100), (y.guid, 0, 100)],
        sha_hash=hashlib.sha1(shared_chunk_data["X"][:100] + shared_chunk_data["Y"]).digest(),
        md5_hash=hashlib.md5(b"a").digest(),
        sha256_hash=hashlib.sha256(b"a").digest(),
        mime_type="application/octet-stream",
        flags=0x4,
        install_tags=("core", "binaries"),
    )
    b = FileEntry.from_parts(
        "b.bin", [(x.guid, 100, 100), (z.guid, 0, 50)],
        sha_hash=hashlib.sha1(b"b").digest(),
    )
    readme = FileEntry.from_parts(
        "docs/readme.txt", [(z.guid, 50, 50)],
        symlink_target="",
        install_tags=("docs",),
    )
    return BuildManifest(
        version=18,
        app_id=0,
        app_name="SharedGame",
        build_version="++Fortnite+Release-1.2-CL-123-Windows",
        build_id="c0ffee-build",
        launch_exe="Game/Binaries/Win64/Game.exe",
        launch_command="-epicportal",
        prereq_ids=("prereq-1", "prereq-2"),
        prereq_name="Runtime",
        prereq_path="Redist/setup.exe",
        prereq_args="/quiet",
        uninstall_action_path="uninstall.exe",
        uninstall_action_args="/s",
        files=(a, b, readme),
        chunks=(x, y, z),
        custom_fields=(
            ("SourceURL", CDN_BASE),
            ("BuildLabel", "Live"),
        ),
    )
