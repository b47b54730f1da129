"""Tests for the plan executor."""

import dataclasses
import zlib
from unittest.mock import MagicMock

import pytest

from egs_dl import constants
from egs_dl.codec import ChunkFile
from egs_dl.downloader import ChunkDownloader
from egs_dl.exceptions import DownloadError, IntegrityMismatch
from egs_dl.models import CompressionMethod
from egs_dl.planner import build_plan


def _chunk_file(chunk, data: bytes) -> bytes:
    return ChunkFile(
        guid=chunk.guid,
        rolling_hash=chunk.rolling_hash,
        compression=CompressionMethod.ZLIB,
        data=zlib.compress(data),
        sha_hash=chunk.sha_hash,
        hash_type=constants.CHUNK_HASH_SHA1,
        uncompressed_size=len(data),
    ).to_bytes()


@pytest.fixture
def cdn(shared_manifest, shared_chunk_data, cdn_base):
    """Plan for every file plus a mock api serving the matching chunk files."""
    plan = build_plan(shared_manifest, None, cdn_base)
    payloads = dict(zip([chunk.guid for chunk in shared_manifest.chunks], shared_chunk_data.values()))
    served = {
        task.url: _chunk_file(shared_manifest.chunk(task.guid), payloads[task.guid])
        for task in plan.tasks
    }
    api = MagicMock()
    api.get_chunk.side_effect = lambda url: served[url]
    return plan, api, served


def _collect(files):
    def sink(write, data):
        buffer = files.setdefault(write.path, bytearray())
        end = write.file_offset + len(data)
        if len(buffer) < end:
            buffer.extend(bytes(end - len(buffer)))
        buffer[write.file_offset:end] = data
    return sink


def test_execute_assembles_files(cdn, shared_chunk_data):
    plan, api, _served = cdn
    files = {}
    progress = []

    written = ChunkDownloader(api, max_workers=2).execute(
        plan, _collect(files), lambda done, total: progress.append((done, total))
    )

    x, y, z = shared_chunk_data["X"], shared_chunk_data["Y"], shared_chunk_data["Z"]
    assert bytes(files["a.bin"]) == x[:100] + y
    assert bytes(files["b.bin"]) == x[100:] + z[:50]
    assert bytes(files["docs/readme.txt"]) == z[50:]
    assert written == plan.total_size
    assert api.get_chunk.call_count == len(plan.tasks)
    assert progress[-1] == (plan.download_size, plan.download_size)


def test_corrupt_chunk_fails(cdn, shared_manifest):
    plan, api, served = cdn
    task = plan.tasks[1]
    served[task.url] = _chunk_file(shared_manifest.chunk(task.guid), b"?" * task.uncompressed_size)

    with pytest.raises(DownloadError) as exc_info:
        ChunkDownloader(api).execute(plan, lambda write, data: None)
    assert isinstance(exc_info.value.__cause__, IntegrityMismatch)


def test_wrong_chunk_in_container(cdn, shared_manifest, shared_chunk_data):
    plan, api, served = cdn
    first, second = plan.tasks[0], plan.tasks[1]
    served[first.url] = _chunk_file(shared_manifest.chunk(second.guid), shared_chunk_data["Y"])

    with pytest.raises(DownloadError):
        ChunkDownloader(api).fetch_task(first)


def test_raw_stored_payload(three_chunk_manifest, three_chunk_data, cdn_base):
    """Payloads without a container are decoded with the task's compression."""
    plan = build_plan(three_chunk_manifest, None, cdn_base)
    served = {task.url: data for task, data in zip(plan.tasks, three_chunk_data)}
    api = MagicMock()
    api.get_chunk.side_effect = lambda url: served[url]

    files = {}
    ChunkDownloader(api).execute(plan, _collect(files))

    assert bytes(files["Game/Content/data.pak"]) == b"".join(three_chunk_data)


def test_raw_payload_wrong_size(three_chunk_manifest, cdn_base):
    plan = build_plan(three_chunk_manifest, None, cdn_base)
    api = MagicMock()
    api.get_chunk.return_value = b"A" * 99

    with pytest.raises(DownloadError):
        ChunkDownloader(api).fetch_task(plan.tasks[0])


def test_transport_error_propagates(cdn):
    plan, api, _served = cdn
    api.get_chunk.side_effect = DownloadError("connection refused")

    with pytest.raises(DownloadError):
        ChunkDownloader(api).execute(plan, lambda write, data: None)


def test_legacy_rolling_hash_chunk(three_chunk_manifest, three_chunk_data, cdn_base):
    """Chunks without a SHA-1 are checked with the rolling hash."""
    chunks = tuple(dataclasses.replace(chunk, sha_hash=b"") for chunk in three_chunk_manifest.chunks)
    manifest = dataclasses.replace(three_chunk_manifest, chunks=chunks)
    plan = build_plan(manifest, None, cdn_base)
    api = MagicMock()
    api.get_chunk.return_value = three_chunk_data[0]

    assert ChunkDownloader(api).fetch_task(plan.tasks[0]) == three_chunk_data[0]
    with pytest.raises(DownloadError):
        ChunkDownloader(api).fetch_task(plan.tasks[1])
