"""
EGS DL - A Python library for Epic Games Store build manifests

This library parses EGS build manifests (binary and legacy JSON), resolves
chunk URLs on the CDN and builds verifiable download plans: which chunks to
fetch, how to check and decompress them, and where their bytes go.
"""

__version__ = "0.1.0"
__author__ = "egs-dl Contributors"
__license__ = "MIT"

from egs_dl.api import EpicAPI
from egs_dl.codec import ChunkFile, CompressionCodec, decompress
from egs_dl.downloader import ChunkDownloader
from egs_dl.manifest import ManifestParser, encode, parse, validate
from egs_dl.models import (
    BuildManifest, ChunkEntry, ChunkFetchTask, ChunkGuid, ChunkPart, ChunkWrite,
    CompressionMethod, DownloadPlan, FileEntry, FilePlan, HashAlgorithm
)
from egs_dl.planner import DownloadPlanBuilder, build_plan
from egs_dl.resolver import ChunkAddressResolver
from egs_dl.verify import HashVerifier, verify

__all__ = [
    "EpicAPI",
    "ChunkDownloader",
    "ManifestParser",
    "DownloadPlanBuilder",
    "ChunkAddressResolver",
    "HashVerifier",
    "CompressionCodec",
    "ChunkFile",
    "BuildManifest",
    "ChunkEntry",
    "ChunkFetchTask",
    "ChunkGuid",
    "ChunkPart",
    "ChunkWrite",
    "CompressionMethod",
    "DownloadPlan",
    "FileEntry",
    "FilePlan",
    "HashAlgorithm",
    "build_plan",
    "decompress",
    "encode",
    "parse",
    "validate",
    "verify",
]
