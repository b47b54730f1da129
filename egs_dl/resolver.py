"""
Chunk URL resolution
Based on the EGS launcher chunk download links

Chunks live under the build's cloud directory:
    {base}/{ChunksVn}/{group:02d}/{rolling_hash:016X}_{GUID}.chunk
"""

from typing import List
from urllib.parse import urlsplit, urlunsplit

from egs_dl import constants
from egs_dl.exceptions import InconsistentReference, InvalidCdnBase
from egs_dl.models import BuildManifest, ChunkEntry, ChunkGuid


def chunk_dir(version: int) -> str:
    """
    Get the chunk directory for a manifest feature level.

    Args:
        version: Manifest feature level

    Returns:
        Directory name (e.g., "ChunksV4")
    """
    for min_version, name in constants.CHUNK_DIRS:
        if version >= min_version:
            return name
    return constants.CHUNK_DIRS[-1][1]


def chunk_path(chunk: ChunkEntry, version: int) -> str:
    """Relative CDN path of a chunk."""
    return f"{chunk_dir(version)}/{chunk.group_num:02d}/{chunk.rolling_hash:016X}_{chunk.guid}.chunk"


def validate_cdn_base(cdn_base: str) -> str:
    """
    Check and normalise a CDN base URL.

    Args:
        cdn_base: Base URL such as https://cdn.example.com/Builds/Org/abc/default

    Returns:
        The base without a trailing slash

    Raises:
        InvalidCdnBase: If the base is not an absolute http(s) URL without query or fragment
    """
    if not isinstance(cdn_base, str) or not cdn_base.strip():
        raise InvalidCdnBase(cdn_base, "empty")
    if cdn_base != cdn_base.strip() or any(c.isspace() for c in cdn_base):
        raise InvalidCdnBase(cdn_base, "contains whitespace")
    try:
        parts = urlsplit(cdn_base)
    except ValueError as e:
        raise InvalidCdnBase(cdn_base, str(e))
    if parts.scheme.lower() not in constants.CDN_SCHEMES:
        raise InvalidCdnBase(cdn_base, f"scheme must be one of {', '.join(constants.CDN_SCHEMES)}")
    if not parts.hostname:
        raise InvalidCdnBase(cdn_base, "missing host")
    if parts.query or parts.fragment:
        raise InvalidCdnBase(cdn_base, "must not contain a query or fragment")
    return urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip("/"), "", ""))


def cloud_dir(manifest_url: str) -> str:
    """
    Get the cloud directory (CDN base) of a manifest URL.

    Drops the manifest file name, the query and the fragment.
    """
    parts = urlsplit(manifest_url)
    path = parts.path.rsplit("/", 1)[0] if "/" in parts.path else ""
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def cdn_bases(manifest: BuildManifest) -> List[str]:
    """
    Candidate CDN bases recorded in the manifest's custom fields.

    SourceURL comes first, then every entry of the comma separated BaseUrl.
    """
    bases = []
    source = manifest.custom_field(constants.FIELD_SOURCE_URL)
    if source:
        bases.append(source)
    base_urls = manifest.custom_field(constants.FIELD_BASE_URL)
    if base_urls:
        for url in base_urls.split(","):
            url = url.strip()
            if url and url not in bases:
                bases.append(url)
    return bases


class ChunkAddressResolver:
    """
    Maps chunk GUIDs to CDN URLs for one manifest.

    Holds a read-only reference to the manifest and nothing else, so one
    resolver can be shared between threads.
    """

    def __init__(self, manifest: BuildManifest):
        self.manifest = manifest

    def resolve(self, chunk_guid: ChunkGuid, cdn_base: str) -> str:
        """
        Get the URL of a chunk.

        Args:
            chunk_guid: Chunk to resolve
            cdn_base: CDN base URL (cloud directory)

        Returns:
            Absolute chunk URL

        Raises:
            InvalidCdnBase: Malformed base
            InconsistentReference: GUID not in the manifest
        """
        base = validate_cdn_base(cdn_base)
        chunk = self.manifest.chunk(chunk_guid)
        if chunk is None:
            raise InconsistentReference(chunk_guid)
        return f"{base}/{chunk_path(chunk, self.manifest.version)}"
