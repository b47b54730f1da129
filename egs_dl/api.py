"""
EGS CDN client
Based on the EGS launcher asset manifest flow

Fetches manifest and chunk bytes over HTTP. Authentication is not handled
here: pass an access token obtained elsewhere if the CDN needs one.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from egs_dl import __version__, constants
from egs_dl.exceptions import DownloadError, ManifestError
from egs_dl.manifest import ManifestParser
from egs_dl.models import BuildManifest
from egs_dl.resolver import cloud_dir


class EpicAPI:
    """
    Client for the EGS content delivery network.

    Provides methods to:
    - Download raw manifest bytes
    - Download and parse every manifest listed in an asset manifest
    - Download chunk files
    """

    def __init__(self, access_token: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: int = constants.DEFAULT_TIMEOUT,
                 retries: int = constants.DEFAULT_RETRIES,
                 parser: Optional[ManifestParser] = None):
        """
        Initialize the CDN client.

        Args:
            access_token: Optional bearer token added to every request
            session: Requests session to use (a new one if None)
            timeout: Request timeout in seconds
            retries: Attempts per request (at least 1)
            parser: Manifest parser (default layouts if None)
        """
        if retries < 1:
            raise ValueError(f"retries must be at least 1, got {retries}")
        self.logger = logging.getLogger("egs_dl.api")
        self.timeout = timeout
        self.retries = retries
        self.parser = parser or ManifestParser()

        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": constants.USER_AGENT.format(version=__version__)
        })
        if access_token:
            self.session.headers["Authorization"] = f"bearer {access_token}"

    @staticmethod
    def manifest_url(uri: str, query_params: Optional[List[Dict[str, str]]] = None) -> str:
        """
        Build a manifest download URL from an asset manifest entry.

        Args:
            uri: Manifest URI
            query_params: List of {"name": ..., "value": ...} dicts

        Returns:
            URL with the query parameters appended
        """
        if not query_params:
            return uri
        query = urlencode([(param["name"], param["value"]) for param in query_params])
        separator = "&" if "?" in uri else "?"
        return f"{uri}{separator}{query}"

    def _get(self, url: str) -> bytes:
        """GET a URL with retries and return the body; 4xx other than 429 fails at once."""
        last_error: Optional[Exception] = None
        for attempt in range(self.retries):
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                self.logger.debug(f"Response code for {url}: {response.status_code}")
                return response.content
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status is not None and 400 <= status < 500 and status != 429:
                    raise DownloadError(f"Failed to download {url}: {e}")
                last_error = e
                self.logger.warning(f"Request failed (attempt {attempt + 1}/{self.retries}): {e}")
            except requests.RequestException as e:
                last_error = e
                self.logger.warning(f"Request failed (attempt {attempt + 1}/{self.retries}): {e}")
        raise DownloadError(f"Failed to download {url}: {last_error}")

    def get_manifest_bytes(self, url: str, query_params: Optional[List[Dict[str, str]]] = None) -> bytes:
        """
        Download raw manifest bytes.

        Args:
            url: Manifest URI
            query_params: Optional asset manifest query parameters

        Returns:
            Manifest bytes exactly as served
        """
        full_url = self.manifest_url(url, query_params)
        self.logger.info(f"Getting manifest: {url}")
        data = self._get(full_url)
        self.logger.debug(f"Downloaded manifest: {len(data):,} bytes")
        return data

    def get_manifest(self, url: str, query_params: Optional[List[Dict[str, str]]] = None) -> BuildManifest:
        """Download and parse a manifest."""
        return self.parser.parse(self.get_manifest_bytes(url, query_params))

    def get_download_manifests(self, asset_manifest: Dict[str, Any]) -> List[Tuple[BuildManifest, str]]:
        """
        Download every manifest listed in an asset manifest.

        Manifests that fail to download or parse are logged and skipped, so
        one bad mirror does not hide the others. Each manifest is annotated
        with custom fields describing where it came from.

        Args:
            asset_manifest: Asset manifest JSON ({"elements": [{"manifests": [...]}, ...]})

        Returns:
            List of (manifest, cdn_base) tuples
        """
        elements = asset_manifest.get("elements", [])
        base_urls = ",".join(
            cloud_dir(manifest["uri"])
            for element in elements
            for manifest in element.get("manifests", [])
        )

        results = []
        for element in elements:
            for entry in element.get("manifests", []):
                uri = entry["uri"]
                try:
                    data = self.get_manifest_bytes(uri, entry.get("queryParams"))
                    manifest = self.parser.parse(data)
                except (DownloadError, ManifestError) as e:
                    self.logger.error(f"Unable to use manifest {uri}: {e}")
                    continue

                base = cloud_dir(uri)
                fields = {
                    constants.FIELD_BASE_URL: base_urls,
                    constants.FIELD_SOURCE_URL: base,
                    "DownloadedManifestHash": hashlib.sha1(data).hexdigest(),
                }
                optional = {
                    constants.FIELD_CATALOG_ITEM_ID: asset_manifest.get("itemId"),
                    constants.FIELD_BUILD_LABEL: asset_manifest.get("label"),
                    constants.FIELD_CATALOG_NAMESPACE: asset_manifest.get("namespace"),
                    constants.FIELD_CATALOG_ASSET_NAME: asset_manifest.get("appName"),
                }
                fields.update({key: value for key, value in optional.items() if value})
                results.append((manifest.with_custom_fields(**fields), base))

        self.logger.info(f"Got {len(results)} download manifests")
        return results

    def get_chunk(self, url: str) -> bytes:
        """
        Download a chunk file.

        Args:
            url: Chunk URL from a ChunkFetchTask

        Returns:
            Raw chunk file bytes (container header included)
        """
        data = self._get(url)
        self.logger.debug(f"Downloaded chunk {url} ({len(data):,} bytes)")
        return data
