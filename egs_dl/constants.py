"""
Constants for Epic Games Store manifests, chunks and CDN access
Based on the EGS launcher manifest layout
"""

# Binary manifest header
MANIFEST_MAGIC = 0x44BEC00C
MANIFEST_HEADER_SIZE = 41
MANIFEST_STORED_COMPRESSED = 0x01
MANIFEST_STORED_ENCRYPTED = 0x02

# Feature levels (manifest versions) the binary and JSON layouts understand
MIN_FEATURE_LEVEL = 0
MAX_FEATURE_LEVEL = 21

# Section data versions written by the encoder
META_DATA_VERSION = 2
CHUNK_LIST_VERSION = 0
FILE_LIST_VERSION = 2
CUSTOM_FIELDS_VERSION = 0

# Chunk part record size (size field + guid + offset + size)
CHUNK_PART_SIZE = 28

# Binary chunk container (.chunk files on the CDN)
CHUNK_MAGIC = 0xB1FE3AA2
CHUNK_HEADER_VERSION = 3
CHUNK_HEADER_SIZE_V1 = 41
CHUNK_HEADER_SIZE_V2 = 62
CHUNK_HEADER_SIZE_V3 = 66
CHUNK_STORED_COMPRESSED = 0x01

# Chunk hash types stored in the container header
CHUNK_HASH_ROLLING = 0x01
CHUNK_HASH_SHA1 = 0x02

# Uncompressed chunk window (JSON manifests do not store it)
DEFAULT_WINDOW_SIZE = 1024 * 1024

# Epic rolling hash polynomial
ROLLING_HASH_POLY = 0xC96C5795D7870F42

# Chunk directory per feature level, highest first
CHUNK_DIRS = [
    (15, "ChunksV4"),
    (6, "ChunksV3"),
    (3, "ChunksV2"),
    (0, "Chunks"),
]

# Custom fields the CDN base can be derived from
FIELD_SOURCE_URL = "SourceURL"
FIELD_BASE_URL = "BaseUrl"
FIELD_BUILD_LABEL = "BuildLabel"
FIELD_CATALOG_ITEM_ID = "CatalogItemId"
FIELD_CATALOG_NAMESPACE = "CatalogNamespace"
FIELD_CATALOG_ASSET_NAME = "CatalogAssetName"

# Default values
DEFAULT_TIMEOUT = 10
DEFAULT_RETRIES = 3
DEFAULT_WORKERS = 4

# Schemes accepted for CDN bases
CDN_SCHEMES = ("http", "https")

# User agent
USER_AGENT = "egs-dl/{version} (Python)"
