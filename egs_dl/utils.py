"""
Utility functions for EGS manifests and CLI output
"""

import os
import sys
from typing import Tuple


# Global symbol variables (set by setup_symbols)
SYMBOL_CHECK = '[OK]'
SYMBOL_ERROR = '[ERROR]'


def detect_unicode_support(force_ascii=False):
    """
    Detect if the terminal supports Unicode output.

    Args:
        force_ascii: If True, force ASCII mode regardless of terminal support

    Returns:
        True if Unicode is supported, False otherwise
    """
    if force_ascii:
        return False

    # Check for environment variable to force ASCII mode
    if os.environ.get('FORCE_ASCII', '').lower() in ('1', 'true', 'yes'):
        return False

    try:
        encoding = sys.stdout.encoding or ''
        if encoding.lower() in ('utf-8', 'utf8'):
            return True

        '✓'.encode(encoding)
        return True
    except (UnicodeEncodeError, AttributeError, LookupError):
        return False


def setup_symbols(force_ascii=False):
    """
    Set up symbol variables based on Unicode support.

    Args:
        force_ascii: If True, force ASCII mode
    """
    global SYMBOL_CHECK, SYMBOL_ERROR

    if detect_unicode_support(force_ascii):
        SYMBOL_CHECK = '✓'
        SYMBOL_ERROR = '✗'
    else:
        SYMBOL_CHECK = '[OK]'
        SYMBOL_ERROR = '[ERROR]'


def blob_to_bytes(blob: str) -> bytes:
    """
    Decode an Epic JSON "blob" string into bytes.

    JSON manifests store binary values as concatenated zero-padded
    three-digit decimal byte values, e.g. "165045004000" -> a5 2d 04 00.

    Args:
        blob: Blob string

    Returns:
        Decoded bytes

    Raises:
        ValueError: If the string is not a valid blob
    """
    if len(blob) % 3:
        raise ValueError(f"Blob length must be a multiple of 3: {blob!r}")
    values = [int(blob[i:i + 3]) for i in range(0, len(blob), 3)]
    if any(value > 255 for value in values):
        raise ValueError(f"Blob byte out of range: {blob!r}")
    return bytes(values)


def blob_to_num(blob: str) -> int:
    """Decode a little-endian numeric blob (see blob_to_bytes)."""
    return int.from_bytes(blob_to_bytes(blob), "little")


def bytes_to_blob(data: bytes) -> str:
    """Encode bytes as an Epic JSON blob string."""
    return "".join(f"{byte:03d}" for byte in data)


def num_to_blob(value: int, size: int = 4) -> str:
    """Encode an unsigned integer as a little-endian blob of ``size`` bytes."""
    return bytes_to_blob(value.to_bytes(size, "little"))


def get_readable_size(size_bytes: int) -> Tuple[float, str]:
    """
    Convert bytes to human-readable size.

    Args:
        size_bytes: Size in bytes

    Returns:
        Tuple of (size value, unit string)
    """
    power = 1024
    n = 0
    labels = {0: "B", 1: "KB", 2: "MB", 3: "GB", 4: "TB"}

    size = float(size_bytes)
    while size > power and n < 4:
        size /= power
        n += 1

    return round(size, 2), labels[n]


def format_size(size_bytes: int) -> str:
    """
    Format bytes as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 GB")
    """
    size, unit = get_readable_size(size_bytes)
    return f"{size} {unit}"


def normalize_path(path: str) -> str:
    """
    Normalize manifest path separators to forward slashes.

    Some manifests use backslashes; plans always use forward slashes.

    Args:
        path: Path to normalize

    Returns:
        Normalized path without a leading separator
    """
    return path.replace("\\", "/").lstrip("/")


def is_glob_pattern(value: str) -> bool:
    """Check whether a selector string contains glob wildcards."""
    return any(char in value for char in "*?[")
