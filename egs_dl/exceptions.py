"""
Exception hierarchy for manifest parsing, plan building and chunk handling

Every error carries the values needed to diagnose a format change or CDN
corruption (offsets, GUIDs, expected vs. actual sizes and digests).
"""

from typing import Any, Optional, Sequence


class EgsError(Exception):
    """Base class for all egs_dl errors."""
    pass


# ========== Manifest errors ==========

class ManifestError(EgsError):
    """Raised when a manifest cannot be turned into a BuildManifest."""
    pass


class UnsupportedVersion(ManifestError):
    """Unknown magic or a feature level outside the supported range."""

    def __init__(self, version: Optional[int] = None, supported: Optional[Sequence[int]] = None,
                 magic: Optional[int] = None):
        self.version = version
        self.supported = supported
        self.magic = magic
        if version is None:
            if magic is None:
                message = "Unrecognized manifest format"
            else:
                message = f"Unrecognized manifest magic 0x{magic:08X}"
        else:
            message = f"Unsupported manifest version {version}"
            if supported:
                message += f" (supported: {min(supported)}-{max(supported)})"
        super().__init__(message)


class TruncatedManifest(ManifestError):
    """A declared length or count runs past the end of the buffer."""

    def __init__(self, offset: int, needed: int, available: int, field: str = ""):
        self.offset = offset
        self.needed = needed
        self.available = available
        self.field = field
        what = f" reading {field}" if field else ""
        super().__init__(
            f"Manifest truncated{what} at offset {offset}: "
            f"needed {needed} bytes, {available} available"
        )


class InconsistentReference(ManifestError):
    """A chunk part points at a GUID that is not in the chunk list."""

    def __init__(self, guid: Any, path: str = "", part_index: Optional[int] = None):
        self.guid = guid
        self.path = path
        self.part_index = part_index
        if path:
            message = f"File {path!r} part {part_index} references unknown chunk {guid}"
        else:
            message = f"Unknown chunk {guid}"
        super().__init__(message)


class InvalidChunkPart(ManifestError):
    """A file's chunk parts are not contiguous or leave their chunk window."""

    def __init__(self, path: str, part_index: Optional[int], reason: str):
        self.path = path
        self.part_index = part_index
        self.reason = reason
        where = f" part {part_index}" if part_index is not None else ""
        super().__init__(f"File {path!r}{where}: {reason}")


class CorruptManifest(ManifestError):
    """Hash mismatch, undecodable data or duplicate entries."""

    def __init__(self, reason: str, offset: Optional[int] = None):
        self.reason = reason
        self.offset = offset
        where = f" at offset {offset}" if offset is not None else ""
        super().__init__(f"Corrupt manifest{where}: {reason}")


# ========== Plan errors ==========

class PlanError(EgsError):
    """Raised when a download plan cannot be built."""
    pass


class FileNotFound(PlanError):
    """The file selector matched nothing (or an explicit path is missing)."""

    def __init__(self, selector: Any, missing: Optional[Sequence[str]] = None):
        self.selector = selector
        self.missing = list(missing or [])
        if self.missing:
            message = f"Files not in manifest: {', '.join(self.missing)}"
        else:
            message = f"No files match selector {selector!r}"
        super().__init__(message)


class InvalidCdnBase(PlanError):
    """The CDN base is not a well formed base URL."""

    def __init__(self, base: Any, reason: str):
        self.base = base
        self.reason = reason
        super().__init__(f"Invalid CDN base {base!r}: {reason}")


# ========== Integrity errors ==========

class IntegrityError(EgsError):
    """Raised when chunk data does not match its expected digest."""
    pass


class IntegrityMismatch(IntegrityError):
    """Computed digest differs from the expected digest."""

    def __init__(self, algorithm: str, expected: str, actual: str, guid: Any = None):
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        self.guid = guid
        chunk = f" for chunk {guid}" if guid is not None else ""
        super().__init__(f"{algorithm} mismatch{chunk}: expected {expected}, got {actual}")


# ========== Codec errors ==========

class CodecError(EgsError):
    """Raised when chunk data cannot be decoded."""
    pass


class DecompressionFailed(CodecError):
    """Compressed data is malformed, truncated or followed by garbage."""

    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"{method} decompression failed: {reason}")


class SizeMismatch(CodecError):
    """Decoded length differs from the manifest's uncompressed size."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Size mismatch: expected {expected:,} bytes, got {actual:,}")


class InvalidChunkFile(CodecError):
    """A downloaded .chunk container has a bad magic or short header."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid chunk file: {reason}")


# ========== Transport errors ==========

class DownloadError(EgsError):
    """Exception raised when download fails."""
    pass
