"""Exception hierarchy for the sample ingestion domain."""

from pathlib import Path
from typing import Optional


class IngestError(Exception):
    """Base class for every ingestion failure."""


class WatchSetupError(IngestError):
    """The watch root cannot be monitored."""


class InvalidFileError(IngestError):
    """A file is missing, not a regular file, or empty."""

    def __init__(self, path: Path, size: Optional[int], reason: str):
        self.path = path
        self.size = size
        self.reason = reason
        super().__init__(f"{reason}: {path} (size={size})")


class DecodeError(IngestError):
    """A metadata document is malformed or unreadable."""

    def __init__(self, path: Path, detail: str):
        self.path = path
        super().__init__(f"Failed to decode metadata from {path}: {detail}")


class CopyVerificationError(IngestError):
    """Relocated copy does not match the source byte length."""

    def __init__(self, source: Path, target: Path, source_size: int, target_size: int):
        self.source = source
        self.target = target
        super().__init__(
            f"Copy verification failed for {source} -> {target}: "
            f"size mismatch ({source_size} != {target_size})"
        )


class CatalogError(IngestError):
    """The catalog store rejected an operation."""


class DuplicateFingerprintError(CatalogError):
    """A catalog entry with the same content fingerprint already exists."""

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint
        super().__init__(f"Sample with hash {fingerprint} already exists")
