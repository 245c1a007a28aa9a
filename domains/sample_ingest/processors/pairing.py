"""
Pairing of binary files with their metadata siblings.

A sample arrives as two files sharing a base name, e.g. ``kick_01.wav`` and
``kick_01.json``, in either order. Either file's event can discover the
pair: a binary waits a bounded window for its metadata, a metadata file
pairs immediately if the binary is already present and otherwise leaves the
pairing to the binary's own event. The filesystem is re-checked on every
event, so duplicated or stale events are harmless.
"""

import asyncio
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from domains.sample_ingest.errors import InvalidFileError
from domains.sample_ingest.processors.retry import RetryPolicy, retry_async
from librarian.models.schemas import SampleUnit
from librarian.utils.helpers import get_file_extension


class FileClass(str, Enum):
    BINARY = "binary"
    METADATA = "metadata"


class PairingState(str, Enum):
    PAIRED = "paired"
    ORPHANED = "orphaned"
    WAITING = "waiting"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PairingResult:
    """Outcome of pairing one path."""

    state: PairingState
    path: Path
    unit: Optional[SampleUnit] = None


class PairingEngine:
    """Correlates binary and metadata files by base name."""

    def __init__(
        self,
        binary_extensions: Iterable[str],
        metadata_extension: str,
        poll_interval: float = 0.5,
        max_attempts: int = 10,
        policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize pairing engine.

        Args:
            binary_extensions: Extensions (without dot) of binary files
            metadata_extension: Extension (without dot) of metadata files
            poll_interval: Seconds between sibling checks
            max_attempts: Sibling checks before a binary is orphaned
            policy: Retry policy for stat probes
        """
        self.binary_extensions = sorted({ext.lower() for ext in binary_extensions})
        self.metadata_extension = metadata_extension.lower()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.policy = policy or RetryPolicy()

    def classify_path(self, path: Path) -> Optional[FileClass]:
        """Return the file class of ``path`` by extension, or None if irrelevant."""
        extension = get_file_extension(path)
        if extension in self.binary_extensions:
            return FileClass.BINARY
        if extension == self.metadata_extension:
            return FileClass.METADATA
        return None

    def _metadata_candidates(self, binary_path: Path) -> list[Path]:
        return [
            binary_path.with_suffix(f".{self.metadata_extension}"),
            binary_path.with_suffix(f".{self.metadata_extension.upper()}"),
        ]

    def _binary_candidates(self, metadata_path: Path) -> list[Path]:
        candidates = []
        for extension in self.binary_extensions:
            candidates.append(metadata_path.with_suffix(f".{extension}"))
            candidates.append(metadata_path.with_suffix(f".{extension.upper()}"))
        return candidates

    async def probe(self, path: Path) -> Optional[os.stat_result]:
        """Stat ``path``; None if it does not exist. Other I/O errors are retried."""

        async def _stat() -> Optional[os.stat_result]:
            try:
                return path.stat()
            except FileNotFoundError:
                return None

        return await retry_async(
            _stat, policy=self.policy, description=f"Probing {path.name}"
        )

    async def validate(self, path: Path) -> int:
        """
        Ensure ``path`` is an existing, non-empty regular file.

        Returns:
            File size in bytes

        Raises:
            InvalidFileError: If any condition fails
        """
        info = await self.probe(path)
        if info is None:
            raise InvalidFileError(path, None, "File no longer exists")
        if not stat.S_ISREG(info.st_mode):
            raise InvalidFileError(path, info.st_size, "Path is not a regular file")
        if info.st_size == 0:
            raise InvalidFileError(path, 0, "File is empty")
        return info.st_size

    async def _paired(self, binary_path: Path, metadata_path: Path) -> PairingResult:
        await self.validate(binary_path)
        await self.validate(metadata_path)
        logger.info(f"Paired {binary_path.name} + {metadata_path.name}")
        return PairingResult(
            PairingState.PAIRED,
            binary_path,
            SampleUnit(binary_path=binary_path, metadata_path=metadata_path),
        )

    async def pair(self, path: Path) -> PairingResult:
        """
        Decide whether ``path`` completes a sample unit.

        Args:
            path: Binary or metadata file named by a filesystem event

        Returns:
            PairingResult; ``unit`` is set only when state is PAIRED

        Raises:
            InvalidFileError: If either file of the pair is unusable
            ValueError: If ``path`` is neither a binary nor a metadata file
        """
        file_class = self.classify_path(path)
        if file_class is None:
            raise ValueError(f"Not a binary or metadata file: {path}")

        if await self.probe(path) is None:
            logger.debug(f"Skipping stale event for {path}")
            return PairingResult(PairingState.SKIPPED, path)

        if file_class is FileClass.BINARY:
            return await self._pair_from_binary(path)
        return await self._pair_from_metadata(path)

    async def _find_metadata(self, binary_path: Path) -> Optional[Path]:
        for candidate in self._metadata_candidates(binary_path):
            if await self.probe(candidate) is not None:
                return candidate
        return None

    async def _pair_from_binary(self, binary_path: Path) -> PairingResult:
        await self.validate(binary_path)

        for _ in range(self.max_attempts):
            if await self._find_metadata(binary_path) is not None:
                break
            await asyncio.sleep(self.poll_interval)

        metadata_path = await self._find_metadata(binary_path)
        if metadata_path is None:
            if await self.probe(binary_path) is None:
                return PairingResult(PairingState.SKIPPED, binary_path)
            logger.warning(f"No metadata file found for {binary_path}; leaving it in place")
            return PairingResult(PairingState.ORPHANED, binary_path)

        return await self._paired(binary_path, metadata_path)

    async def _pair_from_metadata(self, metadata_path: Path) -> PairingResult:
        await self.validate(metadata_path)

        for candidate in self._binary_candidates(metadata_path):
            if await self.probe(candidate) is not None:
                return await self._paired(candidate, metadata_path)

        logger.info(f"Metadata file arrived before its binary: {metadata_path}")
        return PairingResult(PairingState.WAITING, metadata_path)
