"""
Ingestion executor: decode, classify, relocate and record one sample unit.

The binary is moved with a verified copy-then-delete so that a failure at any
point leaves at least one complete copy on disk. The catalog insert happens
only after the copy is verified, and a pending marker covers the window
between the two (see ``pending.reconcile``).
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

from domains.sample_ingest.errors import CopyVerificationError, DecodeError, DuplicateFingerprintError
from domains.sample_ingest.processors.cleanup import cleanup_committed, remove_quietly
from domains.sample_ingest.processors.metadata import Category, SampleMetadata, decode
from domains.sample_ingest.processors.pending import PendingLedger
from domains.sample_ingest.processors.retry import RetryPolicy, retry_async
from librarian.catalog.store import CatalogStore
from librarian.models.schemas import CatalogEntry, IngestOutcome, SampleUnit
from librarian.utils.helpers import sanitize_name, unique_path


@dataclass(frozen=True)
class IngestResult:
    outcome: IngestOutcome
    entry: Optional[CatalogEntry] = None


def derive_target_path(library_dir: Path, category: Category, pack_name: str, filename: str) -> Path:
    """Build ``library/category/pack/filename`` with sanitized components."""
    return library_dir / category.value / sanitize_name(pack_name) / sanitize_name(filename)


def relocate_verified(source: Path, target: Path) -> int:
    """
    Copy ``source`` to ``target``, verify the size, then delete ``source``.

    Args:
        source: File to move
        target: Destination path; overwritten if it exists

    Returns:
        Size of the relocated file in bytes

    Raises:
        CopyVerificationError: If sizes differ; the copy is removed and the
            source left untouched
        OSError: On copy or delete failures
    """
    shutil.copy2(source, target)

    source_size = source.stat().st_size
    target_size = target.stat().st_size

    if source_size != target_size:
        target.unlink(missing_ok=True)
        raise CopyVerificationError(source, target, source_size, target_size)

    source.unlink()
    return target_size


class IngestionExecutor:
    """Turns a deduplicated sample unit into a committed catalog entry."""

    def __init__(
        self,
        library_dir: Path,
        catalog: CatalogStore,
        ledger: PendingLedger,
        policy: RetryPolicy,
        decode_timeout: float = 10.0,
    ):
        self.library_dir = Path(library_dir)
        self.catalog = catalog
        self.ledger = ledger
        self.policy = policy
        self.decode_timeout = decode_timeout

    async def decode(self, metadata_path: Path) -> SampleMetadata:
        """Decode metadata off the event loop, bounded by ``decode_timeout``."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(decode, metadata_path), timeout=self.decode_timeout
            )
        except asyncio.TimeoutError as e:
            raise DecodeError(metadata_path, f"timed out after {self.decode_timeout}s") from e

    def build_entry(
        self,
        metadata: SampleMetadata,
        fingerprint: str,
        target: Path,
        file_size: int,
    ) -> CatalogEntry:
        info = metadata.sample_meta_data
        return CatalogEntry(
            file_path=str(target),
            pack_name=metadata.pack_name,
            pack_uuid=info.pack.uuid,
            filename=target.name,
            file_hash=fingerprint,
            bpm=info.bpm,
            audio_key=info.audio_key,
            chord_type=info.chord_type,
            tags=list(info.tags),
            category=metadata.category.value,
            sample_type=info.sample_type,
            duration=info.duration,
            file_size=file_size,
            provider_name=metadata.provider_name,
            date_downloaded=info.purchased_at,
            source_url=metadata.sample.url,
            preview_url=info.preview_url,
            asset_uuid=info.asset_uuid,
        )

    async def _prepare_target(self, metadata: SampleMetadata, binary_path: Path) -> Path:
        filename = metadata.sample_meta_data.filename or binary_path.name
        target = derive_target_path(
            self.library_dir, metadata.category, metadata.pack_name, filename
        )

        await retry_async(
            lambda: asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True),
            policy=self.policy,
            description=f"Creating {target.parent}",
        )

        free_target = unique_path(target)
        if free_target != target:
            logger.warning(f"{target} already exists; using {free_target.name}")
        return free_target

    async def ingest(self, unit: SampleUnit, fingerprint: str) -> IngestResult:
        """
        Relocate and record ``unit``.

        Args:
            unit: Paired, validated files
            fingerprint: Content fingerprint already checked absent from the catalog

        Returns:
            IngestResult with outcome COMMITTED, or DUPLICATE if another
            writer recorded the same content first

        Raises:
            DecodeError: On malformed metadata (source files untouched)
            CopyVerificationError, OSError: When relocation keeps failing
            CatalogError, sqlite3.Error: When the insert keeps failing; the
                relocated file is then covered by a pending marker
        """
        metadata = await self.decode(unit.metadata_path)
        logger.info(
            f"Decoded {unit.metadata_path.name}: pack='{metadata.pack_name}', "
            f"category={metadata.category.value}"
        )

        target = await self._prepare_target(metadata, unit.binary_path)
        logger.info(f"Target path: {target}")

        source_size = unit.binary_path.stat().st_size
        entry = self.build_entry(metadata, fingerprint, target, source_size)
        self.ledger.write(entry, unit.binary_path, unit.metadata_path)

        try:
            await retry_async(
                lambda: asyncio.to_thread(relocate_verified, unit.binary_path, target),
                policy=self.policy,
                description=f"Relocating {unit.binary_path.name}",
            )
        except Exception:
            if unit.binary_path.exists():
                remove_quietly(target, "partial library copy")
            self.ledger.clear(fingerprint)
            raise

        logger.info(f"Moved {unit.binary_path.name} to {target}")

        try:
            entry_id = await retry_async(
                lambda: asyncio.to_thread(self.catalog.insert, entry),
                policy=self.policy,
                description=f"Catalog insert for {target.name}",
            )
        except DuplicateFingerprintError:
            logger.warning(f"{fingerprint} was cataloged concurrently; discarding {target}")
            remove_quietly(target, "duplicate library copy")
            remove_quietly(unit.metadata_path, "duplicate metadata file")
            self.ledger.clear(fingerprint)
            return IngestResult(IngestOutcome.DUPLICATE)
        except Exception:
            logger.error(
                f"{target} relocated but not cataloged; pending marker "
                f"{self.ledger.marker_path(fingerprint)} kept for reconciliation"
            )
            raise

        self.ledger.clear(fingerprint)
        cleanup_committed(unit)

        committed = entry.model_copy(update={"id": entry_id})
        logger.success(f"Cataloged {committed.filename} (id={entry_id}, {committed.category})")
        return IngestResult(IngestOutcome.COMMITTED, committed)
