"""
Pending commit markers.

A marker is written to ``<library>/.pending/<fingerprint>.json`` before a
binary is relocated and removed once its catalog entry is inserted. Any
marker still present at startup belongs to a commit that was interrupted
between the copy and the insert, and ``reconcile`` settles it.
"""

from pathlib import Path
from typing import Iterator, List

from loguru import logger
from pydantic import ValidationError

from domains.sample_ingest.errors import CatalogError, DuplicateFingerprintError
from domains.sample_ingest.processors.cleanup import remove_quietly
from librarian.catalog.store import CatalogStore
from librarian.models.schemas import CatalogEntry, PendingMarker
from librarian.utils.helpers import hash_file, now_iso

PENDING_DIRNAME = ".pending"


class PendingLedger:
    """Directory of commit markers inside the library root."""

    def __init__(self, library_dir: Path):
        self.directory = Path(library_dir) / PENDING_DIRNAME

    def marker_path(self, fingerprint: str) -> Path:
        return self.directory / f"{fingerprint}.json"

    def write(self, entry: CatalogEntry, source_binary: Path, source_metadata: Path) -> Path:
        """Record the intent to commit ``entry``."""
        marker = PendingMarker(
            entry=entry,
            source_binary=str(source_binary),
            source_metadata=str(source_metadata),
            created_at=now_iso(),
        )
        self.directory.mkdir(parents=True, exist_ok=True)

        path = self.marker_path(entry.file_hash)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(marker.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(path)
        return path

    def clear(self, fingerprint: str) -> None:
        remove_quietly(self.marker_path(fingerprint), "pending marker")

    def markers(self) -> Iterator[tuple[Path, PendingMarker]]:
        """Yield readable markers; unreadable ones are logged and skipped."""
        if not self.directory.is_dir():
            return

        for path in sorted(self.directory.glob("*.json")):
            try:
                marker = PendingMarker.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning(f"Unreadable pending marker {path}: {e}")
                continue
            yield path, marker


def reconcile(ledger: PendingLedger, catalog: CatalogStore) -> List[str]:
    """
    Settle commits interrupted between relocation and catalog insert.

    For each marker:
    - fingerprint already cataloged: drop the marker and any second copy
      of the content at the marker's target
    - target file present with the recorded fingerprint: insert the entry
    - otherwise the relocation never completed: drop the marker, remove any
      partial copy at the target while the source still exists, and leave
      the source for a future pass

    A leftover metadata file is removed once its binary is cataloged and no
    longer sits in the watch directory.

    Returns:
        Fingerprints inserted by this pass
    """
    inserted = []

    for path, marker in ledger.markers():
        entry = marker.entry
        fingerprint = entry.file_hash
        target = Path(entry.file_path)
        existing = catalog.get_by_fingerprint(fingerprint)
        cataloged = existing is not None

        if existing is not None and existing.file_path != str(target):
            if target.is_file() and hash_file(target) == fingerprint:
                remove_quietly(target, "duplicate library copy")

        if not cataloged:
            if target.is_file() and hash_file(target) == fingerprint:
                try:
                    catalog.insert(entry)
                    inserted.append(fingerprint)
                    cataloged = True
                    logger.success(f"Reconciled pending commit: {target}")
                except DuplicateFingerprintError:
                    cataloged = True
                except CatalogError as e:
                    logger.error(f"Cannot reconcile {target}: {e}; marker kept at {path}")
                    continue
            else:
                if target.is_file() and Path(marker.source_binary).exists():
                    # Target was free when the commit began
                    remove_quietly(target, "partial library copy")
                logger.warning(
                    f"Pending commit for {target} never completed; "
                    f"source left at {marker.source_binary}"
                )

        if cataloged and not Path(marker.source_binary).exists():
            remove_quietly(Path(marker.source_metadata), "leftover metadata file")

        ledger.clear(fingerprint)

    return inserted
