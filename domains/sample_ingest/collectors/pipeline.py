"""
Sample ingestion pipeline.

Long-running collector that consumes directory events one at a time:

    event -> pairing -> dedup gate -> ingestion executor -> cleanup

Each event is handled to completion, including retries and backoff, before
the next one is read. A failure abandons only the unit it belongs to; the
running error count pauses the whole pipeline when failures pile up.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import List, Optional

from loguru import logger

from domains.sample_ingest.errors import IngestError, WatchSetupError
from domains.sample_ingest.processors.cleanup import cleanup_duplicate
from domains.sample_ingest.processors.dedup import DedupGate, DedupVerdict
from domains.sample_ingest.processors.pairing import FileClass, PairingEngine, PairingState
from domains.sample_ingest.processors.pending import PendingLedger, reconcile
from domains.sample_ingest.processors.relocate import IngestionExecutor
from domains.sample_ingest.processors.retry import ErrorState, RetryPolicy
from domains.sample_ingest.watchers.events import DirectoryEventSource, EventKind, FileEvent
from librarian.catalog.store import CatalogStore
from librarian.models.schemas import IngestOutcome, SampleUnit
from librarian.utils.config import Settings
from librarian.utils.helpers import normalise_path, should_exclude_path

ABANDON_ERRORS = (IngestError, OSError, sqlite3.Error)

_PAIRING_OUTCOMES = {
    PairingState.ORPHANED: IngestOutcome.ORPHANED,
    PairingState.WAITING: IngestOutcome.WAITING,
    PairingState.SKIPPED: IngestOutcome.SKIPPED,
}


def ensure_directory(path: Path):
    """
    Create ``path`` if missing.

    Raises:
        WatchSetupError: If it cannot be created or is not a directory
    """
    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WatchSetupError(f"Failed to create directory {path}: {e}") from e
        logger.info(f"Created directory: {path}")
    elif not path.is_dir():
        raise WatchSetupError(f"{path} exists but is not a directory")


class IngestPipeline:
    """Sample ingestion orchestrator."""

    def __init__(
        self,
        settings: Settings,
        catalog: Optional[CatalogStore] = None,
        event_source: Optional[DirectoryEventSource] = None,
    ):
        """
        Initialize pipeline.

        Args:
            settings: Paths, pairing window, retry and backpressure parameters
            catalog: Catalog store; defaults to the configured catalog path
            event_source: Directory event source; defaults to a watchdog source
        """
        self.settings = settings
        self.watch_dir = normalise_path(settings.get_watch_dir())
        self.library_dir = normalise_path(settings.get_library_dir())
        self.catalog = catalog or CatalogStore(settings.get_catalog_path())

        policy = RetryPolicy(
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
        )
        self.pairing = PairingEngine(
            binary_extensions=settings.get_binary_extensions(),
            metadata_extension=settings.get_metadata_extension(),
            poll_interval=settings.pairing_poll_interval,
            max_attempts=settings.pairing_max_attempts,
            policy=policy,
        )
        self.dedup = DedupGate(self.catalog, policy)
        self.ledger = PendingLedger(self.library_dir)
        self.executor = IngestionExecutor(
            library_dir=self.library_dir,
            catalog=self.catalog,
            ledger=self.ledger,
            policy=policy,
            decode_timeout=settings.decode_timeout,
        )
        self.errors = ErrorState(
            pause_threshold=settings.error_pause_threshold,
            pause_seconds=settings.error_pause_seconds,
        )
        self.event_source = event_source or DirectoryEventSource(
            self.watch_dir,
            queue_size=settings.event_queue_size,
            health_interval=settings.watch_health_interval,
        )

        self._stopping = False
        self._wake: Optional[asyncio.Event] = None

    def prepare(self, watch: bool = True):
        """
        Create required directories, initialise the catalog and settle pending commits.

        Raises:
            WatchSetupError: If a required directory cannot be created
        """
        if watch:
            ensure_directory(self.watch_dir)
        ensure_directory(self.library_dir)
        ensure_directory(self.catalog.path.parent)

        self.catalog.init_schema()

        inserted = reconcile(self.ledger, self.catalog)
        if inserted:
            logger.info(f"Reconciled {len(inserted)} interrupted commit(s)")

    def _in_library(self, path: Path) -> bool:
        try:
            path.relative_to(self.library_dir)
            return True
        except ValueError:
            return False

    async def process_unit(self, unit: SampleUnit) -> IngestOutcome:
        """Deduplicate and ingest a paired unit."""
        fingerprint = await self.dedup.fingerprint(unit.binary_path)

        if await self.dedup.check(fingerprint) is DedupVerdict.EXISTS:
            logger.warning(
                f"Sample already exists in library, discarding duplicate {unit.binary_path.name}"
            )
            cleanup_duplicate(unit)
            return IngestOutcome.DUPLICATE

        result = await self.executor.ingest(unit, fingerprint)
        return result.outcome

    async def process_pair(self, binary_path: Path, metadata_path: Path) -> IngestOutcome:
        """Ingest an explicitly named pair without waiting for events."""
        await self.pairing.validate(binary_path)
        await self.pairing.validate(metadata_path)
        unit = SampleUnit(binary_path=binary_path, metadata_path=metadata_path)
        return await self.process_unit(unit)

    async def process_path(self, path: Path) -> IngestOutcome:
        """
        Handle one path named by an event.

        Raises:
            IngestError, OSError, sqlite3.Error: When the unit must be abandoned
        """
        path = normalise_path(path)

        if self.pairing.classify_path(path) is None or should_exclude_path(path):
            return IngestOutcome.SKIPPED
        if self._in_library(path):
            return IngestOutcome.SKIPPED

        result = await self.pairing.pair(path)
        if result.state is not PairingState.PAIRED:
            return _PAIRING_OUTCOMES[result.state]

        return await self.process_unit(result.unit)

    async def _pause(self):
        logger.warning(
            f"Too many errors ({self.errors.count}), pausing for {self.errors.pause_seconds}s..."
        )
        if self._wake is None:
            await asyncio.sleep(self.errors.pause_seconds)
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.errors.pause_seconds)
        except asyncio.TimeoutError:
            # Pause elapsed without a stop request
            pass

    async def dispatch(self, event: FileEvent) -> List[IngestOutcome]:
        """
        Handle an event, recording failures instead of raising them.

        Returns:
            Outcomes of the paths that were handled
        """
        if event.kind is EventKind.ERROR:
            logger.error(f"Watch error: {event.error}")
            return []

        outcomes = []
        for path in event.paths:
            try:
                outcome = await self.process_path(path)
            except ABANDON_ERRORS as e:
                logger.error(
                    f"Abandoned {path} (total errors: {self.errors.count + 1}): "
                    f"{type(e).__name__}: {e}"
                )
                if self.errors.record_failure():
                    await self._pause()
                continue

            self.errors.record_success()
            outcomes.append(outcome)

        return outcomes

    def sweep_paths(self) -> List[Path]:
        """List files already in the watch directory, binaries first."""
        binaries, metadata = [], []
        for path in sorted(self.watch_dir.rglob("*")):
            if self._in_library(path) or should_exclude_path(path) or not path.is_file():
                continue
            file_class = self.pairing.classify_path(path)
            if file_class is FileClass.BINARY:
                binaries.append(path)
            elif file_class is FileClass.METADATA:
                metadata.append(path)
        return binaries + metadata

    async def run(self):
        """Run the pipeline until ``stop`` is called."""
        self.prepare()
        self._stopping = False
        self._wake = asyncio.Event()

        self.event_source.start()
        logger.info(f"Watching: {self.watch_dir}")
        logger.info(f"Library: {self.library_dir}")
        logger.info(f"Catalog: {self.catalog.path}")

        try:
            if self.settings.sweep_on_start:
                existing = self.sweep_paths()
                if existing:
                    logger.info(f"Sweeping {len(existing)} existing file(s)")
                for path in existing:
                    if self._stopping:
                        break
                    await self.dispatch(FileEvent(EventKind.CREATED, (path,)))

            async for event in self.event_source.events():
                if self._stopping:
                    break
                await self.dispatch(event)
        finally:
            self.event_source.close()
            await asyncio.to_thread(self.event_source.stop_observer)

        logger.info("Ingestion pipeline stopped")

    def stop(self):
        """Request shutdown; the event in flight finishes first."""
        logger.info("Stopping ingestion pipeline...")
        self._stopping = True
        if self._wake is not None:
            self._wake.set()
        self.event_source.close()
