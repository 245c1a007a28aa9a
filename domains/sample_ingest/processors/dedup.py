"""Content-addressed deduplication gate."""

import asyncio
from enum import Enum
from pathlib import Path

from loguru import logger

from domains.sample_ingest.processors.retry import RetryPolicy, retry_async
from librarian.catalog.store import CatalogStore
from librarian.utils.helpers import hash_file


class DedupVerdict(str, Enum):
    EXISTS = "exists"
    ABSENT = "absent"


class DedupGate:
    """Fingerprints binaries and checks the catalog for an existing entry."""

    def __init__(self, catalog: CatalogStore, policy: RetryPolicy):
        self.catalog = catalog
        self.policy = policy

    async def fingerprint(self, path: Path) -> str:
        """Compute the SHA-256 of ``path``, retrying transient read failures."""
        digest = await retry_async(
            lambda: asyncio.to_thread(hash_file, path),
            policy=self.policy,
            description=f"Hashing {path.name}",
        )
        logger.debug(f"Fingerprint {digest} for {path}")
        return digest

    async def check(self, fingerprint: str) -> DedupVerdict:
        """Report whether ``fingerprint`` is already on record."""
        exists = await retry_async(
            lambda: asyncio.to_thread(self.catalog.exists_by_fingerprint, fingerprint),
            policy=self.policy,
            description="Catalog lookup",
        )
        return DedupVerdict.EXISTS if exists else DedupVerdict.ABSENT
