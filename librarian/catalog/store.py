"""
SQLite catalog store with per-operation connections.

Provides:
- Schema initialisation
- Fingerprint lookups for deduplication
- Insert with duplicate detection
- Path correction and category listings

No connection is held between operations; every call opens, uses and
closes its own connection.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger

from domains.sample_ingest.errors import CatalogError, DuplicateFingerprintError
from librarian.models.schemas import CatalogEntry
from librarian.utils.helpers import now_iso


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS samples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_path TEXT NOT NULL UNIQUE,
        pack_name TEXT NOT NULL,
        pack_uuid TEXT NOT NULL,
        filename TEXT NOT NULL,
        file_hash TEXT NOT NULL UNIQUE,
        bpm INTEGER,
        audio_key TEXT,
        chord_type TEXT,
        tags TEXT,
        mapped_category TEXT NOT NULL,
        sample_type TEXT NOT NULL,
        duration INTEGER NOT NULL,
        file_size INTEGER NOT NULL,
        provider_name TEXT NOT NULL,
        date_downloaded TEXT NOT NULL,
        date_processed TEXT DEFAULT CURRENT_TIMESTAMP,
        source_url TEXT,
        preview_url TEXT,
        asset_uuid TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_file_hash ON samples(file_hash)",
    "CREATE INDEX IF NOT EXISTS idx_pack_name ON samples(pack_name)",
    "CREATE INDEX IF NOT EXISTS idx_category ON samples(mapped_category)",
]

SELECT_COLUMNS = """
    id, file_path, pack_name, pack_uuid, filename, file_hash,
    bpm, audio_key, chord_type, tags, mapped_category,
    sample_type, duration, file_size, provider_name,
    date_downloaded, date_processed, source_url, preview_url, asset_uuid
"""


def _row_to_entry(row: sqlite3.Row) -> CatalogEntry:
    tags = json.loads(row["tags"]) if row["tags"] else []
    return CatalogEntry(
        id=row["id"],
        file_path=row["file_path"],
        pack_name=row["pack_name"],
        pack_uuid=row["pack_uuid"],
        filename=row["filename"],
        file_hash=row["file_hash"],
        bpm=row["bpm"],
        audio_key=row["audio_key"],
        chord_type=row["chord_type"],
        tags=tags,
        category=row["mapped_category"],
        sample_type=row["sample_type"],
        duration=row["duration"],
        file_size=row["file_size"],
        provider_name=row["provider_name"],
        date_downloaded=row["date_downloaded"],
        date_processed=row["date_processed"],
        source_url=row["source_url"],
        preview_url=row["preview_url"],
        asset_uuid=row["asset_uuid"],
    )


class CatalogStore:
    """Single-writer SQLite catalog of ingested samples."""

    def __init__(self, path: Path, timeout: float = 5.0):
        """
        Initialize catalog store.

        Args:
            path: SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.path = Path(path)
        self.timeout = timeout

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a short-lived connection, committed on success."""
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute_write(self, query: str, parameters: tuple = ()) -> int:
        """Execute write query and return the last inserted row id."""
        with self.connection() as conn:
            cursor = conn.execute(query, parameters)
            return cursor.lastrowid

    def execute_read(self, query: str, parameters: tuple = ()) -> List[sqlite3.Row]:
        """Execute read query and return all rows."""
        with self.connection() as conn:
            return conn.execute(query, parameters).fetchall()

    def init_schema(self):
        """Create the samples table and indexes if absent."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)

        logger.info(f"Catalog initialized at: {self.path}")

    def exists_by_fingerprint(self, fingerprint: str) -> bool:
        """Check whether a sample with this content fingerprint is on record."""
        rows = self.execute_read(
            "SELECT 1 FROM samples WHERE file_hash = ? LIMIT 1", (fingerprint,)
        )
        return bool(rows)

    def insert(self, entry: CatalogEntry) -> int:
        """
        Insert a catalog entry.

        Args:
            entry: Entry with resolved library path and fingerprint

        Returns:
            Row id of the new entry

        Raises:
            DuplicateFingerprintError: If the fingerprint is already on record
            CatalogError: If another unique constraint is violated
        """
        params: Dict[str, Any] = {
            "file_path": entry.file_path,
            "pack_name": entry.pack_name,
            "pack_uuid": entry.pack_uuid,
            "filename": entry.filename,
            "file_hash": entry.file_hash,
            "bpm": entry.bpm,
            "audio_key": entry.audio_key,
            "chord_type": entry.chord_type,
            "tags": json.dumps(entry.tags),
            "mapped_category": entry.category,
            "sample_type": entry.sample_type,
            "duration": entry.duration,
            "file_size": entry.file_size,
            "provider_name": entry.provider_name,
            "date_downloaded": entry.date_downloaded,
            "date_processed": now_iso(),
            "source_url": entry.source_url,
            "preview_url": entry.preview_url,
            "asset_uuid": entry.asset_uuid,
        }
        columns = ", ".join(params)
        placeholders = ", ".join(f":{name}" for name in params)

        with self.connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM samples WHERE file_hash = ? LIMIT 1", (entry.file_hash,)
            ).fetchone()
            if exists:
                raise DuplicateFingerprintError(entry.file_hash)

            try:
                cursor = conn.execute(
                    f"INSERT INTO samples ({columns}) VALUES ({placeholders})", params
                )
            except sqlite3.IntegrityError as e:
                if "file_hash" in str(e):
                    raise DuplicateFingerprintError(entry.file_hash) from e
                raise CatalogError(f"Catalog rejected {entry.file_path}: {e}") from e

            return cursor.lastrowid

    def get_by_fingerprint(self, fingerprint: str) -> Optional[CatalogEntry]:
        """Find a single entry by content fingerprint."""
        rows = self.execute_read(
            f"SELECT {SELECT_COLUMNS} FROM samples WHERE file_hash = ?", (fingerprint,)
        )
        return _row_to_entry(rows[0]) if rows else None

    def update_path(self, fingerprint: str, new_path: str):
        """
        Point an existing entry at a new library path.

        Raises:
            CatalogError: If no entry has this fingerprint
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE samples SET file_path = ? WHERE file_hash = ?",
                (new_path, fingerprint),
            )
            if cursor.rowcount == 0:
                raise CatalogError(f"No sample with hash {fingerprint}")

    def list_by_category(self, category: str) -> List[CatalogEntry]:
        """List entries in a category, ordered by pack then filename."""
        rows = self.execute_read(
            f"""
            SELECT {SELECT_COLUMNS} FROM samples
            WHERE mapped_category = ?
            ORDER BY pack_name, filename
            """,
            (category,),
        )
        return [_row_to_entry(row) for row in rows]

    def count(self) -> int:
        """Count catalog entries."""
        rows = self.execute_read("SELECT COUNT(*) AS total FROM samples")
        return rows[0]["total"]
