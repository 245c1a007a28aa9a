#!/usr/bin/env python3
"""
Initialize the SQLite catalog schema.

Creates the samples table and its indexes at the configured catalog path
(or the path given on the command line) and reports what exists afterwards.

Usage:
    python scripts/init_catalog.py [CATALOG_PATH]
"""

import sqlite3
import sys
from pathlib import Path

from loguru import logger

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from librarian.catalog.store import CatalogStore
from librarian.utils.config import get_settings


def verify_schema(store: CatalogStore):
    """Verify schema setup by listing tables and indexes."""
    rows = store.execute_read(
        "SELECT type, name FROM sqlite_master WHERE type IN ('table', 'index') ORDER BY type, name"
    )

    logger.info("=== Tables and indexes ===")
    for row in rows:
        logger.info(f"  {row['type']}: {row['name']}")

    logger.info(f"  Samples on record: {store.count()}")


def main(argv: list[str] = None) -> int:
    """Main initialization function."""
    argv = sys.argv[1:] if argv is None else argv

    catalog_path = Path(argv[0]).expanduser() if argv else get_settings().get_catalog_path()
    logger.info(f"Initializing catalog at {catalog_path}...")

    store = CatalogStore(catalog_path)

    try:
        store.init_schema()
        verify_schema(store)
    except (OSError, sqlite3.Error) as e:
        logger.error(f"Catalog initialization failed: {e}")
        return 1

    logger.success("Catalog initialization completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
