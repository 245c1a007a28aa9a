#!/usr/bin/env python3
"""
Sample Librarian - command line entry point.

Watches a drop directory for sample/metadata pairs and files them into a
category-structured library with a SQLite catalog. Also exposes the
maintenance commands used around the pipeline: direct processing of a pair,
metadata inspection, catalog listing, path correction and reconciliation.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from domains.sample_ingest.collectors.pipeline import IngestPipeline
from domains.sample_ingest.errors import CatalogError, DecodeError, IngestError
from domains.sample_ingest.processors.metadata import Category, decode
from domains.sample_ingest.processors.pending import PendingLedger, reconcile
from librarian.catalog.store import CatalogStore
from librarian.utils.config import Settings, get_settings
from librarian.utils.helpers import format_bytes

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: Settings):
    """Route loguru output to stderr and, if configured, a rotating log file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=settings.log_level.upper())

    if settings.log_file:
        logger.add(
            str(settings.log_file.expanduser()),
            format=LOG_FORMAT,
            level=settings.log_level.upper(),
            rotation=settings.log_rotation,
            colorize=False,
        )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        prog="sample-librarian",
        description="Watch for downloaded samples and organise them into a structured library.",
    )
    parser.add_argument("--watch-dir", type=Path, help="Directory to watch for new samples.")
    parser.add_argument("--library-dir", type=Path, help="Sample library base directory.")
    parser.add_argument("--database", type=Path, help="Catalog database file.")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ...).")

    commands = parser.add_subparsers(dest="command")

    commands.add_parser("run", aliases=["watch"], help="Run the ingestion pipeline (default).")

    process = commands.add_parser("process", help="Process a specific sample/metadata pair directly.")
    process.add_argument("binary_file", type=Path, help="Path to the sample file.")
    process.add_argument("metadata_file", type=Path, help="Path to the JSON metadata file.")

    inspect = commands.add_parser("inspect", help="Decode a metadata file and show its category.")
    inspect.add_argument("metadata_file", type=Path, help="Path to the JSON metadata file.")

    listing = commands.add_parser("list", help="List cataloged samples in a category.")
    listing.add_argument("category", help="Category name, e.g. Bass, Lead, 'Drum Loop'.")

    update = commands.add_parser("update-path", help="Point a catalog entry at a moved file.")
    update.add_argument("file_hash", help="Content fingerprint of the sample.")
    update.add_argument("new_path", type=Path, help="New location of the file.")

    commands.add_parser("reconcile", help="Settle commits interrupted before cataloging.")

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Apply CLI overrides on top of environment settings."""
    overrides = {}
    if args.watch_dir:
        overrides["watch_dir"] = args.watch_dir
    if args.library_dir:
        overrides["library_dir"] = args.library_dir
    if args.database:
        overrides["catalog_path"] = args.database
    if args.log_level:
        overrides["log_level"] = args.log_level

    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


async def run_pipeline(settings: Settings) -> int:
    """Run the watcher until SIGINT/SIGTERM."""
    pipeline = IngestPipeline(settings)
    loop = asyncio.get_running_loop()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, pipeline.stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(pipeline.stop))

    logger.info("Sample Librarian starting")
    await pipeline.run()
    return 0


async def process_files(settings: Settings, binary_file: Path, metadata_file: Path) -> int:
    """Ingest one pair without watching."""
    pipeline = IngestPipeline(settings)
    pipeline.prepare(watch=False)

    outcome = await pipeline.process_pair(binary_file.expanduser(), metadata_file.expanduser())
    logger.success(f"{binary_file.name}: {outcome.value}")
    return 0


def inspect_metadata(metadata_file: Path) -> int:
    """Print decoded metadata fields and the mapped category."""
    metadata = decode(metadata_file)
    info = metadata.sample_meta_data

    print(f"Pack:     {metadata.pack_name}")
    print(f"File:     {info.filename or '--'}")
    print(f"BPM:      {info.bpm if info.bpm is not None else '--'}")
    print(f"Key:      {info.audio_key or '--'}")
    print(f"Tags:     {', '.join(info.tags) or '--'}")
    print(f"Category: {metadata.category.value}")
    return 0


def list_category(settings: Settings, name: str) -> int:
    """List cataloged samples of a category grouped by pack."""
    try:
        category = Category.parse(name)
    except ValueError:
        available = ", ".join(c.value for c in Category)
        logger.error(f"Invalid category '{name}'. Available categories: {available}")
        return 1

    catalog = CatalogStore(settings.get_catalog_path())
    catalog.init_schema()
    samples = catalog.list_by_category(category.value)

    if not samples:
        print(f"No samples found in category '{category.value}'")
        return 0

    print(f"Found {len(samples)} samples in {category.value}:")
    current_pack = None
    for sample in samples:
        if sample.pack_name != current_pack:
            current_pack = sample.pack_name
            print(f"\n{current_pack}")

        bpm = sample.bpm if sample.bpm is not None else "--"
        key = sample.audio_key or "--"
        print(f"  {sample.filename} ({bpm}bpm, {key}, {format_bytes(sample.file_size)})")
        print(f"    {sample.file_path}")
        if sample.tags:
            print(f"    tags: {', '.join(sample.tags)}")
    return 0


def update_path(settings: Settings, file_hash: str, new_path: Path) -> int:
    """Correct the library path recorded for a fingerprint."""
    new_path = new_path.expanduser()
    if not new_path.exists():
        logger.error(f"File does not exist at the specified path: {new_path}")
        return 1
    if not new_path.is_file():
        logger.error(f"Path exists but is not a file: {new_path}")
        return 1

    catalog = CatalogStore(settings.get_catalog_path())
    catalog.init_schema()
    catalog.update_path(file_hash, str(new_path.resolve()))

    sample = catalog.get_by_fingerprint(file_hash)
    logger.success(f"Updated path for {sample.filename} ({sample.pack_name}): {sample.file_path}")
    return 0


def reconcile_pending(settings: Settings) -> int:
    """Settle pending commit markers left in the library."""
    catalog = CatalogStore(settings.get_catalog_path())
    catalog.init_schema()

    inserted = reconcile(PendingLedger(settings.get_library_dir()), catalog)
    print(json.dumps({"reconciled": inserted}, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI."""

    args = parse_args(argv)
    settings = build_settings(args)
    configure_logging(settings)

    command = args.command or "run"

    try:
        if command in ("run", "watch"):
            return asyncio.run(run_pipeline(settings))
        if command == "process":
            return asyncio.run(process_files(settings, args.binary_file, args.metadata_file))
        if command == "inspect":
            return inspect_metadata(args.metadata_file)
        if command == "list":
            return list_category(settings, args.category)
        if command == "update-path":
            return update_path(settings, args.file_hash, args.new_path)
        if command == "reconcile":
            return reconcile_pending(settings)

    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except (DecodeError, CatalogError) as e:
        logger.error(str(e))
        return 1
    except (IngestError, OSError) as e:
        logger.error(f"{command} failed: {e}")
        return 1

    logger.error(f"Unknown command: {command}")
    return 2


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
