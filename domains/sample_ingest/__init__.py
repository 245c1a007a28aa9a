"""
Sample Ingest Domain

Monitors the drop directory for sample/metadata pairs:
- Pair each binary with its JSON metadata sibling, in either arrival order
- Deduplicate by content fingerprint against the catalog
- Relocate into library/<category>/<pack>/ and record a catalog entry
- Remove consumed source files

Evolved from the file_ingest collector domain into a standalone pipeline.
"""

__all__ = ["collectors", "processors", "watchers"]
