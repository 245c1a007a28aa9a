"""
Pydantic models for Sample Librarian.

Shared data models across the application.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


# =====================================================
# Catalog Models
# =====================================================

class CatalogEntry(BaseModel):
    """Durable record of one ingested sample."""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    file_path: str
    pack_name: str
    pack_uuid: str = ""
    filename: str
    file_hash: str
    bpm: Optional[int] = None
    audio_key: Optional[str] = None
    chord_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: str
    sample_type: str = ""
    duration: int = 0
    file_size: int = 0
    provider_name: str = ""
    date_downloaded: str = ""
    source_url: Optional[str] = None
    preview_url: Optional[str] = None
    asset_uuid: str = ""
    date_processed: Optional[datetime] = None


class PendingMarker(BaseModel):
    """Commit intent written before a binary is relocated into the library."""
    entry: CatalogEntry
    source_binary: str
    source_metadata: str
    created_at: str


# =====================================================
# Pipeline Models
# =====================================================

@dataclass(frozen=True, slots=True)
class SampleUnit:
    """A binary file and its metadata sibling, both confirmed on disk."""

    binary_path: Path
    metadata_path: Path


class IngestOutcome(str, Enum):
    """Terminal outcome of handling one path."""
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    ORPHANED = "orphaned"
    WAITING = "waiting"
    SKIPPED = "skipped"
