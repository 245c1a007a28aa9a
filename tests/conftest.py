import json
from pathlib import Path

import pytest

from librarian.catalog.store import CatalogStore
from librarian.utils.config import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at throwaway directories with no real waiting."""
    return Settings(
        watch_dir=tmp_path / "watch",
        library_dir=tmp_path / "library",
        catalog_path=tmp_path / "catalog" / "samples.db",
        pairing_poll_interval=0.01,
        pairing_max_attempts=3,
        retry_base_delay=0.0,
        error_pause_seconds=0.0,
        watch_health_interval=0.1,
        sweep_on_start=False,
    )


@pytest.fixture
def catalog(settings) -> CatalogStore:
    store = CatalogStore(settings.get_catalog_path())
    store.init_schema()
    return store


@pytest.fixture
def make_metadata():
    """Return a writer for metadata documents shaped like the real downloads."""

    def _write(path: Path, tags, pack_name="Test Pack", filename=None, **fields) -> Path:
        meta = {
            "pack": {"uuid": "pack-uuid-1", "name": pack_name, "provider_name": "Provider"},
            "tags": list(tags),
            "sample_type": "oneshot",
            "duration": 1200,
            "provider_name": "Provider",
            "purchased_at": "2024-05-01T10:00:00Z",
            "asset_uuid": "asset-1",
        }
        if filename is not None:
            meta["filename"] = filename
        meta.update(fields)

        document = {
            "sample": {"url": "https://example.invalid/sample", "file_size": 4},
            "sample_meta_data": meta,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    return _write
