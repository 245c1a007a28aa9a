"""
End-to-end tests of the ingestion pipeline against a real catalog file and
real directories. One test also drives a real watchdog observer.
"""

import asyncio
import hashlib
import os
import threading

import pytest

from domains.sample_ingest.collectors.pipeline import IngestPipeline
from domains.sample_ingest.watchers.events import EventKind, FileEvent
from librarian.models.schemas import CatalogEntry, IngestOutcome


@pytest.fixture
def pipeline(settings, catalog) -> IngestPipeline:
    pipeline = IngestPipeline(settings, catalog=catalog)
    pipeline.prepare()
    return pipeline


def drop_sample(directory, name, content, make_metadata, tags=("kick",), pack_name="My Pack/2024"):
    wav = directory / f"{name}.wav"
    wav.write_bytes(content)
    meta = make_metadata(directory / f"{name}.json", list(tags), pack_name=pack_name, filename=f"{name}.wav")
    return wav, meta


@pytest.mark.asyncio
async def test_sample_is_committed_to_library(pipeline, make_metadata):
    wav, meta = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)

    outcome = await pipeline.process_path(wav)

    target = pipeline.library_dir / "Kick" / "My Pack-2024" / "kick_01.wav"
    assert outcome is IngestOutcome.COMMITTED
    assert target.read_bytes() == b"AAAA"
    assert not wav.exists()
    assert not meta.exists()

    fingerprint = hashlib.sha256(b"AAAA").hexdigest()
    entry = pipeline.catalog.get_by_fingerprint(fingerprint)
    assert entry.file_path == str(target)
    assert entry.category == "Kick"
    assert entry.pack_name == "My Pack/2024"
    assert pipeline.catalog.count() == 1


@pytest.mark.asyncio
async def test_redropped_sample_is_discarded(pipeline, make_metadata):
    wav, _ = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)
    await pipeline.process_path(wav)

    wav, meta = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)
    outcome = await pipeline.process_path(wav)

    assert outcome is IngestOutcome.DUPLICATE
    assert not wav.exists()
    assert not meta.exists()
    assert pipeline.catalog.count() == 1
    assert (pipeline.library_dir / "Kick" / "My Pack-2024" / "kick_01.wav").exists()


@pytest.mark.asyncio
async def test_same_content_under_another_name_is_duplicate(pipeline, make_metadata):
    first, _ = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)
    await pipeline.process_path(first)

    second, meta = drop_sample(pipeline.watch_dir, "renamed", b"AAAA", make_metadata, tags=("snare",))
    outcome = await pipeline.process_path(second)

    assert outcome is IngestOutcome.DUPLICATE
    assert not second.exists()
    assert not meta.exists()
    assert not (pipeline.library_dir / "Snare").exists()


@pytest.mark.asyncio
async def test_metadata_event_pairs_with_present_binary(pipeline, make_metadata):
    wav, meta = drop_sample(pipeline.watch_dir, "pad", b"PADS", make_metadata, tags=("pad",))

    outcome = await pipeline.process_path(meta)

    assert outcome is IngestOutcome.COMMITTED
    assert (pipeline.library_dir / "Pad" / "My Pack-2024" / "pad.wav").exists()


@pytest.mark.asyncio
async def test_metadata_without_binary_waits(pipeline, make_metadata):
    meta = make_metadata(pipeline.watch_dir / "early.json", ["bass"])

    assert await pipeline.process_path(meta) is IngestOutcome.WAITING
    assert meta.exists()


@pytest.mark.asyncio
async def test_orphan_binary_is_left_in_place(pipeline):
    wav = pipeline.watch_dir / "orphan.wav"
    wav.write_bytes(b"ORPH")

    assert await pipeline.process_path(wav) is IngestOutcome.ORPHANED
    assert wav.read_bytes() == b"ORPH"
    assert pipeline.catalog.count() == 0


@pytest.mark.asyncio
async def test_irrelevant_paths_are_skipped(pipeline):
    notes = pipeline.watch_dir / "notes.txt"
    notes.write_text("hello")

    assert await pipeline.process_path(notes) is IngestOutcome.SKIPPED
    assert await pipeline.process_path(pipeline.watch_dir / "gone.wav") is IngestOutcome.SKIPPED
    assert await pipeline.process_path(pipeline.library_dir / "Kick" / "x.wav") is IngestOutcome.SKIPPED


@pytest.mark.asyncio
async def test_malformed_metadata_abandons_unit(pipeline):
    wav = pipeline.watch_dir / "broken.wav"
    meta = pipeline.watch_dir / "broken.json"
    wav.write_bytes(b"BRKN")
    meta.write_text("{definitely not json")

    outcomes = await pipeline.dispatch(FileEvent(EventKind.CREATED, (wav,)))

    assert outcomes == []
    assert pipeline.errors.count == 1
    assert wav.exists()
    assert meta.exists()
    assert pipeline.catalog.count() == 0


@pytest.mark.asyncio
async def test_success_decrements_error_count(pipeline, make_metadata):
    bad = pipeline.watch_dir / "bad.wav"
    bad.write_bytes(b"")
    (pipeline.watch_dir / "bad.json").write_text("{}")
    await pipeline.dispatch(FileEvent(EventKind.CREATED, (bad,)))
    assert pipeline.errors.count == 1

    wav, _ = drop_sample(pipeline.watch_dir, "good", b"GOOD", make_metadata)
    outcomes = await pipeline.dispatch(FileEvent(EventKind.CREATED, (wav,)))

    assert outcomes == [IngestOutcome.COMMITTED]
    assert pipeline.errors.count == 0


@pytest.mark.asyncio
async def test_repeated_failures_pause_pipeline(settings, catalog):
    pipeline = IngestPipeline(settings.model_copy(update={"error_pause_threshold": 3}), catalog=catalog)
    pipeline.prepare()
    pauses = []

    async def fake_pause():
        pauses.append(pipeline.errors.count)

    pipeline._pause = fake_pause

    for n in range(6):
        wav = pipeline.watch_dir / f"bad{n}.wav"
        wav.write_bytes(b"")
        (pipeline.watch_dir / f"bad{n}.json").write_text("{}")
        await pipeline.dispatch(FileEvent(EventKind.CREATED, (wav,)))

    assert pauses == [3, 6]


@pytest.mark.asyncio
async def test_watch_errors_are_logged_not_counted(pipeline):
    outcomes = await pipeline.dispatch(FileEvent.watch_error("inotify overflow"))

    assert outcomes == []
    assert pipeline.errors.count == 0


def test_sweep_lists_binaries_before_metadata(pipeline, make_metadata):
    drop_sample(pipeline.watch_dir, "a", b"AAAA", make_metadata)
    nested = pipeline.watch_dir / "pack"
    nested.mkdir()
    drop_sample(nested, "b", b"BBBB", make_metadata)
    (pipeline.watch_dir / "c.wav.part").write_bytes(b"CC")
    (pipeline.watch_dir / "readme.txt").write_text("x")

    paths = pipeline.sweep_paths()

    assert [p.name for p in paths] == ["a.wav", "b.wav", "a.json", "b.json"]


@pytest.mark.asyncio
async def test_process_pair_ingests_explicit_files(pipeline, make_metadata, tmp_path):
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    wav, meta = drop_sample(elsewhere, "tom", b"TOMS", make_metadata, tags=("toms",))

    outcome = await pipeline.process_pair(wav, meta)

    assert outcome is IngestOutcome.COMMITTED
    assert (pipeline.library_dir / "Tom" / "My Pack-2024" / "tom.wav").exists()


@pytest.mark.asyncio
async def test_run_ingests_files_moved_into_watch_dir(settings, catalog, make_metadata, tmp_path):
    pytest.importorskip("watchdog")

    settings = settings.model_copy(update={"pairing_poll_interval": 0.05, "pairing_max_attempts": 100})
    pipeline = IngestPipeline(settings, catalog=catalog)
    task = asyncio.create_task(pipeline.run())

    for _ in range(100):
        if pipeline.event_source.is_alive():
            break
        await asyncio.sleep(0.05)
    assert pipeline.event_source.is_alive()

    staging = tmp_path / "staging"
    staging.mkdir()
    wav, meta = drop_sample(staging, "kick_01", b"AAAA", make_metadata)
    os.rename(meta, pipeline.watch_dir / meta.name)
    os.rename(wav, pipeline.watch_dir / wav.name)

    fingerprint = hashlib.sha256(b"AAAA").hexdigest()
    for _ in range(200):
        if catalog.exists_by_fingerprint(fingerprint):
            break
        await asyncio.sleep(0.05)

    pipeline.stop()
    await asyncio.wait_for(task, timeout=10)

    assert catalog.exists_by_fingerprint(fingerprint)
    assert (pipeline.library_dir / "Kick" / "My Pack-2024" / "kick_01.wav").read_bytes() == b"AAAA"
    assert not (pipeline.watch_dir / "kick_01.wav").exists()
    assert not pipeline.event_source.is_alive()


@pytest.mark.asyncio
async def test_unrelated_json_next_to_sample_is_not_ingested(pipeline):
    wav = pipeline.watch_dir / "song.wav"
    meta = pipeline.watch_dir / "song.json"
    wav.write_bytes(b"SONG")
    meta.write_text('{"name": "my-project", "version": "1.0"}')

    outcomes = await pipeline.dispatch(FileEvent(EventKind.CREATED, (wav,)))

    assert outcomes == []
    assert pipeline.errors.count == 1
    assert wav.read_bytes() == b"SONG"
    assert meta.exists()
    assert pipeline.catalog.count() == 0
    assert not (pipeline.library_dir / "Unknown").exists()


@pytest.mark.asyncio
async def test_commit_interrupted_mid_copy_is_refiled_under_same_name(pipeline, make_metadata):
    wav, _ = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)
    target = pipeline.library_dir / "Kick" / "My Pack-2024" / "kick_01.wav"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"AA")
    entry = CatalogEntry(
        file_path=str(target),
        pack_name="My Pack/2024",
        filename="kick_01.wav",
        file_hash=hashlib.sha256(b"AAAA").hexdigest(),
        category="Kick",
        file_size=4,
    )
    pipeline.ledger.write(entry, wav, pipeline.watch_dir / "kick_01.json")

    pipeline.prepare()
    outcome = await pipeline.process_path(wav)

    assert outcome is IngestOutcome.COMMITTED
    assert target.read_bytes() == b"AAAA"
    assert sorted(p.name for p in target.parent.iterdir()) == ["kick_01.wav"]
    assert pipeline.catalog.get_by_fingerprint(entry.file_hash).file_path == str(target)


class QueueEventSource:
    """In-memory event source fed directly by the test."""

    def __init__(self):
        self.queue = asyncio.Queue()
        self.observer_stopped_in = None

    def start(self):
        pass

    async def events(self):
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    def close(self):
        self.queue.put_nowait(None)

    def stop_observer(self):
        self.observer_stopped_in = threading.current_thread()


@pytest.mark.asyncio
async def test_run_stops_observer_off_the_event_loop(settings, catalog, make_metadata):
    source = QueueEventSource()
    pipeline = IngestPipeline(settings, catalog=catalog, event_source=source)
    pipeline.prepare()
    task = asyncio.create_task(pipeline.run())

    wav, _ = drop_sample(pipeline.watch_dir, "kick_01", b"AAAA", make_metadata)
    source.queue.put_nowait(FileEvent(EventKind.CREATED, (wav,)))

    fingerprint = hashlib.sha256(b"AAAA").hexdigest()
    for _ in range(100):
        if catalog.exists_by_fingerprint(fingerprint):
            break
        await asyncio.sleep(0.02)

    pipeline.stop()
    await asyncio.wait_for(task, timeout=5)

    assert catalog.exists_by_fingerprint(fingerprint)
    assert source.observer_stopped_in is not None
    assert source.observer_stopped_in is not threading.current_thread()
