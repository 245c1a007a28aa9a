import asyncio

import pytest

from domains.sample_ingest.errors import InvalidFileError
from domains.sample_ingest.processors.pairing import FileClass, PairingEngine, PairingState
from domains.sample_ingest.processors.retry import RetryPolicy


@pytest.fixture
def engine() -> PairingEngine:
    return PairingEngine(
        binary_extensions={"wav", "aif"},
        metadata_extension="json",
        poll_interval=0.01,
        max_attempts=3,
        policy=RetryPolicy(attempts=2, base_delay=0.0),
    )


def test_classify_path(engine, tmp_path):
    assert engine.classify_path(tmp_path / "a.wav") is FileClass.BINARY
    assert engine.classify_path(tmp_path / "a.WAV") is FileClass.BINARY
    assert engine.classify_path(tmp_path / "a.aif") is FileClass.BINARY
    assert engine.classify_path(tmp_path / "a.json") is FileClass.METADATA
    assert engine.classify_path(tmp_path / "a.mp3") is None


@pytest.mark.asyncio
async def test_binary_with_metadata_present_is_paired(engine, tmp_path):
    wav = tmp_path / "kick_01.wav"
    meta = tmp_path / "kick_01.json"
    wav.write_bytes(b"AAAA")
    meta.write_text("{}")

    result = await engine.pair(wav)

    assert result.state is PairingState.PAIRED
    assert result.unit.binary_path == wav
    assert result.unit.metadata_path == meta


@pytest.mark.asyncio
async def test_binary_waits_for_late_metadata(tmp_path):
    engine = PairingEngine({"wav"}, "json", poll_interval=0.02, max_attempts=50)
    wav = tmp_path / "snare.wav"
    meta = tmp_path / "snare.json"
    wav.write_bytes(b"BBBB")

    async def late_metadata():
        await asyncio.sleep(0.1)
        meta.write_text("{}")

    writer = asyncio.create_task(late_metadata())
    result = await engine.pair(wav)
    await writer

    assert result.state is PairingState.PAIRED
    assert result.unit.metadata_path == meta


@pytest.mark.asyncio
async def test_binary_without_metadata_is_orphaned_and_untouched(engine, tmp_path):
    wav = tmp_path / "lonely.wav"
    wav.write_bytes(b"CCCC")

    result = await engine.pair(wav)

    assert result.state is PairingState.ORPHANED
    assert result.unit is None
    assert wav.read_bytes() == b"CCCC"


@pytest.mark.asyncio
async def test_metadata_first_waits_for_binary(engine, tmp_path):
    meta = tmp_path / "pad.json"
    meta.write_text("{}")

    result = await engine.pair(meta)

    assert result.state is PairingState.WAITING
    assert meta.exists()


@pytest.mark.asyncio
async def test_metadata_discovers_existing_binary(engine, tmp_path):
    wav = tmp_path / "bass.aif"
    meta = tmp_path / "bass.json"
    wav.write_bytes(b"DDDD")
    meta.write_text("{}")

    result = await engine.pair(meta)

    assert result.state is PairingState.PAIRED
    assert result.unit.binary_path == wav


@pytest.mark.asyncio
async def test_stale_event_is_skipped(engine, tmp_path):
    result = await engine.pair(tmp_path / "gone.wav")

    assert result.state is PairingState.SKIPPED


@pytest.mark.asyncio
async def test_empty_binary_is_rejected(engine, tmp_path):
    wav = tmp_path / "empty.wav"
    wav.write_bytes(b"")
    (tmp_path / "empty.json").write_text("{}")

    with pytest.raises(InvalidFileError) as excinfo:
        await engine.pair(wav)

    assert excinfo.value.path == wav
    assert excinfo.value.size == 0


@pytest.mark.asyncio
async def test_empty_metadata_is_rejected(engine, tmp_path):
    wav = tmp_path / "hat.wav"
    meta = tmp_path / "hat.json"
    wav.write_bytes(b"EEEE")
    meta.write_text("")

    with pytest.raises(InvalidFileError) as excinfo:
        await engine.pair(wav)

    assert excinfo.value.path == meta


@pytest.mark.asyncio
async def test_directory_named_like_a_sample_is_rejected(engine, tmp_path):
    folder = tmp_path / "folder.wav"
    folder.mkdir()

    with pytest.raises(InvalidFileError, match="not a regular file"):
        await engine.validate(folder)


@pytest.mark.asyncio
async def test_pairing_is_idempotent(engine, tmp_path):
    wav = tmp_path / "tom.wav"
    meta = tmp_path / "tom.json"
    wav.write_bytes(b"FFFF")
    meta.write_text("{}")

    first = await engine.pair(wav)
    second = await engine.pair(meta)

    assert first.unit == second.unit


@pytest.mark.asyncio
async def test_binary_pairs_with_uppercase_metadata_extension(engine, tmp_path):
    wav = tmp_path / "kick.wav"
    meta = tmp_path / "kick.JSON"
    wav.write_bytes(b"GGGG")
    meta.write_text("{}")

    result = await engine.pair(wav)

    assert result.state is PairingState.PAIRED
    assert result.unit.metadata_path.samefile(meta)
