from domains.sample_ingest.processors.cleanup import cleanup_committed, cleanup_duplicate, remove_quietly
from librarian.models.schemas import SampleUnit


def test_remove_quietly_missing_file_counts_as_removed(tmp_path):
    assert remove_quietly(tmp_path / "absent.json", "metadata file")


def test_remove_quietly_reports_failure(tmp_path):
    directory = tmp_path / "not-a-file"
    directory.mkdir()

    assert not remove_quietly(directory, "metadata file")
    assert directory.exists()


def test_cleanup_committed_removes_metadata_only(tmp_path):
    wav = tmp_path / "a.wav"
    meta = tmp_path / "a.json"
    wav.write_bytes(b"AAAA")
    meta.write_text("{}")

    assert cleanup_committed(SampleUnit(wav, meta))
    assert wav.exists()
    assert not meta.exists()


def test_cleanup_duplicate_removes_both(tmp_path):
    wav = tmp_path / "a.wav"
    meta = tmp_path / "a.json"
    wav.write_bytes(b"AAAA")
    meta.write_text("{}")

    assert cleanup_duplicate(SampleUnit(wav, meta))
    assert not wav.exists()
    assert not meta.exists()
