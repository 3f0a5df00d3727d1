"""Tests for discovery and the full-rebuild Indexer."""
import base64
import os
import threading
import unicodedata

import pytest
from PIL import Image

from photoindex.db.sqlite_client import SQLiteDB
from photoindex.errors import ErrorKind, ImageIndexError
from photoindex.pipeline.ingest_engine import Indexer, discover_files, read_dimensions
from photoindex.pipeline.rebuild_lock import RebuildLock, lock_path_for

from conftest import make_image

ALL_IMAGES = {"bare.jpg", "beach.jpg", "forest.png", "portrait.jpg", "mountain.jpg", "broken.jpg"}


def _names(paths):
    return {p.name for p in paths}


def test_discover_applies_extension_allow_list(image_tree):
    found = discover_files([image_tree])
    assert _names(found) == ALL_IMAGES


def test_discover_without_recursion(image_tree):
    found = discover_files([image_tree], recurse=False)
    assert _names(found) == ALL_IMAGES - {"mountain.jpg", "broken.jpg"}


def test_discover_with_path_filters(image_tree):
    assert _names(discover_files([image_tree], path_filters=["nested"])) == {"mountain.jpg", "broken.jpg"}
    assert _names(discover_files([image_tree], path_filters=["*/b*.jpg"])) == {"bare.jpg", "beach.jpg", "broken.jpg"}


def test_discover_deduplicates_overlapping_roots(image_tree):
    found = discover_files([image_tree, image_tree / "nested", image_tree])
    assert len(found) == len(ALL_IMAGES)


def test_discover_skips_missing_root(tmp_path, image_tree):
    found = discover_files([tmp_path / "missing", image_tree])
    assert _names(found) == ALL_IMAGES


def test_discover_decomposed_file_name(tmp_path):
    decomposed = unicodedata.normalize("NFD", "café.jpg")
    make_image(tmp_path / decomposed)
    make_image(tmp_path / "plain.jpg")

    found = discover_files([tmp_path, tmp_path])
    assert len(found) == 2
    assert all(p.exists() for p in found)
    assert {unicodedata.normalize("NFC", p.name) for p in found} == {"café.jpg", "plain.jpg"}


def test_read_dimensions(image_tree, tmp_path):
    assert read_dimensions(image_tree / "beach.jpg") == (64, 48)
    junk = tmp_path / "junk.jpg"
    junk.write_bytes(b"not really a jpeg")
    assert read_dimensions(junk) == (None, None)


def test_rebuild_indexes_every_image(settings):
    result = Indexer(settings).rebuild()

    assert result.discovered == len(ALL_IMAGES)
    assert result.record_count == len(ALL_IMAGES)
    assert result.failures == []
    assert not result.cancelled

    with SQLiteDB(settings.database_path, read_only=True) as db:
        assert db.count_images() == len(ALL_IMAGES)
        meta = db.get_all_meta()
        assert meta["build_state"] == "complete"
        assert meta["record_count"] == str(len(ALL_IMAGES))
        assert meta["fingerprint"]
        row = db.conn.execute(
            "SELECT width, height, picture_type, overall_mood FROM Images WHERE file_name = 'beach.jpg'"
        ).fetchone()
        assert tuple(row) == (64, 48, "landscape", "calm")


def test_rebuild_leaves_no_wal_or_lock(settings):
    Indexer(settings).rebuild()
    db_path = settings.database_path
    assert db_path.exists()
    assert not db_path.with_name(db_path.name + "-wal").exists()
    assert not lock_path_for(db_path).exists()


def test_rebuild_is_idempotent(settings):
    indexer = Indexer(settings)
    first = indexer.rebuild()
    with SQLiteDB(settings.database_path, read_only=True) as db:
        first_paths = db.get_image_paths()

    second = indexer.rebuild()
    with SQLiteDB(settings.database_path, read_only=True) as db:
        second_paths = db.get_image_paths()

    assert first.record_count == second.record_count
    assert first_paths == second_paths


def test_rebuild_drops_deleted_files(settings, image_tree):
    indexer = Indexer(settings)
    indexer.rebuild()
    (image_tree / "bare.jpg").unlink()

    result = indexer.rebuild()
    with SQLiteDB(settings.database_path, read_only=True) as db:
        assert result.record_count == len(ALL_IMAGES) - 1
        assert not any(p.endswith("bare.jpg") for p in db.get_image_paths())


def test_malformed_sidecar_does_not_fail_the_file(settings):
    Indexer(settings).rebuild()

    with SQLiteDB(settings.database_path, read_only=True) as db:
        row = db.conn.execute(
            "SELECT i.short_description, o.label FROM Images i "
            "JOIN ImageObjects o ON o.image_id = i.id WHERE i.file_name = 'broken.jpg'"
        ).fetchone()
    assert tuple(row) == ("", "car")


def test_unreadable_file_is_recorded_and_skipped(settings, monkeypatch):
    indexer = Indexer(settings)
    original = indexer.sidecar_reader.read

    def flaky_read(image_path, language=None):
        if str(image_path).endswith("portrait.jpg"):
            raise OSError("disk hiccup")
        return original(image_path, language)

    monkeypatch.setattr(indexer.sidecar_reader, "read", flaky_read)
    result = indexer.rebuild()

    assert result.record_count == len(ALL_IMAGES) - 1
    assert result.failure_count == 1
    assert result.failures[0][0].endswith("portrait.jpg")
    with SQLiteDB(settings.database_path, read_only=True) as db:
        assert db.get_meta("failure_count") == "1"


def test_language_fallback_is_stored(make_settings):
    settings = make_settings(language="Dutch")
    Indexer(settings).rebuild()

    with SQLiteDB(settings.database_path, read_only=True) as db:
        beach = db.conn.execute(
            "SELECT short_description, default_short_description, default_language "
            "FROM Images WHERE file_name = 'beach.jpg'"
        ).fetchone()
        mountain = db.conn.execute(
            "SELECT short_description, description_language FROM Images WHERE file_name = 'mountain.jpg'"
        ).fetchone()

    assert beach["short_description"] == ""
    assert beach["default_short_description"] == "Sunset at the beach"
    assert beach["default_language"] == "English"
    assert tuple(mountain) == ("Berg bij zonsopgang", "Dutch")


def test_embed_images_respects_size_ceiling(make_settings, image_tree):
    small = (image_tree / "bare.jpg").stat().st_size
    settings = make_settings(embed_images=True, max_embed_bytes=small)
    Image.frombytes("RGB", (200, 200), os.urandom(200 * 200 * 3)).save(image_tree / "big.png")

    result = Indexer(settings).rebuild()
    assert result.failures == []

    with SQLiteDB(settings.database_path, read_only=True) as db:
        rows = {r["file_name"]: r["image_data"] for r in db.conn.execute("SELECT file_name, image_data FROM Images")}
    assert base64.b64decode(rows["bare.jpg"]) == (image_tree / "bare.jpg").read_bytes()
    assert rows["big.png"] is None


def test_cancelled_rebuild_is_marked_incomplete(make_settings):
    settings = make_settings(batch_size=1)
    cancel = threading.Event()
    indexer = Indexer(settings)
    original = indexer.parse_image

    def parse_then_cancel(*args, **kwargs):
        cancel.set()
        return original(*args, **kwargs)

    indexer.parse_image = parse_then_cancel
    result = indexer.rebuild(cancel_event=cancel)

    assert result.cancelled
    assert result.record_count < len(ALL_IMAGES)
    with SQLiteDB(settings.database_path, read_only=True) as db:
        assert db.get_meta("build_state") == "building"
        assert db.get_meta("fingerprint") is None


def test_concurrent_rebuild_is_refused(settings):
    lock = RebuildLock(settings.database_path).acquire()
    try:
        with pytest.raises(ImageIndexError) as exc:
            Indexer(settings).rebuild()
        assert exc.value.kind == ErrorKind.REBUILD_IN_PROGRESS
    finally:
        lock.release()


def test_stale_lock_is_cleared(settings):
    lock_file = lock_path_for(settings.database_path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    lock_file.write_text("999999999", encoding="ascii")

    result = Indexer(settings).rebuild()
    assert result.record_count == len(ALL_IMAGES)
    assert not lock_file.exists()
