"""
Metadata store: defaults, updates, search.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from dirgallery.server.src.services.metadata import MediaMetadata, MetadataStore


def make_store():
    tmpdir = Path(tempfile.mkdtemp(prefix="metadata_"))
    return tmpdir, MetadataStore(tmpdir / "metadata")


def test_defaults_when_missing():
    tmpdir, store = make_store()

    try:
        metadata = store.load("album/cat.jpg")
        assert metadata == MediaMetadata(image_path="album/cat.jpg")
        assert metadata.to_dict() == {
            'imagePath': "album/cat.jpg",
            'tags': [],
            'description': "",
            'rating': 0,
            'lastUpdated': None,
        }
        assert store.all() == {}

    finally:
        shutil.rmtree(tmpdir)


def test_update_and_reload():
    tmpdir, store = make_store()

    try:
        updated = store.update("album/cat.jpg", tags=["pet", "Orange"], rating=4)
        assert updated is not None
        assert updated.last_updated is not None

        reloaded = store.load("album/cat.jpg")
        print(f"  {reloaded.to_dict()}")
        assert reloaded.tags == ["pet", "Orange"]
        assert reloaded.rating == 4
        assert reloaded.description == ""

        # Untouched fields survive a partial update
        store.update("album/cat.jpg", description="Sleeping in the sun")
        reloaded = store.load("album/cat.jpg")
        assert reloaded.tags == ["pet", "Orange"]
        assert reloaded.description == "Sleeping in the sun"

        assert store.path_for("album/cat.jpg").parent == tmpdir / "metadata"

    finally:
        shutil.rmtree(tmpdir)


def test_unknown_field_rejected():
    tmpdir, store = make_store()

    try:
        with pytest.raises(ValueError):
            store.update("cat.jpg", colour="orange")

    finally:
        shutil.rmtree(tmpdir)


def test_search():
    tmpdir, store = make_store()

    try:
        store.update("album/cat.jpg", tags=["Pet"])
        store.update("beach.png", description="Sunset over the BAY")
        store.update("holiday/dog.jpg", rating=5)

        assert [m.image_path for m in store.search("pet")] == ["album/cat.jpg"]
        assert [m.image_path for m in store.search("bay")] == ["beach.png"]
        assert [m.image_path for m in store.search("HOLIDAY")] == ["holiday/dog.jpg"]
        assert store.search("nothing-matches") == []
        assert store.search("") == []

        assert set(store.all()) == {"album/cat.jpg", "beach.png", "holiday/dog.jpg"}

    finally:
        shutil.rmtree(tmpdir)


def test_delete():
    tmpdir, store = make_store()

    try:
        store.update("cat.jpg", rating=3)
        assert store.delete("cat.jpg") is True
        assert store.load("cat.jpg").rating == 0
        assert store.delete("cat.jpg") is False

    finally:
        shutil.rmtree(tmpdir)


def test_corrupt_file_ignored():
    tmpdir, store = make_store()

    try:
        store.ensure()
        store.path_for("cat.jpg").write_text("{not json")

        assert store.load("cat.jpg") == MediaMetadata(image_path="cat.jpg")
        assert store.all() == {}

    finally:
        shutil.rmtree(tmpdir)


def test_save_failure_returns_false():
    tmpdir = Path(tempfile.mkdtemp(prefix="metadata_"))
    (tmpdir / "blocker").write_text("a file, not a directory")
    store = MetadataStore(tmpdir / "blocker" / "metadata")

    try:
        assert store.save(MediaMetadata(image_path="cat.jpg")) is False
        assert store.update("cat.jpg", rating=2) is None

    finally:
        shutil.rmtree(tmpdir)
