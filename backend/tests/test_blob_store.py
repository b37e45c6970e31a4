"""
Tests for the filesystem blob store and backup retention.
"""
from datetime import datetime

import pytest

from wikihub.core.errors import StorageError
from wikihub.core.sources import Source
from wikihub.services.blob_store import (
    BlobStoreError,
    backup_name,
    html_key,
    list_backups,
    prune_backups,
    put_backup,
    put_required,
    raw_key,
    sanitize_slug,
)

from tests.fixtures.wiki_fixtures import FailingBlobStore


class TestKeys:

    def test_sanitize_slug(self):
        assert sanitize_slug("Rune_(item)/Old") == "rune__item__old"

    def test_html_and_raw_keys(self):
        assert html_key(Source.OSRS, "Abyssal_whip", "abc") == "osrs/abyssal_whip/abc.html"
        assert raw_key(Source.NLAB, "adjoint functor", "abc") == "nlab/adjoint_functor/abc.raw.txt"


class TestFilesystemBlobStore:

    def test_put_get_exists_delete(self, blob_store):
        blob_store.put_text("osrs/whip/1.html", "<p>whip</p>")

        assert blob_store.exists("osrs/whip/1.html")
        assert blob_store.get_text("osrs/whip/1.html") == "<p>whip</p>"

        blob_store.delete("osrs/whip/1.html")
        assert not blob_store.exists("osrs/whip/1.html")

    def test_put_overwrites(self, blob_store):
        blob_store.put("k", b"one")
        blob_store.put("k", b"two")
        assert blob_store.get("k") == b"two"

    def test_missing_key_raises_key_error(self, blob_store):
        with pytest.raises(KeyError):
            blob_store.get("osrs/none.html")

    def test_delete_missing_key_is_ignored(self, blob_store):
        blob_store.delete("osrs/none.html")

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "osrs/../../secret"])
    def test_unsafe_keys_rejected(self, blob_store, key):
        with pytest.raises(BlobStoreError):
            blob_store.put(key, b"x")

    def test_list_by_prefix(self, blob_store):
        blob_store.put("osrs/b/1.html", b"")
        blob_store.put("osrs/a/1.html", b"")
        blob_store.put("nlab/a/1.html", b"")

        assert blob_store.list("osrs") == ["osrs/a/1.html", "osrs/b/1.html"]
        assert blob_store.list("wikiart") == []

    def test_put_required_wraps_failures(self, tmp_path):
        with pytest.raises(StorageError):
            put_required(FailingBlobStore(tmp_path), "k", b"x")


class TestBackups:

    def test_names_sort_by_time(self):
        first = backup_name(datetime(2024, 1, 2, 3, 4, 5))
        second = backup_name(datetime(2024, 1, 10, 0, 0, 0))
        assert first == "wikihub-20240102T030405Z.sql.gz"
        assert first < second

    def test_put_and_list(self, blob_store):
        key = put_backup(blob_store, "wikihub-1.sql.gz", b"dump")
        assert key == "backups/wikihub-1.sql.gz"
        assert list_backups(blob_store) == [key]

    def test_name_with_slash_rejected(self, blob_store):
        with pytest.raises(BlobStoreError):
            put_backup(blob_store, "../x", b"dump")

    def test_prune_keeps_newest(self, blob_store):
        for day in range(1, 6):
            put_backup(blob_store, backup_name(datetime(2024, 1, day)), b"dump")

        deleted = prune_backups(blob_store, keep=2)

        assert len(deleted) == 3
        assert list_backups(blob_store) == [
            "backups/wikihub-20240104T000000Z.sql.gz",
            "backups/wikihub-20240105T000000Z.sql.gz",
        ]

    def test_prune_with_nothing_to_delete(self, blob_store):
        put_backup(blob_store, "wikihub-1.sql.gz", b"dump")
        assert prune_backups(blob_store, keep=7) == []
