"""Tests for the file object store."""

import stat

import pytest

from ourmem.backup import FileObjectStore
from ourmem.errors import StorageError


@pytest.fixture
def store(tmp_path):
    return FileObjectStore(tmp_path / "objects")


class TestFileObjectStore:
    """Test FileObjectStore."""

    def test_directory_created_private(self, tmp_path):
        """Storage directory is created with 700 permissions."""
        directory = tmp_path / "objects"
        FileObjectStore(directory)

        assert directory.is_dir()
        assert stat.S_IMODE(directory.stat().st_mode) == 0o700

    def test_put_get_delete(self, store):
        """Stored blobs read back and can be deleted."""
        url = store.put("backups/abc/1-backup.zip", b"cipher")

        assert url.startswith("file://")
        assert store.get(url) == b"cipher"
        assert store.delete(url) is True
        assert store.delete(url) is False

    def test_files_are_private(self, store):
        """Objects are written with 600 permissions."""
        url = store.put("backups/abc/1-backup.zip", b"cipher")
        path = store._path_for_url(url)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    @pytest.mark.parametrize(
        "key",
        ["../escape", "backups/../../x", "/absolute", "a//b", "bad key", "a/./b"],
    )
    def test_invalid_keys_rejected(self, store, key):
        """Keys that could escape the directory are refused."""
        with pytest.raises(StorageError):
            store.put(key, b"x")

    def test_foreign_url_rejected(self, store, tmp_path):
        """URLs outside the storage directory are refused."""
        outside = tmp_path / "elsewhere.zip"
        outside.write_bytes(b"secret")

        with pytest.raises(StorageError):
            store.get(outside.as_uri())

    def test_non_file_url_rejected(self, store):
        """Only file:// URLs belong to this store."""
        with pytest.raises(StorageError):
            store.get("https://example.com/backup.zip")

    def test_missing_object(self, store):
        """Reading a deleted object is a storage error."""
        url = store.put("backups/abc/1-backup.zip", b"cipher")
        store.delete(url)

        with pytest.raises(StorageError):
            store.get(url)
