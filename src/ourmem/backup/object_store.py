"""External blob storage for large backups.

This module provides:
- ObjectStore: Protocol for blob storage backends
- FileObjectStore: Directory-backed store

Security features:
- File permissions (600 for files, 700 for directory)
- Key validation (prevent path traversal)
"""

import os
import re
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from ourmem.errors import StorageError

__all__ = [
    "FileObjectStore",
    "ObjectStore",
    "StorageError",
]

# Valid key segment: alphanumeric, dots, hyphens, underscores
KEY_SEGMENT_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


class ObjectStore(Protocol):
    """Protocol for blob storage backends."""

    def put(self, key: str, data: bytes) -> str:
        """Store a blob and return its object URL."""
        ...

    def get(self, url: str) -> bytes:
        """Load a blob by object URL."""
        ...

    def delete(self, url: str) -> bool:
        """Delete a blob by object URL."""
        ...


class FileObjectStore:
    """Directory-backed object store.

    Keys are slash separated (``backups/<couple>/<name>``) and map to
    files below the storage directory. Object URLs use the ``file://``
    scheme.

    Attributes:
        directory: Storage directory path.
    """

    def __init__(self, directory: Path) -> None:
        """Initialize storage.

        Creates directory if it doesn't exist, with secure permissions.

        Args:
            directory: Path to storage directory.
        """
        self.directory = Path(directory).resolve()
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, 0o700)

    def _validate_key(self, key: str) -> list[str]:
        """Validate key to prevent path traversal.

        Raises:
            StorageError: If key is invalid.
        """
        segments = key.split("/")
        for segment in segments:
            if segment in ("", ".", "..") or not KEY_SEGMENT_PATTERN.match(segment):
                raise StorageError(f"Invalid object key: {key}")
        return segments

    def _path_for_url(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise StorageError(f"Not a file object URL: {url}")
        path = Path(unquote(parsed.path)).resolve()
        if self.directory not in path.parents:
            raise StorageError(f"Object outside storage directory: {url}")
        return path

    def put(self, key: str, data: bytes) -> str:
        """Write a blob with restricted permissions.

        Raises:
            StorageError: If key is invalid or the write fails.
        """
        segments = self._validate_key(key)
        path = self.directory.joinpath(*segments)

        try:
            path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            # Owner read/write only
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            try:
                os.write(fd, data)
            finally:
                os.close(fd)
        except OSError as e:
            raise StorageError(f"Failed to write object {key}: {e}") from e

        return path.as_uri()

    def get(self, url: str) -> bytes:
        """Read a blob.

        Raises:
            StorageError: If the URL is foreign or the object is missing.
        """
        path = self._path_for_url(url)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read object: {e}") from e

    def delete(self, url: str) -> bool:
        """Delete a blob.

        Returns:
            True if deleted, False if not found.
        """
        path = self._path_for_url(url)
        if path.exists():
            path.unlink()
            return True
        return False
