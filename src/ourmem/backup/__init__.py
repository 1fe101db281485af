"""Zero-knowledge backup storage."""

from .object_store import FileObjectStore, ObjectStore
from .vault import BackupRecord, BackupVault

__all__ = [
    "BackupRecord",
    "BackupVault",
    "FileObjectStore",
    "ObjectStore",
]
