"""Encrypted backup storage keyed by couple.

The vault is zero-knowledge: blobs arrive encrypted by the devices and are
served back byte for byte. Each store adds a new record; retrieval always
returns the most recent one. Small blobs are kept inline, large ones go to
the configured ObjectStore.
"""

import asyncio
import base64
import binascii
import hashlib
import itertools
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ourmem.backup.object_store import ObjectStore
from ourmem.errors import (
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    ValidationError,
)
from ourmem.formatting import isoformat
from ourmem.locks import KeyedLocks
from ourmem.logging import short_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 100 * 1024 * 1024  # 100MB
DEFAULT_INLINE_MAX_BYTES = 10 * 1024 * 1024
DATA_URL_PREFIX = "data:application/zip;base64,"


@dataclass
class BackupRecord:
    """One stored backup.

    Attributes:
        backup_id: Unique record identifier.
        couple_id: Owning couple.
        created_at: Unix timestamp of upload.
        size: Blob size in bytes.
        sequence: Monotonic store counter (tie-break for equal timestamps).
        meta: Client supplied metadata plus upload details.
        external_url: Object store URL when the blob is not inline.
        data: Inline blob bytes.
    """

    backup_id: str
    couple_id: str
    created_at: float
    size: int
    sequence: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)
    external_url: Optional[str] = None
    data: Optional[bytes] = field(default=None, repr=False)

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    @property
    def object_url(self) -> str:
        """Where the blob lives: object store URL or an inline data URL."""
        if self.external_url is not None:
            return self.external_url
        encoded = base64.b64encode(self.data or b"").decode("ascii")
        return f"{DATA_URL_PREFIX}{encoded}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON index persistence."""
        return {
            "backup_id": self.backup_id,
            "couple_id": self.couple_id,
            "created_at": self.created_at,
            "size": self.size,
            "sequence": self.sequence,
            "meta": self.meta,
            "external_url": self.external_url,
            "data": (
                base64.b64encode(self.data).decode("ascii")
                if self.data is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "BackupRecord":
        """Create from dictionary."""
        data = d.get("data")
        return cls(
            backup_id=d["backup_id"],
            couple_id=d["couple_id"],
            created_at=d["created_at"],
            size=d["size"],
            sequence=d.get("sequence", 0),
            meta=d.get("meta") or {},
            external_url=d.get("external_url"),
            data=base64.b64decode(data) if data is not None else None,
        )


class BackupVault:
    """Latest-wins backup store per couple."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        inline_max_bytes: int = DEFAULT_INLINE_MAX_BYTES,
        object_store: Optional[ObjectStore] = None,
        index_path: Optional[Path] = None,
        keep_per_couple: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize vault.

        Args:
            max_bytes: Upload size ceiling.
            inline_max_bytes: Blobs above this go to the object store
                (when one is configured).
            object_store: Optional external blob storage.
            index_path: Optional JSON file persisting the records.
            keep_per_couple: Records kept per couple (0 keeps all).
            clock: Time source (injectable for tests).
        """
        self.max_bytes = max_bytes
        self.inline_max_bytes = inline_max_bytes
        self.object_store = object_store
        self.index_path = index_path
        self.keep_per_couple = keep_per_couple
        self._clock = clock
        self._records: Dict[str, List[BackupRecord]] = {}
        self._sequence = itertools.count(1)
        self._locks = KeyedLocks()
        self._save_lock = asyncio.Lock()

    async def load(self) -> None:
        """Load records from the index file."""
        if self.index_path is None:
            return

        data = await asyncio.to_thread(self._load_sync)
        if data is None:
            return

        max_sequence = 0
        for item in data.get("backups", []):
            try:
                record = BackupRecord.from_dict(item)
            except (KeyError, TypeError, binascii.Error) as e:
                logger.warning(f"Skipping malformed backup entry: {e}")
                continue
            self._records.setdefault(record.couple_id, []).append(record)
            max_sequence = max(max_sequence, record.sequence)

        for records in self._records.values():
            records.sort(key=lambda r: (r.created_at, r.sequence))
        self._sequence = itertools.count(max_sequence + 1)

        logger.debug(f"Loaded {len(self)} backup records")

    async def save(self) -> None:
        """Save records to the index file.

        Raises:
            StorageError: If the index cannot be written.
        """
        if self.index_path is None:
            return

        async with self._save_lock:
            data = {
                "backups": [
                    record.to_dict()
                    for records in self._records.values()
                    for record in records
                ]
            }
            try:
                await asyncio.to_thread(self._save_sync, data)
            except OSError as e:
                raise StorageError(f"Failed to save backup index: {e}") from e

    def _load_sync(self) -> Optional[Dict[str, Any]]:
        if not self.index_path.exists():
            return None
        try:
            return json.loads(self.index_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load backup index: {e}")
            return None

    def _save_sync(self, data: Dict[str, Any]) -> None:
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write(self.index_path, json.dumps(data))

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write to a temp file, then rename over the target."""
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(content)
        temp_path.rename(path)

    def _object_key(self, record: BackupRecord) -> str:
        # Hash the couple id so arbitrary ids map to safe path segments
        couple_key = hashlib.sha256(record.couple_id.encode("utf-8")).hexdigest()[:32]
        millis = int(record.created_at * 1000)
        return f"backups/{couple_key}/{millis}-{record.backup_id}-backup.zip"

    async def store(
        self,
        couple_id: str,
        blob: bytes,
        meta: Optional[Dict[str, Any]] = None,
    ) -> BackupRecord:
        """Store a new backup for a couple.

        Args:
            couple_id: Couple identifier.
            blob: Encrypted archive bytes (opaque).
            meta: Optional client metadata.

        Returns:
            The created BackupRecord.

        Raises:
            ValidationError: If couple_id or blob is empty.
            PayloadTooLargeError: If blob exceeds max_bytes.
            StorageError: If the object store or index write fails. A failed
                index write leaves the couple's records unchanged.
        """
        if not couple_id or not blob:
            raise ValidationError("Missing required fields")
        if len(blob) > self.max_bytes:
            raise PayloadTooLargeError(
                f"Backup exceeds {self.max_bytes} byte limit"
            )

        now = self._clock()
        record = BackupRecord(
            backup_id=uuid.uuid4().hex,
            couple_id=couple_id,
            created_at=now,
            size=len(blob),
            sequence=next(self._sequence),
            meta={**(meta or {}), "size": len(blob), "uploadedAt": isoformat(now)},
        )

        if self.object_store is not None and len(blob) > self.inline_max_bytes:
            record.external_url = await asyncio.to_thread(
                self.object_store.put, self._object_key(record), blob
            )
        else:
            record.data = bytes(blob)

        async with self._locks.hold(couple_id):
            previous = list(self._records.get(couple_id, []))
            self._records.setdefault(couple_id, []).append(record)
            pruned = self._prune(couple_id)

            try:
                await self.save()
            except StorageError:
                self._records[couple_id] = previous
                if not previous:
                    del self._records[couple_id]
                await self._discard(record)
                raise

        for old in pruned:
            await self._discard(old)

        logger.info(
            f"Stored backup {record.backup_id[:8]} for couple {short_id(couple_id)} "
            f"({record.size} bytes, {'inline' if record.is_inline else 'object store'})"
        )
        return record

    def _prune(self, couple_id: str) -> List[BackupRecord]:
        """Drop records beyond keep_per_couple, oldest first."""
        if self.keep_per_couple <= 0:
            return []
        # Object store writes finish out of order; order by upload time
        records = sorted(
            self._records[couple_id], key=lambda r: (r.created_at, r.sequence)
        )
        self._records[couple_id] = records
        excess = len(records) - self.keep_per_couple
        if excess <= 0:
            return []
        pruned, self._records[couple_id] = records[:excess], records[excess:]
        return pruned

    async def _discard(self, record: BackupRecord) -> None:
        if record.external_url is None or self.object_store is None:
            return
        try:
            await asyncio.to_thread(self.object_store.delete, record.external_url)
        except StorageError as e:
            logger.warning(f"Failed to delete pruned backup object: {e}")

    async def retrieve_latest(self, couple_id: str) -> BackupRecord:
        """Get the most recent backup for a couple.

        Raises:
            NotFoundError: If the couple has no backup.
        """
        records = self._records.get(couple_id)
        if not records:
            raise NotFoundError("No backup found")
        return max(records, key=lambda r: (r.created_at, r.sequence))

    async def read(self, record: BackupRecord) -> bytes:
        """Load a record's blob bytes.

        Raises:
            StorageError: If the blob lives in an unavailable object store.
        """
        if record.data is not None:
            return record.data
        if self.object_store is None or record.external_url is None:
            raise StorageError("Backup object store not configured")
        return await asyncio.to_thread(self.object_store.get, record.external_url)

    def count(self, couple_id: str) -> int:
        """Number of records held for a couple."""
        return len(self._records.get(couple_id, []))

    def __len__(self) -> int:
        return sum(len(records) for records in self._records.values())
