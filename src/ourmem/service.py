"""Relay service wiring.

Composes the token store, pairing registry, signal mailbox, live hub and
backup vault into one explicitly constructed object. The HTTP server and
tests talk to this instead of module-level singletons.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ourmem import __version__
from ourmem.backup import BackupRecord, BackupVault, FileObjectStore
from ourmem.config import Config
from ourmem.formatting import isoformat
from ourmem.pairing import PairingRegistry, PairingRequest
from ourmem.signaling import RelayHub, SignalEnvelope, SignalMailbox, Subscriber
from ourmem.sweeper import ExpirySweeper
from ourmem.tokens import TokenStore

logger = logging.getLogger(__name__)


class RelayService:
    """The relay's operations, independent of any transport."""

    def __init__(
        self,
        tokens: TokenStore,
        registry: PairingRegistry,
        mailbox: SignalMailbox,
        hub: RelayHub,
        vault: BackupVault,
        sweeper: Optional[ExpirySweeper] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.tokens = tokens
        self.registry = registry
        self.mailbox = mailbox
        self.hub = hub
        self.vault = vault
        self.sweeper = sweeper
        self._clock = clock

    async def start(self) -> None:
        """Start background work.

        Raises:
            EntropyError: If no secure random source is available.
        """
        self.tokens.self_check()
        await self.vault.load()
        if self.sweeper is not None:
            await self.sweeper.start()
        logger.info("Relay service started")

    async def stop(self) -> None:
        """Stop background work and close live connections."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        await self.hub.close_all()
        logger.info("Relay service stopped")

    def health(self) -> Dict[str, Any]:
        """Liveness report; independent of relay state."""
        return {
            "status": "ok",
            "timestamp": isoformat(self._clock()),
            "version": __version__,
        }

    # Pairing

    async def initiate_pairing(
        self,
        couple_id: str,
        token_digest: str,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> PairingRequest:
        return await self.registry.initiate(couple_id, token_digest, device_info)

    async def confirm_pairing(self, couple_id: str, token_digest: str) -> PairingRequest:
        return await self.registry.confirm(couple_id, token_digest)

    # Signaling

    async def send_signal(
        self,
        couple_id: str,
        from_device_id: str,
        to_device_id: str,
        payload: Any,
        origin: Optional[Subscriber] = None,
    ) -> SignalEnvelope:
        return await self.hub.publish(
            couple_id, from_device_id, to_device_id, payload, origin=origin
        )

    async def drain_signals(self, couple_id: str, device_id: str) -> list[SignalEnvelope]:
        return await self.mailbox.drain(couple_id, device_id)

    # Backups

    async def store_backup(
        self,
        couple_id: str,
        blob: bytes,
        meta: Optional[Dict[str, Any]] = None,
    ) -> BackupRecord:
        return await self.vault.store(couple_id, blob, meta)

    async def retrieve_backup(self, couple_id: str) -> BackupRecord:
        return await self.vault.retrieve_latest(couple_id)


def create_service(
    config: Config,
    clock: Callable[[], float] = time.time,
) -> RelayService:
    """Build a RelayService from configuration.

    Args:
        config: Relay configuration.
        clock: Time source shared by every component.

    Returns:
        Configured, not yet started, RelayService.
    """
    tokens = TokenStore()
    registry = PairingRegistry(ttl_seconds=config.pairing.ttl_seconds, clock=clock)
    mailbox = SignalMailbox(
        ttl_seconds=config.signals.ttl_seconds,
        max_queue_per_device=config.signals.max_queue_per_device,
        clock=clock,
    )
    hub = RelayHub(mailbox, send_timeout=config.hub.send_timeout)

    object_store = None
    if config.backup.storage_dir:
        object_store = FileObjectStore(Path(config.backup.storage_dir).expanduser())
    index_path = (
        Path(config.backup.index_file).expanduser() if config.backup.index_file else None
    )
    vault = BackupVault(
        max_bytes=config.backup.max_bytes,
        inline_max_bytes=config.backup.inline_max_bytes,
        object_store=object_store,
        index_path=index_path,
        keep_per_couple=config.backup.keep_per_couple,
        clock=clock,
    )

    sweeper = None
    if config.sweeper.enabled:
        sweeper = ExpirySweeper(
            [registry, mailbox], interval=config.sweeper.interval_seconds
        )

    return RelayService(
        tokens=tokens,
        registry=registry,
        mailbox=mailbox,
        hub=hub,
        vault=vault,
        sweeper=sweeper,
        clock=clock,
    )
