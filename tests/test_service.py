"""Tests for service wiring."""

import pytest

from ourmem import __version__
from ourmem.backup import FileObjectStore
from ourmem.config import Config
from ourmem.errors import NotFoundError
from ourmem.service import create_service
from ourmem.tokens import TokenStore


class TestCreateService:
    """Test building the service from config."""

    def test_defaults(self, clock):
        """Components pick up the configured limits."""
        config = Config()
        config.pairing.ttl_seconds = 120
        config.signals.max_queue_per_device = 4

        service = create_service(config, clock=clock)

        assert service.registry.ttl_seconds == 120
        assert service.mailbox.max_queue_per_device == 4
        assert service.hub.mailbox is service.mailbox
        assert service.vault.object_store is None
        assert service.sweeper is not None

    def test_storage_dir_enables_object_store(self, tmp_path):
        """A storage directory wires a FileObjectStore."""
        config = Config()
        config.backup.storage_dir = str(tmp_path / "objects")

        service = create_service(config)

        assert isinstance(service.vault.object_store, FileObjectStore)

    def test_sweeper_disabled(self):
        """Sweeper can be turned off."""
        config = Config()
        config.sweeper.enabled = False

        assert create_service(config).sweeper is None


class TestRelayService:
    """Test service operations end to end."""

    @pytest.fixture
    def service(self, clock):
        config = Config()
        config.sweeper.enabled = False
        return create_service(config, clock=clock)

    def test_health(self, service):
        """Health reports ok with version and timestamp."""
        health = service.health()

        assert health["status"] == "ok"
        assert health["version"] == __version__
        assert health["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_pairing_flow(self, service):
        """Initiate then confirm, second confirm not found."""
        secret = service.tokens.mint_token()
        digest = TokenStore.hash(secret)

        await service.initiate_pairing("c1", digest, {"platform": "test"})
        await service.confirm_pairing("c1", digest)

        with pytest.raises(NotFoundError):
            await service.confirm_pairing("c1", digest)

    @pytest.mark.asyncio
    async def test_signal_flow(self, service):
        """Sent signals drain once."""
        await service.send_signal("c1", "d1", "d2", {"type": "offer"})

        drained = await service.drain_signals("c1", "d2")

        assert [e.payload for e in drained] == [{"type": "offer"}]
        assert await service.drain_signals("c1", "d2") == []

    @pytest.mark.asyncio
    async def test_backup_flow(self, service):
        """Stored backups come back as the latest."""
        await service.store_backup("c1", b"cipher")

        record = await service.retrieve_backup("c1")

        assert await service.vault.read(record) == b"cipher"

    @pytest.mark.asyncio
    async def test_start_stop(self, tmp_path, clock):
        """Start loads the vault and runs the sweeper; stop halts it."""
        config = Config()
        config.backup.index_file = str(tmp_path / "index.json")
        service = create_service(config, clock=clock)

        await service.start()
        assert service.sweeper.running

        await service.stop()
        assert not service.sweeper.running
