"""Tests for live signal fan-out."""

import asyncio
from typing import Any, Dict, List

import pytest

from ourmem.errors import ValidationError
from ourmem.signaling import RelayHub, SignalMailbox, signal_event


class MockSubscriber:
    """Mock live connection for testing."""

    def __init__(self, subscriber_id: str, fail: bool = False, delay: float = 0):
        self._subscriber_id = subscriber_id
        self._fail = fail
        self._delay = delay
        self.received: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def subscriber_id(self) -> str:
        return self._subscriber_id

    async def send(self, event: Dict[str, Any]) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise ConnectionError("broken pipe")
        self.received.append(event)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def mailbox(clock):
    return SignalMailbox(clock=clock)


@pytest.fixture
def hub(mailbox):
    return RelayHub(mailbox, send_timeout=0.1)


class TestSubscriptions:
    """Test channel membership."""

    def test_subscribe_and_unsubscribe(self, hub):
        """Joining and leaving update the channel."""
        sub = MockSubscriber("s1")

        hub.subscribe(sub, "c1")
        assert hub.subscribers("c1") == [sub]
        assert hub.channels_of(sub) == {"c1"}

        hub.unsubscribe(sub, "c1")
        assert hub.subscribers("c1") == []
        assert hub.channels_of(sub) == set()
        assert len(hub) == 0

    def test_disconnect_leaves_all_channels(self, hub):
        """Disconnect removes the subscriber everywhere."""
        sub = MockSubscriber("s1")
        hub.subscribe(sub, "c1")
        hub.subscribe(sub, "c2")

        hub.disconnect(sub)

        assert hub.subscribers("c1") == []
        assert hub.subscribers("c2") == []
        assert len(hub) == 0

    def test_disconnect_unknown_is_noop(self, hub):
        """Disconnecting a stranger does nothing."""
        hub.disconnect(MockSubscriber("ghost"))
        assert len(hub) == 0


class TestPublish:
    """Test publish and fan-out."""

    @pytest.mark.asyncio
    async def test_publish_deposits_in_mailbox(self, hub, mailbox):
        """Every signal lands in the mailbox even with no subscribers."""
        await hub.publish("c1", "d1", "d2", {"type": "offer"})

        drained = await mailbox.drain("c1", "d2")
        assert [e.payload for e in drained] == [{"type": "offer"}]

    @pytest.mark.asyncio
    async def test_pushes_to_other_subscribers(self, hub):
        """Other members of the couple receive the event."""
        sender = MockSubscriber("sender")
        receiver = MockSubscriber("receiver")
        hub.subscribe(sender, "c1")
        hub.subscribe(receiver, "c1")

        envelope = await hub.publish("c1", "d1", "d2", "offer", origin=sender)

        assert receiver.received == [signal_event(envelope)]
        assert receiver.received[0]["type"] == "webrtc-signal"
        assert receiver.received[0]["toDeviceId"] == "d2"

    @pytest.mark.asyncio
    async def test_no_echo_to_origin(self, hub):
        """The sending connection never gets its own signal back."""
        sender = MockSubscriber("sender")
        hub.subscribe(sender, "c1")

        await hub.publish("c1", "d1", "d2", "offer", origin=sender)

        assert sender.received == []

    @pytest.mark.asyncio
    async def test_other_couples_not_reached(self, hub):
        """Channels are isolated by couple."""
        outsider = MockSubscriber("outsider")
        hub.subscribe(outsider, "c2")

        await hub.publish("c1", "d1", "d2", "offer")

        assert outsider.received == []

    @pytest.mark.asyncio
    async def test_invalid_signal_not_pushed(self, hub):
        """A rejected signal reaches nobody."""
        receiver = MockSubscriber("receiver")
        hub.subscribe(receiver, "c1")

        with pytest.raises(ValidationError):
            await hub.publish("c1", "d1", "", "offer")

        assert receiver.received == []

    @pytest.mark.asyncio
    async def test_broken_subscriber_removed(self, hub):
        """A failing subscriber is dropped and others still receive."""
        broken = MockSubscriber("broken", fail=True)
        healthy = MockSubscriber("healthy")
        hub.subscribe(broken, "c1")
        hub.subscribe(healthy, "c1")

        await hub.publish("c1", "d1", "d2", "offer")

        assert len(healthy.received) == 1
        assert hub.subscribers("c1") == [healthy]
        assert broken.closed
        assert not healthy.closed

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_block(self, hub):
        """A subscriber slower than the timeout is dropped."""
        slow = MockSubscriber("slow", delay=5.0)
        fast = MockSubscriber("fast")
        hub.subscribe(slow, "c1")
        hub.subscribe(fast, "c1")

        await asyncio.wait_for(hub.publish("c1", "d1", "d2", "offer"), timeout=2.0)

        assert len(fast.received) == 1
        assert slow.received == []
        assert hub.subscribers("c1") == [fast]
        assert slow.closed
        assert not fast.closed

    @pytest.mark.asyncio
    async def test_dropped_subscriber_can_drain(self, hub, mailbox):
        """Signals missed by a dropped subscriber are still in the mailbox."""
        broken = MockSubscriber("broken", fail=True)
        hub.subscribe(broken, "c1")

        await hub.publish("c1", "d1", "d2", "offer")

        assert len(await mailbox.drain("c1", "d2")) == 1

    @pytest.mark.asyncio
    async def test_close_all(self, hub):
        """close_all closes every connection once and clears channels."""
        a = MockSubscriber("a")
        b = MockSubscriber("b")
        hub.subscribe(a, "c1")
        hub.subscribe(a, "c2")
        hub.subscribe(b, "c1")

        await hub.close_all()

        assert a.closed and b.closed
        assert hub.subscribers("c1") == []
        assert len(hub) == 0
