"""Live fan-out of signaling events to connected devices.

Devices subscribe to their couple's channel. Every published signal is
first deposited in the SignalMailbox, then pushed to every other
subscriber of the channel. Recipients filter on ``toDeviceId`` themselves;
the mailbox is the delivery backstop for anyone who misses the push.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from aiohttp import web

from ourmem.logging import short_id
from ourmem.signaling.mailbox import SignalEnvelope, SignalMailbox

logger = logging.getLogger(__name__)

SIGNAL_EVENT = "webrtc-signal"


class Subscriber(Protocol):
    """Protocol for live channel subscribers."""

    @property
    def subscriber_id(self) -> str:
        """Unique identifier of the connection."""
        ...

    async def send(self, event: Dict[str, Any]) -> None:
        """Push an event to the connection."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class WebSocketSubscriber:
    """Subscriber backed by an aiohttp WebSocket."""

    def __init__(self, subscriber_id: str, ws: web.WebSocketResponse):
        self._subscriber_id = subscriber_id
        self._ws = ws

    @property
    def subscriber_id(self) -> str:
        return self._subscriber_id

    async def send(self, event: Dict[str, Any]) -> None:
        if self._ws.closed:
            raise ConnectionError("WebSocket closed")
        await self._ws.send_json(event)

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


def signal_event(envelope: SignalEnvelope) -> Dict[str, Any]:
    """Build the live event pushed for an envelope."""
    return {
        "type": SIGNAL_EVENT,
        "coupleId": envelope.couple_id,
        "fromDeviceId": envelope.from_device_id,
        "toDeviceId": envelope.to_device_id,
        "signalPayload": envelope.payload,
    }


class RelayHub:
    """Publish/subscribe channels keyed by couple identifier."""

    def __init__(self, mailbox: SignalMailbox, send_timeout: float = 5.0):
        """Initialize hub.

        Args:
            mailbox: Durable store every published signal goes to first.
            send_timeout: Per-subscriber push timeout in seconds.
        """
        self.mailbox = mailbox
        self._send_timeout = send_timeout
        self._channels: Dict[str, Dict[str, Subscriber]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def subscribe(self, subscriber: Subscriber, couple_id: str) -> None:
        """Add a subscriber to a couple's channel."""
        channel = self._channels.setdefault(couple_id, {})
        channel[subscriber.subscriber_id] = subscriber
        self._memberships.setdefault(subscriber.subscriber_id, set()).add(couple_id)
        logger.info(
            f"Connection {short_id(subscriber.subscriber_id)} joined couple "
            f"{short_id(couple_id)}"
        )

    def unsubscribe(self, subscriber: Subscriber, couple_id: str) -> None:
        """Remove a subscriber from a couple's channel."""
        self._remove(subscriber.subscriber_id, couple_id)
        logger.info(
            f"Connection {short_id(subscriber.subscriber_id)} left couple "
            f"{short_id(couple_id)}"
        )

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a subscriber from every channel it joined."""
        couples = self._memberships.pop(subscriber.subscriber_id, set())
        for couple_id in couples:
            self._remove(subscriber.subscriber_id, couple_id)
        if couples:
            logger.debug(
                f"Connection {short_id(subscriber.subscriber_id)} removed from "
                f"{len(couples)} channel(s)"
            )

    def _remove(self, subscriber_id: str, couple_id: str) -> None:
        channel = self._channels.get(couple_id)
        if channel is not None:
            channel.pop(subscriber_id, None)
            if not channel:
                del self._channels[couple_id]

        memberships = self._memberships.get(subscriber_id)
        if memberships is not None:
            memberships.discard(couple_id)
            if not memberships:
                del self._memberships[subscriber_id]

    def subscribers(self, couple_id: str) -> list[Subscriber]:
        """Snapshot of a channel's subscribers."""
        return list(self._channels.get(couple_id, {}).values())

    def channels_of(self, subscriber: Subscriber) -> Set[str]:
        """Couples a subscriber has joined."""
        return set(self._memberships.get(subscriber.subscriber_id, set()))

    async def publish(
        self,
        couple_id: str,
        from_device_id: str,
        to_device_id: str,
        payload: Any,
        origin: Optional[Subscriber] = None,
    ) -> SignalEnvelope:
        """Deposit a signal, then push it live to the couple's channel.

        Args:
            couple_id: Couple identifier.
            from_device_id: Sending device.
            to_device_id: Recipient device.
            payload: Opaque signaling payload.
            origin: Connection the signal arrived on; never echoed back.

        Returns:
            The deposited envelope.

        Raises:
            ValidationError: If any field is missing (nothing is pushed).
        """
        envelope = await self.mailbox.deposit(
            couple_id, from_device_id, to_device_id, payload
        )

        origin_id = origin.subscriber_id if origin is not None else None
        targets = [
            s for s in self.subscribers(couple_id) if s.subscriber_id != origin_id
        ]
        if targets:
            await self._fan_out(couple_id, targets, signal_event(envelope))

        return envelope

    async def _fan_out(
        self,
        couple_id: str,
        targets: list[Subscriber],
        event: Dict[str, Any],
    ) -> None:
        """Push to every target concurrently, dropping those that fail."""

        async def send_with_timeout(
            subscriber: Subscriber,
        ) -> tuple[Subscriber, Optional[Exception]]:
            try:
                await asyncio.wait_for(
                    subscriber.send(event), timeout=self._send_timeout
                )
                return (subscriber, None)
            except asyncio.TimeoutError:
                return (
                    subscriber,
                    TimeoutError(f"Send timeout to {subscriber.subscriber_id}"),
                )
            except Exception as e:
                return (subscriber, e)

        results = await asyncio.gather(
            *[send_with_timeout(s) for s in targets],
            return_exceptions=True,
        )

        dropped = []
        for result in results:
            if not isinstance(result, tuple):
                continue
            subscriber, error = result
            if error is None:
                continue
            logger.warning(
                f"Push to {short_id(subscriber.subscriber_id)} on couple "
                f"{short_id(couple_id)} failed: {error}"
            )
            self.disconnect(subscriber)
            dropped.append(subscriber)

        if dropped:
            await asyncio.gather(
                *[
                    asyncio.wait_for(s.close(), timeout=self._send_timeout)
                    for s in dropped
                ],
                return_exceptions=True,
            )

    async def close_all(self) -> None:
        """Close every subscriber connection."""
        subscribers: Dict[str, Subscriber] = {}
        for channel in self._channels.values():
            subscribers.update(channel)
        self._channels.clear()
        self._memberships.clear()

        if subscribers:
            await asyncio.gather(
                *[s.close() for s in subscribers.values()],
                return_exceptions=True,
            )

    def __len__(self) -> int:
        return len(self._memberships)
