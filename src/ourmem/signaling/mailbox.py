"""Store-and-forward queue for WebRTC signaling payloads.

Envelopes are queued per (couple, recipient device) and live for a short
window, since stale SDP and ICE candidates are useless. Draining a queue
returns and deletes its envelopes in one step, giving at-most-once
delivery on the store-and-forward path.
"""

import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Tuple

from ourmem.errors import ValidationError
from ourmem.formatting import isoformat
from ourmem.locks import KeyedLocks
from ourmem.logging import short_id

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60  # 5 minutes
DEFAULT_MAX_QUEUE = 256


@dataclass
class SignalEnvelope:
    """One queued signaling payload.

    Attributes:
        couple_id: Couple the devices belong to.
        from_device_id: Sending device.
        to_device_id: Recipient device.
        payload: Opaque signaling message (SDP offer/answer, ICE candidate).
        created_at: Unix timestamp of deposit.
        expires_at: Unix timestamp after which the envelope is dropped.
        sequence: Monotonic deposit counter (creation order).
    """

    couple_id: str
    from_device_id: str
    to_device_id: str
    payload: Any
    created_at: float
    expires_at: float
    sequence: int

    def is_expired(self, now: float) -> bool:
        """Check whether the envelope is past its expiry."""
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {
            "coupleId": self.couple_id,
            "fromDeviceId": self.from_device_id,
            "toDeviceId": self.to_device_id,
            "signalPayload": self.payload,
            "createdAt": isoformat(self.created_at),
            "expiresAt": isoformat(self.expires_at),
        }


QueueKey = Tuple[str, str]  # (couple_id, to_device_id)


class SignalMailbox:
    """Per-recipient signal queues with expiry and drain-on-read."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL,
        max_queue_per_device: int = DEFAULT_MAX_QUEUE,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize mailbox.

        Args:
            ttl_seconds: Lifetime of an envelope.
            max_queue_per_device: Oldest envelopes are dropped beyond this.
            clock: Time source (injectable for tests).
        """
        self.ttl_seconds = ttl_seconds
        self.max_queue_per_device = max_queue_per_device
        self._clock = clock
        self._queues: Dict[QueueKey, Deque[SignalEnvelope]] = {}
        self._sequence = itertools.count(1)
        self._locks = KeyedLocks()

    async def deposit(
        self,
        couple_id: str,
        from_device_id: str,
        to_device_id: str,
        payload: Any,
    ) -> SignalEnvelope:
        """Queue a payload for a recipient.

        Returns:
            The stored envelope.

        Raises:
            ValidationError: If any field is missing.
        """
        if (
            not couple_id
            or not from_device_id
            or not to_device_id
            or payload is None
            or payload == ""
        ):
            raise ValidationError("Missing required fields")

        now = self._clock()
        envelope = SignalEnvelope(
            couple_id=couple_id,
            from_device_id=from_device_id,
            to_device_id=to_device_id,
            payload=payload,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            sequence=next(self._sequence),
        )

        key = (couple_id, to_device_id)
        async with self._locks.hold(couple_id):
            queue = self._queues.setdefault(key, deque())
            queue.append(envelope)
            if len(queue) > self.max_queue_per_device:
                queue.popleft()
                logger.warning(
                    f"Signal queue full for device {short_id(to_device_id)}, "
                    "dropped oldest envelope"
                )

        logger.debug(
            f"Signal queued {short_id(from_device_id)} -> {short_id(to_device_id)} "
            f"(couple {short_id(couple_id)})"
        )
        return envelope

    async def drain(self, couple_id: str, device_id: str) -> list[SignalEnvelope]:
        """Return and delete every live envelope for a recipient.

        Returns:
            Envelopes in creation order (oldest first). Empty if none.
        """
        async with self._locks.hold(couple_id):
            queue = self._queues.pop((couple_id, device_id), None)

        if not queue:
            return []

        now = self._clock()
        envelopes = sorted(
            (e for e in queue if not e.is_expired(now)),
            key=lambda e: e.sequence,
        )
        if envelopes:
            logger.debug(
                f"Drained {len(envelopes)} signals for device {short_id(device_id)}"
            )
        return envelopes

    def pending(self, couple_id: str, device_id: str) -> int:
        """Count live envelopes for a recipient without draining."""
        queue = self._queues.get((couple_id, device_id))
        if not queue:
            return 0
        now = self._clock()
        return sum(1 for e in queue if not e.is_expired(now))

    def sweep(self) -> int:
        """Purge expired envelopes.

        Returns:
            Number of envelopes removed.
        """
        now = self._clock()
        removed = 0
        for key in list(self._queues):
            if key[0] in self._locks:
                continue
            queue = self._queues[key]
            live = deque(e for e in queue if not e.is_expired(now))
            removed += len(queue) - len(live)
            if live:
                self._queues[key] = live
            else:
                del self._queues[key]

        if removed:
            logger.debug(f"Swept {removed} expired signals")
        return removed

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())
