"""Outstanding pairing requests, keyed by couple identifier.

Lifecycle per couple::

    absent -> PENDING (initiate) -> CONFIRMED-and-deleted
                                 -> EXPIRED-and-deleted

At most one live request exists per couple (first write wins). Confirming
deletes the request, which is what makes a pairing token single use.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from ourmem.errors import ConflictError, NotFoundError, ValidationError
from ourmem.formatting import isoformat
from ourmem.locks import KeyedLocks
from ourmem.logging import short_id
from ourmem.tokens import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = 24 * 60 * 60  # 24 hours


@dataclass
class PairingRequest:
    """A pending pairing attempt.

    Attributes:
        couple_id: Couple identifier chosen by the initiating device.
        token_hash: SHA-256 hex digest of the pairing secret.
        created_at: Unix timestamp when the request was created.
        expires_at: Unix timestamp after which the request is void.
        device_info: Opaque description of the initiating device.
    """

    couple_id: str
    token_hash: str
    created_at: float
    expires_at: float
    device_info: Dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        """Check whether the request is past its expiry."""
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (never includes the token hash)."""
        return {
            "coupleId": self.couple_id,
            "deviceInfo": self.device_info,
            "createdAt": isoformat(self.created_at),
            "expiresAt": isoformat(self.expires_at),
        }


class PairingRegistry:
    """In-memory registry of pending pairing requests.

    ``initiate`` and ``confirm`` for the same couple are serialized by a
    per-couple lock; different couples never contend. Every read path
    treats expired requests as absent, whether or not they were swept.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize registry.

        Args:
            ttl_seconds: Lifetime of a pairing request.
            clock: Time source (injectable for tests).
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._requests: Dict[str, PairingRequest] = {}
        self._locks = KeyedLocks()

    def _live(self, couple_id: str) -> Optional[PairingRequest]:
        request = self._requests.get(couple_id)
        if request is None:
            return None
        if request.is_expired(self._clock()):
            return None
        return request

    async def initiate(
        self,
        couple_id: str,
        token_digest: str,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> PairingRequest:
        """Register a pairing request for a couple.

        Args:
            couple_id: Couple identifier.
            token_digest: Hash of the pairing secret.
            device_info: Optional description of the initiating device.

        Returns:
            The created PairingRequest.

        Raises:
            ValidationError: If couple_id or token_digest is empty.
            ConflictError: If a live request already exists for the couple.
        """
        if not couple_id or not token_digest:
            raise ValidationError("Missing required fields")

        async with self._locks.hold(couple_id):
            if self._live(couple_id) is not None:
                logger.warning(
                    f"Pairing already pending for couple {short_id(couple_id)}"
                )
                raise ConflictError("Pairing request already pending")

            now = self._clock()
            request = PairingRequest(
                couple_id=couple_id,
                token_hash=token_digest.lower(),
                created_at=now,
                expires_at=now + self.ttl_seconds,
                device_info=dict(device_info or {}),
            )
            self._requests[couple_id] = request

        logger.info(f"Pairing initiated for couple {short_id(couple_id)}")
        return request

    async def confirm(self, couple_id: str, token_digest: str) -> PairingRequest:
        """Consume a pending request if the digest matches.

        A mismatching digest leaves the request in place.

        Args:
            couple_id: Couple identifier.
            token_digest: Hash of the pairing secret presented by the
                joining device.

        Returns:
            The consumed PairingRequest.

        Raises:
            ValidationError: If couple_id or token_digest is empty.
            NotFoundError: If no live request matches.
        """
        if not couple_id or not token_digest:
            raise ValidationError("Missing required fields")

        async with self._locks.hold(couple_id):
            request = self._live(couple_id)
            if request is None or not TokenStore.verify_digest(
                token_digest, request.token_hash
            ):
                logger.warning(
                    f"Pairing confirm rejected for couple {short_id(couple_id)}"
                )
                raise NotFoundError("Invalid or expired pairing token")

            del self._requests[couple_id]

        logger.info(f"Pairing confirmed for couple {short_id(couple_id)}")
        return request

    def get(self, couple_id: str) -> Optional[PairingRequest]:
        """Get the live request for a couple, if any."""
        return self._live(couple_id)

    def sweep(self) -> int:
        """Delete expired requests.

        Returns:
            Number of requests removed.
        """
        now = self._clock()
        expired = [
            couple_id
            for couple_id, request in self._requests.items()
            if request.is_expired(now) and couple_id not in self._locks
        ]
        for couple_id in expired:
            del self._requests[couple_id]

        if expired:
            logger.debug(f"Swept {len(expired)} expired pairing requests")
        return len(expired)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for r in self._requests.values() if not r.is_expired(now))
