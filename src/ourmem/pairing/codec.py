"""Pairing code encoding.

The pairing code is the unpadded base64url encoding of a JSON object::

    {"coupleId": ..., "partnerAName": ..., "partnerBName": ...,
     "coverTitle": ..., "loveDate": ..., "storyStart": ...,
     "pairingToken": ..., "timestamp": <epoch ms>}

It travels out of band (QR code or typed by hand) and carries everything
the joining device needs to create its local couple record.
"""

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ourmem.errors import InvalidFormatError
from ourmem.logging import short_id

logger = logging.getLogger(__name__)

DEFAULT_COVER_TITLE = "Our Memories"
MAX_CODE_AGE_MS = 24 * 60 * 60 * 1000  # 24 hours (advisory)

REQUIRED_FIELDS = (
    "coupleId",
    "partnerAName",
    "partnerBName",
    "loveDate",
    "storyStart",
    "pairingToken",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PairingPayload:
    """Fields carried by a pairing code."""

    couple_id: str
    partner_a_name: str
    partner_b_name: str
    love_date: str
    story_start: str
    pairing_token: str
    cover_title: str = DEFAULT_COVER_TITLE
    timestamp: Optional[int] = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        # Keep encode/decode lossless: decode defaults the title and
        # only accepts integer milliseconds
        if not self.cover_title:
            self.cover_title = DEFAULT_COVER_TITLE
        if self.timestamp is not None:
            self.timestamp = int(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire dictionary."""
        return {
            "coupleId": self.couple_id,
            "partnerAName": self.partner_a_name,
            "partnerBName": self.partner_b_name,
            "coverTitle": self.cover_title,
            "loveDate": self.love_date,
            "storyStart": self.story_start,
            "pairingToken": self.pairing_token,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PairingPayload":
        """Create from a wire dictionary.

        Raises:
            InvalidFormatError: If a required field is missing or empty.
        """
        for name in REQUIRED_FIELDS:
            value = d.get(name)
            if not value or not isinstance(value, str):
                raise InvalidFormatError(f"Missing required field: {name}")

        timestamp = d.get("timestamp")
        if timestamp is not None and not isinstance(timestamp, int):
            raise InvalidFormatError("Invalid timestamp")

        return cls(
            couple_id=d["coupleId"],
            partner_a_name=d["partnerAName"],
            partner_b_name=d["partnerBName"],
            love_date=d["loveDate"],
            story_start=d["storyStart"],
            pairing_token=d["pairingToken"],
            cover_title=d.get("coverTitle") or DEFAULT_COVER_TITLE,
            timestamp=timestamp,
        )


class PairingCodec:
    """Encode and decode pairing codes."""

    def __init__(self, clock_ms: Callable[[], int] = _now_ms):
        """Initialize codec.

        Args:
            clock_ms: Millisecond time source for the staleness warning.
        """
        self._clock_ms = clock_ms

    def encode(self, payload: PairingPayload) -> str:
        """Serialize a payload into a URL-safe pairing code."""
        raw = json.dumps(payload.to_dict(), separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def decode(self, code: str) -> PairingPayload:
        """Parse a pairing code.

        Whitespace is ignored, so codes split into groups for display
        decode unchanged.

        Raises:
            InvalidFormatError: If the code is malformed or incomplete.
        """
        compact = "".join((code or "").split())
        if not compact:
            raise InvalidFormatError("Invalid pairing code format")

        padded = compact + "=" * (-len(compact) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidFormatError("Invalid pairing code format") from e

        if not isinstance(data, dict):
            raise InvalidFormatError("Invalid pairing code format")

        payload = PairingPayload.from_dict(data)

        if self.is_stale(payload):
            logger.warning(
                f"Pairing code for couple {short_id(payload.couple_id)} "
                "is older than 24 hours"
            )

        return payload

    def is_stale(self, payload: PairingPayload) -> bool:
        """Advisory staleness check; the relay enforces the real expiry."""
        if payload.timestamp is None:
            return False
        return self._clock_ms() - payload.timestamp > MAX_CODE_AGE_MS
