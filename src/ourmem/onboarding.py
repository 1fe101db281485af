"""Device-side pairing flow.

The inviting device mints a one-time secret, registers its digest with the
relay and hands out a pairing code. The joining device decodes the code and
confirms with the relay, which consumes the request.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ourmem.client import RelayClient
from ourmem.logging import short_id
from ourmem.pairing.codec import DEFAULT_COVER_TITLE, PairingCodec, PairingPayload
from ourmem.tokens import TokenStore

logger = logging.getLogger(__name__)


def new_couple_id() -> str:
    return uuid.uuid4().hex


@dataclass
class CoupleProfile:
    """Couple details shared through the pairing code."""

    partner_a_name: str
    partner_b_name: str
    love_date: str
    story_start: str
    cover_title: str = DEFAULT_COVER_TITLE
    couple_id: str = field(default_factory=new_couple_id)

    @classmethod
    def from_payload(cls, payload: PairingPayload) -> "CoupleProfile":
        return cls(
            partner_a_name=payload.partner_a_name,
            partner_b_name=payload.partner_b_name,
            love_date=payload.love_date,
            story_start=payload.story_start,
            cover_title=payload.cover_title,
            couple_id=payload.couple_id,
        )


@dataclass
class Invitation:
    """Result of creating an invitation on the inviting device."""

    code: str
    payload: PairingPayload
    expires_at: Optional[str] = None


class Onboarding:
    """Runs both sides of pairing against a relay."""

    def __init__(
        self,
        client: RelayClient,
        tokens: Optional[TokenStore] = None,
        codec: Optional[PairingCodec] = None,
    ):
        self.client = client
        self.tokens = tokens or TokenStore()
        self.codec = codec or PairingCodec()

    async def create_invitation(
        self,
        profile: CoupleProfile,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> Invitation:
        """Register a pairing request and build the code for the partner.

        Args:
            profile: Couple details to share.
            device_info: Optional description of this device.

        Returns:
            Invitation with the pairing code.

        Raises:
            ConflictError: If the couple already has a live request.
            EntropyError: If no secure random source is available.
        """
        secret = self.tokens.mint_token()
        response = await self.client.initiate_pairing(
            profile.couple_id, self.tokens.hash(secret), device_info
        )

        payload = PairingPayload(
            couple_id=profile.couple_id,
            partner_a_name=profile.partner_a_name,
            partner_b_name=profile.partner_b_name,
            love_date=profile.love_date,
            story_start=profile.story_start,
            pairing_token=secret,
            cover_title=profile.cover_title,
        )
        code = self.codec.encode(payload)

        logger.info(f"Created invitation for couple {short_id(profile.couple_id)}")
        return Invitation(code=code, payload=payload, expires_at=response.get("expiresAt"))

    async def accept_invitation(self, code: str) -> CoupleProfile:
        """Decode a pairing code and confirm it with the relay.

        Raises:
            InvalidFormatError: If the code cannot be decoded.
            NotFoundError: If the request was consumed or has expired.
        """
        payload = self.codec.decode(code)
        await self.client.confirm_pairing(
            payload.couple_id, self.tokens.hash(payload.pairing_token)
        )

        logger.info(f"Joined couple {short_id(payload.couple_id)}")
        return CoupleProfile.from_payload(payload)
