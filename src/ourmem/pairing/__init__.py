"""Pairing module for the Our Memories relay.

Provides:
- Pairing request registry (one-time, time-bounded)
- Pairing code encoding
- QR code rendering
"""

from .codec import PairingCodec, PairingPayload
from .qr_generator import QrGenerator
from .registry import PairingRegistry, PairingRequest

__all__ = [
    "PairingCodec",
    "PairingPayload",
    "PairingRegistry",
    "PairingRequest",
    "QrGenerator",
]
