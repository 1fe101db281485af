"""WebRTC signaling relay: store-and-forward mailbox plus live fan-out."""

from .hub import RelayHub, Subscriber, WebSocketSubscriber, signal_event
from .mailbox import SignalEnvelope, SignalMailbox

__all__ = [
    "RelayHub",
    "SignalEnvelope",
    "SignalMailbox",
    "Subscriber",
    "WebSocketSubscriber",
    "signal_event",
]
