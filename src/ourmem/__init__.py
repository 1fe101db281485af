"""Our Memories relay - pairing, WebRTC signaling and encrypted backups."""

__version__ = "1.0.0"
