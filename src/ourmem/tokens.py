"""One-time pairing tokens and signaling secrets.

Tokens are 32 random bytes from the platform CSPRNG, hex encoded. Only
their SHA-256 digest ever reaches the relay; digests are compared in
constant time.
"""

import base64
import hashlib
import hmac
import secrets

from ourmem.errors import EntropyError

__all__ = [
    "TOKEN_BYTES",
    "TokenStore",
]

TOKEN_BYTES = 32  # 256 bits


class TokenStore:
    """Mint, hash and verify one-time secrets."""

    def __init__(self, token_bytes: int = TOKEN_BYTES):
        """Initialize token store.

        Args:
            token_bytes: Entropy per secret in bytes (at least 32).

        Raises:
            ValueError: If token_bytes is below 256 bits.
        """
        if token_bytes < TOKEN_BYTES:
            raise ValueError(f"Tokens need at least {TOKEN_BYTES} bytes of entropy")
        self.token_bytes = token_bytes

    def _random_bytes(self) -> bytes:
        try:
            return secrets.token_bytes(self.token_bytes)
        except (OSError, NotImplementedError) as e:
            raise EntropyError(f"Secure random source unavailable: {e}") from e

    def mint_token(self) -> str:
        """Mint a pairing secret.

        Returns:
            Hex encoded secret (64 chars for 32 bytes).

        Raises:
            EntropyError: If the OS entropy source is unavailable.
        """
        return self._random_bytes().hex()

    def mint_signaling_secret(self) -> str:
        """Mint a URL-safe signaling secret.

        Raises:
            EntropyError: If the OS entropy source is unavailable.
        """
        raw = self._random_bytes()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    @staticmethod
    def hash(secret: str) -> str:
        """One-way SHA-256 hex digest of a secret.

        Matches the web client's ``crypto.subtle.digest('SHA-256', ...)``
        output, so digests from browsers and from this package agree.
        """
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    @classmethod
    def verify(cls, secret: str, digest: str) -> bool:
        """Check a secret against a stored digest in constant time."""
        return cls.verify_digest(cls.hash(secret), digest)

    @staticmethod
    def verify_digest(candidate: str, digest: str) -> bool:
        """Compare two hex digests in constant time."""
        return hmac.compare_digest(
            candidate.lower().encode("ascii", "replace"),
            digest.lower().encode("ascii", "replace"),
        )

    def self_check(self) -> None:
        """Fail fast at startup if no secure entropy is available.

        Raises:
            EntropyError: If the entropy source is unavailable.
        """
        self._random_bytes()
