"""Base exceptions for the Our Memories relay.

Every relay error carries a ``kind`` (stable, machine readable) and the
HTTP ``status`` the server answers with.
"""


class RelayError(Exception):
    """Base exception for all relay errors."""

    kind = "internal"
    status = 500


class ValidationError(RelayError):
    """Missing or malformed required fields."""

    kind = "validation"
    status = 400


class InvalidFormatError(ValidationError):
    """Pairing code could not be decoded."""

    kind = "invalid_format"


class ConflictError(RelayError):
    """A live pairing request already exists for the couple."""

    kind = "conflict"
    status = 409


class NotFoundError(RelayError):
    """No matching pairing request, signal or backup."""

    kind = "not_found"
    status = 404


class PayloadTooLargeError(RelayError):
    """Backup blob exceeds the configured ceiling."""

    kind = "payload_too_large"
    status = 413


class RateLimitedError(RelayError):
    """Too many requests from one client."""

    kind = "rate_limited"
    status = 429


class InternalError(RelayError):
    """Unexpected server-side failure."""

    pass


class StorageError(InternalError):
    """Storage operation error."""

    pass


class EntropyError(InternalError):
    """Secure random source unavailable."""

    pass


class CryptoError(RelayError):
    """Cryptographic operation failed."""

    kind = "crypto"
    status = 400


ERRORS_BY_KIND: dict[str, type[RelayError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        InvalidFormatError,
        ConflictError,
        NotFoundError,
        PayloadTooLargeError,
        RateLimitedError,
        InternalError,
        CryptoError,
    )
}

ERRORS_BY_STATUS: dict[int, type[RelayError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    413: PayloadTooLargeError,
    429: RateLimitedError,
}


def error_for(kind: str | None, status: int) -> type[RelayError]:
    """Resolve the exception class for an error response.

    Args:
        kind: ``kind`` field from the response body, if any.
        status: HTTP status code.

    Returns:
        Matching RelayError subclass (InternalError when unknown).
    """
    if kind and kind in ERRORS_BY_KIND:
        return ERRORS_BY_KIND[kind]
    return ERRORS_BY_STATUS.get(status, InternalError)
