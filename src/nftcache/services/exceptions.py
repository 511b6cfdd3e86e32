"""Service error hierarchy for metadata resolution, media fetching and caching.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (RPC outages, unreachable origins)
- PermanentError: Non-retryable errors (missing or malformed data, policy limits)
- StorageError: Cache storage failures, always propagated to the caller
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - RPC endpoint timeouts or 5xx responses
    - Connection refused by an origin host
    - Rate limit exceeded (429)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    The record is marked failed and callers receive the placeholder image.
    It stays eligible for an explicit refresh later.
    """

    pass


class StorageError(ServiceError):
    """Cache storage (database or blob filesystem) failure.

    Fatal to the in-flight operation; never swallowed.
    """

    pass


# Input validation errors
class InvalidMintError(ValueError):
    """Mint address is not a valid base58 public key."""

    pass


class UnknownVariantError(ValueError):
    """Requested size variant is not configured."""

    pass


# Blockchain-specific errors
class RpcUnavailableError(TransientError):
    """RPC transport failure, timeout or error response."""

    pass


class MetadataNotFoundError(PermanentError):
    """Neither metadata program holds an account for the mint."""

    pass


class MalformedMetadataError(PermanentError):
    """Metadata account exists but cannot be decoded."""

    pass


# Media fetch errors
class MediaUnreachableError(TransientError):
    """Origin host unreachable, rate limited (429) or failing (5xx)."""

    pass


class MediaHTTPError(PermanentError):
    """Origin answered with a non-retryable status (e.g. 404)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MediaTooLargeError(PermanentError):
    """Response exceeded the configured size ceiling."""

    pass


class MediaTimeoutError(PermanentError):
    """Fetch did not complete within the configured timeout."""

    pass


class TooManyRedirectsError(PermanentError):
    """Redirect chain exceeded the configured hop limit."""

    pass


class UnsupportedUriError(PermanentError):
    """URI scheme or document cannot be turned into an image location."""

    pass


# Image errors
class UnsupportedImageError(PermanentError):
    """Media bytes could not be decoded as a supported raster image."""

    pass
