"""Exception hierarchy and failure taxonomy for listing acquisition."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    LOCATION_UNDETERMINABLE = "location_undeterminable"
    UPSTREAM_REJECTED = "upstream_rejected"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    MALFORMED_UPSTREAM_PAYLOAD = "malformed_upstream_payload"
    CACHE_UNAVAILABLE = "cache_unavailable"


# Advisory strings shown to the user in place of raw errors.
ADVISORY_SET_LOCATION = "Set your location to see properties near you."
ADVISORY_RATE_LIMITED = (
    "Listing refresh limit reached for this month. Showing saved properties."
)
ADVISORY_CACHED_DATA = "Couldn't refresh listings. Showing saved properties."
ADVISORY_NO_PROPERTIES = "No properties found. Try adjusting your preferences."


class ListingDeckError(Exception):
    """Base exception for all listing-deck errors."""

    failure_kind: Optional[FailureKind] = None


class ConfigurationError(ListingDeckError):
    """Raised when configuration is invalid or missing."""


class ClientError(ListingDeckError):
    """Raised by the listings client; never retried except for HTTP 422."""

    failure_kind = FailureKind.UPSTREAM_UNREACHABLE


class InvalidURL(ClientError):
    failure_kind = FailureKind.UPSTREAM_REJECTED


class InvalidResponse(ClientError):
    """No usable HTTP response (transport failure, timeout, bad envelope)."""

    failure_kind = FailureKind.UPSTREAM_UNREACHABLE


class HttpError(ClientError):
    failure_kind = FailureKind.UPSTREAM_REJECTED

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"HTTP error: {status_code}")
        self.status_code = status_code
        self.body = body


class DecodingError(ClientError):
    failure_kind = FailureKind.MALFORMED_UPSTREAM_PAYLOAD


class RateLimitExceeded(ClientError):
    failure_kind = FailureKind.QUOTA_EXCEEDED


class MissingCredentials(ClientError):
    failure_kind = FailureKind.UPSTREAM_REJECTED


class CacheUnavailable(ListingDeckError):
    failure_kind = FailureKind.CACHE_UNAVAILABLE


class UsageStoreError(ListingDeckError):
    """The usage counter could not be read from or written to its store."""


class LocationResolutionError(ListingDeckError):
    """The user's location could not be turned into a query key."""

    failure_kind = FailureKind.LOCATION_UNDETERMINABLE

    UNDETERMINABLE = "undeterminable"
    NO_LOCATION_DATA = "no-location-data"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def failure_kind_of(exc: BaseException) -> FailureKind:
    kind = getattr(exc, "failure_kind", None)
    if isinstance(kind, FailureKind):
        return kind
    return FailureKind.UPSTREAM_UNREACHABLE
