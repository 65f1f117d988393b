"""
Shared error handling for the CampusNest listings cache guard.

Only backing-store failures are meant to reach callers. Cache and lock
infrastructure failures are absorbed by the components that talk to them.
"""

from typing import Dict, Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class ListingServiceException(Exception):
    """Base exception for the listings service."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class BackingStoreError(ListingServiceException):
    """The authoritative store could not answer."""

    def __init__(self, message: str = "Backing store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKING_STORE_ERROR", message, details)


class ListingNotFoundError(ListingServiceException):
    """A write path referenced a listing that does not exist."""

    def __init__(self, listing_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__("LISTING_NOT_FOUND", f"Listing not found: {listing_id}", details)
        self.listing_id = listing_id


class FilterInitializationError(ListingServiceException):
    """The membership filter could not be built at startup."""

    def __init__(self, message: str = "Membership filter initialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("FILTER_INIT_FAILED", message, details)
