"""Error taxonomy shared by the webhook pipeline and the admin endpoints."""

from typing import Optional


class PagesDNSError(Exception):
    """Base class for all application errors."""


class ValidationError(PagesDNSError, ValueError):
    """Malformed or missing fields in an inbound request or a store write."""


class UpstreamError(PagesDNSError):
    """A call to GitHub or Cloudflare did not succeed."""

    def __init__(self, message: str, status: Optional[int] = None, codes=None):
        super().__init__(message)
        self.status = status
        # provider-specific error codes, when the body carried any
        self.codes = set(codes or ())


class UpstreamTransientError(UpstreamError):
    """Network failure, timeout, HTTP 429 or 5xx. Safe to retry."""


class UpstreamPermanentError(UpstreamError):
    """Any other non-2xx answer. Never retried; 404 means "absent"."""

    @property
    def not_found(self) -> bool:
        return self.status == 404


class PersistenceError(PagesDNSError):
    """A state-store transaction could not be committed."""


class CredentialError(PagesDNSError):
    """A stored credential could not be encrypted, decrypted or loaded."""


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamTransientError)


def classify_status(status: int, message: str) -> UpstreamError:
    """Build the matching upstream error for a non-2xx HTTP status."""
    if status == 429 or status >= 500:
        return UpstreamTransientError(message, status=status)
    return UpstreamPermanentError(message, status=status)
