# app/core/errors.py
from __future__ import annotations

from typing import Optional


class VerificationError(Exception):
    """Base class for failures surfaced by the verification core."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TagValidationError(VerificationError):
    """Missing or malformed request input (tag code, fingerprint, hash)."""

    status_code = 400


class TagNotFound(VerificationError):
    status_code = 404

    def __init__(self, tag_code: str):
        super().__init__(f"Tag not found: {tag_code}")
        self.tag_code = tag_code


class ScanNotFound(VerificationError):
    """A claim was submitted by a fingerprint that never scanned the tag."""

    status_code = 400

    def __init__(self, tag_code: str, fingerprint_id: str):
        super().__init__("Scan the tag before submitting a claim.")
        self.tag_code = tag_code
        self.fingerprint_id = fingerprint_id


class RateLimited(VerificationError):
    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__("Too many requests. Please retry later.")
        self.retry_after = retry_after


class CSRFRejected(VerificationError):
    status_code = 403

    def __init__(self, reason: str = "Invalid CSRF token"):
        super().__init__(reason)


class StorageFailure(VerificationError):
    """
    Writing a scan observation failed.

    Fatal for the request: recording the observation is the primary side
    effect of a scan and has no degraded fallback.
    """

    status_code = 500

    def __init__(self, tag_code: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to record scan for tag {tag_code}")
        self.tag_code = tag_code
        self.cause = cause


class RegistryUnavailable(VerificationError):
    """Raised only by read endpoints that have nothing to show without the registry."""

    status_code = 503

    def __init__(self, detail: str = "On-chain registry unavailable"):
        super().__init__(detail)
